"""Application configuration and settings."""

from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    service_name: str = Field(default="emergency-dispatch")
    service_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    api_prefix: str = Field(default="/api/v1")

    # Language Configuration
    default_language: str = Field(default="en")

    # Urgency Thresholds
    immediate_attention_threshold: float = Field(default=0.7)
    emergency_threshold: float = Field(default=0.8)
    base_score_cap: float = Field(default=0.8)

    # Dispatch Configuration
    step_timeout_seconds: float = Field(default=30.0)
    max_retries: int = Field(default=3)
    status_update_delay_seconds: int = Field(default=900)

    # Notification Service
    notification_service_url: str = Field(default="http://localhost:8001")
    notification_timeout: float = Field(default=10.0)
    webhook_timeout: float = Field(default=10.0)
    retry_max_attempts: int = Field(default=3)
    retry_base_delay_seconds: float = Field(default=1.0)
    retry_max_delay_seconds: float = Field(default=10.0)

    # Audit Trail
    audit_queue_size: int = Field(default=1000)

    # Supabase Configuration
    supabase_url: Optional[str] = Field(default=None)
    supabase_key: Optional[str] = Field(default=None)

    # Development Settings
    enable_cors: bool = Field(default=True)
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"]
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @field_validator(
        "immediate_attention_threshold", "emergency_threshold", "base_score_cap"
    )
    @classmethod
    def validate_score_thresholds(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("Score thresholds must be between 0.0 and 1.0")
        return v

    @field_validator("default_language")
    @classmethod
    def validate_default_language(cls, v: str) -> str:
        if v not in ("en", "es"):
            raise ValueError("Default language must be one of: en, es")
        return v

    @field_validator("step_timeout_seconds")
    @classmethod
    def validate_step_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Step timeout must be positive")
        return v

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


# Create global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
