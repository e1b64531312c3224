from datetime import datetime
from typing import List, Set
from uuid import uuid4
from pydantic import BaseModel, Field

from emergency_dispatch.models.assessment import Language


class NotificationTemplate(BaseModel):
    """Localized message body with {placeholder} tokens"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    template_key: str
    language_code: Language
    body: str
    variables: Set[str] = Field(default_factory=set)
    is_active: bool = True
    version: int = 1
    created_at: datetime = Field(default_factory=datetime.utcnow)


class TemplateValidationResult(BaseModel):
    """Errors block use of a template; warnings only get logged"""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
