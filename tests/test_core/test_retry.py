"""
Tests for retry logic.
"""
from unittest.mock import patch

import httpx
import pytest

from emergency_dispatch.core.config import Settings
from emergency_dispatch.core.retry import (
    RetryConfig,
    create_async_retry_decorator,
    get_notification_retry_config,
)


class TestRetryConfig:
    """Test retry configuration."""

    def test_default_config(self):
        """Test default retry configuration."""
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 10.0
        assert httpx.TransportError in config.retryable_exceptions
        assert ConnectionError in config.retryable_exceptions

    def test_notification_retry_config_from_settings(self):
        """Test notification retry config reads settings."""
        custom = Settings(_env_file=None, retry_max_attempts=5, retry_base_delay_seconds=0.5)

        with patch("emergency_dispatch.core.config.get_settings", return_value=custom):
            config = get_notification_retry_config()

        assert config.max_attempts == 5
        assert config.base_delay == 0.5
        assert config.max_delay == 10.0


class TestAsyncRetryDecorator:
    """Test async retry decorator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = RetryConfig(max_attempts=3, base_delay=0, max_delay=0)

    @pytest.mark.asyncio
    async def test_retries_transport_errors(self):
        """Test transport errors are retried until success."""
        calls = []

        @create_async_retry_decorator(self.config, "Test Service")
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise httpx.ConnectError("connection refused")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_reraises_after_max_attempts(self):
        """Test the last error is raised when attempts run out."""
        calls = []

        @create_async_retry_decorator(self.config, "Test Service")
        async def always_down():
            calls.append(1)
            raise httpx.ConnectError("connection refused")

        with pytest.raises(httpx.ConnectError):
            await always_down()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_does_not_retry_other_errors(self):
        """Test non retryable errors fail immediately."""
        calls = []

        @create_async_retry_decorator(self.config, "Test Service")
        async def broken():
            calls.append(1)
            raise ValueError("bad payload")

        with pytest.raises(ValueError):
            await broken()
        assert len(calls) == 1
