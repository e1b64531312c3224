"""
Outbound notification channels and the webhook client used by dispatch steps.
"""
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog
from pydantic import BaseModel

from emergency_dispatch.core.exceptions import ProviderError
from emergency_dispatch.core.retry import RetryConfig, create_async_retry_decorator
from emergency_dispatch.models.assessment import Language

logger = structlog.get_logger(__name__)


class ChannelResult(BaseModel):
    """Provider answer for one outbound message"""
    success: bool
    channel_message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationChannel(Protocol):
    """Anything that can deliver a rendered message to a recipient."""

    channel_name: str

    async def send(self, recipient: str, body: str, language_used: Language) -> ChannelResult:
        ...


class HttpNotificationChannel:
    """Channel that posts messages to the notification provider service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        channel_name: str = "sms",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.channel_name = channel_name
        self._transport = transport
        self._post = create_async_retry_decorator(
            retry_config, service_name="Notification Service"
        )(self._post_once)

    async def _post_once(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(url, json=payload)

    async def send(self, recipient: str, body: str, language_used: Language) -> ChannelResult:
        """
        Send a rendered message through the provider.

        Args:
            recipient: Destination phone number
            body: Rendered message text
            language_used: Language the message was rendered in

        Returns:
            Provider result; 4xx rejections come back as unsuccessful results

        Raises:
            ProviderError: On transport failures after retries or provider 5xx
        """
        url = f"{self.base_url}/notifications/send"
        payload = {
            "channel": self.channel_name,
            "to": recipient,
            "body": body,
            "language": Language(language_used).value,
        }

        try:
            logger.info(
                "Sending notification",
                service="Notification Service",
                channel=self.channel_name,
                language=payload["language"],
                url=url,
            )
            response = await self._post(url, payload)
            response.raise_for_status()

        except httpx.TimeoutException as e:
            logger.error(
                "Timeout sending notification",
                service="Notification Service",
                timeout=self.timeout,
                error=str(e),
            )
            raise ProviderError(
                "Notification Service", f"Request timeout after {self.timeout} seconds"
            )

        except httpx.TransportError as e:
            logger.error(
                "Connection error to Notification Service",
                url=url,
                error=str(e),
            )
            raise ProviderError("Notification Service", f"Connection error: {str(e)}")

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code >= 500:
                logger.error(
                    "HTTP error from Notification Service",
                    status_code=status_code,
                    error=str(e),
                )
                raise ProviderError(
                    "Notification Service", f"Server error: {status_code}", status_code=status_code
                )

            logger.warning(
                "Notification rejected by service",
                status_code=status_code,
                error=str(e),
            )
            return ChannelResult(success=False, error=f"Rejected by provider: {status_code}")

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        message_id = data.get("message_id") or data.get("id")

        logger.info(
            "Notification sent successfully",
            service="Notification Service",
            channel=self.channel_name,
            channel_message_id=message_id,
        )
        return ChannelResult(success=True, channel_message_id=message_id)


class WebhookClient:
    """HTTP client for webhook dispatch steps."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport

    async def call(
        self,
        url: str,
        method: str = "POST",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Call a webhook endpoint.

        Returns:
            Decoded JSON response, or an empty dict for empty bodies

        Raises:
            ProviderError: On non-2xx responses or transport errors
        """
        request_headers = {"Content-Type": "application/json", **(headers or {})}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=request_headers, json=body or {})
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Webhook returned error status",
                url=url,
                status_code=e.response.status_code,
            )
            raise ProviderError(
                "Webhook",
                f"Webhook failed: {e.response.status_code}",
                status_code=e.response.status_code,
            )
        except httpx.HTTPError as e:
            logger.warning("Webhook call failed", url=url, error=str(e))
            raise ProviderError("Webhook", f"Webhook call failed: {str(e)}")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}
