"""HTTP gateway SMS sender."""

import base64

import httpx
import structlog

from subtrack.communications.models import DispatchResult, NotificationChannel, SMSMessage
from subtrack.settings import Settings, get_settings

logger = structlog.get_logger(__name__)


class SmsSender:
    """Send SMS through a generic HTTP gateway."""

    def __init__(
        self,
        config: Settings.NotificationSettings | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.config = config or get_settings().notifications
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.config.sms_enabled and self.config.sms_gateway_url)

    def _prepare_auth_headers(self) -> dict[str, str]:
        auth_type = (self.config.sms_gateway_auth_type or "none").lower()
        value = self.config.sms_gateway_auth_value
        if not value or auth_type == "none":
            return {}
        if auth_type == "bearer":
            return {"Authorization": f"Bearer {value}"}
        if auth_type == "api_key":
            return {"X-API-Key": value}
        if auth_type == "basic":
            token = base64.b64encode(value.encode()).decode()
            return {"Authorization": f"Basic {token}"}
        return {}

    def _failure(self, recipient: str, error: str) -> DispatchResult:
        return DispatchResult(
            channel=NotificationChannel.SMS, success=False, recipient=recipient, error=error
        )

    async def send(self, message: SMSMessage) -> DispatchResult:
        if not self.is_configured:
            logger.warning("sms.not_configured", recipient=message.to)
            return self._failure(message.to, "SMS service not configured")

        headers = self._prepare_auth_headers()
        payload = {"to": message.to, "message": message.body}
        method = self.config.sms_gateway_method.upper()
        url = self.config.sms_gateway_url

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                if method == "GET":
                    response = await client.get(url, params=payload, headers=headers)
                elif method == "PUT":
                    response = await client.put(url, json=payload, headers=headers)
                else:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("sms.send_failed", recipient=message.to, error=str(e))
            return self._failure(message.to, str(e))

        if not 200 <= response.status_code < 300:
            logger.error(
                "sms.gateway_rejected",
                recipient=message.to,
                status_code=response.status_code,
                body=response.text[:200],
            )
            return self._failure(message.to, f"Gateway returned HTTP {response.status_code}")

        logger.info("sms.sent", recipient=message.to)
        return DispatchResult(channel=NotificationChannel.SMS, success=True, recipient=message.to)


__all__ = ["SmsSender"]
