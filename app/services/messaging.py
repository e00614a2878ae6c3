# app/services/messaging.py
"""SMS delivery for one-time codes."""
from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from app.core.config import Settings
from app.core.errors import DeliveryFailed, TransientFailure
from app.core.redaction import phone_log_fields

logger = logging.getLogger(__name__)

OTP_TEMPLATE = "{code} is your verification code. It expires in {minutes} minutes. Do not share it."


class MessagingGateway(Protocol):
    async def send(self, phone: str, code: str) -> None:
        """Deliver `code` to `phone`; raise TransientFailure on retryable errors."""
        ...


class LoggingMessagingGateway:
    """Development gateway: records the dispatch without disclosing the code."""

    async def send(self, phone: str, code: str) -> None:
        logger.info("otp dispatched (log-only gateway)", extra={**phone_log_fields(phone), "code": "redacted"})


class HttpMessagingGateway:
    """
    Posts to an HTTP SMS provider.

    5xx, timeouts and connection errors are transient; any other non-2xx
    response is a permanent delivery failure.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        sender_id: str,
        ttl_minutes: int,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.sender_id = sender_id
        self.ttl_minutes = ttl_minutes
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def send(self, phone: str, code: str) -> None:
        payload = {
            "to": phone,
            "from": self.sender_id,
            "message": OTP_TEMPLATE.format(code=code, minutes=self.ttl_minutes),
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                resp = await self._client.post(self.url, json=payload, headers=headers, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    resp = await client.post(self.url, json=payload, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("sms gateway unreachable", extra={**phone_log_fields(phone), "error": type(exc).__name__})
            raise TransientFailure() from exc

        if resp.status_code >= 500:
            logger.warning("sms gateway error", extra={**phone_log_fields(phone), "status": resp.status_code})
            raise TransientFailure()
        if resp.status_code >= 400:
            logger.error("sms gateway rejected message", extra={**phone_log_fields(phone), "status": resp.status_code})
            raise DeliveryFailed()

        logger.info("otp dispatched", extra=phone_log_fields(phone))


def build_gateway(settings: Settings) -> MessagingGateway:
    if not settings.sms_gateway_url:
        return LoggingMessagingGateway()
    return HttpMessagingGateway(
        url=settings.sms_gateway_url,
        api_key=settings.sms_gateway_api_key,
        sender_id=settings.sms_sender_id,
        ttl_minutes=max(1, settings.otp_ttl_seconds // 60),
        timeout_seconds=settings.sms_timeout_seconds,
    )
