"""Transactional email through the Resend HTTP API."""

from typing import Optional

import httpx

from app.logging_config import get_logger
from app.services.result import ErrorCode, Result

logger = get_logger("email_service")

RESEND_URL = "https://api.resend.com/emails"


class EmailClient:
    def __init__(
        self,
        api_key: Optional[str],
        sender: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> Result[str]:
        if not self.enabled:
            logger.warning("Email not configured, message dropped", extra={"context": {"to": to}})
            return Result.failure("Email not configured", ErrorCode.NOT_CONFIGURED)

        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        if text:
            payload["text"] = text
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"Email request error: {e}", extra={"context": {"to": to}})
            return Result.failure(str(e), ErrorCode.SEND_FAILED)

        if response.status_code >= 300:
            logger.error(
                f"Email send failed: {response.status_code}",
                extra={"context": {"to": to, "body": response.text[:300]}},
            )
            return Result.failure(f"Resend error {response.status_code}", ErrorCode.SEND_FAILED)

        email_id = response.json().get("id")
        logger.info("Email sent", extra={"context": {"to": to, "email_id": email_id}})
        return Result.success(email_id)
