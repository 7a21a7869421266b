"""Meta WhatsApp Cloud API client."""

from typing import Any, Optional

import httpx

from app.logging_config import get_logger
from app.services.result import ErrorCode, Result

logger = get_logger("whatsapp_service")

WA_API_BASE = "https://graph.facebook.com"

ERROR_TOKEN_EXPIRED = 190
ERROR_RECIPIENT_NOT_ALLOWED = 131030
ERROR_OUTSIDE_WINDOW = 131047

KNOWN_ERRORS = {
    ERROR_TOKEN_EXPIRED: "WhatsApp access token expired, generate a new one",
    ERROR_RECIPIENT_NOT_ALLOWED: "Recipient is not in the allowed list of the test number",
    ERROR_OUTSIDE_WINDOW: "24-hour customer service window closed, a template message is required",
}

MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20


class WhatsAppSendError(Exception):
    def __init__(self, code: Optional[int], message: str, status_code: Optional[int] = None):
        self.code = code
        self.status_code = status_code
        super().__init__(message)


def parse_error(status_code: int, body: Any) -> WhatsAppSendError:
    error = body.get("error", {}) if isinstance(body, dict) else {}
    code = error.get("code")
    message = KNOWN_ERRORS.get(code) or error.get("message") or f"HTTP {status_code}"
    return WhatsAppSendError(code, message, status_code)


class WhatsAppClient:
    def __init__(
        self,
        token: Optional[str],
        phone_number_id: Optional[str],
        api_version: str = "v21.0",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.phone_number_id = phone_number_id
        self.timeout = timeout
        self._transport = transport
        self.url = f"{WA_API_BASE}/{api_version}/{phone_number_id}/messages" if phone_number_id else None

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.url)

    async def _post(self, to: str, payload: dict) -> Result[dict]:
        if not self.enabled:
            logger.warning("WhatsApp not configured, message dropped", extra={"context": {"to": to}})
            return Result.failure("WhatsApp not configured", ErrorCode.NOT_CONFIGURED)

        body = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": to, **payload}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    headers={"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"},
                    json=body,
                )
            data = response.json() if response.content else {}
            if response.status_code != 200:
                raise parse_error(response.status_code, data)
        except WhatsAppSendError as e:
            logger.error(
                f"WhatsApp send failed: {e}",
                extra={"context": {"to": to, "code": e.code, "status": e.status_code}},
            )
            return Result.failure(str(e), ErrorCode.SEND_FAILED)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"WhatsApp request error: {e}", extra={"context": {"to": to}})
            return Result.failure(str(e), ErrorCode.SEND_FAILED)

        message_id = (data.get("messages") or [{}])[0].get("id")
        logger.debug("WhatsApp message sent", extra={"context": {"to": to, "message_id": message_id}})
        return Result.success(data)

    async def send_text(self, to: str, text: str) -> Result[dict]:
        return await self._post(to, {"type": "text", "text": {"preview_url": False, "body": text}})

    async def send_buttons(
        self,
        to: str,
        body: str,
        buttons: list[tuple[str, str]],
        header: Optional[str] = None,
    ) -> Result[dict]:
        """Interactive reply buttons. buttons: (id, title) pairs, at most three."""
        interactive: dict[str, Any] = {
            "type": "button",
            "body": {"text": body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": button_id, "title": title[:MAX_BUTTON_TITLE]}}
                    for button_id, title in buttons[:MAX_BUTTONS]
                ]
            },
        }
        if header:
            interactive["header"] = {"type": "text", "text": header}
        return await self._post(to, {"type": "interactive", "interactive": interactive})

    async def send_list(
        self,
        to: str,
        body: str,
        button_text: str,
        sections: list[dict],
        header: Optional[str] = None,
    ) -> Result[dict]:
        interactive: dict[str, Any] = {
            "type": "list",
            "body": {"text": body},
            "action": {"button": button_text[:MAX_BUTTON_TITLE], "sections": sections},
        }
        if header:
            interactive["header"] = {"type": "text", "text": header}
        return await self._post(to, {"type": "interactive", "interactive": interactive})
