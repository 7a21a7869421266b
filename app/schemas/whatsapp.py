"""Meta WhatsApp Cloud API webhook payloads."""

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class WhatsAppText(BaseModel):
    body: str = ""


class WhatsAppReply(BaseModel):
    id: str = ""
    title: Optional[str] = None
    description: Optional[str] = None


class WhatsAppInteractive(BaseModel):
    type: str
    button_reply: Optional[WhatsAppReply] = None
    list_reply: Optional[WhatsAppReply] = None


class WhatsAppButton(BaseModel):
    """Quick-reply button on a template message."""

    payload: Optional[str] = None
    text: Optional[str] = None


class WhatsAppMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from")
    id: Optional[str] = None
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[WhatsAppText] = None
    interactive: Optional[WhatsAppInteractive] = None
    button: Optional[WhatsAppButton] = None


class WhatsAppProfile(BaseModel):
    name: Optional[str] = None


class WhatsAppContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[WhatsAppProfile] = None


class WhatsAppValue(BaseModel):
    messaging_product: Optional[str] = None
    contacts: list[WhatsAppContact] = []
    messages: list[WhatsAppMessage] = []
    statuses: list[dict[str, Any]] = []


class WhatsAppChange(BaseModel):
    field: Optional[str] = None
    value: WhatsAppValue = WhatsAppValue()


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = []


class WebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = []

    def inbound_messages(self) -> list["InboundMessage"]:
        inbound = []
        for entry in self.entry:
            for change in entry.changes:
                names = {c.wa_id: c.profile.name for c in change.value.contacts if c.profile}
                for msg in change.value.messages:
                    item = InboundMessage(
                        sender=msg.sender,
                        message_id=msg.id,
                        message_type=msg.type,
                        profile_name=names.get(msg.sender),
                    )
                    if msg.type == "text" and msg.text:
                        item.text = msg.text.body
                    elif msg.type == "interactive" and msg.interactive:
                        item.interactive = msg.interactive.model_dump(exclude_none=True)
                    elif msg.type == "button" and msg.button:
                        item.text = msg.button.text or msg.button.payload
                    inbound.append(item)
        return inbound


@dataclass
class InboundMessage:
    sender: str
    message_id: Optional[str] = None
    message_type: str = "text"
    text: Optional[str] = None
    interactive: Optional[dict] = None
    profile_name: Optional[str] = None
