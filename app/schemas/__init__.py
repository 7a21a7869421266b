from app.schemas.whatsapp import InboundMessage, WebhookPayload

__all__ = ["InboundMessage", "WebhookPayload"]
