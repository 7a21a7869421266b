from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from app.config import settings
from app.logging_config import get_logger
from app.runtime import Runtime, get_runtime
from app.schemas.whatsapp import WebhookPayload
from app.services.inbound_service import process_inbound

logger = get_logger("webhook")

router = APIRouter(tags=["webhook"])


@router.get("/webhook")
async def verify_webhook(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Meta subscription handshake."""
    expected = settings.whatsapp_verify_token
    if hub_mode == "subscribe" and expected and hub_verify_token == expected:
        logger.info("Webhook verified")
        return PlainTextResponse(hub_challenge or "")
    logger.warning("Webhook verification failed", extra={"context": {"mode": hub_mode}})
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    runtime: Runtime = Depends(get_runtime),
):
    """Acknowledge at once; every message is processed after the response."""
    try:
        payload = WebhookPayload.model_validate(await request.json())
    except (ValidationError, ValueError) as e:
        logger.warning(f"Unparseable webhook payload: {e}")
        return {"status": "ignored"}

    messages = payload.inbound_messages()
    for message in messages:
        background_tasks.add_task(process_inbound, runtime, message)

    return {"status": "received", "messages": len(messages)}
