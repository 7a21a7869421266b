"""Wiring of the process-scoped services, attached to ``app.state.runtime``."""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.services.ai_service import AIResponder
from app.services.email_service import EmailClient
from app.services.escalation_service import EscalationMonitor
from app.services.handoff_service import HandoffCoordinator
from app.services.llm import LLMProvider, OpenRouterProvider
from app.services.notification_service import NotificationDispatcher
from app.services.runtime_state import AcknowledgmentTracker, BotState, EscalationTracker, HandoffCache
from app.services.trigger_service import TriggerDetector
from app.services.whatsapp_service import WhatsAppClient


@dataclass
class Runtime:
    config: Settings
    session_factory: Callable[[], Session]
    bot: BotState
    cache: HandoffCache
    escalations: EscalationTracker
    acknowledgments: AcknowledgmentTracker
    whatsapp: WhatsAppClient
    email: EmailClient
    dispatcher: NotificationDispatcher
    coordinator: HandoffCoordinator
    monitor: EscalationMonitor
    detector: TriggerDetector
    responder: AIResponder


def build_runtime(
    session_factory: Callable[[], Session],
    config: Settings = settings,
    whatsapp: Optional[WhatsAppClient] = None,
    email: Optional[EmailClient] = None,
    llm: Optional[LLMProvider] = None,
) -> Runtime:
    whatsapp = whatsapp or WhatsAppClient(
        config.whatsapp_token,
        config.whatsapp_phone_number_id,
        api_version=config.whatsapp_api_version,
    )
    email = email or EmailClient(config.resend_api_key, config.email_from)
    if llm is None and config.openrouter_api_key:
        llm = OpenRouterProvider(config.openrouter_api_key, default_model=config.openrouter_model, app_url=config.app_url)

    cache = HandoffCache()
    escalations = EscalationTracker()
    acknowledgments = AcknowledgmentTracker(window_minutes=config.ack_window_minutes)
    dispatcher = NotificationDispatcher(
        whatsapp,
        email,
        acknowledgments=acknowledgments,
        fallback_numbers=tuple(config.staff_numbers),
        owner_email=config.owner_email,
        max_queue=config.notification_queue_size,
        workers=config.notification_workers,
    )
    coordinator = HandoffCoordinator(
        cache,
        escalations,
        dispatcher,
        acknowledgments=acknowledgments,
        cooldown_minutes=config.handoff_cooldown_minutes,
    )
    monitor = EscalationMonitor(
        escalations,
        whatsapp,
        email,
        owner_email=config.owner_email,
        threshold_minutes=config.escalation_threshold_minutes,
    )
    return Runtime(
        config=config,
        session_factory=session_factory,
        bot=BotState(),
        cache=cache,
        escalations=escalations,
        acknowledgments=acknowledgments,
        whatsapp=whatsapp,
        email=email,
        dispatcher=dispatcher,
        coordinator=coordinator,
        monitor=monitor,
        detector=TriggerDetector(llm, model=config.classifier_model),
        responder=AIResponder(llm, model=config.openrouter_model),
    )


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime
