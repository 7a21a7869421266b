"""Routing of inbound WhatsApp messages.

Every delivery ends in exactly one outcome label (returned for logging and
tests). Senders on the ignore list are dropped, staff get the command path,
and everyone else goes through the customer path.
"""

from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import ContextLogger, get_logger
from app.models import Conversation, StaffMember
from app.runtime import Runtime
from app.schemas.whatsapp import InboundMessage
from app.services import conversation_service, handoff_store, ignore_list_service, staff_service
from app.services.ai_service import is_simple_message
from app.services.alert_service import alert_error
from app.services.buttons import (
    MENU_STAFF,
    MENU_TRIAL,
    ButtonAction,
    end_button,
    parse_button_click,
    parse_menu_selection,
)
from app.services.gym_knowledge import get_booking_info, get_handoff_message, get_menu_response, get_welcome_menu
from app.services.intent_service import IntentType, classify_intent
from app.services.notification_service import KIND_FOLLOWUP
from app.services.result import ErrorCode, Result
from app.services.staff_command_service import is_acknowledgment, parse_staff_command, sign_staff_message
from app.services.trigger_service import (
    REASON_AI_DETECTED,
    REASON_BOOKING,
    REASON_USER_REQUESTED,
    TriggerResult,
    detect_requested_staff,
    is_booking_request,
)

logger = get_logger("inbound_service")

GENERIC_REPLY = "Got it! Is there anything else you'd like to know about IronCore Fitness?"
BACK_TO_BOT_REPLY = "Thanks for chatting with our team! 🤖 I'm back to help with any other questions."
STAFF_HELP = (
    "You have no active customer conversation.\n\n"
    "Commands:\n"
    "• ok: take the next waiting customer\n"
    "• reply <number>: <message>\n"
    "• end <number>\n"
    "• bot on / bot off"
)

ASSIGN_FAILURE_REPLIES = {
    ErrorCode.NOT_FOUND.value: "❌ No handoff found for +{user_id}.",
    ErrorCode.ALREADY_RESOLVED.value: "ℹ️ The handoff for +{user_id} is already closed.",
    ErrorCode.ASSIGNED_TO_OTHER.value: "⚠️ +{user_id} is already being handled by {owner}.",
}

END_FAILURE_REPLIES = {
    ErrorCode.NOT_FOUND.value: "❌ No handoff found for +{user_id}.",
    ErrorCode.ALREADY_RESOLVED.value: "ℹ️ The handoff for +{user_id} was already ended.",
}


class MessageRouter:
    def __init__(self, runtime: Runtime):
        self.runtime = runtime
        self.whatsapp = runtime.whatsapp
        self.coordinator = runtime.coordinator

    async def handle(self, db: Session, message: InboundMessage) -> str:
        sender = staff_service.normalize_phone(message.sender)
        if not sender:
            return "invalid_sender"
        if ignore_list_service.is_ignored(db, sender):
            db.commit()
            logger.info("Message from ignored number dropped", extra={"context": {"sender": sender}})
            return "ignored"

        staff = staff_service.get_staff_by_phone(db, sender)

        if message.interactive:
            action = parse_button_click(message.interactive)
            if action:
                if staff is None:
                    logger.warning("Staff button pressed by non-staff", extra={"context": {"sender": sender}})
                    return "unauthorized"
                return await self.handle_button(db, staff, action)
            menu_id = parse_menu_selection(message.interactive)
            if menu_id and staff is None:
                return await self.handle_menu(db, sender, menu_id, message.profile_name)
            return "unsupported"

        if not (message.text or "").strip():
            return "unsupported"
        if staff is not None:
            return await self.handle_staff_text(db, staff, message.text)
        return await self.handle_customer_text(db, sender, message.text, message.profile_name)

    # --- staff ---

    async def handle_button(self, db: Session, staff: StaffMember, action: ButtonAction) -> str:
        if action.action in ("bot_on", "bot_off"):
            return await self._toggle_bot(staff, action.action)
        if action.action == "assign":
            return await self._assign(db, staff, action.user_id)
        if action.action == "end_handoff":
            return await self._end(db, staff, action.user_id)
        return "unsupported"

    async def handle_staff_text(self, db: Session, staff: StaffMember, text: str) -> str:
        command = parse_staff_command(text)
        if command is not None:
            if command.kind in ("bot_on", "bot_off"):
                return await self._toggle_bot(staff, command.kind)
            if command.kind == "end":
                return await self._end(db, staff, command.user_id)
            if command.kind == "reply":
                return await self._reply(db, staff, command.user_id, command.text)

        current = self.coordinator.assigned_customer_for(db, staff.phone)
        if current is None and is_acknowledgment(text):
            return await self._take_next(db, staff)

        if current is not None:
            await self._send_to_customer(db, current.user_id, text)
            return "forwarded"

        await self.whatsapp.send_text(staff.phone, STAFF_HELP)
        return "staff_help"

    async def _toggle_bot(self, staff: StaffMember, kind: str) -> str:
        bot = self.runtime.bot
        if kind == "bot_on":
            bot.enable(staff.phone)
            await self.whatsapp.send_text(staff.phone, "🟢 Bot enabled. Customers will get automatic replies.")
        else:
            bot.disable(staff.phone)
            await self.whatsapp.send_text(staff.phone, "🔴 Bot disabled. Customers will not get automatic replies.")
        return kind

    async def _assign(self, db: Session, staff: StaffMember, user_id: str) -> str:
        result = self.coordinator.assign(db, user_id, staff.phone)
        if not result.ok:
            await self._report_failure(db, staff, user_id, result, ASSIGN_FAILURE_REPLIES)
            return f"assign_{result.error_code}"

        handoff = result.value
        who = f"{handoff.customer_name} (+{user_id})" if handoff.customer_name else f"+{user_id}"
        await self.whatsapp.send_buttons(
            staff.phone,
            f"✅ You're now handling {who}.\n\nLast message: {handoff.message}\n\n"
            f"Anything you send here is forwarded to the customer.",
            [end_button(user_id)],
        )
        await self.whatsapp.send_text(user_id, f"👋 {staff.name} from our team has joined the chat.")
        return "assigned"

    async def _end(self, db: Session, staff: StaffMember, user_id: str) -> str:
        result = self.coordinator.end_handoff_session(db, user_id, ended_by=staff.phone)
        if not result.ok:
            await self._report_failure(db, staff, user_id, result, END_FAILURE_REPLIES)
            return f"end_{result.error_code}"

        await self.whatsapp.send_text(staff.phone, f"✅ Handoff with +{user_id} ended. The bot is back on.")
        await self.whatsapp.send_text(user_id, BACK_TO_BOT_REPLY)
        return "ended"

    async def _reply(self, db: Session, staff: StaffMember, user_id: str, text: str) -> str:
        result = self.coordinator.assign(db, user_id, staff.phone)
        if not result.ok and result.error_code == ErrorCode.ASSIGNED_TO_OTHER.value:
            await self._report_failure(db, staff, user_id, result, ASSIGN_FAILURE_REPLIES)
            return "reply_rejected"

        await self._send_to_customer(db, user_id, text)
        await self.whatsapp.send_text(staff.phone, f"📤 Sent to +{user_id}.")
        return "replied"

    async def _take_next(self, db: Session, staff: StaffMember) -> str:
        candidates = handoff_store.waiting_for(db, staff.phone)
        if not candidates:
            await self.whatsapp.send_text(staff.phone, "👍 No customers are waiting right now.")
            return "nothing_waiting"

        notified_about = self.runtime.acknowledgments.pending_for(staff.phone)
        target = next((h for h in candidates if h.user_id == notified_about), candidates[0])
        return await self._assign(db, staff, target.user_id)

    async def _report_failure(
        self,
        db: Session,
        staff: StaffMember,
        user_id: str,
        result: Result,
        replies: dict[str, str],
    ) -> None:
        owner = "another staff member"
        if result.error_code == ErrorCode.ASSIGNED_TO_OTHER.value:
            handoff = handoff_store.get_handoff(db, user_id)
            other = staff_service.get_staff_by_phone(db, handoff.staff_member) if handoff else None
            if other is not None:
                owner = other.name
        template = replies.get(result.error_code, "❌ Could not update the handoff for +{user_id}.")
        await self.whatsapp.send_text(staff.phone, template.format(user_id=user_id, owner=owner))

    async def _send_to_customer(self, db: Session, user_id: str, text: str) -> None:
        sent = await self.whatsapp.send_text(user_id, sign_staff_message(text))
        if sent.ok:
            conversation = conversation_service.get_or_create_conversation(db, user_id)
            conversation_service.add_message(db, conversation, "assistant", text)
            db.commit()

    # --- customers ---

    async def handle_menu(self, db: Session, user_id: str, menu_id: str, name: Optional[str]) -> str:
        if not self.runtime.bot.enabled:
            return "bot_disabled"
        conversation = conversation_service.get_or_create_conversation(
            db, user_id, ttl_minutes=self.runtime.config.conversation_ttl_minutes
        )
        db.commit()
        if self.coordinator.is_silenced(db, user_id, conversation):
            return await self._relay(db, conversation, user_id, f"[menu] {menu_id}", name)

        if menu_id in (MENU_TRIAL, MENU_STAFF):
            reason = REASON_BOOKING if menu_id == MENU_TRIAL else REASON_USER_REQUESTED
            text = "Book a trial session" if menu_id == MENU_TRIAL else "Talk to staff"
            conversation_service.add_message(db, conversation, "user", text)
            db.commit()
            result = await self._open_handoff(db, conversation, user_id, text, reason, name, booking_intent=True)
            return "handoff" if result.ok else f"handoff_{result.error_code}"

        reply = get_menu_response(menu_id)
        if not reply:
            return "unsupported"
        await self._answer(db, conversation, user_id, reply)
        return "menu"

    async def handle_customer_text(self, db: Session, user_id: str, text: str, name: Optional[str]) -> str:
        log = ContextLogger(logger, {"user_id": user_id})
        if not self.runtime.bot.enabled:
            log.info("Bot disabled, staying silent")
            return "bot_disabled"

        conversation = conversation_service.get_or_create_conversation(
            db, user_id, ttl_minutes=self.runtime.config.conversation_ttl_minutes
        )
        db.commit()
        if self.coordinator.is_silenced(db, user_id, conversation):
            return await self._relay(db, conversation, user_id, text, name)

        conversation_service.add_message(db, conversation, "user", text)
        db.commit()
        intent = classify_intent(text)

        if intent.type == IntentType.GREETING and not conversation.first_greeting:
            await self._send_welcome(db, conversation, user_id)
            return "greeted"

        requested_staff = detect_requested_staff(db, text)
        booking = is_booking_request(text)
        if requested_staff is not None:
            trigger = TriggerResult(True, REASON_USER_REQUESTED, "staff_name")
        else:
            trigger = await self.runtime.detector.evaluate(text)
            if booking and not trigger.should_handoff:
                trigger = TriggerResult(True, REASON_BOOKING, "booking")
        booking_intent = booking or intent.type == IntentType.BOOKING

        if trigger.should_handoff:
            log.info("Handoff triggered", context={"reason": trigger.reason, "source": trigger.source})
            result = await self._open_handoff(
                db, conversation, user_id, text, trigger.reason, name, requested_staff, booking_intent
            )
            if result.ok:
                return "handoff"
            if result.error_code == ErrorCode.ALREADY_OPEN.value:
                return "handoff_exists"

        reply = await self.runtime.responder.respond(text, intent, conversation_service.get_history(conversation))
        if reply is None:
            if not is_simple_message(text) and not self.coordinator.is_in_cooldown(conversation):
                result = await self._open_handoff(db, conversation, user_id, text, REASON_AI_DETECTED, name)
                if result.ok or result.error_code == ErrorCode.ALREADY_OPEN.value:
                    return "handoff"
            reply = GENERIC_REPLY

        # Another delivery may have opened a handoff while this one was waiting on the LLM.
        if self.coordinator.is_silenced(db, user_id):
            log.info("Handoff opened meanwhile, dropping bot reply")
            return "handoff_exists"

        await self._answer(db, conversation, user_id, reply)
        return "answered"

    async def _answer(self, db: Session, conversation: Conversation, user_id: str, reply: str) -> None:
        db.commit()
        await self.whatsapp.send_text(user_id, reply)
        conversation_service.add_message(db, conversation, "assistant", reply)
        db.commit()

    async def _send_welcome(self, db: Session, conversation: Conversation, user_id: str) -> None:
        menu = get_welcome_menu()
        await self.whatsapp.send_list(
            user_id,
            menu.get("body", ""),
            menu.get("button", "Options"),
            menu.get("sections", []),
            header=menu.get("header"),
        )
        conversation_service.mark_greeted(db, conversation)
        conversation_service.add_message(db, conversation, "assistant", menu.get("body", ""))
        db.commit()

    async def _open_handoff(
        self,
        db: Session,
        conversation: Conversation,
        user_id: str,
        text: str,
        reason: str,
        name: Optional[str],
        requested_staff: Optional[StaffMember] = None,
        booking_intent: bool = False,
    ) -> Result:
        async def announce() -> None:
            if reason == REASON_BOOKING:
                await self.whatsapp.send_text(user_id, get_booking_info())
            reply = get_handoff_message(reason)
            await self.whatsapp.send_text(user_id, reply)
            conversation_service.add_message(db, conversation, "assistant", reply)
            db.commit()

        return await self.coordinator.open(
            db,
            user_id,
            text,
            reason,
            display_name=name,
            requested_staff=requested_staff,
            booking_intent=booking_intent,
            announce=announce,
        )

    async def _relay(
        self,
        db: Session,
        conversation: Conversation,
        user_id: str,
        text: str,
        name: Optional[str],
    ) -> str:
        """Customer wrote while in handoff: keep it and pass it to staff."""
        conversation_service.add_message(db, conversation, "user", text)
        db.commit()

        handoff = handoff_store.get_live_handoff(db, user_id)
        if handoff is not None and handoff.staff_member:
            who = name or f"+{user_id}"
            await self.whatsapp.send_buttons(handoff.staff_member, f"💬 {who}: {text}", [end_button(user_id)])
            return "relayed"

        # A repeat of the message that opened the handoff is already in the staff notification.
        if handoff is not None and text.strip() == (handoff.message or "").strip():
            return "relayed"

        self.runtime.dispatcher.notify(
            db,
            user_id,
            text,
            handoff.reason if handoff else conversation.handoff_reason,
            display_name=name,
            kind=KIND_FOLLOWUP,
        )
        return "relayed"


async def process_inbound(runtime: Runtime, message: InboundMessage) -> Optional[str]:
    """Background entry point: one session per delivery, never raises."""
    db = runtime.session_factory()
    try:
        outcome = await MessageRouter(runtime).handle(db, message)
        logger.info(
            "Inbound message processed",
            extra={"context": {"sender": message.sender, "type": message.message_type, "outcome": outcome}},
        )
        return outcome
    except Exception as e:
        db.rollback()
        logger.error(
            f"Inbound processing failed: {e}",
            extra={"context": {"sender": message.sender, "message_id": message.message_id}},
            exc_info=True,
        )
        alert_error("Inbound message processing failed", {"sender": message.sender, "error": str(e)})
        return None
    finally:
        db.close()
