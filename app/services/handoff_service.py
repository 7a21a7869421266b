"""Handoff coordinator: the per-user NONE -> WAITING -> ACTIVE -> resolved machine.

The Handoff Store row is the source of truth. The conversation flag is a
second, non-transactional copy that is written before anything is sent, so
a concurrent message from the same customer already sees the bot silenced.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Conversation, Handoff, StaffMember
from app.services import conversation_service, handoff_store
from app.services.notification_service import NotificationDispatcher
from app.services.result import ErrorCode, Result
from app.services.runtime_state import AcknowledgmentTracker, EscalationTracker, HandoffCache
from app.services.trigger_service import REASON_USER_REQUESTED

logger = get_logger("handoff_service")

Announce = Callable[[], Awaitable[None]]


class HandoffCoordinator:
    def __init__(
        self,
        cache: HandoffCache,
        escalations: EscalationTracker,
        dispatcher: NotificationDispatcher,
        acknowledgments: Optional[AcknowledgmentTracker] = None,
        cooldown_minutes: int = 5,
    ):
        self.cache = cache
        self.escalations = escalations
        self.dispatcher = dispatcher
        self.acknowledgments = acknowledgments
        self.cooldown_minutes = cooldown_minutes

    def bypasses_cooldown(self, reason: str, booking_intent: bool = False, named_staff: bool = False) -> bool:
        return reason == REASON_USER_REQUESTED or booking_intent or named_staff

    def is_in_cooldown(self, conversation: Optional[Conversation], now: Optional[datetime] = None) -> bool:
        return conversation_service.is_in_handoff_cooldown(conversation, self.cooldown_minutes, now)

    async def open(
        self,
        db: Session,
        user_id: str,
        message: str,
        reason: str,
        display_name: Optional[str] = None,
        requested_staff: Optional[StaffMember] = None,
        booking_intent: bool = False,
        announce: Optional[Announce] = None,
        now: Optional[datetime] = None,
    ) -> Result[Handoff]:
        """Open a handoff for the user.

        Order matters: record, cache and conversation flag are committed, then
        the customer is told (``announce``), and only then is staff
        notification queued. A user with a live handoff gets ALREADY_OPEN and
        nothing changes.
        """
        named_staff = requested_staff is not None
        if not self.bypasses_cooldown(reason, booking_intent, named_staff):
            conversation = conversation_service.get_conversation(db, user_id)
            if self.is_in_cooldown(conversation, now):
                logger.info(
                    "Handoff suppressed by cooldown",
                    extra={"context": {"user_id": user_id, "reason": reason}},
                )
                return Result.failure(f"{user_id} is in handoff cooldown", ErrorCode.COOLDOWN)

        handoff = handoff_store.create_if_absent(
            db,
            user_id,
            message=message,
            reason=reason,
            customer_name=display_name,
            requested_staff=requested_staff.name if requested_staff else None,
            now=now,
        )
        if handoff is None:
            # The conflicting upsert still holds a row lock until the transaction ends.
            db.commit()
            logger.info("Handoff already open, ignoring trigger", extra={"context": {"user_id": user_id}})
            return Result.failure(f"Handoff already open for {user_id}", ErrorCode.ALREADY_OPEN)

        self.cache.add(user_id)
        conversation_service.set_handoff_status(db, user_id, True, reason, now=now)
        db.commit()
        logger.info(
            "Handoff opened",
            extra={"context": {"user_id": user_id, "reason": reason, "requested_staff": handoff.requested_staff_member}},
        )

        if announce is not None:
            try:
                await announce()
            except Exception as e:
                logger.error(f"Failed to announce handoff to customer: {e}", extra={"context": {"user_id": user_id}})

        try:
            self.dispatcher.notify(db, user_id, message, reason, requested_staff, display_name)
        except Exception as e:
            logger.error(
                f"Failed to queue staff notification: {e}",
                extra={"context": {"user_id": user_id}},
                exc_info=True,
            )

        return Result.success(handoff)

    def _forget(self, user_id: str) -> None:
        self.escalations.clear(user_id)
        if self.acknowledgments is not None:
            self.acknowledgments.clear_user(user_id)

    def assign(self, db: Session, user_id: str, staff_id: str) -> Result[Handoff]:
        result = handoff_store.assign(db, user_id, staff_id)
        db.commit()
        if not result.ok:
            logger.info(
                "Handoff assignment rejected",
                extra={"context": {"user_id": user_id, "staff": staff_id, "code": result.error_code}},
            )
            return result

        self._forget(user_id)
        logger.info("Handoff assigned", extra={"context": {"user_id": user_id, "staff": staff_id}})
        return result

    def end(self, db: Session, user_id: str, ended_by: Optional[str] = None) -> Result[Handoff]:
        """Resolve the record. The conversation flag is the caller's job."""
        result = handoff_store.resolve(db, user_id, ended_by=ended_by)
        self.cache.discard(user_id)
        self._forget(user_id)
        db.commit()
        if result.ok:
            logger.info("Handoff ended", extra={"context": {"user_id": user_id, "ended_by": ended_by}})
        return result

    def end_handoff_session(self, db: Session, user_id: str, ended_by: Optional[str] = None) -> Result[Handoff]:
        """End the handoff and hand the conversation back to the bot."""
        result = self.end(db, user_id, ended_by=ended_by)
        conversation = conversation_service.get_conversation(db, user_id)
        stale_flag = result.error_code == ErrorCode.ALREADY_RESOLVED.value and conversation and conversation.in_handoff
        if result.ok or stale_flag:
            conversation_service.set_handoff_status(db, user_id, False)
            db.commit()
        return result

    def is_assigned_to(self, db: Session, user_id: str, staff_id: str) -> bool:
        handoff = handoff_store.get_live_handoff(db, user_id)
        return bool(handoff and handoff.staff_member == staff_id)

    def assigned_customer_for(self, db: Session, staff_id: str) -> Optional[Handoff]:
        return handoff_store.active_for_staff(db, staff_id)

    def is_silenced(self, db: Session, user_id: str, conversation: Optional[Conversation] = None) -> bool:
        """Cache, conversation flag or live record: any one keeps the bot quiet."""
        if user_id in self.cache:
            return True
        if conversation is not None and conversation.in_handoff:
            return True
        return handoff_store.get_live_handoff(db, user_id) is not None
