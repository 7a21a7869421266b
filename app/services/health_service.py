from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Conversation, Handoff, IgnoredNumber, StaffMember
from app.services import conversation_service, handoff_store
from app.services.clock import utc_now
from app.services.runtime_state import HandoffCache
from app.services.state_machine import LIVE_STATUSES, HandoffStatus

logger = get_logger("health_service")


def check_and_heal_handoffs(db: Session, cache: HandoffCache) -> dict:
    """Reconcile the conversation flag with the handoff record.

    Ending a handoff writes two rows in two steps; a crash in between leaves
    the conversation silenced with a resolved record. Runs only on explicit
    admin request because it can hand a silenced customer back to the bot.
    """
    healed = []
    live_users = set(handoff_store.live_user_ids(db))

    # Flag set without a live record: finish the interrupted end.
    flagged = db.query(Conversation).filter(Conversation.in_handoff.is_(True)).all()
    for conv in flagged:
        if conv.user_id in live_users:
            continue
        conversation_service.set_handoff_status(db, conv.user_id, False)
        healed.append({"user_id": conv.user_id, "issue": "flag_without_handoff", "action": "cleared_flag"})
        logger.warning(f"Healed conversation {conv.user_id}: in_handoff without live handoff")

    # Live record without the flag: silence the bot again.
    for user_id in live_users:
        conv = conversation_service.get_conversation(db, user_id)
        if conv is not None and conv.in_handoff:
            continue
        handoff = handoff_store.get_handoff(db, user_id)
        conversation_service.set_handoff_status(db, user_id, True, handoff.reason if handoff else None)
        healed.append({"user_id": user_id, "issue": "handoff_without_flag", "action": "set_flag"})
        logger.warning(f"Healed conversation {user_id}: live handoff without in_handoff flag")

    db.commit()
    cache.rebuild(db)

    return {
        "healed_count": len(healed),
        "details": healed,
        "checked_at": utc_now().isoformat(),
    }


def get_system_health(db: Session) -> dict:
    handoffs = {
        status.value: db.query(Handoff).filter(Handoff.status == status.value).count() for status in HandoffStatus
    }
    return {
        "conversations": {
            "total": db.query(Conversation).count(),
            "in_handoff": db.query(Conversation).filter(Conversation.in_handoff.is_(True)).count(),
        },
        "handoffs": handoffs,
        "live_handoffs": db.query(Handoff).filter(Handoff.status.in_(LIVE_STATUSES)).count(),
        "staff": db.query(StaffMember).filter(StaffMember.is_active.is_(True)).count(),
        "ignored": db.query(IgnoredNumber).filter(IgnoredNumber.is_active.is_(True)).count(),
        "checked_at": utc_now().isoformat(),
    }
