from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Conversation
from app.services.clock import ensure_timezone, utc_now
from app.services.upsert import insert_for

logger = get_logger("conversation_service")

MAX_MESSAGES = 10
CONVERSATION_TTL_MINUTES = 30
VALID_ROLES = {"user", "assistant", "system"}


def get_conversation(db: Session, user_id: str) -> Optional[Conversation]:
    return db.query(Conversation).filter(Conversation.user_id == user_id).first()


def _is_stale(conversation: Conversation, ttl_minutes: int, now: datetime) -> bool:
    last_activity = ensure_timezone(conversation.last_activity)
    return last_activity is None or now - last_activity > timedelta(minutes=ttl_minutes)


def get_or_create_conversation(
    db: Session,
    user_id: str,
    ttl_minutes: int = CONVERSATION_TTL_MINUTES,
    now: Optional[datetime] = None,
) -> Conversation:
    """Load the user's conversation, creating it on first contact.

    A conversation idle for longer than ``ttl_minutes`` starts a fresh window:
    history, greeting flag and cooldown anchor are cleared. The handoff flag
    and reason are kept so an open handoff never expires silently.
    """
    now = now or utc_now()
    conversation = get_conversation(db, user_id)

    if not conversation:
        stmt = (
            insert_for(db, Conversation)
            .values(
                user_id=user_id,
                messages=[],
                first_greeting=False,
                in_handoff=False,
                last_activity=now,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        db.execute(stmt)
        conversation = get_conversation(db, user_id)
        return conversation

    if _is_stale(conversation, ttl_minutes, now):
        logger.info(
            "Conversation window expired, resetting",
            extra={"context": {"user_id": user_id, "in_handoff": conversation.in_handoff}},
        )
        conversation.messages = []
        conversation.first_greeting = False
        conversation.last_handoff_ended_at = None
        conversation.last_activity = now
        db.flush()

    return conversation


def add_message(
    db: Session,
    conversation: Conversation,
    role: str,
    content: str,
    now: Optional[datetime] = None,
) -> Conversation:
    """Append a message, keeping only the most recent MAX_MESSAGES."""
    if role not in VALID_ROLES:
        raise ValueError(f"Unknown message role: {role}")
    now = now or utc_now()
    history = list(conversation.messages or [])
    history.append({"role": role, "content": content, "timestamp": now.isoformat()})
    conversation.messages = history[-MAX_MESSAGES:]
    conversation.last_activity = now
    db.flush()
    return conversation


def get_history(conversation: Conversation, limit: int = MAX_MESSAGES) -> list[dict]:
    """Messages in LLM chat format, oldest first."""
    return [{"role": m["role"], "content": m["content"]} for m in (conversation.messages or [])[-limit:]]


def mark_greeted(db: Session, conversation: Conversation) -> None:
    conversation.first_greeting = True
    conversation.last_activity = utc_now()
    db.flush()


def set_handoff_status(
    db: Session,
    user_id: str,
    in_handoff: bool,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Conversation:
    """Flip the bot-silence flag. Leaving handoff stamps the cooldown anchor."""
    now = now or utc_now()
    conversation = get_conversation(db, user_id) or get_or_create_conversation(db, user_id, now=now)
    conversation.in_handoff = in_handoff
    conversation.handoff_reason = reason if in_handoff else None
    if not in_handoff:
        conversation.last_handoff_ended_at = now
    conversation.last_activity = now
    db.flush()
    return conversation


def is_in_handoff_cooldown(
    conversation: Optional[Conversation],
    minutes: int,
    now: Optional[datetime] = None,
) -> bool:
    if conversation is None or conversation.last_handoff_ended_at is None:
        return False
    now = now or utc_now()
    ended_at = ensure_timezone(conversation.last_handoff_ended_at)
    return now - ended_at < timedelta(minutes=minutes)


def cleanup_stale_conversations(
    db: Session,
    ttl_minutes: int = CONVERSATION_TTL_MINUTES,
    now: Optional[datetime] = None,
) -> int:
    """Delete idle conversations. Conversations in handoff are never removed."""
    cutoff = (now or utc_now()) - timedelta(minutes=ttl_minutes)
    deleted = (
        db.query(Conversation)
        .filter(Conversation.last_activity < cutoff, Conversation.in_handoff.is_(False))
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info("Cleaned up stale conversations", extra={"context": {"deleted": deleted}})
    return deleted
