from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import IgnoredNumber
from app.services.clock import utc_now
from app.services.result import ErrorCode, Result
from app.services.staff_service import normalize_phone

logger = get_logger("ignore_list_service")

IGNORE_REASONS = ("personal", "spam", "manual", "other")


def is_ignored(db: Session, phone: str) -> bool:
    """True for active entries. Stamps the entry so admins can see activity."""
    entry = (
        db.query(IgnoredNumber)
        .filter(IgnoredNumber.phone == normalize_phone(phone), IgnoredNumber.is_active.is_(True))
        .first()
    )
    if entry is None:
        return False
    entry.last_message_received = utc_now()
    db.flush()
    return True


def list_ignored(db: Session, include_inactive: bool = False) -> list[IgnoredNumber]:
    query = db.query(IgnoredNumber)
    if not include_inactive:
        query = query.filter(IgnoredNumber.is_active.is_(True))
    return query.order_by(IgnoredNumber.created_at.desc()).all()


def get_entry(db: Session, phone: str) -> Optional[IgnoredNumber]:
    return db.query(IgnoredNumber).filter(IgnoredNumber.phone == normalize_phone(phone)).first()


def add_ignored(
    db: Session,
    phone: str,
    name: Optional[str] = None,
    reason: str = "manual",
    notes: Optional[str] = None,
    added_by: Optional[str] = None,
) -> Result[IgnoredNumber]:
    phone = normalize_phone(phone)
    if not phone:
        return Result.failure("Phone is required", ErrorCode.INVALID)
    if reason not in IGNORE_REASONS:
        return Result.failure(f"Unknown reason: {reason}", ErrorCode.INVALID)

    entry = get_entry(db, phone)
    if entry and entry.is_active:
        return Result.failure(f"{phone} is already ignored", ErrorCode.ALREADY_OPEN)
    if entry is None:
        entry = IgnoredNumber(phone=phone, created_at=utc_now())
        db.add(entry)
    entry.name = name
    entry.reason = reason
    entry.notes = notes
    entry.added_by = added_by
    entry.is_active = True
    db.flush()
    logger.info("Number added to ignore list", extra={"context": {"phone": phone, "reason": reason}})
    return Result.success(entry)


def update_ignored(db: Session, phone: str, **changes) -> Result[IgnoredNumber]:
    entry = get_entry(db, phone)
    if entry is None:
        return Result.failure(f"{phone} not in ignore list", ErrorCode.NOT_FOUND)
    reason = changes.get("reason")
    if reason is not None and reason not in IGNORE_REASONS:
        return Result.failure(f"Unknown reason: {reason}", ErrorCode.INVALID)
    for field in ("name", "reason", "notes"):
        if changes.get(field) is not None:
            setattr(entry, field, changes[field])
    db.flush()
    return Result.success(entry)


def toggle_ignored(db: Session, phone: str) -> Result[IgnoredNumber]:
    entry = get_entry(db, phone)
    if entry is None:
        return Result.failure(f"{phone} not in ignore list", ErrorCode.NOT_FOUND)
    entry.is_active = not entry.is_active
    db.flush()
    return Result.success(entry)


def remove_ignored(db: Session, phone: str) -> bool:
    deleted = (
        db.query(IgnoredNumber)
        .filter(IgnoredNumber.phone == normalize_phone(phone))
        .delete(synchronize_session=False)
    )
    return bool(deleted)
