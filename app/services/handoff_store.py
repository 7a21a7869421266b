"""Persistence for handoff records.

One row per user. Opening is a single INSERT .. ON CONFLICT statement that
either creates the row or revives a resolved one; a live row makes it a no-op.
That statement is the only linearization point for concurrent opens.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.models import Handoff
from app.services.clock import ensure_timezone, utc_now
from app.services.result import ErrorCode, Result
from app.services.state_machine import LIVE_STATUSES, HandoffStatus, InvalidTransitionError, is_live, transition
from app.services.upsert import insert_for


def get_handoff(db: Session, user_id: str) -> Optional[Handoff]:
    return db.query(Handoff).filter(Handoff.user_id == user_id).first()


def get_live_handoff(db: Session, user_id: str) -> Optional[Handoff]:
    return db.query(Handoff).filter(Handoff.user_id == user_id, Handoff.status.in_(LIVE_STATUSES)).first()


def create_if_absent(
    db: Session,
    user_id: str,
    message: str,
    reason: str,
    customer_name: Optional[str] = None,
    requested_staff: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Handoff]:
    """Insert a waiting handoff unless a live one exists. Returns None on conflict."""
    now = now or utc_now()
    fresh = {
        "customer_name": customer_name,
        "message": message,
        "reason": reason,
        "status": HandoffStatus.WAITING.value,
        "timestamp": now,
        "ended_at": None,
        "ended_by": None,
        "staff_member": None,
        "requested_staff_member": requested_staff,
        "assigned_at": None,
    }
    table = Handoff.__table__
    stmt = insert_for(db, Handoff).values(id=uuid.uuid4(), user_id=user_id, **fresh)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_=fresh,
        where=table.c.status == HandoffStatus.RESOLVED.value,
    ).returning(table.c.id)

    row = db.execute(stmt).first()
    if row is None:
        return None
    return db.get(Handoff, row[0], populate_existing=True)


def assign(
    db: Session,
    user_id: str,
    staff_id: str,
    now: Optional[datetime] = None,
) -> Result[Handoff]:
    """First assignment wins. Re-assigning to the same staff is accepted."""
    now = now or utc_now()
    updated = db.execute(
        update(Handoff)
        .where(
            Handoff.user_id == user_id,
            Handoff.status.in_(LIVE_STATUSES),
            or_(Handoff.staff_member.is_(None), Handoff.staff_member == staff_id),
        )
        .values(staff_member=staff_id, status=HandoffStatus.ACTIVE.value, assigned_at=now)
        .execution_options(synchronize_session=False)
    )
    handoff = get_handoff(db, user_id)
    if handoff is not None:
        db.refresh(handoff)

    if updated.rowcount:
        return Result.success(handoff)
    if handoff is None:
        return Result.failure(f"No handoff for {user_id}", ErrorCode.NOT_FOUND)
    if not is_live(handoff.status):
        return Result.failure(f"Handoff for {user_id} already resolved", ErrorCode.ALREADY_RESOLVED)
    return Result.failure(
        f"Handoff for {user_id} assigned to {handoff.staff_member}",
        ErrorCode.ASSIGNED_TO_OTHER,
    )


def resolve(
    db: Session,
    user_id: str,
    ended_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Result[Handoff]:
    now = now or utc_now()
    handoff = get_handoff(db, user_id)
    if handoff is None:
        return Result.failure(f"No handoff for {user_id}", ErrorCode.NOT_FOUND)
    try:
        transition(HandoffStatus(handoff.status), HandoffStatus.RESOLVED)
    except InvalidTransitionError:
        return Result.failure(f"Handoff for {user_id} already resolved", ErrorCode.ALREADY_RESOLVED)

    updated = db.execute(
        update(Handoff)
        .where(Handoff.user_id == user_id, Handoff.status.in_(LIVE_STATUSES))
        .values(status=HandoffStatus.RESOLVED.value, ended_at=now, ended_by=ended_by)
        .execution_options(synchronize_session=False)
    )
    db.refresh(handoff)
    if not updated.rowcount:
        return Result.failure(f"Handoff for {user_id} already resolved", ErrorCode.ALREADY_RESOLVED)
    return Result.success(handoff)


def list_handoffs(db: Session, status: Optional[str] = None, limit: int = 100) -> list[Handoff]:
    query = db.query(Handoff)
    if status:
        query = query.filter(Handoff.status == status)
    return query.order_by(Handoff.timestamp.desc()).limit(limit).all()


def live_user_ids(db: Session) -> list[str]:
    return [row[0] for row in db.query(Handoff.user_id).filter(Handoff.status.in_(LIVE_STATUSES)).all()]


def waiting_for(db: Session, staff_id: str) -> list[Handoff]:
    """Waiting, unassigned handoffs a staff member could pick up, oldest first."""
    return (
        db.query(Handoff)
        .filter(
            Handoff.status == HandoffStatus.WAITING.value,
            Handoff.staff_member.is_(None),
            Handoff.user_id != staff_id,
        )
        .order_by(Handoff.timestamp.asc())
        .all()
    )


def active_for_staff(db: Session, staff_id: str) -> Optional[Handoff]:
    return (
        db.query(Handoff)
        .filter(Handoff.staff_member == staff_id, Handoff.status == HandoffStatus.ACTIVE.value)
        .order_by(Handoff.assigned_at.desc())
        .first()
    )


def unassigned_older_than(db: Session, minutes: int, now: Optional[datetime] = None) -> list[Handoff]:
    cutoff = (now or utc_now()) - timedelta(minutes=minutes)
    return (
        db.query(Handoff)
        .filter(
            Handoff.status == HandoffStatus.WAITING.value,
            Handoff.staff_member.is_(None),
            Handoff.timestamp < cutoff,
        )
        .order_by(Handoff.timestamp.asc())
        .all()
    )


def wait_minutes(handoff: Handoff, now: Optional[datetime] = None) -> int:
    opened = ensure_timezone(handoff.timestamp)
    return int(((now or utc_now()) - opened).total_seconds() // 60)


def delete_handoff(db: Session, user_id: str) -> bool:
    deleted = db.query(Handoff).filter(Handoff.user_id == user_id).delete(synchronize_session=False)
    return bool(deleted)


def clear_resolved(db: Session) -> int:
    return (
        db.query(Handoff)
        .filter(Handoff.status == HandoffStatus.RESOLVED.value)
        .delete(synchronize_session=False)
    )
