import re
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import StaffMember
from app.services.clock import utc_now
from app.services.result import ErrorCode, Result

logger = get_logger("staff_service")

STAFF_ROLES = ("owner", "manager", "trainer", "front_desk", "staff")


def normalize_phone(value: Optional[str]) -> str:
    """Digits only: '+91 87550-52568' -> '918755052568'."""
    return re.sub(r"\D", "", value or "")


def same_phone(a: Optional[str], b: Optional[str]) -> bool:
    """Loose match tolerating a missing country code on either side."""
    left, right = normalize_phone(a), normalize_phone(b)
    if not left or not right:
        return False
    return left == right or left.endswith(right) or right.endswith(left)


def get_staff_by_phone(db: Session, phone: str, active_only: bool = True) -> Optional[StaffMember]:
    query = db.query(StaffMember).filter(StaffMember.phone == normalize_phone(phone))
    if active_only:
        query = query.filter(StaffMember.is_active.is_(True))
    return query.first()


def is_staff(db: Session, phone: str) -> bool:
    return get_staff_by_phone(db, phone) is not None


def list_staff(db: Session, active_only: bool = True) -> list[StaffMember]:
    query = db.query(StaffMember)
    if active_only:
        query = query.filter(StaffMember.is_active.is_(True))
    return query.order_by(StaffMember.name.asc()).all()


def notification_recipients(db: Session) -> list[StaffMember]:
    return (
        db.query(StaffMember)
        .filter(StaffMember.is_active.is_(True), StaffMember.receive_notifications.is_(True))
        .order_by(StaffMember.id.asc())
        .all()
    )


def owners(db: Session) -> list[StaffMember]:
    return (
        db.query(StaffMember)
        .filter(StaffMember.is_active.is_(True), StaffMember.role == "owner")
        .order_by(StaffMember.id.asc())
        .all()
    )


def add_staff(
    db: Session,
    phone: str,
    name: str,
    email: Optional[str] = None,
    role: str = "staff",
    receive_notifications: bool = True,
) -> Result[StaffMember]:
    """Create a staff member. Re-adding a deactivated phone reactivates it."""
    phone = normalize_phone(phone)
    if not phone or not name.strip():
        return Result.failure("Phone and name are required", ErrorCode.INVALID)
    if role not in STAFF_ROLES:
        return Result.failure(f"Unknown role: {role}", ErrorCode.INVALID)

    now = utc_now()
    existing = db.query(StaffMember).filter(StaffMember.phone == phone).first()
    if existing and existing.is_active:
        return Result.failure(f"Staff member {phone} already exists", ErrorCode.ALREADY_OPEN)

    if existing:
        existing.name = name.strip()
        existing.email = email or existing.email
        existing.role = role
        existing.receive_notifications = receive_notifications
        existing.is_active = True
        existing.updated_at = now
        staff = existing
        logger.info("Staff member reactivated", extra={"context": {"phone": phone}})
    else:
        staff = StaffMember(
            phone=phone,
            name=name.strip(),
            email=email,
            role=role,
            receive_notifications=receive_notifications,
            is_active=True,
            created_at=now,
        )
        db.add(staff)
        logger.info("Staff member added", extra={"context": {"phone": phone, "role": role}})

    db.flush()
    return Result.success(staff)


def update_staff(db: Session, phone: str, **changes) -> Result[StaffMember]:
    staff = get_staff_by_phone(db, phone, active_only=False)
    if staff is None:
        return Result.failure(f"Staff member {phone} not found", ErrorCode.NOT_FOUND)
    role = changes.get("role")
    if role is not None and role not in STAFF_ROLES:
        return Result.failure(f"Unknown role: {role}", ErrorCode.INVALID)

    for field in ("name", "email", "role", "receive_notifications", "is_active"):
        if changes.get(field) is not None:
            setattr(staff, field, changes[field])
    staff.updated_at = utc_now()
    db.flush()
    return Result.success(staff)


def deactivate_staff(db: Session, phone: str) -> Result[StaffMember]:
    staff = get_staff_by_phone(db, phone, active_only=False)
    if staff is None:
        return Result.failure(f"Staff member {phone} not found", ErrorCode.NOT_FOUND)
    staff.is_active = False
    staff.updated_at = utc_now()
    db.flush()
    logger.info("Staff member deactivated", extra={"context": {"phone": staff.phone}})
    return Result.success(staff)


def find_named_staff(db: Session, text: str) -> Optional[StaffMember]:
    """Active staff member whose full or first name appears in the text."""
    lowered = (text or "").lower()
    if not lowered:
        return None
    for staff in list_staff(db):
        name = (staff.name or "").strip().lower()
        if not name:
            continue
        candidates = {name, name.split()[0]}
        for candidate in candidates:
            if len(candidate) >= 3 and re.search(rf"\b{re.escape(candidate)}\b", lowered):
                return staff
    return None
