"""Admin API: staff directory, ignore list, handoff queue, bot switch."""

import hmac
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Response
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models import Conversation
from app.runtime import Runtime, get_runtime
from app.services import conversation_service, handoff_store, ignore_list_service, staff_service
from app.services.health_service import check_and_heal_handoffs, get_system_health
from app.services.result import ErrorCode, Result

router = APIRouter(prefix="/admin", tags=["admin"])

ADMIN_COOKIE = "adminKey"
COOKIE_MAX_AGE = 12 * 60 * 60


# === SCHEMAS ===


class LoginRequest(BaseModel):
    key: str


class StaffCreate(BaseModel):
    phone: str
    name: str
    email: Optional[str] = None
    role: str = "staff"
    receive_notifications: bool = True


class StaffUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    receive_notifications: Optional[bool] = None
    is_active: Optional[bool] = None


class StaffOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    phone: str
    name: str
    email: Optional[str] = None
    role: str
    is_active: bool
    receive_notifications: bool
    created_at: datetime


class IgnoredCreate(BaseModel):
    phone: str
    name: Optional[str] = None
    reason: str = "manual"
    notes: Optional[str] = None


class IgnoredUpdate(BaseModel):
    name: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


class IgnoredOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    phone: str
    name: Optional[str] = None
    reason: str
    notes: Optional[str] = None
    added_by: Optional[str] = None
    is_active: bool
    created_at: datetime
    last_message_received: Optional[datetime] = None


class HandoffOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    customer_name: Optional[str] = None
    message: Optional[str] = None
    reason: str
    status: str
    timestamp: datetime
    staff_member: Optional[str] = None
    requested_staff_member: Optional[str] = None
    assigned_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    ended_by: Optional[str] = None


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    in_handoff: bool
    handoff_reason: Optional[str] = None
    first_greeting: bool
    last_activity: datetime
    last_handoff_ended_at: Optional[datetime] = None
    message_count: int = 0


class ConversationDetail(ConversationOut):
    messages: list[dict] = []


# === AUTH ===


def _check_key(provided: Optional[str]) -> None:
    expected = settings.admin_api_key
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_API_KEY not configured")
    if not provided:
        raise HTTPException(status_code=401, detail="Admin key required")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail="Invalid admin key")


def require_admin(
    x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key"),
    admin_key: Optional[str] = Cookie(default=None, alias=ADMIN_COOKIE),
) -> None:
    _check_key(x_admin_key or admin_key)


ADMIN = [Depends(require_admin)]

STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND.value: 404,
    ErrorCode.INVALID.value: 400,
    ErrorCode.ALREADY_OPEN.value: 409,
    ErrorCode.ALREADY_RESOLVED.value: 409,
    ErrorCode.ASSIGNED_TO_OTHER.value: 409,
}


def _unwrap(result: Result):
    if not result.ok:
        raise HTTPException(status_code=STATUS_BY_CODE.get(result.error_code, 400), detail=result.error)
    return result.value


def _conversation_out(conversation: Conversation, detail: bool = False):
    model = ConversationDetail if detail else ConversationOut
    out = model.model_validate(conversation)
    out.message_count = len(conversation.messages or [])
    return out


@router.post("/login")
async def login(data: LoginRequest, response: Response):
    _check_key(data.key)
    response.set_cookie(ADMIN_COOKIE, data.key, httponly=True, samesite="strict", max_age=COOKIE_MAX_AGE)
    return {"success": True}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(ADMIN_COOKIE)
    return {"success": True}


@router.get("/verify", dependencies=ADMIN)
async def verify():
    return {"authenticated": True}


# === STAFF ===


@router.get("/staff", dependencies=ADMIN)
def list_staff(include_inactive: bool = False, db: Session = Depends(get_db)) -> list[StaffOut]:
    return [StaffOut.model_validate(s) for s in staff_service.list_staff(db, active_only=not include_inactive)]


@router.post("/staff", dependencies=ADMIN, status_code=201)
def add_staff(data: StaffCreate, db: Session = Depends(get_db)) -> StaffOut:
    staff = _unwrap(staff_service.add_staff(db, **data.model_dump()))
    db.commit()
    return StaffOut.model_validate(staff)


@router.patch("/staff/{phone}", dependencies=ADMIN)
def update_staff(phone: str, data: StaffUpdate, db: Session = Depends(get_db)) -> StaffOut:
    staff = _unwrap(staff_service.update_staff(db, phone, **data.model_dump(exclude_none=True)))
    db.commit()
    return StaffOut.model_validate(staff)


@router.delete("/staff/{phone}", dependencies=ADMIN)
def deactivate_staff(phone: str, db: Session = Depends(get_db)) -> StaffOut:
    staff = _unwrap(staff_service.deactivate_staff(db, phone))
    db.commit()
    return StaffOut.model_validate(staff)


# === IGNORE LIST ===


@router.get("/ignored", dependencies=ADMIN)
def list_ignored(include_inactive: bool = False, db: Session = Depends(get_db)) -> list[IgnoredOut]:
    return [IgnoredOut.model_validate(e) for e in ignore_list_service.list_ignored(db, include_inactive)]


@router.post("/ignored", dependencies=ADMIN, status_code=201)
def add_ignored(data: IgnoredCreate, db: Session = Depends(get_db)) -> IgnoredOut:
    entry = _unwrap(ignore_list_service.add_ignored(db, added_by="admin", **data.model_dump()))
    db.commit()
    return IgnoredOut.model_validate(entry)


@router.patch("/ignored/{phone}", dependencies=ADMIN)
def update_ignored(phone: str, data: IgnoredUpdate, db: Session = Depends(get_db)) -> IgnoredOut:
    entry = _unwrap(ignore_list_service.update_ignored(db, phone, **data.model_dump(exclude_none=True)))
    db.commit()
    return IgnoredOut.model_validate(entry)


@router.post("/ignored/{phone}/toggle", dependencies=ADMIN)
def toggle_ignored(phone: str, db: Session = Depends(get_db)) -> IgnoredOut:
    entry = _unwrap(ignore_list_service.toggle_ignored(db, phone))
    db.commit()
    return IgnoredOut.model_validate(entry)


@router.delete("/ignored/{phone}", dependencies=ADMIN)
def remove_ignored(phone: str, db: Session = Depends(get_db)):
    if not ignore_list_service.remove_ignored(db, phone):
        raise HTTPException(status_code=404, detail=f"{phone} not in ignore list")
    db.commit()
    return {"success": True}


# === HANDOFFS ===


@router.get("/handoffs", dependencies=ADMIN)
def list_handoffs(
    status: Optional[str] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
) -> list[HandoffOut]:
    return [HandoffOut.model_validate(h) for h in handoff_store.list_handoffs(db, status=status, limit=limit)]


@router.post("/handoffs/{user_id}/end", dependencies=ADMIN)
def end_handoff(
    user_id: str,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> HandoffOut:
    handoff = _unwrap(runtime.coordinator.end_handoff_session(db, user_id, ended_by="admin"))
    return HandoffOut.model_validate(handoff)


@router.delete("/handoffs/{user_id}", dependencies=ADMIN)
def delete_handoff(
    user_id: str,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    if handoff_store.get_live_handoff(db, user_id) is not None:
        runtime.coordinator.end_handoff_session(db, user_id, ended_by="admin")
    if not handoff_store.delete_handoff(db, user_id):
        raise HTTPException(status_code=404, detail=f"No handoff for {user_id}")
    db.commit()
    return {"success": True}


@router.delete("/handoffs", dependencies=ADMIN)
def clear_resolved_handoffs(db: Session = Depends(get_db)):
    deleted = handoff_store.clear_resolved(db)
    db.commit()
    return {"deleted": deleted}


# === CONVERSATIONS ===


@router.get("/conversations", dependencies=ADMIN)
def list_conversations(limit: int = 50, db: Session = Depends(get_db)) -> list[ConversationOut]:
    rows = db.query(Conversation).order_by(Conversation.last_activity.desc()).limit(limit).all()
    return [_conversation_out(c) for c in rows]


@router.get("/conversations/{user_id}", dependencies=ADMIN)
def get_conversation(user_id: str, db: Session = Depends(get_db)) -> ConversationDetail:
    conversation = conversation_service.get_conversation(db, user_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail=f"No conversation for {user_id}")
    return _conversation_out(conversation, detail=True)


# === BOT ===


@router.get("/bot", dependencies=ADMIN)
async def bot_status(runtime: Runtime = Depends(get_runtime)):
    return runtime.bot.snapshot()


@router.post("/bot/enable", dependencies=ADMIN)
async def enable_bot(runtime: Runtime = Depends(get_runtime)):
    runtime.bot.enable("admin")
    return runtime.bot.snapshot()


@router.post("/bot/disable", dependencies=ADMIN)
async def disable_bot(runtime: Runtime = Depends(get_runtime)):
    runtime.bot.disable("admin")
    return runtime.bot.snapshot()


# === STATS / HEALTH ===


@router.get("/stats", dependencies=ADMIN)
def stats(db: Session = Depends(get_db), runtime: Runtime = Depends(get_runtime)):
    health = get_system_health(db)
    health["bot_enabled"] = runtime.bot.enabled
    health["cached_handoffs"] = len(runtime.cache)
    health["escalated"] = len(runtime.escalations)
    health["notifications_pending"] = runtime.dispatcher.pending()
    return health


@router.post("/health/heal", dependencies=ADMIN)
def heal(db: Session = Depends(get_db), runtime: Runtime = Depends(get_runtime)):
    return check_and_heal_handoffs(db, runtime.cache)
