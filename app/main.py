import asyncio
import os
from typing import Awaitable, Callable

from fastapi import Depends, FastAPI
from sqlalchemy.orm import Session

from app.config import settings
from app.database import Base, SessionLocal, engine, get_db
from app.logging_config import get_logger, setup_logging
from app.models import Conversation, Handoff, StaffMember
from app.routers import admin, webhook
from app.runtime import build_runtime
from app.services.alert_service import alert_critical, alert_error
from app.services.conversation_service import cleanup_stale_conversations

setup_logging(settings.log_level)

app = FastAPI(
    title="IronCore Bot",
    description="WhatsApp assistant for IronCore Fitness with staff handoff",
    version="0.1.0",
)
app.state.runtime = build_runtime(SessionLocal)

app.include_router(webhook.router)
app.include_router(admin.router)

logger = get_logger("main")
_background_tasks: list[asyncio.Task] = []


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_worker_enabled(env_name: str) -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get(env_name), default=True)


async def _periodic(name: str, interval_seconds: float, job: Callable[[Session], Awaitable[object]]) -> None:
    """Run ``job`` with a fresh session every interval. Errors never stop the loop."""
    loop_logger = get_logger(name)
    interval_seconds = max(interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            db = SessionLocal()
            try:
                await job(db)
            finally:
                db.close()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            loop_logger.error(f"{name} loop failed", extra={"context": {"error": str(exc)}}, exc_info=True)
            alert_error(f"{name} loop failed", {"error": str(exc)})


async def _escalation_tick(db: Session) -> None:
    await app.state.runtime.monitor.tick(db)


async def _cleanup_tick(db: Session) -> None:
    cleanup_stale_conversations(db, ttl_minutes=settings.conversation_ttl_minutes)


@app.on_event("startup")
async def start_background_workers() -> None:
    runtime = app.state.runtime
    if not _is_worker_enabled("STARTUP_SYNC_ENABLED"):
        return

    try:
        Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            runtime.cache.rebuild(db)
        finally:
            db.close()
    except Exception as exc:
        logger.error("Startup sync failed", extra={"context": {"error": str(exc)}}, exc_info=True)
        alert_critical("IronCore bot started without handoff cache", {"error": str(exc)})

    runtime.dispatcher.start()
    if _is_worker_enabled("ESCALATION_WORKER_ENABLED"):
        _background_tasks.append(
            asyncio.create_task(_periodic("escalation_worker", settings.escalation_interval_seconds, _escalation_tick))
        )
    if _is_worker_enabled("CLEANUP_WORKER_ENABLED"):
        _background_tasks.append(
            asyncio.create_task(_periodic("cleanup_worker", settings.cleanup_interval_seconds, _cleanup_tick))
        )
    logger.info("Background workers started", extra={"context": {"tasks": len(_background_tasks)}})


@app.on_event("shutdown")
async def stop_background_workers() -> None:
    for task in _background_tasks:
        task.cancel()
    await asyncio.gather(*_background_tasks, return_exceptions=True)
    _background_tasks.clear()

    dispatcher = app.state.runtime.dispatcher
    await dispatcher.stop()
    if dispatcher.pending():
        await dispatcher.flush()


@app.get("/health")
async def health():
    return {"status": "ok", "bot_enabled": app.state.runtime.bot.enabled}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "conversations": db.query(Conversation).count(),
        "handoffs": db.query(Handoff).count(),
        "staff": db.query(StaffMember).count(),
    }
