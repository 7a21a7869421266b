"""Process-scoped mutable state.

Everything here lives in memory only and starts empty on every restart:
the bot is enabled, the handoff cache is rebuilt from the database, and
escalation/acknowledgment bookkeeping is forgotten (an unassigned handoff
may therefore be escalated again after a restart).
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.services import handoff_store
from app.services.clock import utc_now

logger = get_logger("runtime_state")


class BotState:
    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.changed_by: Optional[str] = None
        self.changed_at: Optional[datetime] = None

    def _set(self, enabled: bool, changed_by: Optional[str]) -> None:
        self.enabled = enabled
        self.changed_by = changed_by
        self.changed_at = utc_now()
        logger.info(
            f"Bot {'enabled' if enabled else 'disabled'}",
            extra={"context": {"changed_by": changed_by}},
        )

    def enable(self, changed_by: Optional[str] = None) -> None:
        self._set(True, changed_by)

    def disable(self, changed_by: Optional[str] = None) -> None:
        self._set(False, changed_by)

    def snapshot(self) -> dict:
        return {
            "enabled": self.enabled,
            "changed_by": self.changed_by,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }


class HandoffCache:
    """User ids with a live handoff. A hint only; the database decides."""

    def __init__(self):
        self._users: set[str] = set()

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._users

    def __len__(self) -> int:
        return len(self._users)

    def add(self, user_id: str) -> None:
        self._users.add(user_id)

    def discard(self, user_id: str) -> None:
        self._users.discard(user_id)

    def users(self) -> list[str]:
        return sorted(self._users)

    def rebuild(self, db: Session) -> int:
        self._users = set(handoff_store.live_user_ids(db))
        logger.info("Handoff cache rebuilt", extra={"context": {"size": len(self._users)}})
        return len(self._users)


class EscalationTracker:
    def __init__(self):
        self._escalated: set[str] = set()

    def __len__(self) -> int:
        return len(self._escalated)

    def is_escalated(self, user_id: str) -> bool:
        return user_id in self._escalated

    def mark(self, user_id: str) -> None:
        self._escalated.add(user_id)

    def clear(self, user_id: str) -> None:
        self._escalated.discard(user_id)


class AcknowledgmentTracker:
    """Remembers which customer each staff member was last notified about.

    A bare "ok" from staff within the window is read as accepting that
    customer's handoff.
    """

    def __init__(self, window_minutes: int = 5):
        self.window = timedelta(minutes=window_minutes)
        self._pending: dict[str, tuple[str, datetime]] = {}

    def record(self, staff_phone: str, user_id: str, now: Optional[datetime] = None) -> None:
        self._pending[staff_phone] = (user_id, now or utc_now())

    def pending_for(self, staff_phone: str, now: Optional[datetime] = None) -> Optional[str]:
        entry = self._pending.get(staff_phone)
        if entry is None:
            return None
        user_id, notified_at = entry
        if (now or utc_now()) - notified_at > self.window:
            del self._pending[staff_phone]
            return None
        return user_id

    def clear_user(self, user_id: str) -> None:
        for staff_phone in [s for s, (u, _) in self._pending.items() if u == user_id]:
            del self._pending[staff_phone]
