from enum import Enum
from typing import Optional


class HandoffStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    RESOLVED = "resolved"


LIVE_STATUSES = (HandoffStatus.WAITING.value, HandoffStatus.ACTIVE.value)

VALID_TRANSITIONS = {
    HandoffStatus.WAITING: [HandoffStatus.ACTIVE, HandoffStatus.RESOLVED],
    HandoffStatus.ACTIVE: [HandoffStatus.RESOLVED],
    HandoffStatus.RESOLVED: [HandoffStatus.WAITING],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: Optional[HandoffStatus], to_state: HandoffStatus):
        self.from_state = from_state
        self.to_state = to_state
        source = from_state.value if from_state else "none"
        super().__init__(f"Invalid transition: {source} -> {to_state.value}")


def can_transition(from_state: Optional[HandoffStatus], to_state: HandoffStatus) -> bool:
    """Check if transition is valid. A missing record may only open."""
    if from_state is None:
        return to_state == HandoffStatus.WAITING
    allowed = VALID_TRANSITIONS.get(HandoffStatus(from_state), [])
    return to_state in allowed


def transition(from_state: Optional[HandoffStatus], to_state: HandoffStatus) -> HandoffStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(HandoffStatus(from_state) if from_state else None, to_state)
    return to_state


def is_live(status: Optional[str]) -> bool:
    return status in LIVE_STATUSES
