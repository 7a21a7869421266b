from app.services.conversation_service import (
    add_message,
    get_or_create_conversation,
    set_handoff_status,
)
from app.services.result import ErrorCode, Result
from app.services.state_machine import (
    HandoffStatus,
    InvalidTransitionError,
    can_transition,
    transition,
)
