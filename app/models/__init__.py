from app.models.conversation import Conversation
from app.models.handoff import Handoff
from app.models.ignored_number import IgnoredNumber
from app.models.staff import StaffMember

__all__ = [
    "Conversation",
    "Handoff",
    "IgnoredNumber",
    "StaffMember",
]
