"""Decides whether an inbound customer message should start a handoff."""

import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import StaffMember
from app.services.llm.base import LLMError, LLMProvider
from app.services.staff_service import find_named_staff

logger = get_logger("trigger_service")

REASON_USER_REQUESTED = "user_requested"
REASON_COMPLEX_QUERY = "complex_query"
REASON_AI_DETECTED = "ai_detected"
REASON_BOOKING = "booking"
HANDOFF_REASONS = (REASON_USER_REQUESTED, REASON_COMPLEX_QUERY, REASON_AI_DETECTED, REASON_BOOKING)

HUMAN_REQUEST_KEYWORDS = (
    "speak to human",
    "talk to someone",
    "talk to person",
    "talk to staff",
    "talk to your staff",
    "talk to the staff",
    "need to talk to staff",
    "want to talk to staff",
    "speak to staff",
    "speak to your staff",
    "real person",
    "customer service",
    "representative",
    "agent",
    "staff member",
    "manager",
    "gym owner",
    "talk to owner",
    "speak to owner",
    "complaint",
    "issue",
    "problem",
    "not satisfied",
    "cancel membership",
    "refund",
    "speak with",
    "talk with",
    "human help",
    "need help from staff",
    "contact staff",
)

COMPLEX_QUERY_KEYWORDS = (
    "injury",
    "injured",
    "medical condition",
    "health issue",
    "health problem",
    "pregnant",
    "pregnancy",
    "surgery",
    "disability",
    "disabled",
    "custom package",
    "corporate membership",
    "bulk discount",
    "medical",
    "doctor",
    "physiotherapist",
)

BOOKING_KEYWORDS = (
    "book a trial",
    "book trial",
    "trial booking",
    "schedule trial",
    "reserve trial",
    "trial session",
    "book a session",
    "book session",
    "schedule session",
    "reserve session",
    "book appointment",
    "schedule appointment",
    "make appointment",
    "book a class",
    "book class",
    "reserve class",
)

# Acknowledgements and filler never reach the LLM classifier.
FILLER_PATTERN = re.compile(
    r"^(yes|yeah|yep|yup|sure|ok|okay|alright|right|correct|please|ya|yea|definitely|absolutely"
    r"|of course|no|nope|nah|hmm?|huh|umm?|\?+|\.+|!+)[\s!.,?]*$",
    re.IGNORECASE,
)

CLASSIFIER_PROMPT = """You screen messages sent to the WhatsApp assistant of IronCore Fitness, a gym.

Answer YES if the customer:
- asks to speak with a human: staff, owner, manager, trainer, front desk, "someone", "a person"
- asks to book, schedule or reserve a trial, session, class or appointment

Answer NO if the customer:
- asks a general question (hours, prices, facilities, location)
- mentions people unrelated to the gym ("my friend recommended you")

Reply with exactly one word: YES or NO."""


@dataclass
class TriggerResult:
    should_handoff: bool
    reason: Optional[str] = None
    source: str = "none"  # keyword, llm, staff_name, booking


def match_keywords(text: str) -> Optional[str]:
    lowered = (text or "").lower()
    if any(keyword in lowered for keyword in HUMAN_REQUEST_KEYWORDS):
        return REASON_USER_REQUESTED
    if any(keyword in lowered for keyword in COMPLEX_QUERY_KEYWORDS):
        return REASON_COMPLEX_QUERY
    return None


def is_filler(text: str) -> bool:
    return bool(FILLER_PATTERN.match((text or "").strip()))


def is_booking_request(text: str) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in BOOKING_KEYWORDS)


def detect_requested_staff(db: Session, text: str) -> Optional[StaffMember]:
    staff = find_named_staff(db, text)
    if staff:
        logger.info("Customer asked for a staff member by name", extra={"context": {"staff": staff.phone}})
    return staff


class TriggerDetector:
    def __init__(self, llm: Optional[LLMProvider] = None, model: Optional[str] = None):
        self.llm = llm
        self.model = model

    async def evaluate(self, text: str) -> TriggerResult:
        reason = match_keywords(text)
        if reason:
            logger.info("Handoff keyword match", extra={"context": {"reason": reason}})
            return TriggerResult(True, reason, "keyword")

        if is_filler(text) or not (text or "").strip():
            return TriggerResult(False)

        if await self.classify_with_llm(text):
            return TriggerResult(True, REASON_USER_REQUESTED, "llm")
        return TriggerResult(False)

    async def classify_with_llm(self, text: str) -> bool:
        """Slow path. Any failure counts as NO."""
        if self.llm is None:
            return False
        try:
            response = await self.llm.generate(
                [
                    {"role": "system", "content": CLASSIFIER_PROMPT},
                    {"role": "user", "content": text},
                ],
                model=self.model,
                temperature=0.1,
                max_tokens=10,
            )
        except LLMError as e:
            logger.warning(f"Handoff classifier unavailable: {e}")
            return False

        answer = re.sub(r"[^A-Z]", " ", (response.content or "").upper()).split()
        verdict = bool(answer) and answer[0] == "YES"
        logger.info("Handoff classifier verdict", extra={"context": {"verdict": verdict, "raw": (response.content or "")[:20]}})
        return verdict
