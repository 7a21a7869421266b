"""Keyword intent classification.

Keyword-only on purpose: the result only picks a canned FAQ answer or marks
a booking, so a classifier round-trip per message buys nothing.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class IntentType(str, Enum):
    GREETING = "greeting"
    FAQ = "faq"
    BOOKING = "booking"
    GENERAL = "general"


@dataclass(frozen=True)
class Intent:
    type: IntentType
    category: Optional[str] = None


GREETING_WORDS = ("hi", "hello", "hey", "good morning", "good evening", "namaste", "yo", "sup", "howdy")

# Checked in order; first category with a hit wins.
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "timings": ("timing", "time", "open", "close", "hours", "schedule", "when open", "holiday"),
    "pricing": (
        "price", "cost", "fee", "membership", "plan", "rate", "charge", "how much",
        "monthly", "yearly", "quarterly", "package",
    ),
    "trial": ("trial", "demo", "first day", "visit", "check out"),
    "training": ("trainer", "personal training", "pt", "coach", "one on one"),
    "booking": ("book", "appointment", "reserve", "join", "sign up", "enroll"),
    "location": ("location", "address", "where", "directions", "reach", "landmark", "contact", "phone", "email"),
    "rules": ("rule", "dress", "attire", "policy", "requirements"),
    "services": (
        "services", "classes", "yoga", "zumba", "steam", "sauna", "diet",
        "facilities", "equipment", "amenities",
    ),
}

BOOKING_CATEGORIES = {"trial", "booking"}

_GREETING_RE = re.compile(rf"^({'|'.join(re.escape(w) for w in GREETING_WORDS)})[\s!.,?]*$", re.IGNORECASE)


def _contains(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}", text) is not None


def classify_intent(text: str) -> Intent:
    lowered = (text or "").lower().strip()
    if _GREETING_RE.match(lowered):
        return Intent(IntentType.GREETING, "greeting")

    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(_contains(lowered, keyword) for keyword in keywords):
            if category in BOOKING_CATEGORIES:
                return Intent(IntentType.BOOKING, category)
            return Intent(IntentType.FAQ, category)

    return Intent(IntentType.GENERAL)
