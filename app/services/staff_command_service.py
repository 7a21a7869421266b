"""Parsing of WhatsApp text commands sent by staff."""

import re
from dataclasses import dataclass
from typing import Optional

ACKNOWLEDGMENTS = (
    "ok", "okay", "k", "got it", "noted", "understood", "sure", "alright",
    "thanks", "thank you", "done", "yes", "yup", "yeah", "ack", "acknowledged",
)

BOT_OFF_COMMANDS = ("bot off", "turn bot off", "turn off bot", "disable bot", "stop bot")
BOT_ON_COMMANDS = ("bot on", "turn bot on", "turn on bot", "enable bot", "start bot", "resume bot")

END_COMMAND_RE = re.compile(r"^end(?:\s+handoff)?\s+\+?(\d{10,15})\b", re.IGNORECASE)
REPLY_COMMAND_RE = re.compile(r"^reply(?:\s+to)?\s+\+?(\d{10,15}):\s*(.+)$", re.IGNORECASE | re.DOTALL)

STAFF_SIGNATURE = "_Message from staff_"


@dataclass(frozen=True)
class StaffCommand:
    kind: str  # bot_on, bot_off, end, reply
    user_id: Optional[str] = None
    text: Optional[str] = None


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower()).strip(" !.")


def is_acknowledgment(text: str) -> bool:
    cleaned = _clean(text)
    return any(cleaned == ack or cleaned.startswith(f"{ack} ") for ack in ACKNOWLEDGMENTS)


def parse_bot_command(text: str) -> Optional[str]:
    cleaned = _clean(text)
    if cleaned in BOT_OFF_COMMANDS:
        return "bot_off"
    if cleaned in BOT_ON_COMMANDS:
        return "bot_on"
    return None


def parse_staff_command(text: str) -> Optional[StaffCommand]:
    toggle = parse_bot_command(text)
    if toggle:
        return StaffCommand(toggle)

    stripped = (text or "").strip()
    match = END_COMMAND_RE.match(stripped)
    if match:
        return StaffCommand("end", user_id=match.group(1))

    match = REPLY_COMMAND_RE.match(stripped)
    if match:
        return StaffCommand("reply", user_id=match.group(1), text=match.group(2).strip())
    return None


def sign_staff_message(text: str) -> str:
    return f"{text}\n\n{STAFF_SIGNATURE}"
