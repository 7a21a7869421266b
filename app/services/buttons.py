"""Interactive button ids exchanged with staff and customers."""

from dataclasses import dataclass
from typing import Optional

ASSIGN_PREFIX = "assign_"
END_HANDOFF_PREFIX = "end_handoff_"
BOT_ON = "bot_on"
BOT_OFF = "bot_off"
MENU_PREFIX = "menu_"
MENU_TRIAL = "menu_trial"
MENU_STAFF = "menu_staff"

ASSIGN_TITLE = "✅ Assign to Me"
END_TITLE = "🔚 End Handoff"


@dataclass(frozen=True)
class ButtonAction:
    action: str  # assign, end_handoff, bot_on, bot_off
    user_id: Optional[str] = None


def assign_button(user_id: str) -> tuple[str, str]:
    return f"{ASSIGN_PREFIX}{user_id}", ASSIGN_TITLE


def end_button(user_id: str) -> tuple[str, str]:
    return f"{END_HANDOFF_PREFIX}{user_id}", END_TITLE


def bot_toggle_buttons() -> list[tuple[str, str]]:
    return [(BOT_ON, "🟢 Bot On"), (BOT_OFF, "🔴 Bot Off")]


def parse_button_id(button_id: str) -> Optional[ButtonAction]:
    if not button_id:
        return None
    if button_id == BOT_ON:
        return ButtonAction("bot_on")
    if button_id == BOT_OFF:
        return ButtonAction("bot_off")
    if button_id.startswith(END_HANDOFF_PREFIX) and len(button_id) > len(END_HANDOFF_PREFIX):
        return ButtonAction("end_handoff", button_id[len(END_HANDOFF_PREFIX):])
    if button_id.startswith(ASSIGN_PREFIX) and len(button_id) > len(ASSIGN_PREFIX):
        return ButtonAction("assign", button_id[len(ASSIGN_PREFIX):])
    return None


def parse_button_click(interactive: Optional[dict]) -> Optional[ButtonAction]:
    """Only reply-button clicks carry actions; list picks are menu choices."""
    if not interactive or interactive.get("type") != "button_reply":
        return None
    return parse_button_id((interactive.get("button_reply") or {}).get("id", ""))


def parse_menu_selection(interactive: Optional[dict]) -> Optional[str]:
    if not interactive or interactive.get("type") != "list_reply":
        return None
    selection = (interactive.get("list_reply") or {}).get("id", "")
    return selection if selection.startswith(MENU_PREFIX) else None
