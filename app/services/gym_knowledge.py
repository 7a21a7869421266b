"""Static gym facts and canned replies loaded from GYM_INFO.yaml."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml

from app.config import settings


@lru_cache(maxsize=4)
def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


def load_gym_info() -> dict:
    return _load_yaml(Path(settings.gym_info_path))


def _section(name: str) -> dict:
    section = load_gym_info().get(name)
    return section if isinstance(section, dict) else {}


def gym_name() -> str:
    return _section("gym").get("name") or "IronCore Fitness"


def contact_info() -> str:
    contact = _section("gym").get("contact") or {}
    return f"📞 Call: {contact.get('phone', '')}\n📧 Email: {contact.get('email', '')}"


def get_faq_response(category: Optional[str]) -> Optional[str]:
    if not category:
        return None
    return _section("faq").get(category)


def get_menu_response(menu_id: str) -> Optional[str]:
    return _section("menu_responses").get(menu_id)


def get_welcome_menu() -> dict:
    return _section("menu")


def get_booking_info() -> str:
    return load_gym_info().get("booking_info") or ""


def get_handoff_message(reason: Optional[str]) -> str:
    messages = _section("handoff_messages")
    body = messages.get(reason or "default") or messages.get("default", "")
    parts = [messages.get("intro", ""), body]
    return f"{' '.join(p for p in parts if p)}\n\nFor immediate assistance:\n{contact_info()}\n\n{messages.get('footer', '')}".strip()


def knowledge_summary() -> str:
    """Plain-text fact sheet handed to the LLM answerer."""
    gym = _section("gym")
    contact = gym.get("contact") or {}
    timings = gym.get("timings") or {}
    pricing = gym.get("pricing") or {}
    lines = [
        f"Gym: {gym.get('name', '')}",
        f"Address: {contact.get('address', '')} ({contact.get('landmark', '')})",
        f"Phone: {contact.get('phone', '')}",
        "Timings: " + "; ".join(str(v) for v in timings.values()),
        "Pricing (INR): " + ", ".join(f"{k.replace('_', ' ')} {v}" for k, v in pricing.items()),
    ]
    return "\n".join(lines)
