import asyncio
import os
from dataclasses import dataclass
from typing import Any, Optional

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (registers tables on Base.metadata)
from app.config import Settings
from app.database import Base
from app.runtime import build_runtime
from app.services import staff_service
from app.services.llm.base import LLMError, LLMProvider, LLMResponse
from app.services.result import ErrorCode, Result

CUSTOMER = "919811112222"
OTHER_CUSTOMER = "919833334444"
STAFF_PHONE = "919800000001"
OTHER_STAFF_PHONE = "919800000002"
OWNER_PHONE = "919800000009"


@dataclass
class SentMessage:
    kind: str
    to: str
    body: str
    extra: Any = None


class FakeWhatsApp:
    """Records every send. Yields to the event loop like a real network call."""

    def __init__(self, fail_for=()):
        self.sent: list[SentMessage] = []
        self.fail_for = set(fail_for)

    @property
    def enabled(self) -> bool:
        return True

    async def _record(self, kind: str, to: str, body: str, extra: Any = None) -> Result:
        await asyncio.sleep(0)
        self.sent.append(SentMessage(kind, to, body, extra))
        if to in self.fail_for:
            return Result.failure("send failed", ErrorCode.SEND_FAILED)
        return Result.success({"messages": [{"id": "wamid.test"}]})

    async def send_text(self, to: str, text: str) -> Result:
        return await self._record("text", to, text)

    async def send_buttons(self, to: str, body: str, buttons, header: Optional[str] = None) -> Result:
        return await self._record("buttons", to, body, list(buttons))

    async def send_list(self, to: str, body: str, button_text: str, sections, header: Optional[str] = None) -> Result:
        return await self._record("list", to, body, sections)

    def to(self, phone: str) -> list[SentMessage]:
        return [m for m in self.sent if m.to == phone]

    def texts_to(self, phone: str) -> list[str]:
        return [m.body for m in self.to(phone)]


class FakeEmail:
    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    @property
    def enabled(self) -> bool:
        return True

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> Result:
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        if self.fail:
            return Result.failure("email failed", ErrorCode.SEND_FAILED)
        return Result.success("email-id")


class FakeLLM(LLMProvider):
    def __init__(self, content: str = "", error: bool = False, delay: float = 0):
        self.content = content
        self.error = error
        self.delay = delay
        self.calls: list[dict] = []

    async def generate(self, messages, model=None, temperature=0.7, max_tokens=500) -> LLMResponse:
        self.calls.append({"messages": messages, "model": model, "max_tokens": max_tokens})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise LLMError("provider down")
        return LLMResponse(content=self.content, model=model or "fake-model")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """One connection per session, like production."""
    engine = create_engine(f"sqlite:///{tmp_path / 'bot.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        openrouter_api_key=None,
        owner_email=None,
        staff_whatsapp_numbers="",
        admin_api_key="test-admin-key",
        whatsapp_verify_token="verify-me",
    )


@pytest.fixture
def whatsapp():
    return FakeWhatsApp()


@pytest.fixture
def email():
    return FakeEmail()


@pytest.fixture
def runtime(session_factory, test_settings, whatsapp, email):
    return build_runtime(session_factory, config=test_settings, whatsapp=whatsapp, email=email)


@pytest.fixture
def make_staff(db_session):
    def _make(phone=STAFF_PHONE, name="Priya Sharma", role="trainer", email=None, receive_notifications=True):
        result = staff_service.add_staff(
            db_session,
            phone=phone,
            name=name,
            email=email,
            role=role,
            receive_notifications=receive_notifications,
        )
        assert result.ok, result.error
        db_session.commit()
        return result.value

    return _make
