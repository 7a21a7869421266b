from datetime import timedelta

import pytest

from app.models import Conversation
from app.services import conversation_service
from app.services.clock import utc_now
from conftest import CUSTOMER, OTHER_CUSTOMER


class TestGetOrCreate:
    def test_creates_on_first_contact(self, db_session):
        conversation = conversation_service.get_or_create_conversation(db_session, CUSTOMER)

        assert conversation.user_id == CUSTOMER
        assert conversation.messages == []
        assert conversation.in_handoff is False
        assert conversation.first_greeting is False

    def test_returns_existing(self, db_session):
        first = conversation_service.get_or_create_conversation(db_session, CUSTOMER)
        second = conversation_service.get_or_create_conversation(db_session, CUSTOMER)

        assert first.id == second.id
        assert db_session.query(Conversation).count() == 1

    def test_stale_window_resets_history_but_keeps_handoff(self, db_session):
        conversation = conversation_service.get_or_create_conversation(db_session, CUSTOMER)
        conversation_service.add_message(db_session, conversation, "user", "book a trial")
        conversation_service.mark_greeted(db_session, conversation)
        conversation_service.set_handoff_status(db_session, CUSTOMER, True, "booking")
        db_session.commit()

        later = utc_now() + timedelta(minutes=31)
        conversation = conversation_service.get_or_create_conversation(db_session, CUSTOMER, now=later)

        assert conversation.messages == []
        assert conversation.first_greeting is False
        assert conversation.in_handoff is True
        assert conversation.handoff_reason == "booking"

    def test_fresh_window_is_untouched(self, db_session):
        conversation = conversation_service.get_or_create_conversation(db_session, CUSTOMER)
        conversation_service.add_message(db_session, conversation, "user", "hello")
        db_session.commit()

        conversation = conversation_service.get_or_create_conversation(
            db_session, CUSTOMER, now=utc_now() + timedelta(minutes=5)
        )
        assert len(conversation.messages) == 1


class TestMessages:
    def test_keeps_only_last_ten(self, db_session):
        conversation = conversation_service.get_or_create_conversation(db_session, CUSTOMER)
        for i in range(12):
            conversation_service.add_message(db_session, conversation, "user", f"msg {i}")
        db_session.commit()
        db_session.refresh(conversation)

        assert len(conversation.messages) == conversation_service.MAX_MESSAGES
        assert conversation.messages[0]["content"] == "msg 2"
        assert conversation.messages[-1]["content"] == "msg 11"

    def test_rejects_unknown_role(self, db_session):
        conversation = conversation_service.get_or_create_conversation(db_session, CUSTOMER)
        with pytest.raises(ValueError):
            conversation_service.add_message(db_session, conversation, "staff", "hi")

    def test_history_is_chat_format(self, db_session):
        conversation = conversation_service.get_or_create_conversation(db_session, CUSTOMER)
        conversation_service.add_message(db_session, conversation, "user", "hi")
        conversation_service.add_message(db_session, conversation, "assistant", "hello!")

        assert conversation_service.get_history(conversation) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello!"},
        ]


class TestHandoffFlag:
    def test_entering_handoff_sets_reason(self, db_session):
        conversation = conversation_service.set_handoff_status(db_session, CUSTOMER, True, "complex_query")

        assert conversation.in_handoff is True
        assert conversation.handoff_reason == "complex_query"
        assert conversation.last_handoff_ended_at is None

    def test_leaving_handoff_stamps_cooldown_anchor(self, db_session):
        conversation_service.set_handoff_status(db_session, CUSTOMER, True, "complex_query")
        conversation = conversation_service.set_handoff_status(db_session, CUSTOMER, False)

        assert conversation.in_handoff is False
        assert conversation.handoff_reason is None
        assert conversation.last_handoff_ended_at is not None


class TestCooldown:
    def test_no_conversation_no_cooldown(self):
        assert conversation_service.is_in_handoff_cooldown(None, 5) is False

    def test_never_ended_no_cooldown(self, db_session):
        conversation = conversation_service.get_or_create_conversation(db_session, CUSTOMER)
        assert conversation_service.is_in_handoff_cooldown(conversation, 5) is False

    def test_cooldown_window(self, db_session):
        ended = utc_now()
        conversation = conversation_service.set_handoff_status(db_session, CUSTOMER, False, now=ended)

        assert conversation_service.is_in_handoff_cooldown(conversation, 5, now=ended + timedelta(minutes=4))
        assert not conversation_service.is_in_handoff_cooldown(conversation, 5, now=ended + timedelta(minutes=6))


class TestCleanup:
    def test_removes_idle_conversations_except_handoffs(self, db_session):
        old = utc_now() - timedelta(hours=2)
        conversation_service.get_or_create_conversation(db_session, CUSTOMER, now=old)
        conversation_service.set_handoff_status(db_session, OTHER_CUSTOMER, True, "booking", now=old)
        conversation_service.get_or_create_conversation(db_session, "919855556666")
        db_session.commit()

        deleted = conversation_service.cleanup_stale_conversations(db_session, ttl_minutes=30)

        assert deleted == 1
        remaining = {c.user_id for c in db_session.query(Conversation).all()}
        assert remaining == {OTHER_CUSTOMER, "919855556666"}
