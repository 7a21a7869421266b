import asyncio
from unittest.mock import patch

import pytest

from app.models import Handoff
from app.runtime import build_runtime
from app.schemas.whatsapp import InboundMessage
from app.services import conversation_service, handoff_store, ignore_list_service, staff_service
from app.services.ai_service import FALLBACK_RESPONSE
from app.services.inbound_service import BACK_TO_BOT_REPLY, MessageRouter, process_inbound
from app.services.staff_command_service import STAFF_SIGNATURE
from conftest import CUSTOMER, OTHER_CUSTOMER, OTHER_STAFF_PHONE, STAFF_PHONE, FakeLLM


def text(sender, body, name=None):
    return InboundMessage(sender=sender, message_id="wamid.in", message_type="text", text=body, profile_name=name)


def button(sender, button_id):
    return InboundMessage(
        sender=sender,
        message_type="interactive",
        interactive={"type": "button_reply", "button_reply": {"id": button_id, "title": "x"}},
    )


def menu(sender, menu_id):
    return InboundMessage(
        sender=sender,
        message_type="interactive",
        interactive={"type": "list_reply", "list_reply": {"id": menu_id, "title": "x"}},
    )


@pytest.fixture
def router(runtime):
    return MessageRouter(runtime)


@pytest.fixture
def staff(make_staff):
    return make_staff(STAFF_PHONE, "Priya Sharma")


class TestCustomerPath:
    @pytest.mark.asyncio
    async def test_first_greeting_sends_menu(self, db_session, router, whatsapp):
        outcome = await router.handle(db_session, text(CUSTOMER, "hi"))

        assert outcome == "greeted"
        assert whatsapp.to(CUSTOMER)[0].kind == "list"
        assert conversation_service.get_conversation(db_session, CUSTOMER).first_greeting is True

    @pytest.mark.asyncio
    async def test_second_greeting_gets_canned_answer(self, db_session, router, whatsapp):
        await router.handle(db_session, text(CUSTOMER, "hi"))
        outcome = await router.handle(db_session, text(CUSTOMER, "hello"))

        assert outcome == "answered"
        assert whatsapp.to(CUSTOMER)[-1].kind == "text"

    @pytest.mark.asyncio
    async def test_faq_answer(self, db_session, router, whatsapp):
        outcome = await router.handle(db_session, text(CUSTOMER, "what are your timings?"))

        assert outcome == "answered"
        assert "6 AM" in whatsapp.texts_to(CUSTOMER)[-1]
        history = conversation_service.get_conversation(db_session, CUSTOMER).messages
        assert [m["role"] for m in history] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_menu_pick_answers_from_menu(self, db_session, router, whatsapp):
        outcome = await router.handle(db_session, menu(CUSTOMER, "menu_location"))

        assert outcome == "menu"
        assert "Fitness Street" in whatsapp.texts_to(CUSTOMER)[-1]

    @pytest.mark.asyncio
    async def test_ignored_number_gets_nothing(self, db_session, router, whatsapp):
        ignore_list_service.add_ignored(db_session, CUSTOMER, reason="personal")
        db_session.commit()

        assert await router.handle(db_session, text(CUSTOMER, "talk to staff")) == "ignored"
        assert whatsapp.sent == []
        assert handoff_store.get_handoff(db_session, CUSTOMER) is None

    @pytest.mark.asyncio
    async def test_customer_cannot_press_staff_buttons(self, db_session, router):
        outcome = await router.handle(db_session, button(CUSTOMER, f"assign_{OTHER_CUSTOMER}"))
        assert outcome == "unauthorized"

    @pytest.mark.asyncio
    async def test_unsupported_message(self, db_session, router):
        message = InboundMessage(sender=CUSTOMER, message_type="image")
        assert await router.handle(db_session, message) == "unsupported"


class TestHandoffFlow:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, db_session, runtime, router, whatsapp, staff):
        outcome = await router.handle(db_session, text(CUSTOMER, "I want to talk to staff", name="Rahul"))
        assert outcome == "handoff"
        assert "notified our staff" in whatsapp.texts_to(CUSTOMER)[-1]
        assert runtime.dispatcher.pending() == 1

        await runtime.dispatcher.flush()
        notification = whatsapp.to(STAFF_PHONE)[-1]
        assert notification.extra == [(f"assign_{CUSTOMER}", "✅ Assign to Me")]
        assert "Rahul" in notification.body

        # Bot is silent while waiting; staff hear about the follow-up.
        sent_to_customer = len(whatsapp.to(CUSTOMER))
        assert await router.handle(db_session, text(CUSTOMER, "hello? anyone?")) == "relayed"
        assert len(whatsapp.to(CUSTOMER)) == sent_to_customer
        assert runtime.dispatcher.pending() == 1
        await runtime.dispatcher.flush()

        assert await router.handle(db_session, button(STAFF_PHONE, f"assign_{CUSTOMER}")) == "assigned"
        assert "Priya Sharma" in whatsapp.texts_to(CUSTOMER)[-1]
        assert handoff_store.get_handoff(db_session, CUSTOMER).status == "active"

        assert await router.handle(db_session, text(STAFF_PHONE, "Hi Rahul, how can I help?")) == "forwarded"
        forwarded = whatsapp.texts_to(CUSTOMER)[-1]
        assert forwarded.startswith("Hi Rahul, how can I help?")
        assert forwarded.endswith(STAFF_SIGNATURE)

        assert await router.handle(db_session, text(CUSTOMER, "I want to freeze my membership")) == "relayed"
        relayed = whatsapp.to(STAFF_PHONE)[-1]
        assert "freeze my membership" in relayed.body
        assert relayed.extra == [(f"end_handoff_{CUSTOMER}", "🔚 End Handoff")]

        assert await router.handle(db_session, button(STAFF_PHONE, f"end_handoff_{CUSTOMER}")) == "ended"
        assert whatsapp.texts_to(CUSTOMER)[-1] == BACK_TO_BOT_REPLY
        assert handoff_store.get_handoff(db_session, CUSTOMER).status == "resolved"
        assert conversation_service.get_conversation(db_session, CUSTOMER).in_handoff is False
        assert CUSTOMER not in runtime.cache

    @pytest.mark.asyncio
    async def test_cooldown_after_end_but_explicit_request_still_works(self, db_session, router, whatsapp, staff):
        await router.handle(db_session, text(CUSTOMER, "talk to staff"))
        await router.handle(db_session, text(STAFF_PHONE, f"end {CUSTOMER}"))

        assert await router.handle(db_session, text(CUSTOMER, "I have a knee injury")) == "answered"
        assert whatsapp.texts_to(CUSTOMER)[-1] == FALLBACK_RESPONSE
        assert handoff_store.get_handoff(db_session, CUSTOMER).status == "resolved"

        assert await router.handle(db_session, text(CUSTOMER, "talk to staff please")) == "handoff"
        assert handoff_store.get_handoff(db_session, CUSTOMER).status == "waiting"

    @pytest.mark.asyncio
    async def test_booking_request_sends_booking_info(self, db_session, router, whatsapp, staff):
        outcome = await router.handle(db_session, text(CUSTOMER, "I want to book a trial session"))

        assert outcome == "handoff"
        assert handoff_store.get_handoff(db_session, CUSTOMER).reason == "booking"
        assert len(whatsapp.texts_to(CUSTOMER)) == 2
        assert "confirm your session" in whatsapp.texts_to(CUSTOMER)[-1]

    @pytest.mark.asyncio
    async def test_trial_menu_opens_booking_handoff(self, db_session, router, staff):
        assert await router.handle(db_session, menu(CUSTOMER, "menu_trial")) == "handoff"
        assert handoff_store.get_handoff(db_session, CUSTOMER).reason == "booking"

    @pytest.mark.asyncio
    async def test_named_staff_request_targets_that_staff(self, db_session, runtime, router, whatsapp, make_staff):
        make_staff(STAFF_PHONE, "Priya Sharma")
        make_staff(OTHER_STAFF_PHONE, "Vikram Rao")

        assert await router.handle(db_session, text(CUSTOMER, "Is Vikram available today?")) == "handoff"
        assert handoff_store.get_handoff(db_session, CUSTOMER).requested_staff_member == "Vikram Rao"

        await runtime.dispatcher.flush()
        assert len(whatsapp.to(OTHER_STAFF_PHONE)) == 1
        assert whatsapp.to(STAFF_PHONE) == []

    @pytest.mark.asyncio
    async def test_llm_handoff_marker_opens_ai_detected_handoff(
        self, db_session, session_factory, test_settings, whatsapp, email, staff
    ):
        runtime = build_runtime(
            session_factory, config=test_settings, whatsapp=whatsapp, email=email, llm=FakeLLM("HANDOFF")
        )
        outcome = await MessageRouter(runtime).handle(db_session, text(CUSTOMER, "can I pay in crypto"))

        assert outcome == "handoff"
        assert handoff_store.get_handoff(db_session, CUSTOMER).reason == "ai_detected"

    @pytest.mark.asyncio
    async def test_concurrent_messages_open_one_handoff(self, db_session, runtime, router, staff):
        outcomes = await asyncio.gather(
            router.handle(db_session, text(CUSTOMER, "talk to staff")),
            router.handle(db_session, text(CUSTOMER, "talk to staff")),
        )

        assert sorted(outcomes) == ["handoff", "relayed"]
        assert db_session.query(Handoff).count() == 1
        assert runtime.dispatcher.pending() == 1


class TestStaffPath:
    @pytest.mark.asyncio
    async def test_bot_toggle(self, db_session, runtime, router, whatsapp, staff):
        assert await router.handle(db_session, text(STAFF_PHONE, "bot off")) == "bot_off"
        assert runtime.bot.enabled is False
        assert await router.handle(db_session, text(CUSTOMER, "what are your timings?")) == "bot_disabled"
        assert whatsapp.to(CUSTOMER) == []

        assert await router.handle(db_session, button(STAFF_PHONE, "bot_on")) == "bot_on"
        assert runtime.bot.enabled is True

    @pytest.mark.asyncio
    async def test_second_staff_cannot_take_assigned_customer(self, db_session, router, whatsapp, make_staff):
        make_staff(STAFF_PHONE, "Priya Sharma")
        make_staff(OTHER_STAFF_PHONE, "Vikram Rao")
        await router.handle(db_session, text(CUSTOMER, "talk to staff"))
        await router.handle(db_session, button(STAFF_PHONE, f"assign_{CUSTOMER}"))

        outcome = await router.handle(db_session, button(OTHER_STAFF_PHONE, f"assign_{CUSTOMER}"))

        assert outcome == "assign_assigned_to_other"
        assert "Priya Sharma" in whatsapp.texts_to(OTHER_STAFF_PHONE)[-1]
        assert handoff_store.get_handoff(db_session, CUSTOMER).staff_member == STAFF_PHONE

    @pytest.mark.asyncio
    async def test_ok_takes_the_customer_staff_was_notified_about(self, db_session, runtime, router, staff):
        await router.handle(db_session, text(OTHER_CUSTOMER, "talk to staff"))
        await router.handle(db_session, text(CUSTOMER, "talk to staff"))
        await runtime.dispatcher.flush()

        assert await router.handle(db_session, text(STAFF_PHONE, "ok")) == "assigned"
        assert handoff_store.get_handoff(db_session, CUSTOMER).staff_member == STAFF_PHONE
        assert handoff_store.get_handoff(db_session, OTHER_CUSTOMER).staff_member is None

    @pytest.mark.asyncio
    async def test_ok_with_nothing_waiting(self, db_session, router, staff):
        assert await router.handle(db_session, text(STAFF_PHONE, "ok")) == "nothing_waiting"

    @pytest.mark.asyncio
    async def test_unrecognised_text_gets_help(self, db_session, router, whatsapp, staff):
        assert await router.handle(db_session, text(STAFF_PHONE, "what's up")) == "staff_help"
        assert "Commands" in whatsapp.texts_to(STAFF_PHONE)[-1]

    @pytest.mark.asyncio
    async def test_reply_command_assigns_and_sends(self, db_session, router, whatsapp, staff):
        await router.handle(db_session, text(CUSTOMER, "talk to staff"))

        outcome = await router.handle(db_session, text(STAFF_PHONE, f"reply {CUSTOMER}: we open at 6"))

        assert outcome == "replied"
        assert whatsapp.texts_to(CUSTOMER)[-1].startswith("we open at 6")
        assert handoff_store.get_handoff(db_session, CUSTOMER).staff_member == STAFF_PHONE

    @pytest.mark.asyncio
    async def test_ending_twice(self, db_session, router, staff):
        await router.handle(db_session, text(CUSTOMER, "talk to staff"))
        assert await router.handle(db_session, text(STAFF_PHONE, f"end {CUSTOMER}")) == "ended"
        assert await router.handle(db_session, text(STAFF_PHONE, f"end {CUSTOMER}")) == "end_already_resolved"


class TestProcessInbound:
    @pytest.mark.asyncio
    async def test_runs_with_own_session(self, runtime, whatsapp):
        assert await process_inbound(runtime, text(CUSTOMER, "hi")) == "greeted"
        assert whatsapp.to(CUSTOMER)

    @pytest.mark.asyncio
    @patch("app.services.inbound_service.alert_error")
    async def test_failures_are_contained(self, mock_alert, runtime):
        with patch.object(MessageRouter, "handle", side_effect=RuntimeError("boom")):
            assert await process_inbound(runtime, text(CUSTOMER, "hi")) is None
        mock_alert.assert_called_once()

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_with_slow_llm(self, file_session_factory, test_settings, whatsapp, email):
        db = file_session_factory()
        staff_service.add_staff(db, phone=STAFF_PHONE, name="Priya Sharma", role="trainer")
        db.commit()
        db.close()
        runtime = build_runtime(
            file_session_factory,
            config=test_settings,
            whatsapp=whatsapp,
            email=email,
            llm=FakeLLM("NO", delay=0.2),
        )

        outcomes = await asyncio.gather(
            process_inbound(runtime, text(CUSTOMER, "do you have parking near the building")),
            process_inbound(runtime, text(CUSTOMER, "talk to staff")),
        )

        assert outcomes == ["handoff_exists", "handoff"]
        assert runtime.dispatcher.pending() == 1
        db = file_session_factory()
        try:
            assert db.query(Handoff).count() == 1
            assert handoff_store.get_live_handoff(db, CUSTOMER).reason == "user_requested"
            messages = conversation_service.get_conversation(db, CUSTOMER).messages
            assert [m["content"] for m in messages if m["role"] == "user"] == [
                "do you have parking near the building",
                "talk to staff",
            ]
        finally:
            db.close()
        assert "NO" not in whatsapp.texts_to(CUSTOMER)
