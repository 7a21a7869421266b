from unittest.mock import patch

import pytest

from app.services.notification_service import (
    KIND_FOLLOWUP,
    NotificationDispatcher,
    NotificationJob,
    Recipient,
    format_staff_notification,
)
from app.services.runtime_state import AcknowledgmentTracker
from conftest import CUSTOMER, OTHER_STAFF_PHONE, STAFF_PHONE, FakeEmail, FakeWhatsApp


def _dispatcher(whatsapp=None, email=None, **kwargs):
    kwargs.setdefault("acknowledgments", AcknowledgmentTracker())
    return NotificationDispatcher(whatsapp or FakeWhatsApp(), email or FakeEmail(), **kwargs)


class TestResolveRecipients:
    def test_active_staff_with_notifications(self, db_session, make_staff):
        make_staff(STAFF_PHONE, "Priya Sharma", email="priya@ironcore.fit")
        make_staff(OTHER_STAFF_PHONE, "Vikram Rao", receive_notifications=False)

        recipients = _dispatcher().resolve_recipients(db_session, CUSTOMER)

        assert [(r.phone, r.email) for r in recipients] == [(STAFF_PHONE, "priya@ironcore.fit")]

    def test_customer_who_is_staff_is_skipped(self, db_session, make_staff):
        make_staff(STAFF_PHONE, "Priya Sharma")
        make_staff(OTHER_STAFF_PHONE, "Vikram Rao")

        recipients = _dispatcher().resolve_recipients(db_session, STAFF_PHONE)

        assert [r.phone for r in recipients] == [OTHER_STAFF_PHONE]

    def test_fallback_numbers_only_without_staff(self, db_session, make_staff):
        dispatcher = _dispatcher(fallback_numbers=("919877776666",))
        assert [r.phone for r in dispatcher.resolve_recipients(db_session, CUSTOMER)] == ["919877776666"]

        make_staff(STAFF_PHONE, "Priya Sharma")
        assert [r.phone for r in dispatcher.resolve_recipients(db_session, CUSTOMER)] == [STAFF_PHONE]

    def test_owner_email_added_unless_targeted(self, db_session, make_staff):
        staff = make_staff(STAFF_PHONE, "Priya Sharma")
        dispatcher = _dispatcher(owner_email="owner@ironcore.fit")

        untargeted = dispatcher.resolve_recipients(db_session, CUSTOMER)
        targeted = dispatcher.resolve_recipients(db_session, CUSTOMER, target_staff=staff)

        assert "owner@ironcore.fit" in [r.email for r in untargeted]
        assert [r.phone for r in targeted] == [STAFF_PHONE]
        assert all(r.email != "owner@ironcore.fit" for r in targeted)


class TestNotify:
    @patch("app.services.notification_service.alert_warning")
    def test_no_recipients_alerts_and_queues_nothing(self, mock_alert, db_session):
        dispatcher = _dispatcher()

        job = dispatcher.notify(db_session, CUSTOMER, "help", "user_requested")

        assert job is None
        assert dispatcher.pending() == 0
        mock_alert.assert_called_once()

    def test_queues_job(self, db_session, make_staff):
        make_staff()
        dispatcher = _dispatcher()

        job = dispatcher.notify(db_session, CUSTOMER, "help", "user_requested", display_name="Rahul")

        assert job is not None
        assert job.display_name == "Rahul"
        assert dispatcher.pending() == 1

    @patch("app.services.notification_service.alert_warning")
    def test_full_queue_drops_and_alerts(self, mock_alert):
        dispatcher = _dispatcher(max_queue=1)
        job = NotificationJob(CUSTOMER, "help", "user_requested", [Recipient("Priya", phone=STAFF_PHONE)])

        assert dispatcher.submit(job) is True
        assert dispatcher.submit(job) is False
        assert dispatcher.pending() == 1
        mock_alert.assert_called_once()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_sends_assign_button_and_email(self):
        whatsapp, email = FakeWhatsApp(), FakeEmail()
        acks = AcknowledgmentTracker()
        dispatcher = _dispatcher(whatsapp, email, acknowledgments=acks)
        job = NotificationJob(
            CUSTOMER,
            "I want to talk to staff",
            "user_requested",
            [Recipient("Priya", phone=STAFF_PHONE, email="priya@ironcore.fit")],
        )

        outcome = await dispatcher.dispatch(job)

        assert outcome.ok and outcome.delivered
        sent = whatsapp.to(STAFF_PHONE)[0]
        assert sent.kind == "buttons"
        assert sent.extra[0][0] == f"assign_{CUSTOMER}"
        assert email.sent[0]["to"] == "priya@ironcore.fit"
        assert acks.pending_for(STAFF_PHONE) == CUSTOMER

    @pytest.mark.asyncio
    @patch("app.services.notification_service.alert_warning")
    async def test_failures_are_isolated_and_reported(self, mock_alert):
        whatsapp = FakeWhatsApp(fail_for={STAFF_PHONE})
        acks = AcknowledgmentTracker()
        dispatcher = _dispatcher(whatsapp, FakeEmail(fail=True), acknowledgments=acks)
        job = NotificationJob(
            CUSTOMER,
            "help",
            "complex_query",
            [
                Recipient("Priya", phone=STAFF_PHONE, email="priya@ironcore.fit"),
                Recipient("Vikram", phone=OTHER_STAFF_PHONE),
            ],
        )

        outcome = await dispatcher.dispatch(job)

        assert outcome.whatsapp_failed == [STAFF_PHONE]
        assert outcome.whatsapp_sent == [OTHER_STAFF_PHONE]
        assert outcome.email_failed == ["priya@ironcore.fit"]
        assert not outcome.ok
        assert outcome.delivered
        assert acks.pending_for(STAFF_PHONE) is None
        assert acks.pending_for(OTHER_STAFF_PHONE) == CUSTOMER
        mock_alert.assert_called_once()

    @pytest.mark.asyncio
    async def test_flush_drains_queue(self):
        dispatcher = _dispatcher()
        job = NotificationJob(CUSTOMER, "help", "booking", [Recipient("Priya", phone=STAFF_PHONE)])
        dispatcher.submit(job)
        dispatcher.submit(job)

        outcomes = await dispatcher.flush()

        assert len(outcomes) == 2
        assert dispatcher.pending() == 0

    @pytest.mark.asyncio
    async def test_workers_process_queue(self):
        whatsapp = FakeWhatsApp()
        dispatcher = _dispatcher(whatsapp, workers=2)
        dispatcher.start()
        try:
            dispatcher.submit(NotificationJob(CUSTOMER, "help", "booking", [Recipient("Priya", phone=STAFF_PHONE)]))
            await dispatcher.queue.join()
        finally:
            await dispatcher.stop()

        assert len(whatsapp.to(STAFF_PHONE)) == 1


class TestFormatting:
    def test_handoff_message(self):
        job = NotificationJob(CUSTOMER, "knee injury", "complex_query", [], display_name="Rahul")
        text = format_staff_notification(job)

        assert "New handoff request" in text
        assert f"Rahul (+{CUSTOMER})" in text
        assert "Complex / medical question" in text
        assert "knee injury" in text

    def test_targeted_message(self):
        job = NotificationJob(CUSTOMER, "is priya there", "user_requested", [], targeted=True)
        assert "Customer asked for you" in format_staff_notification(job)

    def test_followup_message(self):
        job = NotificationJob(CUSTOMER, "hello?", "user_requested", [], kind=KIND_FOLLOWUP)
        text = format_staff_notification(job)

        assert "New message while waiting" in text
        assert "hello?" in text
