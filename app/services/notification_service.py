"""Fan-out of handoff events to staff over WhatsApp and email.

Jobs are built synchronously (recipient lookup needs the caller's DB session)
and queued; worker tasks do the network I/O. Each channel and recipient
fails independently, nothing is retried, and every job ends with a
DispatchOutcome that is logged and, on any failure, sent to the ops alert
sink.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import StaffMember
from app.services import staff_service
from app.services.alert_service import alert_warning
from app.services.buttons import assign_button
from app.services.email_service import EmailClient
from app.services.runtime_state import AcknowledgmentTracker
from app.services.whatsapp_service import WhatsAppClient

logger = get_logger("notification_service")

REASON_LABELS = {
    "user_requested": "Customer asked for staff",
    "complex_query": "Complex / medical question",
    "ai_detected": "Bot could not answer",
    "booking": "Booking request",
}

KIND_HANDOFF = "handoff"
KIND_FOLLOWUP = "followup"


@dataclass
class Recipient:
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass
class NotificationJob:
    user_id: str
    message: str
    reason: Optional[str]
    recipients: list[Recipient]
    display_name: Optional[str] = None
    targeted: bool = False
    kind: str = KIND_HANDOFF


@dataclass
class DispatchOutcome:
    user_id: str
    whatsapp_sent: list[str] = field(default_factory=list)
    whatsapp_failed: list[str] = field(default_factory=list)
    email_sent: list[str] = field(default_factory=list)
    email_failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.whatsapp_failed and not self.email_failed

    @property
    def delivered(self) -> bool:
        return bool(self.whatsapp_sent or self.email_sent)

    def as_context(self) -> dict:
        return {
            "user_id": self.user_id,
            "whatsapp_sent": len(self.whatsapp_sent),
            "whatsapp_failed": self.whatsapp_failed,
            "email_sent": len(self.email_sent),
            "email_failed": self.email_failed,
        }


def format_staff_notification(job: NotificationJob) -> str:
    who = f"{job.display_name} (+{job.user_id})" if job.display_name else f"+{job.user_id}"
    if job.kind == KIND_FOLLOWUP:
        return f"💬 *New message while waiting for staff*\n\nCustomer: {who}\nMessage: {job.message}"
    headline = "🙋 *Customer asked for you*" if job.targeted else "🚨 *New handoff request*"
    reason = REASON_LABELS.get(job.reason or "", job.reason or "unknown")
    return (
        f"{headline}\n\n"
        f"Customer: {who}\n"
        f"Reason: {reason}\n"
        f"Message: {job.message}\n\n"
        f"Tap the button or reply 'ok' to take this conversation."
    )


def format_staff_email(job: NotificationJob) -> tuple[str, str]:
    who = job.display_name or job.user_id
    subject = f"[IronCore] Handoff request from {who}"
    reason = REASON_LABELS.get(job.reason or "", job.reason or "unknown")
    html = (
        f"<h2>New handoff request</h2>"
        f"<p><b>Customer:</b> {who} (+{job.user_id})<br>"
        f"<b>Reason:</b> {reason}</p>"
        f"<blockquote>{job.message}</blockquote>"
        f"<p>Reply on WhatsApp to take over the conversation.</p>"
    )
    return subject, html


class NotificationDispatcher:
    def __init__(
        self,
        whatsapp: WhatsAppClient,
        email: EmailClient,
        acknowledgments: Optional[AcknowledgmentTracker] = None,
        fallback_numbers: tuple[str, ...] = (),
        owner_email: Optional[str] = None,
        max_queue: int = 100,
        workers: int = 2,
    ):
        self.whatsapp = whatsapp
        self.email = email
        self.acknowledgments = acknowledgments
        self.fallback_numbers = tuple(fallback_numbers)
        self.owner_email = owner_email
        self.worker_count = max(workers, 1)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._workers: list[asyncio.Task] = []

    def resolve_recipients(
        self,
        db: Session,
        user_id: str,
        target_staff: Optional[StaffMember] = None,
        include_email: bool = True,
    ) -> list[Recipient]:
        if target_staff is not None:
            staff = [target_staff]
        else:
            staff = staff_service.notification_recipients(db)

        recipients = [
            Recipient(name=s.name, phone=s.phone, email=s.email if include_email else None)
            for s in staff
            if not staff_service.same_phone(s.phone, user_id)
        ]

        if target_staff is None and not staff:
            recipients.extend(
                Recipient(name="staff", phone=number)
                for number in self.fallback_numbers
                if not staff_service.same_phone(number, user_id)
            )

        if include_email and self.owner_email and target_staff is None:
            known = {r.email for r in recipients if r.email}
            if self.owner_email not in known:
                recipients.append(Recipient(name="owner", email=self.owner_email))

        return recipients

    def notify(
        self,
        db: Session,
        user_id: str,
        message: str,
        reason: Optional[str],
        target_staff: Optional[StaffMember] = None,
        display_name: Optional[str] = None,
        kind: str = KIND_HANDOFF,
    ) -> Optional[NotificationJob]:
        """Queue a notification. Never awaits a send."""
        recipients = self.resolve_recipients(db, user_id, target_staff, include_email=kind == KIND_HANDOFF)
        if not recipients:
            logger.warning("No staff to notify", extra={"context": {"user_id": user_id, "reason": reason}})
            alert_warning("Handoff opened but no staff is configured to receive it", {"user_id": user_id})
            return None

        job = NotificationJob(
            user_id=user_id,
            message=message,
            reason=reason,
            recipients=recipients,
            display_name=display_name,
            targeted=target_staff is not None,
            kind=kind,
        )
        return job if self.submit(job) else None

    def submit(self, job: NotificationJob) -> bool:
        try:
            self.queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.error("Notification queue full, job dropped", extra={"context": {"user_id": job.user_id}})
            alert_warning("Notification queue full, staff were not notified", {"user_id": job.user_id})
            return False
        logger.info(
            "Notification queued",
            extra={"context": {"user_id": job.user_id, "recipients": len(job.recipients), "kind": job.kind}},
        )
        return True

    def pending(self) -> int:
        return self.queue.qsize()

    async def dispatch(self, job: NotificationJob) -> DispatchOutcome:
        outcome = DispatchOutcome(user_id=job.user_id)
        text = format_staff_notification(job)
        subject, html = format_staff_email(job)

        for recipient in job.recipients:
            if recipient.phone:
                result = await self.whatsapp.send_buttons(recipient.phone, text, [assign_button(job.user_id)])
                if result.ok:
                    outcome.whatsapp_sent.append(recipient.phone)
                    if self.acknowledgments is not None:
                        self.acknowledgments.record(recipient.phone, job.user_id)
                else:
                    outcome.whatsapp_failed.append(recipient.phone)

            if recipient.email:
                result = await self.email.send(recipient.email, subject, html, text=text)
                if result.ok:
                    outcome.email_sent.append(recipient.email)
                else:
                    outcome.email_failed.append(recipient.email)

        await self._report(outcome)
        return outcome

    async def _report(self, outcome: DispatchOutcome) -> None:
        if outcome.ok:
            logger.info("Notification delivered", extra={"context": outcome.as_context()})
            return
        logger.warning("Notification partially failed", extra={"context": outcome.as_context()})
        await asyncio.to_thread(alert_warning, "Staff notification failed", outcome.as_context())

    async def flush(self) -> list[DispatchOutcome]:
        """Dispatch everything queued, inline. Used on shutdown and in tests."""
        outcomes = []
        while not self.queue.empty():
            job = self.queue.get_nowait()
            try:
                outcomes.append(await self.dispatch(job))
            finally:
                self.queue.task_done()
        return outcomes

    async def _worker(self, index: int) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self.dispatch(job)
            except Exception as e:
                logger.error(
                    f"Notification worker {index} failed: {e}",
                    extra={"context": {"user_id": job.user_id}},
                    exc_info=True,
                )
            finally:
                self.queue.task_done()

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [asyncio.create_task(self._worker(i)) for i in range(self.worker_count)]
        logger.info("Notification workers started", extra={"context": {"workers": self.worker_count}})

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
