"""Owner alerts for handoffs nobody picked up."""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Handoff
from app.services import handoff_store, staff_service
from app.services.buttons import assign_button
from app.services.clock import utc_now
from app.services.email_service import EmailClient
from app.services.runtime_state import EscalationTracker
from app.services.whatsapp_service import WhatsAppClient

logger = get_logger("escalation_service")


def format_escalation(handoff: Handoff, waited_minutes: int) -> str:
    who = f"{handoff.customer_name} (+{handoff.user_id})" if handoff.customer_name else f"+{handoff.user_id}"
    return (
        f"⏰ *Unassigned handoff*\n\n"
        f"Customer {who} has been waiting {waited_minutes} min for staff.\n"
        f"Reason: {handoff.reason}\n"
        f"Message: {handoff.message}"
    )


class EscalationMonitor:
    def __init__(
        self,
        escalations: EscalationTracker,
        whatsapp: WhatsAppClient,
        email: EmailClient,
        owner_email: Optional[str] = None,
        threshold_minutes: int = 5,
    ):
        self.escalations = escalations
        self.whatsapp = whatsapp
        self.email = email
        self.owner_email = owner_email
        self.threshold_minutes = threshold_minutes

    async def tick(self, db: Session, now: Optional[datetime] = None) -> list[str]:
        """One sweep. Returns the user ids escalated in this tick."""
        now = now or utc_now()
        overdue = handoff_store.unassigned_older_than(db, self.threshold_minutes, now=now)
        escalated = []
        for handoff in overdue:
            if self.escalations.is_escalated(handoff.user_id):
                continue
            if await self.alert_owner(db, handoff, handoff_store.wait_minutes(handoff, now)):
                self.escalations.mark(handoff.user_id)
                escalated.append(handoff.user_id)
        if overdue:
            logger.info(
                "Escalation sweep",
                extra={"context": {"overdue": len(overdue), "escalated": escalated}},
            )
        return escalated

    async def alert_owner(self, db: Session, handoff: Handoff, waited_minutes: int) -> bool:
        """True if at least one channel reached the owner."""
        text = format_escalation(handoff, waited_minutes)
        owners = staff_service.owners(db)
        emails = {o.email for o in owners if o.email}
        if self.owner_email:
            emails.add(self.owner_email)

        delivered = False
        for owner in owners:
            result = await self.whatsapp.send_buttons(owner.phone, text, [assign_button(handoff.user_id)])
            delivered = delivered or result.ok

        subject = f"[IronCore] Customer waiting {waited_minutes} min for staff"
        html = text.replace("*", "").replace("\n", "<br>")
        for address in sorted(emails):
            result = await self.email.send(address, subject, html, text=text)
            delivered = delivered or result.ok

        if not delivered:
            logger.warning(
                "Escalation not delivered, will retry next tick",
                extra={"context": {"user_id": handoff.user_id, "owners": len(owners), "emails": len(emails)}},
            )
        return delivered
