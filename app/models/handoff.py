import uuid

from sqlalchemy import Column, DateTime, Text, Uuid

from app.database import Base


class Handoff(Base):
    __tablename__ = "handoffs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, unique=True, index=True)
    customer_name = Column(Text)
    message = Column(Text)
    reason = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="waiting", index=True)  # waiting, active, resolved
    timestamp = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True))
    ended_by = Column(Text)
    staff_member = Column(Text)  # staff phone
    requested_staff_member = Column(Text)
    assigned_at = Column(DateTime(timezone=True))
