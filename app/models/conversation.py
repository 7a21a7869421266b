from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False, unique=True, index=True)  # customer phone
    messages = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list)
    first_greeting = Column(Boolean, nullable=False, default=False)
    in_handoff = Column(Boolean, nullable=False, default=False)
    handoff_reason = Column(Text)  # user_requested, complex_query, ai_detected, booking
    last_handoff_ended_at = Column(DateTime(timezone=True))
    last_activity = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
