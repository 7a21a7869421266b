from sqlalchemy import Boolean, Column, DateTime, Integer, Text

from app.database import Base


class IgnoredNumber(Base):
    __tablename__ = "ignored_numbers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(Text, nullable=False, unique=True, index=True)
    name = Column(Text)
    reason = Column(Text, nullable=False, default="manual")  # personal, spam, manual, other
    notes = Column(Text)
    added_by = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_message_received = Column(DateTime(timezone=True))
