from sqlalchemy import Boolean, Column, DateTime, Integer, Text

from app.database import Base


class StaffMember(Base):
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(Text, nullable=False, unique=True, index=True)
    name = Column(Text, nullable=False)
    email = Column(Text)
    role = Column(Text, nullable=False, default="staff")  # owner, manager, trainer, front_desk, staff
    is_active = Column(Boolean, nullable=False, default=True)
    receive_notifications = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True))
