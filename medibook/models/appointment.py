"""Appointment model definitions."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String
from medibook.database import Base


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Appointment(Base):
    """Represents a booked appointment; timestamps are stored as naive UTC."""
    __tablename__ = "appointments"

    id = Column(String, primary_key=True, default=_new_id)
    doctor_id = Column(String, ForeignKey("doctors.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"))
    patient_name = Column(String, nullable=False)
    patient_email = Column(String, nullable=False)
    patient_phone = Column(String)
    date = Column(String, nullable=False)  # YYYY-MM-DD, operating timezone
    time = Column(String, nullable=False)  # HH:MM slot label
    date_time = Column(DateTime, nullable=False)
    reason = Column(String)
    status = Column(String, nullable=False, default="confirmed")
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
