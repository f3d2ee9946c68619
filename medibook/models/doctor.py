"""Doctor model definitions."""

from uuid import uuid4

from sqlalchemy import Column, Date, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from medibook.database import Base


def _new_id() -> str:
    return uuid4().hex


class Doctor(Base):
    """Represents a doctor that patients can book."""
    __tablename__ = "doctors"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    specialty = Column(String, nullable=False, index=True)
    fee = Column(Float)
    location = Column(String)
    bio = Column(String)
    photo_url = Column(String)
    email = Column(String)
    phone = Column(String)
    rating = Column(Float)
    review_count = Column(Integer)

    available_days = relationship(
        "DoctorAvailability",
        cascade="all, delete-orphan",
        order_by="DoctorAvailability.day",
    )


class DoctorAvailability(Base):
    """A calendar date (operating timezone) on which a doctor accepts bookings."""
    __tablename__ = "doctor_availability"
    __table_args__ = (UniqueConstraint("doctor_id", "day", name="uq_doctor_availability_day"),)

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    day = Column(Date, nullable=False)
