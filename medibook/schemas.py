"""Wire models shared by the API routes and the HTTP client.

JSON on the wire is camelCase; Python attributes are snake_case.
"""

import re
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, StrictBool, field_validator
from pydantic.alias_generators import to_camel

from medibook.scheduling.slots import BUSINESS_HOURS, parse_instant

APPOINTMENT_STATUSES = ('pending', 'confirmed', 'cancelled')
MAX_REASON_LENGTH = 600
EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

AppointmentStatus = Literal['pending', 'confirmed', 'cancelled']


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError('Please enter a valid email address.')
    return normalized


def _required_text(value: str, label: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f'{label} is required.')
    return normalized


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SlotCheck(WireModel):
    is_available: StrictBool


class DoctorFields(WireModel):
    location: str | None = None
    bio: str | None = None
    photo_url: str | None = None
    email: str | None = None
    phone: str | None = None
    fee: float | None = None
    rating: float | None = None
    review_count: int | None = None

    @field_validator('fee', mode='before')
    @classmethod
    def coerce_fee(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return float(value) if value else None
        return value

    @field_validator('fee')
    @classmethod
    def validate_fee(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError('Fee must not be negative.')
        return value


class DoctorCreate(DoctorFields):
    name: str
    specialty: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _required_text(value, 'Name')

    @field_validator('specialty')
    @classmethod
    def validate_specialty(cls, value: str) -> str:
        return _required_text(value, 'Specialty')


class DoctorUpdate(DoctorFields):
    name: str | None = None
    specialty: str | None = None

    @field_validator('name', 'specialty')
    @classmethod
    def validate_not_blank(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _required_text(value, 'Field')


class Doctor(DoctorFields):
    id: str
    name: str
    specialty: str
    availability: list[str] | None = None


class AvailabilityUpdate(WireModel):
    dates: list[date]


class BookingRequest(WireModel):
    doctor_id: str
    user_id: str
    patient_name: str
    patient_email: str
    patient_phone: str
    date: date
    time: str
    date_time: datetime
    reason: str | None = None
    status: AppointmentStatus = 'confirmed'

    @field_validator('doctor_id', 'user_id')
    @classmethod
    def validate_ids(cls, value: str) -> str:
        return _required_text(value, 'Identifier')

    @field_validator('patient_name')
    @classmethod
    def validate_patient_name(cls, value: str) -> str:
        return _required_text(value, 'Patient name')

    @field_validator('patient_email')
    @classmethod
    def validate_patient_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator('patient_phone')
    @classmethod
    def validate_patient_phone(cls, value: str) -> str:
        return _required_text(value, 'Patient phone')

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        normalized = value.strip()
        if normalized not in BUSINESS_HOURS:
            raise ValueError('Appointments must start on a business-hour slot (08:00 to 16:00).')
        return normalized

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

        return normalized


class Appointment(WireModel):
    id: str
    doctor_id: str
    doctor_name: str | None = None
    user_id: str | None = None
    patient_name: str
    patient_email: str
    patient_phone: str = ''
    date: str
    time: str
    date_time: str | None = None
    reason: str | None = None
    status: AppointmentStatus
    created_at: str | None = None
    updated_at: str | None = None

    def instant(self) -> datetime:
        """Scheduled instant, falling back to ``date`` + ``time`` read as UTC."""
        if self.date_time:
            return parse_instant(self.date_time)
        return parse_instant(f'{self.date}T{self.time}')


class StatusUpdate(WireModel):
    status: AppointmentStatus


class AppointmentUpdate(WireModel):
    patient_name: str | None = None
    patient_email: str | None = None
    status: AppointmentStatus = 'pending'
    doctor_id: str | None = None

    @field_validator('status', mode='before')
    @classmethod
    def default_status(cls, value):
        if value not in APPOINTMENT_STATUSES:
            return 'pending'
        return value

    @field_validator('patient_email')
    @classmethod
    def validate_patient_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_email(value)


class AppointmentPage(WireModel):
    appointments: list[Appointment]
    has_more: bool
    last_doc: str | None = None


class LoginRequest(WireModel):
    email: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class LoginResponse(WireModel):
    access_token: str
    token_type: str = 'bearer'
    user_id: str
    role: Literal['user', 'admin']
