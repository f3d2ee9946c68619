"""Commit a new appointment after a last availability check.

The final check and the create call are two separate round trips, so a
second writer can still take the slot in between. The server repeats the
same read-then-write check and answers 409, which the appointment store
reports as a conflict too. Neither side holds a lock on (doctor, date, time).
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime

from pydantic import ValidationError

from medibook.client.http import BookingApiClient
from medibook.client.session import Session
from medibook.errors import BookingError, SlotConflictError
from medibook.scheduling.slots import format_instant, operating_zone, slot_instant
from medibook.schemas import Appointment, AppointmentStatus, BookingRequest
from medibook.store.appointments import AppointmentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatientDetails:
    name: str
    email: str
    phone: str
    reason: str | None = None


@dataclass(frozen=True)
class BookingConfirmation:
    appointment: Appointment
    doctor_id: str
    doctor_name: str | None
    day: date
    time: str
    instant: datetime

    @property
    def display(self) -> str:
        """E.g. ``April 25, 2025 at 10:00 AM`` in the operating timezone."""
        local = self.instant.astimezone(operating_zone())
        hour = local.hour % 12 or 12
        period = 'AM' if local.hour < 12 else 'PM'
        return f'{local:%B} {local.day}, {local.year} at {hour}:{local.minute:02d} {period}'


class BookingWriter:
    def __init__(self, api: BookingApiClient, store: AppointmentStore, session: Session):
        self.api = api
        self.store = store
        self.session = session

    def build_request(
        self,
        doctor_id: str,
        day: date,
        label: str,
        patient: PatientDetails,
        status: AppointmentStatus = 'confirmed',
    ) -> BookingRequest:
        user_id = self.session.require_user_id()
        try:
            return BookingRequest(
                doctor_id=doctor_id,
                user_id=user_id,
                patient_name=patient.name,
                patient_email=patient.email,
                patient_phone=patient.phone,
                date=day,
                time=label,
                date_time=slot_instant(day, label),
                reason=patient.reason,
                status=status,
            )
        except ValidationError as exc:
            message = '; '.join(error['msg'] for error in exc.errors())
            raise BookingError(message) from exc

    async def book(
        self,
        doctor_id: str,
        day: date,
        label: str,
        patient: PatientDetails,
        doctor_name: str | None = None,
        status: AppointmentStatus = 'confirmed',
    ) -> BookingConfirmation:
        request = self.build_request(doctor_id, day, label, patient, status)
        instant = request.date_time

        if not await self.api.check_slot_available(doctor_id, instant):
            logger.info('Slot %s for doctor %s was taken before submit', format_instant(instant), doctor_id)
            raise SlotConflictError()

        appointment = await self.store.book(request)
        logger.info('Booked %s with doctor %s at %s', appointment.id, doctor_id, format_instant(instant))
        return BookingConfirmation(
            appointment=appointment,
            doctor_id=doctor_id,
            doctor_name=doctor_name or appointment.doctor_name,
            day=day,
            time=label,
            instant=instant,
        )
