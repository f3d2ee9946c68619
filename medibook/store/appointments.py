"""Client-side cache of appointments.

The store is the only code that mutates its ``appointments`` list. Mutating
calls are serialized: a second one while the first is in flight raises
``StoreBusyError``.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from medibook.client.http import BookingApiClient
from medibook.client.session import Session
from medibook.core import config
from medibook.errors import ApiError, BookingError, CancellationWindowError, SlotConflictError, StoreBusyError
from medibook.scheduling.slots import is_cancellable
from medibook.schemas import Appointment, AppointmentStatus, AppointmentUpdate, BookingRequest

logger = logging.getLogger(__name__)


class AppointmentStore:
    def __init__(self, api: BookingApiClient, session: Session, lead_hours: int | None = None):
        self.api = api
        self.session = session
        self.lead_hours = config.CANCELLATION_LEAD_HOURS if lead_hours is None else lead_hours
        self.appointments: list[Appointment] = []
        self.loading = False
        self.error: str | None = None
        self.has_more = False
        self.last_doc: str | None = None

    @asynccontextmanager
    async def _operation(self, failure_message: str):
        if self.loading:
            raise StoreBusyError()
        self.loading = True
        self.error = None
        try:
            yield
        except SlotConflictError:
            raise
        except BookingError as exc:
            self.error = exc.message or failure_message
            raise
        finally:
            self.loading = False

    def get(self, appointment_id: str) -> Appointment | None:
        for appointment in self.appointments:
            if appointment.id == appointment_id:
                return appointment
        return None

    def add(self, appointment: Appointment) -> None:
        for index, cached in enumerate(self.appointments):
            if cached.id == appointment.id:
                self.appointments[index] = appointment
                return
        self.appointments.append(appointment)

    def by_status(self, status: AppointmentStatus) -> list[Appointment]:
        return [appointment for appointment in self.appointments if appointment.status == status]

    async def fetch_user_appointments(self, user_id: str | None = None) -> list[Appointment]:
        user_id = user_id or self.session.require_user_id()
        try:
            async with self._operation('Failed to fetch appointments'):
                self.appointments = await self.api.get_user_appointments(user_id)
        except StoreBusyError:
            logger.debug('Skipping appointment fetch; another operation is in progress')
        except BookingError as exc:
            logger.warning('Failed to fetch appointments for %s: %s', user_id, exc)
        return self.appointments

    async def fetch_all_appointments(
        self,
        status: AppointmentStatus | None = None,
        limit: int | None = None,
        next_page: bool = False,
    ) -> list[Appointment]:
        """Load the admin listing; ``next_page`` appends the page after ``last_doc``."""
        cursor = self.last_doc if next_page else None
        try:
            async with self._operation('Failed to fetch all appointments'):
                page = await self.api.get_admin_appointments(limit=limit, last_doc=cursor, status=status)
                if next_page:
                    for appointment in page.appointments:
                        self.add(appointment)
                else:
                    self.appointments = list(page.appointments)
                self.has_more = page.has_more
                self.last_doc = page.last_doc
        except StoreBusyError:
            logger.debug('Skipping admin fetch; another operation is in progress')
        except BookingError as exc:
            logger.warning('Failed to fetch admin appointments: %s', exc)
        return self.appointments

    async def book(self, request: BookingRequest) -> Appointment:
        """Create ``request``; a 409 from the server raises ``SlotConflictError``
        without recording an error or touching the cache."""
        async with self._operation('Failed to book appointment'):
            try:
                appointment = await self.api.book_appointment(request)
            except ApiError as exc:
                if exc.status_code == 409:
                    raise SlotConflictError() from exc
                raise
            self.add(appointment)
        return appointment

    async def cancel_appointment(self, appointment_id: str, now: datetime | None = None) -> Appointment:
        appointment = self.get(appointment_id)
        if appointment is None:
            raise BookingError('Appointment not found.')
        if appointment.status == 'cancelled':
            return appointment

        if not is_cancellable(appointment.instant(), now or datetime.now(timezone.utc), self.lead_hours):
            raise CancellationWindowError(self.lead_hours)

        return await self.update_status(appointment_id, 'cancelled')

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        async with self._operation(f'Failed to update appointment status to {status}'):
            updated = await self.api.update_appointment_status(appointment_id, status)
            self.add(updated)
        return updated

    async def update_details(self, appointment_id: str, data: AppointmentUpdate) -> Appointment:
        async with self._operation('Failed to update appointment'):
            updated = await self.api.update_appointment(appointment_id, data)
            self.add(updated)
        return updated

    async def delete_appointment(self, appointment_id: str) -> None:
        async with self._operation('Failed to delete appointment'):
            await self.api.delete_appointment(appointment_id)
            self.appointments = [
                appointment for appointment in self.appointments if appointment.id != appointment_id
            ]
