import asyncio
import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from enum import Enum

from medibook.client.http import BookingApiClient
from medibook.errors import BookingError, StoreBusyError
from medibook.scheduling.slots import local_date, parse_instant
from medibook.schemas import Doctor, DoctorCreate, DoctorUpdate

logger = logging.getLogger(__name__)


class AvailabilityFilter(str, Enum):
    ANY = 'any'
    TODAY = 'today'
    THIS_WEEK = 'this-week'
    NEXT_AVAILABLE = 'next-available'


def _instants(entries: Iterable[str]) -> list[datetime]:
    instants = []
    for entry in entries:
        try:
            instants.append(parse_instant(entry))
        except ValueError:
            logger.warning('Ignoring unparseable availability entry %r', entry)
    return instants


def matches_availability(entries: Iterable[str], selected: AvailabilityFilter, now: datetime) -> bool:
    if selected is AvailabilityFilter.ANY:
        return True

    instants = _instants(entries)
    today = local_date(now)

    if selected is AvailabilityFilter.TODAY:
        return any(local_date(instant) == today for instant in instants)

    if selected is AvailabilityFilter.THIS_WEEK:
        # Weeks start on Sunday.
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)
        week_end = week_start + timedelta(days=6)
        return any(week_start <= local_date(instant) <= week_end for instant in instants)

    return any(instant > now for instant in instants)


class DoctorStore:
    """Doctors plus a ``doctor_id -> availability`` map, with list filters."""

    def __init__(self, api: BookingApiClient):
        self.api = api
        self.doctors: list[Doctor] = []
        self.filtered_doctors: list[Doctor] = []
        self.selected_specialties: list[str] = []
        self.selected_availability = AvailabilityFilter.ANY
        self.availability: dict[str, list[str]] = {}
        self.loading = False
        self.error: str | None = None

    def availability_for(self, doctor: Doctor) -> list[str]:
        if doctor.availability:
            return list(doctor.availability)
        return list(self.availability.get(doctor.id, []))

    def get(self, doctor_id: str) -> Doctor | None:
        for doctor in self.doctors:
            if doctor.id == doctor_id:
                return doctor
        return None

    async def fetch_doctors(self) -> list[Doctor]:
        if self.loading:
            return self.doctors

        self.loading = True
        self.error = None
        try:
            doctors = await self.api.get_doctors(include_availability=True)
        except BookingError as exc:
            logger.warning('Failed to fetch doctors: %s', exc)
            self.error = exc.message
            return self.doctors
        finally:
            self.loading = False

        self.doctors = doctors
        self.availability = {
            doctor.id: list(doctor.availability) for doctor in doctors if doctor.availability is not None
        }
        self.apply_filters()

        missing = [doctor.id for doctor in doctors if doctor.availability is None]
        if missing:
            await self.fetch_availabilities(missing)
        return self.doctors

    async def fetch_availabilities(self, doctor_ids: list[str]) -> dict[str, list[str]]:
        if not doctor_ids:
            return self.availability

        async def fetch_one(doctor_id: str) -> list[str]:
            try:
                return await self.api.get_doctor_availability(doctor_id)
            except BookingError as exc:
                logger.warning('Failed to fetch availability for doctor %s: %s', doctor_id, exc)
                return []

        results = await asyncio.gather(*(fetch_one(doctor_id) for doctor_id in doctor_ids))
        self.availability.update(zip(doctor_ids, results))
        self.apply_filters()
        return self.availability

    def set_availability(self, doctor_id: str, entries: list[str]) -> None:
        self.availability[doctor_id] = list(entries)
        self.apply_filters()

    def specialties(self) -> list[str]:
        return sorted({doctor.specialty for doctor in self.doctors if doctor.specialty})

    def filter_by_specialty(self, specialties: list[str]) -> list[Doctor]:
        self.selected_specialties = list(specialties)
        return self.apply_filters()

    def filter_by_availability(self, selected: AvailabilityFilter) -> list[Doctor]:
        self.selected_availability = AvailabilityFilter(selected)
        return self.apply_filters()

    def reset_filters(self) -> list[Doctor]:
        self.selected_specialties = []
        self.selected_availability = AvailabilityFilter.ANY
        return self.apply_filters()

    def apply_filters(self, now: datetime | None = None) -> list[Doctor]:
        now = now or datetime.now(timezone.utc)
        filtered = list(self.doctors)

        if self.selected_specialties:
            filtered = [doctor for doctor in filtered if doctor.specialty in self.selected_specialties]

        if self.selected_availability is not AvailabilityFilter.ANY:
            filtered = [
                doctor for doctor in filtered
                if matches_availability(self.availability_for(doctor), self.selected_availability, now)
            ]

        self.filtered_doctors = filtered
        return filtered

    async def _mutate(self, operation):
        if self.loading:
            raise StoreBusyError()
        self.loading = True
        self.error = None
        try:
            return await operation()
        except BookingError as exc:
            self.error = exc.message
            raise
        finally:
            self.loading = False

    async def create_doctor(self, data: DoctorCreate) -> Doctor:
        doctor = await self._mutate(lambda: self.api.create_doctor(data))
        self.doctors.append(doctor)
        if doctor.availability is not None:
            self.availability[doctor.id] = list(doctor.availability)
        self.apply_filters()
        return doctor

    async def update_doctor(self, doctor_id: str, data: DoctorUpdate) -> Doctor:
        doctor = await self._mutate(lambda: self.api.update_doctor(doctor_id, data))
        self.doctors = [doctor if cached.id == doctor_id else cached for cached in self.doctors]
        self.apply_filters()
        return doctor

    async def delete_doctor(self, doctor_id: str) -> None:
        await self._mutate(lambda: self.api.delete_doctor(doctor_id))
        self.doctors = [doctor for doctor in self.doctors if doctor.id != doctor_id]
        self.availability.pop(doctor_id, None)
        self.apply_filters()

    async def update_availability(self, doctor_id: str, dates: list[date]) -> list[str]:
        entries = await self._mutate(lambda: self.api.set_doctor_availability(doctor_id, dates))
        self.doctors = [
            doctor.model_copy(update={'availability': entries}) if doctor.id == doctor_id else doctor
            for doctor in self.doctors
        ]
        self.set_availability(doctor_id, entries)
        return entries
