"""State machine behind one booking attempt.

selecting-date -> selecting-slot -> entering-details -> submitting ->
success, or back to selecting-slot on a conflict, or back to
entering-details on any other failure. ``close()`` is allowed from any state.
"""

import logging
from datetime import date, datetime, timezone
from enum import Enum

from medibook.booking.writer import BookingConfirmation, BookingWriter, PatientDetails
from medibook.errors import BookingError, MissingIdentityError, SlotConflictError, StoreBusyError
from medibook.scheduling.resolver import AvailabilityResolver, SlotPartition
from medibook.scheduling.slots import availability_dates, local_date
from medibook.schemas import Doctor

logger = logging.getLogger(__name__)

BOOKING_FAILED_MESSAGE = 'Sorry, there was an error booking your appointment. Please try again.'


class BookingStep(str, Enum):
    SELECTING_DATE = 'selecting-date'
    SELECTING_SLOT = 'selecting-slot'
    ENTERING_DETAILS = 'entering-details'
    SUBMITTING = 'submitting'
    SUCCESS = 'success'
    CLOSED = 'closed'


class InvalidStepError(RuntimeError):
    pass


class BookingFlow:
    def __init__(
        self,
        doctor: Doctor,
        availability: list[str],
        resolver: AvailabilityResolver,
        writer: BookingWriter,
    ):
        self.doctor = doctor
        self.availability = list(availability)
        self.resolver = resolver
        self.writer = writer

        self.step = BookingStep.SELECTING_DATE
        self.selected_date: date | None = None
        self.selected_slot: str | None = None
        self.partition: SlotPartition | None = None
        self.confirmation: BookingConfirmation | None = None
        self.message: str | None = None
        self.sign_in_required = False
        self.busy = False
        self._date_generation = 0

    def _require(self, *steps: BookingStep) -> None:
        if self.step not in steps:
            allowed = ', '.join(step.value for step in steps)
            raise InvalidStepError(f'Expected step {allowed}, flow is at {self.step.value}')

    def is_selectable(self, day: date, now: datetime | None = None) -> bool:
        today = local_date(now or datetime.now(timezone.utc))
        return day >= today and day in availability_dates(self.availability)

    async def select_date(self, day: date, now: datetime | None = None) -> SlotPartition | None:
        """Select ``day`` and load its slots.

        Returns None when the day cannot be booked or when a newer selection
        replaced this one before its checks finished.
        """
        self._require(BookingStep.SELECTING_DATE, BookingStep.SELECTING_SLOT, BookingStep.ENTERING_DETAILS)
        if not self.is_selectable(day, now):
            return None

        self.selected_date = day
        self.selected_slot = None
        self.partition = None
        self.message = None
        self.step = BookingStep.SELECTING_SLOT
        return await self._load_slots(day)

    async def _load_slots(self, day: date) -> SlotPartition | None:
        self._date_generation += 1
        generation = self._date_generation
        self.busy = True
        try:
            partition = await self.resolver.resolve(self.doctor.id, self.availability, day)
        finally:
            if generation == self._date_generation:
                self.busy = False

        if generation != self._date_generation or self.selected_date != day:
            logger.debug('Discarding stale slot results for %s', day)
            return None

        self.partition = partition
        return partition

    def select_slot(self, label: str) -> None:
        self._require(BookingStep.SELECTING_SLOT)
        if self.partition is None or not self.partition.is_available(label):
            raise InvalidStepError(f'{label} is not an available slot')
        self.selected_slot = label
        self.message = None
        self.step = BookingStep.ENTERING_DETAILS

    def back(self) -> None:
        if self.step is BookingStep.SELECTING_SLOT:
            self._date_generation += 1
            self.busy = False
            self.selected_date = None
            self.partition = None
            self.step = BookingStep.SELECTING_DATE
        elif self.step is BookingStep.ENTERING_DETAILS:
            self.selected_slot = None
            self.step = BookingStep.SELECTING_SLOT

    async def submit(self, patient: PatientDetails) -> BookingConfirmation | None:
        if self.step is BookingStep.SUBMITTING:
            raise StoreBusyError()
        self._require(BookingStep.ENTERING_DETAILS)

        self.step = BookingStep.SUBMITTING
        self.busy = True
        self.message = None
        failure: BookingError | None = None
        try:
            confirmation = await self.writer.book(
                self.doctor.id,
                self.selected_date,
                self.selected_slot,
                patient,
                doctor_name=self.doctor.name,
            )
        except BookingError as exc:
            failure = exc
        finally:
            self.busy = False

        if self.step is BookingStep.CLOSED:
            # close() during the request wins; the outcome is only logged.
            if failure is None:
                self.confirmation = confirmation
                return confirmation
            logger.debug('Flow closed during submit for doctor %s: %s', self.doctor.id, failure)
            return None

        if isinstance(failure, SlotConflictError):
            self.message = failure.message
            self.selected_slot = None
            self.step = BookingStep.SELECTING_SLOT
            await self._load_slots(self.selected_date)
            return None
        if isinstance(failure, MissingIdentityError):
            self.sign_in_required = True
            self.step = BookingStep.ENTERING_DETAILS
            return None
        if failure is not None:
            logger.warning('Booking failed for doctor %s: %s', self.doctor.id, failure)
            self.message = BOOKING_FAILED_MESSAGE
            self.step = BookingStep.ENTERING_DETAILS
            return None

        self.confirmation = confirmation
        self.step = BookingStep.SUCCESS
        return confirmation

    def close(self) -> None:
        self._date_generation += 1
        self.step = BookingStep.CLOSED
        self.selected_date = None
        self.selected_slot = None
        self.partition = None
        self.busy = False
