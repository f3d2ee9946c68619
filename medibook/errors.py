"""Errors raised by the client-side booking code.

Backend routes report failures with ``fastapi.HTTPException``; everything
that runs on the client side of the HTTP boundary raises one of these so the
caller can turn it into a user-facing message.
"""

SLOT_CONFLICT_MESSAGE = 'Sorry, this time slot was just booked by someone else. Please select another time.'
CANCELLATION_WINDOW_MESSAGE = 'Appointments can only be cancelled at least {hours} hours before the scheduled time.'


class BookingError(Exception):
    """Base class for client-side booking failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransportError(BookingError):
    """The request never produced an HTTP response (network failure or timeout)."""


class ApiError(BookingError):
    """The backend answered with a non-2xx status or an unreadable body."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f'{status_code}: {detail}')
        self.status_code = status_code
        self.detail = detail


class SlotConflictError(BookingError):
    def __init__(self, message: str = SLOT_CONFLICT_MESSAGE):
        super().__init__(message)


class MissingIdentityError(BookingError):
    """No current user id; callers send the user to sign-in."""

    def __init__(self, message: str = 'Sign in to continue.'):
        super().__init__(message)


class CancellationWindowError(BookingError):
    def __init__(self, lead_hours: int):
        super().__init__(CANCELLATION_WINDOW_MESSAGE.format(hours=lead_hours))
        self.lead_hours = lead_hours


class StoreBusyError(BookingError):
    def __init__(self, message: str = 'Operation in progress'):
        super().__init__(message)
