import os
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('OPERATING_TIMEZONE', 'America/Panama')

from medibook.auth.dependencies import Actor  # noqa: E402
from medibook.client.session import Role, Session  # noqa: E402
from medibook.database import Base  # noqa: E402
from medibook.errors import ApiError  # noqa: E402
from medibook.models.appointment import Appointment as AppointmentRow  # noqa: E402
from medibook.models.doctor import Doctor as DoctorRow, DoctorAvailability  # noqa: E402
from medibook.models.user import User  # noqa: E402
from medibook.scheduling.slots import business_day_start, format_instant  # noqa: E402
from medibook.schemas import Appointment, AppointmentPage, Doctor  # noqa: E402

BOOKING_DAY = date(2025, 4, 25)


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[
        User.__table__, DoctorRow.__table__, DoctorAvailability.__table__, AppointmentRow.__table__,
    ])

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine, tables=[
            AppointmentRow.__table__, DoctorAvailability.__table__, DoctorRow.__table__, User.__table__,
        ])


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('medibook.routes.appointment_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def patient() -> Actor:
    return Actor(user_id='patient@example.com', role='user')


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id='admin@doctorbooking.com', role='admin')


@pytest.fixture
def session() -> Session:
    return Session(user_id='patient@example.com', role=Role.USER, access_token='token')


def add_doctor(db, name: str = 'Dr. Brown', specialty: str = 'Cardiology', days: tuple[date, ...] = ()) -> DoctorRow:
    doctor = DoctorRow(name=name, specialty=specialty, fee=50.0)
    doctor.available_days = [DoctorAvailability(day=day) for day in days]
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


def future_day(days_ahead: int = 10) -> date:
    return date.today() + timedelta(days=days_ahead)


def make_doctor(doctor_id: str = 'doc-1', days: tuple[date, ...] = (BOOKING_DAY,), **fields) -> Doctor:
    values = {
        'id': doctor_id,
        'name': 'Dr. Brown',
        'specialty': 'Cardiology',
        'fee': 50.0,
        'availability': [format_instant(business_day_start(day)) for day in days],
    }
    values.update(fields)
    return Doctor(**values)


def make_appointment(appointment_id: str = 'appt-1', instant: datetime | None = None, **fields) -> Appointment:
    instant = instant or datetime(2025, 4, 25, 15, 0, tzinfo=timezone.utc)
    values = {
        'id': appointment_id,
        'doctor_id': 'doc-1',
        'user_id': 'patient@example.com',
        'patient_name': 'Ana Diaz',
        'patient_email': 'ana@example.com',
        'patient_phone': '555-0100',
        'date': instant.date().isoformat(),
        'time': instant.strftime('%H:%M'),
        'date_time': format_instant(instant),
        'status': 'confirmed',
    }
    values.update(fields)
    return Appointment(**values)


class FakeBookingApi:
    """In-memory stand-in for ``BookingApiClient``.

    ``slot_results`` maps wire instants to a bool, an exception, or a list of
    those consumed one per call (the last entry repeats).
    """

    def __init__(self):
        self.slot_results: dict[str, object] = {}
        self.events: list[tuple[str, str]] = []
        self.created = []
        self.status_updates: list[tuple[str, str]] = []
        self.appointments: dict[str, Appointment] = {}
        self.create_error: Exception | None = None
        self.fetch_error: Exception | None = None
        self.pages: list[AppointmentPage] = []

    async def check_slot_available(self, doctor_id: str, instant: datetime) -> bool:
        stamp = format_instant(instant)
        self.events.append(('check', stamp))
        result = self.slot_results.get(stamp, True)
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def book_appointment(self, request) -> Appointment:
        self.events.append(('create', format_instant(request.date_time)))
        if self.create_error is not None:
            raise self.create_error
        self.created.append(request)
        appointment = Appointment(
            id=f'appt-{len(self.created)}',
            doctor_id=request.doctor_id,
            doctor_name='Dr. Brown',
            user_id=request.user_id,
            patient_name=request.patient_name,
            patient_email=request.patient_email,
            patient_phone=request.patient_phone,
            date=request.date.isoformat(),
            time=request.time,
            date_time=format_instant(request.date_time),
            reason=request.reason,
            status=request.status,
        )
        self.appointments[appointment.id] = appointment
        return appointment

    async def get_user_appointments(self, user_id: str) -> list[Appointment]:
        if self.fetch_error is not None:
            raise self.fetch_error
        return [appointment for appointment in self.appointments.values() if appointment.user_id == user_id]

    async def get_admin_appointments(self, limit=None, last_doc=None, status=None) -> AppointmentPage:
        self.events.append(('admin', last_doc or ''))
        return self.pages.pop(0)

    async def update_appointment_status(self, appointment_id: str, status: str) -> Appointment:
        self.status_updates.append((appointment_id, status))
        if appointment_id not in self.appointments:
            raise ApiError(404, 'Appointment not found.')
        updated = self.appointments[appointment_id].model_copy(update={'status': status})
        self.appointments[appointment_id] = updated
        return updated

    async def update_appointment(self, appointment_id: str, data) -> Appointment:
        updates = {key: value for key, value in data.model_dump(exclude_none=True).items()}
        updated = self.appointments[appointment_id].model_copy(update=updates)
        self.appointments[appointment_id] = updated
        return updated

    async def delete_appointment(self, appointment_id: str) -> None:
        self.events.append(('delete', appointment_id))
        self.appointments.pop(appointment_id, None)


@pytest.fixture
def fake_api() -> FakeBookingApi:
    return FakeBookingApi()
