from datetime import date

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from conftest import add_doctor, future_day
from medibook.auth.dependencies import Actor
from medibook.models.doctor import DoctorAvailability
from medibook.routes.appointment_routes import create_appointment
from medibook.routes.doctor_routes import (
    create_doctor,
    delete_doctor,
    get_doctor,
    get_doctor_availability,
    list_doctors,
    set_doctor_availability,
    update_doctor,
)
from medibook.scheduling.slots import slot_instant
from medibook.schemas import AvailabilityUpdate, BookingRequest, DoctorCreate, DoctorUpdate


def test_doctor_create_request_coerces_fee_and_requires_name() -> None:
    request = DoctorCreate(name=' Dr. Brown ', specialty='Cardiology', fee='75')

    assert request.name == 'Dr. Brown'
    assert request.fee == 75.0

    with pytest.raises(ValidationError):
        DoctorCreate(name='   ', specialty='Cardiology')
    with pytest.raises(ValidationError):
        DoctorCreate(name='Dr. Brown', specialty='Cardiology', fee=-5)


def test_availability_is_reported_as_business_day_start_in_utc(db) -> None:
    doctor = add_doctor(db, days=(date(2025, 4, 26), date(2025, 4, 25)))

    assert get_doctor_availability(doctor.id, db=db) == ['2025-04-25T13:00:00Z', '2025-04-26T13:00:00Z']


def test_list_doctors_includes_availability_only_when_asked(db) -> None:
    add_doctor(db, name='Dr. Grey', specialty='Neurology')
    add_doctor(db, name='Dr. Brown', days=(date(2025, 4, 25),))

    with_availability = list_doctors(include_availability=True, db=db)
    without_availability = list_doctors(include_availability=False, db=db)

    assert [doctor.name for doctor in with_availability] == ['Dr. Brown', 'Dr. Grey']
    assert with_availability[0].availability == ['2025-04-25T13:00:00Z']
    assert with_availability[1].availability == []
    assert without_availability[0].availability is None


def test_get_doctor_returns_404_for_unknown_id(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_doctor('missing', db=db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Doctor not found.'


def test_set_doctor_availability_replaces_days(db, admin: Actor) -> None:
    doctor = add_doctor(db, days=(date(2025, 4, 25), date(2025, 4, 26)))

    entries = set_doctor_availability(
        doctor.id,
        AvailabilityUpdate(dates=[date(2025, 4, 26), date(2025, 4, 28)]),
        db=db,
        actor=admin,
    )

    assert entries == ['2025-04-26T13:00:00Z', '2025-04-28T13:00:00Z']
    assert db.query(DoctorAvailability).count() == 2


def test_create_and_update_doctor(db, admin: Actor) -> None:
    created = create_doctor(DoctorCreate(name='Dr. Brown', specialty='Cardiology', fee=50), db=db, actor=admin)
    updated = update_doctor(created.id, DoctorUpdate(location='Room 4'), db=db, actor=admin)

    assert created.availability == []
    assert updated.location == 'Room 4'
    assert updated.fee == 50.0
    assert updated.specialty == 'Cardiology'


def test_delete_doctor_with_appointments_is_rejected(db, admin: Actor, patient: Actor) -> None:
    day = future_day()
    doctor = add_doctor(db, days=(day,))
    create_appointment(
        BookingRequest(
            doctor_id=doctor.id,
            user_id=patient.user_id,
            patient_name='Ana Diaz',
            patient_email='ana@example.com',
            patient_phone='555-0100',
            date=day,
            time='09:00',
            date_time=slot_instant(day, '09:00'),
        ),
        db=db,
        actor=patient,
    )

    with pytest.raises(HTTPException) as exception_info:
        delete_doctor(doctor.id, db=db, actor=admin)

    assert exception_info.value.status_code == 409


def test_delete_doctor_removes_availability(db, admin: Actor) -> None:
    doctor = add_doctor(db, days=(date(2025, 4, 25),))

    delete_doctor(doctor.id, db=db, actor=admin)

    assert list_doctors(include_availability=False, db=db) == []
    assert db.query(DoctorAvailability).count() == 0
