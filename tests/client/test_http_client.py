import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest
import respx

from conftest import BOOKING_DAY
from medibook.client.http import BookingApiClient
from medibook.client.session import Role, Session
from medibook.errors import ApiError, TransportError
from medibook.schemas import BookingRequest

BASE = 'http://booking.test'
TEN_AM = datetime(2025, 4, 25, 15, 0, tzinfo=timezone.utc)

APPOINTMENT_JSON = {
    'id': 'appt-1',
    'doctorId': 'doc-1',
    'doctorName': 'Dr. Brown',
    'userId': 'patient@example.com',
    'patientName': 'Ana Diaz',
    'patientEmail': 'ana@example.com',
    'patientPhone': '555-0100',
    'date': '2025-04-25',
    'time': '10:00',
    'dateTime': '2025-04-25T15:00:00Z',
    'status': 'confirmed',
}


def _run(coroutine_factory):
    async def scenario():
        session = Session(user_id='patient@example.com', role=Role.USER, access_token='token-123')
        async with BookingApiClient(base_url=BASE, session=session) as client:
            return await coroutine_factory(client)

    return asyncio.run(scenario())


def test_check_slot_available_reads_flag() -> None:
    with respx.mock(base_url=BASE) as m:
        route = m.get('/appointments/available/doc-1/2025-04-25T15:00:00Z').respond(200, json={'isAvailable': False})

        assert _run(lambda client: client.check_slot_available('doc-1', TEN_AM)) is False
        assert route.calls.last.request.headers['Authorization'] == 'Bearer token-123'


def test_check_slot_available_rejects_malformed_body() -> None:
    with respx.mock(base_url=BASE) as m:
        m.get('/appointments/available/doc-1/2025-04-25T15:00:00Z').respond(200, json={'isAvailable': 'yes'})

        with pytest.raises(ApiError) as exception_info:
            _run(lambda client: client.check_slot_available('doc-1', TEN_AM))

    assert exception_info.value.detail == 'Unexpected response from server.'


def test_error_status_surfaces_server_detail() -> None:
    with respx.mock(base_url=BASE) as m:
        m.get('/appointments/available/missing/2025-04-25T15:00:00Z').respond(404, json={'detail': 'Doctor not found.'})

        with pytest.raises(ApiError) as exception_info:
            _run(lambda client: client.check_slot_available('missing', TEN_AM))

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Doctor not found.'


def test_timeout_becomes_transport_error() -> None:
    with respx.mock(base_url=BASE) as m:
        m.get('/doctors').mock(side_effect=httpx.ConnectTimeout)

        with pytest.raises(TransportError):
            _run(lambda client: client.get_doctors())


def test_get_doctors_requests_embedded_availability() -> None:
    doctors = [{'id': 'doc-1', 'name': 'Dr. Brown', 'specialty': 'Cardiology', 'availability': ['2025-04-25T13:00:00Z']}]
    with respx.mock(base_url=BASE) as m:
        route = m.get('/doctors', params={'include_availability': 'true'}).respond(200, json=doctors)

        result = _run(lambda client: client.get_doctors())

    assert route.called
    assert result[0].availability == ['2025-04-25T13:00:00Z']


def test_book_appointment_posts_camel_case_body() -> None:
    request = BookingRequest(
        doctor_id='doc-1',
        user_id='patient@example.com',
        patient_name='Ana Diaz',
        patient_email='ana@example.com',
        patient_phone='555-0100',
        date=BOOKING_DAY,
        time='10:00',
        date_time=TEN_AM,
    )
    with respx.mock(base_url=BASE) as m:
        route = m.post('/appointments').respond(201, json=APPOINTMENT_JSON)

        appointment = _run(lambda client: client.book_appointment(request))

    body = json.loads(route.calls.last.request.content)
    assert body['doctorId'] == 'doc-1'
    assert body['dateTime'] == '2025-04-25T15:00:00Z'
    assert body['date'] == '2025-04-25'
    assert body['status'] == 'confirmed'
    assert appointment.id == 'appt-1'
    assert appointment.doctor_name == 'Dr. Brown'


def test_server_conflict_is_an_api_error() -> None:
    with respx.mock(base_url=BASE) as m:
        m.put('/appointments/appt-1/status').respond(409, json={'detail': 'This time is already booked.'})

        with pytest.raises(ApiError) as exception_info:
            _run(lambda client: client.update_appointment_status('appt-1', 'confirmed'))

    assert exception_info.value.status_code == 409


def test_admin_listing_sends_cursor() -> None:
    with respx.mock(base_url=BASE) as m:
        route = m.get('/appointments/admin', params={'limit': '2', 'lastDoc': 'appt-9', 'status': 'pending'}).respond(
            200, json={'appointments': [APPOINTMENT_JSON], 'hasMore': False, 'lastDoc': None},
        )

        page = _run(lambda client: client.get_admin_appointments(limit=2, last_doc='appt-9', status='pending'))

    assert route.called
    assert page.has_more is False
    assert page.appointments[0].instant() == TEN_AM


def test_user_appointments_without_id_skip_the_request() -> None:
    with respx.mock(base_url=BASE, assert_all_called=False) as m:
        assert _run(lambda client: client.get_user_appointments('')) == []

    assert not m.calls


def test_login_replaces_session() -> None:
    with respx.mock(base_url=BASE) as m:
        m.post('/auth/login').respond(
            200, json={'accessToken': 'jwt', 'tokenType': 'bearer', 'userId': 'admin@doctorbooking.com', 'role': 'admin'},
        )

        session = _run(lambda client: client.login('admin@doctorbooking.com'))

    assert session.is_admin is True
    assert session.access_token == 'jwt'
