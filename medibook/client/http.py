"""Async client for the booking REST API.

Every response is validated into a ``medibook.schemas`` model before it
reaches the caller; failures surface as ``TransportError`` or ``ApiError``.
No call is retried.
"""
import logging
from collections.abc import Iterable
from datetime import date, datetime
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from medibook.client.session import Session
from medibook.core import config
from medibook.errors import ApiError, TransportError
from medibook.scheduling.slots import format_instant
from medibook.schemas import (
    Appointment,
    AppointmentPage,
    AppointmentStatus,
    AppointmentUpdate,
    BookingRequest,
    Doctor,
    DoctorCreate,
    DoctorUpdate,
    LoginRequest,
    LoginResponse,
    SlotCheck,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

_DOCTORS = TypeAdapter(list[Doctor])
_APPOINTMENTS = TypeAdapter(list[Appointment])
_INSTANTS = TypeAdapter(list[str])


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        detail = payload.get('detail') or payload.get('message')
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
    return response.reason_phrase


class BookingApiClient:
    """Thin async wrapper over ``httpx.AsyncClient`` bound to one session."""

    def __init__(
        self,
        base_url: str | None = None,
        session: Session | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.session = session or Session()
        self._client = httpx.AsyncClient(
            base_url=base_url or config.API_BASE_URL,
            timeout=timeout or config.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> 'BookingApiClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.session.access_token:
            headers['Authorization'] = f'Bearer {self.session.access_token}'
        return headers

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning('%s %s timed out', method, url)
            raise TransportError(f'Request timed out: {method} {url}') from exc
        except httpx.RequestError as exc:
            logger.warning('%s %s failed: %s', method, url, exc)
            raise TransportError(f'Network error: {exc}') from exc

        if response.is_error:
            detail = _error_detail(response)
            logger.error('%s %s returned %s: %s', method, url, response.status_code, detail)
            raise ApiError(response.status_code, detail)
        return response

    @staticmethod
    def _parse(response: httpx.Response, adapter):
        try:
            return adapter.validate_python(response.json())
        except (ValueError, ValidationError) as exc:
            raise ApiError(response.status_code, 'Unexpected response from server.') from exc

    async def _get(self, url: str, adapter, **kwargs):
        return self._parse(await self._request('GET', url, **kwargs), adapter)

    # Auth -----------------------------------------------------------------

    async def login(self, email: str) -> Session:
        body = LoginRequest(email=email).model_dump(by_alias=True)
        response = await self._request('POST', '/auth/login', json=body)
        login = self._parse(response, TypeAdapter(LoginResponse))
        self.session = Session.from_login(login)
        return self.session

    # Doctors --------------------------------------------------------------

    async def get_doctors(self, include_availability: bool = True) -> list[Doctor]:
        params = {'include_availability': 'true'} if include_availability else None
        return await self._get('/doctors', _DOCTORS, params=params)

    async def get_doctor(self, doctor_id: str) -> Doctor:
        return await self._get(f'/doctors/{quote(doctor_id, safe="")}', TypeAdapter(Doctor))

    async def get_doctor_availability(self, doctor_id: str) -> list[str]:
        return await self._get(f'/doctors/{quote(doctor_id, safe="")}/availability', _INSTANTS)

    async def set_doctor_availability(self, doctor_id: str, dates: Iterable[date]) -> list[str]:
        body = {'dates': [day.isoformat() for day in dates]}
        response = await self._request('PUT', f'/doctors/{quote(doctor_id, safe="")}/availability', json=body)
        return self._parse(response, _INSTANTS)

    async def create_doctor(self, data: DoctorCreate) -> Doctor:
        response = await self._request('POST', '/doctors', json=data.model_dump(by_alias=True, exclude_none=True))
        return self._parse(response, TypeAdapter(Doctor))

    async def update_doctor(self, doctor_id: str, data: DoctorUpdate) -> Doctor:
        response = await self._request(
            'PUT',
            f'/doctors/{quote(doctor_id, safe="")}',
            json=data.model_dump(by_alias=True, exclude_unset=True),
        )
        return self._parse(response, TypeAdapter(Doctor))

    async def delete_doctor(self, doctor_id: str) -> None:
        await self._request('DELETE', f'/doctors/{quote(doctor_id, safe="")}')

    # Appointments ---------------------------------------------------------

    async def check_slot_available(self, doctor_id: str, instant: datetime | str) -> bool:
        stamp = instant if isinstance(instant, str) else format_instant(instant)
        url = f'/appointments/available/{quote(doctor_id, safe="")}/{quote(stamp, safe=":")}'
        check = await self._get(url, TypeAdapter(SlotCheck))
        return check.is_available

    async def book_appointment(self, request: BookingRequest) -> Appointment:
        body = request.model_dump(by_alias=True, mode='json')
        body['dateTime'] = format_instant(request.date_time)
        response = await self._request('POST', '/appointments', json=body)
        return self._parse(response, TypeAdapter(Appointment))

    async def get_user_appointments(self, user_id: str) -> list[Appointment]:
        if not user_id:
            return []
        return await self._get(f'/appointments/user/{quote(user_id, safe="")}', _APPOINTMENTS)

    async def update_appointment_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        body = StatusUpdate(status=status).model_dump(by_alias=True)
        response = await self._request('PUT', f'/appointments/{quote(appointment_id, safe="")}/status', json=body)
        return self._parse(response, TypeAdapter(Appointment))

    async def update_appointment(self, appointment_id: str, data: AppointmentUpdate) -> Appointment:
        body = data.model_dump(by_alias=True, exclude_none=True)
        response = await self._request('PUT', f'/appointments/{quote(appointment_id, safe="")}', json=body)
        return self._parse(response, TypeAdapter(Appointment))

    async def delete_appointment(self, appointment_id: str) -> None:
        await self._request('DELETE', f'/appointments/{quote(appointment_id, safe="")}')

    async def get_admin_appointments(
        self,
        limit: int | None = None,
        last_doc: str | None = None,
        status: AppointmentStatus | None = None,
    ) -> AppointmentPage:
        params = {}
        if limit:
            params['limit'] = str(limit)
        if last_doc:
            params['lastDoc'] = last_doc
        if status:
            params['status'] = status
        return await self._get('/appointments/admin', TypeAdapter(AppointmentPage), params=params or None)
