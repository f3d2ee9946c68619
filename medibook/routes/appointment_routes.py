import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.auth.dependencies import Actor, get_current_actor, require_admin
from medibook.core import config
from medibook.database import ensure_appointment_schema, get_db
from medibook.models.appointment import Appointment
from medibook.models.doctor import Doctor, DoctorAvailability
from medibook.routes.doctor_routes import database_unavailable, get_doctor_or_404
from medibook.scheduling.slots import (
    format_instant,
    is_cancellable,
    local_date,
    parse_instant,
    slot_instant,
    slot_label_for,
)
from medibook.schemas import (
    APPOINTMENT_STATUSES,
    Appointment as AppointmentResponse,
    AppointmentPage,
    AppointmentUpdate,
    BookingRequest,
    SlotCheck,
    StatusUpdate,
)

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

CANCELLED = 'cancelled'
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_naive_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(timezone.utc).replace(tzinfo=None)


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def serialize_appointment(appointment: Appointment, doctor_name: str | None = None) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        doctor_id=appointment.doctor_id,
        doctor_name=doctor_name,
        user_id=appointment.user_id,
        patient_name=appointment.patient_name,
        patient_email=appointment.patient_email,
        patient_phone=appointment.patient_phone or '',
        date=appointment.date,
        time=appointment.time,
        date_time=format_instant(appointment.date_time),
        reason=appointment.reason,
        status=appointment.status if appointment.status in APPOINTMENT_STATUSES else 'pending',
        created_at=format_instant(appointment.created_at) if appointment.created_at else None,
        updated_at=format_instant(appointment.updated_at) if appointment.updated_at else None,
    )


def doctor_names(doctor_ids: set[str], db: Session) -> dict[str, str]:
    if not doctor_ids:
        return {}
    rows = db.query(Doctor.id, Doctor.name).filter(Doctor.id.in_(doctor_ids)).all()
    return {doctor_id: name for doctor_id, name in rows}


def is_day_open(doctor_id: str, instant: datetime, db: Session) -> bool:
    return db.query(DoctorAvailability.id).filter(
        DoctorAvailability.doctor_id == doctor_id,
        DoctorAvailability.day == local_date(instant),
    ).first() is not None


def is_slot_taken(doctor_id: str, instant: datetime, db: Session, exclude_id: str | None = None) -> bool:
    query = db.query(Appointment.id).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date_time == to_naive_utc(instant),
        Appointment.status != CANCELLED,
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)
    return query.first() is not None


def is_slot_available(doctor_id: str, instant: datetime, db: Session) -> bool:
    if slot_label_for(instant) is None:
        return False
    if not is_day_open(doctor_id, instant, db):
        return False
    return not is_slot_taken(doctor_id, instant, db)


def get_appointment_or_404(appointment_id: str, db: Session) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        )
    return appointment


def ensure_owner_or_admin(appointment: Appointment, actor: Actor, action: str) -> None:
    if actor.is_admin or appointment.user_id == actor.user_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=f'Only the patient who booked this appointment can {action} it.',
    )


def ensure_slot_free(doctor_id: str, instant: datetime, db: Session, exclude_id: str | None = None) -> None:
    if is_slot_taken(doctor_id, instant, db, exclude_id=exclude_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This time is already booked.',
        )


@router.get('/available/{doctor_id}/{date_time}', response_model=SlotCheck)
def check_slot_available(doctor_id: str, date_time: str, db: Session = Depends(get_db)):
    try:
        instant = parse_instant(date_time)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='dateTime must be an ISO-8601 instant.',
        ) from exc

    ensure_database_ready()

    try:
        get_doctor_or_404(doctor_id, db)
        return SlotCheck(is_available=is_slot_available(doctor_id, instant, db))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: BookingRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    if not actor.is_admin and data.user_id != actor.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Appointments can only be booked for the signed-in user.',
        )

    instant = data.date_time
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)

    if instant != slot_instant(data.date, data.time):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='dateTime does not match the selected date and time.',
        )

    if instant <= utcnow():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointments must be scheduled in the future.',
        )

    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(data.doctor_id, db)

        if not is_day_open(doctor.id, instant, db):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='The doctor is not available on this date.',
            )

        # Read-then-write: a concurrent booking can still land between this check and the commit.
        ensure_slot_free(doctor.id, instant, db)

        appointment = Appointment(
            doctor_id=doctor.id,
            user_id=data.user_id,
            patient_name=data.patient_name,
            patient_email=data.patient_email,
            patient_phone=data.patient_phone,
            date=data.date.isoformat(),
            time=data.time,
            date_time=to_naive_utc(instant),
            reason=data.reason,
            status=data.status,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)

        logger.info('Booked appointment %s with doctor %s at %s', appointment.id, doctor.id, format_instant(instant))
        return serialize_appointment(appointment, doctor.name)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/user/{user_id}', response_model=list[AppointmentResponse])
def list_user_appointments(
    user_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    if not actor.is_admin and actor.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Patients can only view their own appointments.',
        )

    ensure_database_ready()

    try:
        appointments = db.query(Appointment).filter(
            Appointment.user_id == user_id,
        ).order_by(Appointment.date_time.asc()).all()
        names = doctor_names({appointment.doctor_id for appointment in appointments}, db)
        return [serialize_appointment(appointment, names.get(appointment.doctor_id)) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/admin', response_model=AppointmentPage)
def list_admin_appointments(
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    last_doc: str | None = Query(default=None, alias='lastDoc'),
    status_filter: str | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    del actor
    if status_filter is not None and status_filter not in APPOINTMENT_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid appointment status.',
        )

    ensure_database_ready()

    try:
        query = db.query(Appointment)
        if status_filter is not None:
            query = query.filter(Appointment.status == status_filter)

        if last_doc:
            cursor = db.query(Appointment).filter(Appointment.id == last_doc).first()
            if cursor is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail='Invalid pagination cursor.',
                )
            query = query.filter(
                or_(
                    Appointment.created_at < cursor.created_at,
                    and_(Appointment.created_at == cursor.created_at, Appointment.id < cursor.id),
                )
            )

        rows = query.order_by(Appointment.created_at.desc(), Appointment.id.desc()).limit(limit + 1).all()
        has_more = len(rows) > limit
        page = rows[:limit]
        names = doctor_names({appointment.doctor_id for appointment in page}, db)

        return AppointmentPage(
            appointments=[serialize_appointment(appointment, names.get(appointment.doctor_id)) for appointment in page],
            has_more=has_more,
            last_doc=page[-1].id if has_more else None,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: str,
    data: StatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(appointment_id, db)
        ensure_owner_or_admin(appointment, actor, 'update')

        if not actor.is_admin:
            if data.status != CANCELLED:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail='Patients can only cancel their appointments.',
                )
            if not is_cancellable(appointment.date_time, utcnow()):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=(
                        f'Appointments can only be cancelled at least {config.CANCELLATION_LEAD_HOURS} '
                        'hours before the scheduled time.'
                    ),
                )

        if appointment.status == CANCELLED and data.status != CANCELLED:
            ensure_slot_free(appointment.doctor_id, appointment.date_time, db, exclude_id=appointment.id)

        appointment.status = data.status
        db.commit()
        db.refresh(appointment)

        logger.info('%s set appointment %s to %s', actor.user_id, appointment.id, appointment.status)
        return serialize_appointment(appointment, doctor_names({appointment.doctor_id}, db).get(appointment.doctor_id))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    data: AppointmentUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(appointment_id, db)

        doctor_id = data.doctor_id or appointment.doctor_id
        if doctor_id != appointment.doctor_id:
            get_doctor_or_404(doctor_id, db)

        if data.status != CANCELLED and (doctor_id != appointment.doctor_id or appointment.status == CANCELLED):
            ensure_slot_free(doctor_id, appointment.date_time, db, exclude_id=appointment.id)

        if data.patient_name is not None and data.patient_name.strip():
            appointment.patient_name = data.patient_name.strip()
        if data.patient_email is not None:
            appointment.patient_email = data.patient_email
        appointment.doctor_id = doctor_id
        appointment.status = data.status
        db.commit()
        db.refresh(appointment)

        logger.info('%s edited appointment %s', actor.user_id, appointment.id)
        return serialize_appointment(appointment, doctor_names({doctor_id}, db).get(doctor_id))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(appointment_id, db)
        ensure_owner_or_admin(appointment, actor, 'delete')

        db.delete(appointment)
        db.commit()
        logger.info('%s deleted appointment %s', actor.user_id, appointment_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


