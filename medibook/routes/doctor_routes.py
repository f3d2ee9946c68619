import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from medibook.auth.dependencies import Actor, require_admin
from medibook.database import get_db
from medibook.models.appointment import Appointment
from medibook.models.doctor import Doctor, DoctorAvailability
from medibook.scheduling.slots import business_day_start, format_instant
from medibook.schemas import AvailabilityUpdate, Doctor as DoctorResponse, DoctorCreate, DoctorUpdate

router = APIRouter(tags=['doctors'])

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL.'


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.error('Database error: %s', exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def availability_instants(doctor: Doctor) -> list[str]:
    return [format_instant(business_day_start(entry.day)) for entry in doctor.available_days]


def serialize_doctor(doctor: Doctor, include_availability: bool = False) -> DoctorResponse:
    response = DoctorResponse.model_validate(doctor)
    if include_availability:
        response.availability = availability_instants(doctor)
    return response


def get_doctor_or_404(doctor_id: str, db: Session) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if doctor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Doctor not found.',
        )
    return doctor


@router.get('', response_model=list[DoctorResponse])
def list_doctors(
    include_availability: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(Doctor).order_by(Doctor.name.asc())
        if include_availability:
            query = query.options(selectinload(Doctor.available_days))
        return [serialize_doctor(doctor, include_availability) for doctor in query.all()]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(doctor_id: str, db: Session = Depends(get_db)):
    try:
        return serialize_doctor(get_doctor_or_404(doctor_id, db), include_availability=True)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{doctor_id}/availability', response_model=list[str])
def get_doctor_availability(doctor_id: str, db: Session = Depends(get_db)):
    try:
        return availability_instants(get_doctor_or_404(doctor_id, db))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.put('/{doctor_id}/availability', response_model=list[str])
def set_doctor_availability(
    doctor_id: str,
    data: AvailabilityUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    try:
        doctor = get_doctor_or_404(doctor_id, db)
        wanted_days = set(data.dates)
        doctor.available_days = [entry for entry in doctor.available_days if entry.day in wanted_days]
        existing_days = {entry.day for entry in doctor.available_days}
        for day in sorted(wanted_days - existing_days):
            doctor.available_days.append(DoctorAvailability(day=day))
        db.commit()
        db.refresh(doctor)
        logger.info('%s set %d available days for doctor %s', actor.user_id, len(wanted_days), doctor_id)
        return availability_instants(doctor)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('', response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(
    data: DoctorCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    try:
        doctor = Doctor(**data.model_dump())
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        logger.info('%s created doctor %s', actor.user_id, doctor.id)
        return serialize_doctor(doctor, include_availability=True)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/{doctor_id}', response_model=DoctorResponse)
def update_doctor(
    doctor_id: str,
    data: DoctorUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    try:
        doctor = get_doctor_or_404(doctor_id, db)
        for field_name, value in data.model_dump(exclude_unset=True).items():
            setattr(doctor, field_name, value)
        db.commit()
        db.refresh(doctor)
        logger.info('%s updated doctor %s', actor.user_id, doctor_id)
        return serialize_doctor(doctor, include_availability=True)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/{doctor_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_doctor(
    doctor_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    try:
        doctor = get_doctor_or_404(doctor_id, db)

        has_appointments = db.query(Appointment.id).filter(Appointment.doctor_id == doctor_id).first()
        if has_appointments:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Doctor has appointments and cannot be deleted.',
            )

        db.delete(doctor)
        db.commit()
        logger.info('%s deleted doctor %s', actor.user_id, doctor_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc
