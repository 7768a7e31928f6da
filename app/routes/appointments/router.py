from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
from datetime import date, datetime
import logging

from app.core.errors import ClinicError
from app.core.roles import require
from app.database import get_db
from app.models.all_models import (
    User, Patient, Appointment, AppointmentStatus, as_clinic_time, clinic_now
)
from app.routes.patients.router import sanitize_input
from app.routes.utils.security import http_error, require_permission
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentUpdate,
    AppointmentCancel,
    AppointmentCheckIn,
    AppointmentResponse,
)
from app.schemas.visit import VisitResponse
from app.services import audit, visits as visit_service
from app.services.notifications import NotificationService, get_notifier

router = APIRouter(prefix="/appointments", tags=["appointments"])
logger = logging.getLogger(__name__)

def _get_appointment(db: Session, appointment_id: UUID, current_user: User) -> Appointment:
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.clinic_id == current_user.clinic_id
    ).first()
    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Appointment not found"
        )
    return appointment

def _ensure_open(appointment: Appointment) -> None:
    if appointment.status != AppointmentStatus.SCHEDULED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Appointment is already {appointment.status.value.lower()}"
        )

def reminder_message(appointment: Appointment, clinic_name: str) -> str:
    when = f"{appointment.appointment_date.strftime('%d %b %Y')} at {appointment.appointment_time.strftime('%H:%M')}"
    return f"Hello {appointment.patient.name}, this is a reminder of your appointment at {clinic_name} on {when}."

@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(
    on_date: Optional[date] = Query(None, alias="date"),
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(require_permission("appointments.view")),
    db: Session = Depends(get_db)
):
    query = db.query(Appointment).filter(Appointment.clinic_id == current_user.clinic_id)
    if on_date:
        query = query.filter(Appointment.appointment_date == on_date)
    if status_filter:
        query = query.filter(Appointment.status == status_filter)

    appointments = query.order_by(
        Appointment.appointment_date,
        Appointment.appointment_time
    ).offset(skip).limit(limit).all()
    return [AppointmentResponse.from_appointment(a) for a in appointments]

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    appointment_data: AppointmentCreate,
    current_user: User = Depends(require_permission("appointments.create")),
    db: Session = Depends(get_db)
):
    patient = db.query(Patient).filter(
        Patient.id == appointment_data.patient_id,
        Patient.clinic_id == current_user.clinic_id
    ).first()
    if not patient:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient not found"
        )

    # Validate appointment date is not in the past
    scheduled = as_clinic_time(datetime.combine(appointment_data.appointment_date, appointment_data.appointment_time))
    if scheduled < clinic_now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot schedule appointments in the past"
        )

    appointment_dict = appointment_data.model_dump()
    if appointment_dict.get('reason'):
        appointment_dict['reason'] = sanitize_input(appointment_dict['reason'])

    appointment = Appointment(
        **appointment_dict,
        clinic_id=current_user.clinic_id,
        status=AppointmentStatus.SCHEDULED,
        created_by=current_user.id,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return AppointmentResponse.from_appointment(appointment)

@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: UUID,
    appointment_update: AppointmentUpdate,
    current_user: User = Depends(require_permission("appointments.edit")),
    db: Session = Depends(get_db)
):
    appointment = _get_appointment(db, appointment_id, current_user)
    if appointment.status in [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot modify completed or cancelled appointments"
        )
    if appointment_update.status == AppointmentStatus.CANCELLED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Use the cancel endpoint to cancel appointments"
        )
    if appointment_update.status == AppointmentStatus.COMPLETED:
        try:
            require(current_user, "visits.complete")
        except ClinicError as exc:
            raise http_error(exc)

    for field, value in appointment_update.model_dump(exclude_unset=True).items():
        if isinstance(value, str):
            value = sanitize_input(value)
        setattr(appointment, field, value)

    db.commit()
    db.refresh(appointment)
    return AppointmentResponse.from_appointment(appointment)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: UUID,
    cancellation: AppointmentCancel,
    current_user: User = Depends(require_permission("appointments.cancel")),
    db: Session = Depends(get_db)
):
    appointment = _get_appointment(db, appointment_id, current_user)
    _ensure_open(appointment)

    appointment.status = AppointmentStatus.CANCELLED
    appointment.cancellation_reason = sanitize_input(cancellation.cancellation_reason)
    audit.record(db, "appointment.cancelled", "appointment", appointment.id, actor=current_user,
                 details={"reason": appointment.cancellation_reason})
    db.commit()
    db.refresh(appointment)
    return AppointmentResponse.from_appointment(appointment)

@router.post("/{appointment_id}/check-in", response_model=VisitResponse, status_code=status.HTTP_201_CREATED)
async def check_in_appointment(
    appointment_id: UUID,
    check_in: AppointmentCheckIn,
    current_user: User = Depends(require_permission("appointments.edit")),
    db: Session = Depends(get_db)
):
    """Turn a scheduled appointment into a visit at Check-In."""
    appointment = _get_appointment(db, appointment_id, current_user)
    _ensure_open(appointment)

    try:
        visit = visit_service.check_in(
            db, current_user, appointment.patient_id,
            priority=check_in.priority,
            chief_complaint=appointment.reason,
            commit=False,
        )
    except ClinicError as exc:
        db.rollback()
        raise http_error(exc)

    appointment.status = AppointmentStatus.COMPLETED
    appointment.visit_id = visit.id
    db.commit()
    db.refresh(visit)
    return visit

@router.post("/{appointment_id}/remind")
async def send_reminder(
    appointment_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_permission("appointments.edit")),
    notifier: NotificationService = Depends(get_notifier),
    db: Session = Depends(get_db)
):
    """Queue an SMS reminder. Delivery failures are logged, never surfaced."""
    try:
        require(current_user, "sms.send")
    except ClinicError as exc:
        raise http_error(exc)

    if current_user.clinic is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No clinic is associated with this account"
        )
    if not current_user.clinic.sms_enabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="SMS is disabled for this clinic"
        )

    appointment = _get_appointment(db, appointment_id, current_user)
    _ensure_open(appointment)
    if not appointment.patient.phone:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Patient has no phone number on file"
        )

    message = reminder_message(appointment, current_user.clinic.name)
    background_tasks.add_task(notifier.send_sms, appointment.patient.phone, message)
    appointment.reminder_sent_at = clinic_now()
    db.commit()

    return {"message": "Reminder queued", "phone": appointment.patient.phone}
