# app/schemas/appointment.py

from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, time, datetime
from uuid import UUID
from app.models.all_models import AppointmentStatus, VisitPriority

class AppointmentBase(BaseModel):
    patient_id: UUID
    appointment_date: date
    appointment_time: time
    reason: Optional[str] = None

class AppointmentCreate(AppointmentBase):
    pass

class AppointmentUpdate(BaseModel):
    appointment_date: Optional[date] = None
    appointment_time: Optional[time] = None
    reason: Optional[str] = None
    status: Optional[AppointmentStatus] = None

class AppointmentCancel(BaseModel):
    cancellation_reason: str = Field(..., min_length=3, max_length=500)

class AppointmentCheckIn(BaseModel):
    priority: VisitPriority = VisitPriority.NORMAL

class AppointmentResponse(AppointmentBase):
    id: UUID
    patient_name: Optional[str] = None
    status: AppointmentStatus
    visit_id: Optional[UUID] = None
    reminder_sent_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_appointment(cls, appointment) -> "AppointmentResponse":
        response = cls.model_validate(appointment)
        response.patient_name = appointment.patient.name if appointment.patient else None
        return response
