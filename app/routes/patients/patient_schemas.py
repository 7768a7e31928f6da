# app/routes/patients/patient_schemas.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import date, datetime

from app.models.all_models import Gender
from app.routes.auth.schemas import normalize_phone

# Patient Schemas
class PatientBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    phone: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[Gender] = None
    blood_group: Optional[str] = Field(None, max_length=5)
    allergies: List[str] = []
    notes: Optional[str] = None
    vitals: Optional[Dict[str, Any]] = None
    emergency_contact: Optional[Dict[str, Any]] = None

    @field_validator('phone')
    def validate_phone(cls, v):
        return normalize_phone(v)

class PatientCreate(PatientBase):
    pass

class PatientBulkCreate(BaseModel):
    patients: List[PatientCreate] = Field(..., min_length=1, max_length=500)

class PatientUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    phone: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[Gender] = None
    blood_group: Optional[str] = Field(None, max_length=5)
    allergies: Optional[List[str]] = None
    notes: Optional[str] = None
    vitals: Optional[Dict[str, Any]] = None
    emergency_contact: Optional[Dict[str, Any]] = None

    @field_validator('phone')
    def validate_phone(cls, v):
        return normalize_phone(v)

class PatientResponse(PatientBase):
    id: UUID
    clinic_id: UUID
    history: List[str] = []
    last_visit: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator('allergies', 'history', mode='before')
    def default_list(cls, v):
        return v or []

    @field_validator('phone')
    def validate_phone(cls, v):
        return v
