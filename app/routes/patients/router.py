from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
import logging
import re

from app.database import get_db
from app.models.all_models import User, Patient, Visit, Appointment
from app.routes.patients.patient_schemas import PatientBulkCreate, PatientCreate, PatientUpdate, PatientResponse
from app.routes.utils.security import require_permission
from app.schemas.visit import VisitResponse

router = APIRouter(prefix="/patients", tags=["patients"])
logger = logging.getLogger(__name__)

def sanitize_input(value: str) -> str:
    """Sanitize input strings to prevent injection attacks."""
    if not isinstance(value, str):
        return value
    # Remove potentially dangerous characters and excessive whitespace
    value = re.sub(r'[<>;]', '', value.strip())
    value = re.sub(r'\s+', ' ', value)
    return value

def _new_patient(patient_data: PatientCreate, clinic_id) -> Patient:
    patient_dict = patient_data.model_dump()
    for field in ['name', 'notes']:
        if patient_dict.get(field):
            patient_dict[field] = sanitize_input(patient_dict[field])
    return Patient(**patient_dict, clinic_id=clinic_id, history=[])

def _get_patient(db: Session, patient_id: UUID, current_user: User) -> Patient:
    patient = db.query(Patient).filter(
        Patient.id == patient_id,
        Patient.clinic_id == current_user.clinic_id
    ).first()
    if not patient:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient not found"
        )
    return patient

@router.get("", response_model=List[PatientResponse])
async def list_patients(
    q: Optional[str] = Query(None, description="Search by name or phone"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(require_permission("patients.view")),
    db: Session = Depends(get_db)
):
    query = db.query(Patient).filter(Patient.clinic_id == current_user.clinic_id)
    if q:
        term = f"%{sanitize_input(q)}%"
        query = query.filter((Patient.name.ilike(term)) | (Patient.phone.ilike(term)))
    return query.order_by(Patient.name).offset(skip).limit(limit).all()

@router.post("", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    patient_data: PatientCreate,
    current_user: User = Depends(require_permission("patients.create")),
    db: Session = Depends(get_db)
):
    try:
        patient = _new_patient(patient_data, current_user.clinic_id)
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error creating patient: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error creating patient"
        )

@router.post("/bulk", response_model=List[PatientResponse], status_code=status.HTTP_201_CREATED)
async def bulk_create_patients(
    bulk: PatientBulkCreate,
    current_user: User = Depends(require_permission("patients.create")),
    db: Session = Depends(get_db)
):
    """Import a batch of patients in one transaction; nothing is saved if any row fails."""
    try:
        patients = [_new_patient(entry, current_user.clinic_id) for entry in bulk.patients]
        db.add_all(patients)
        db.commit()
        for patient in patients:
            db.refresh(patient)
        logger.info("Imported %d patients for clinic %s", len(patients), current_user.clinic_id)
        return patients
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error importing patients: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error importing patients"
        )

@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: UUID,
    current_user: User = Depends(require_permission("patients.view")),
    db: Session = Depends(get_db)
):
    return _get_patient(db, patient_id, current_user)

@router.put("/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: UUID,
    patient_update: PatientUpdate,
    current_user: User = Depends(require_permission("patients.edit")),
    db: Session = Depends(get_db)
):
    patient = _get_patient(db, patient_id, current_user)
    try:
        update_data = patient_update.model_dump(exclude_unset=True)
        for field, value in update_data.items():
            if isinstance(value, str):
                value = sanitize_input(value)
            setattr(patient, field, value)

        db.commit()
        db.refresh(patient)
        return patient
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error updating patient %s: %s", patient_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error updating patient"
        )

@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_patient(
    patient_id: UUID,
    current_user: User = Depends(require_permission("patients.delete")),
    db: Session = Depends(get_db)
):
    patient = _get_patient(db, patient_id, current_user)
    if db.query(Visit).filter(Visit.patient_id == patient.id).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Patients with visit records cannot be deleted"
        )
    if db.query(Appointment).filter(Appointment.patient_id == patient.id).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Patients with appointments cannot be deleted"
        )
    db.delete(patient)
    db.commit()

@router.get("/{patient_id}/visits", response_model=List[VisitResponse])
async def get_patient_visits(
    patient_id: UUID,
    current_user: User = Depends(require_permission("visits.view")),
    db: Session = Depends(get_db)
):
    patient = _get_patient(db, patient_id, current_user)
    return db.query(Visit).filter(
        Visit.patient_id == patient.id
    ).order_by(Visit.start_time.desc()).all()
