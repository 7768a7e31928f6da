from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel
import logging

from app.database import get_db
from app.models.all_models import User, Clinic, ClinicStatus, Patient, Visit, VisitStage
from app.routes.utils.security import require_permission
from app.schemas.clinic import ClinicResponse, ClinicStatusUpdate
from app.services import audit

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)

class PlatformMetrics(BaseModel):
    total_clinics: int
    active_clinics: int
    suspended_clinics: int
    total_users: int
    total_patients: int
    active_visits: int

@router.get("/metrics", response_model=PlatformMetrics)
async def get_platform_metrics(
    db: Session = Depends(get_db),
    admin_user: User = Depends(require_permission("super_admin.clinics"))
):
    return PlatformMetrics(
        total_clinics=db.query(func.count(Clinic.id)).scalar(),
        active_clinics=db.query(func.count(Clinic.id)).filter(Clinic.status == ClinicStatus.ACTIVE).scalar(),
        suspended_clinics=db.query(func.count(Clinic.id)).filter(Clinic.status == ClinicStatus.SUSPENDED).scalar(),
        total_users=db.query(func.count(User.id)).scalar(),
        total_patients=db.query(func.count(Patient.id)).scalar(),
        active_visits=db.query(func.count(Visit.id)).filter(Visit.stage != VisitStage.COMPLETED).scalar(),
    )

@router.get("/clinics", response_model=List[ClinicResponse])
async def list_clinics(
    status_filter: Optional[ClinicStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    admin_user: User = Depends(require_permission("super_admin.clinics"))
):
    query = db.query(Clinic)
    if status_filter:
        query = query.filter(Clinic.status == status_filter)
    return query.order_by(Clinic.created_at.desc()).offset(offset).limit(limit).all()

@router.put("/clinics/{clinic_id}/status", response_model=ClinicResponse)
async def change_clinic_status(
    clinic_id: UUID,
    update: ClinicStatusUpdate,
    db: Session = Depends(get_db),
    admin_user: User = Depends(require_permission("super_admin.suspend"))
):
    """Suspend or reactivate a clinic. Suspended clinics' staff cannot sign in."""
    clinic = db.query(Clinic).filter(Clinic.id == clinic_id).first()
    if not clinic:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Clinic not found"
        )

    previous = clinic.status
    clinic.status = update.status
    audit.record(db, "clinic.status_changed", "clinic", clinic.id, actor=admin_user, clinic_id=clinic.id,
                 details={"from": previous.value, "to": update.status.value, "reason": update.reason})
    db.commit()
    db.refresh(clinic)
    logger.info("Clinic %s moved %s -> %s by %s", clinic.slug, previous.value, clinic.status.value, admin_user.email)
    return clinic
