from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List

from app.database import get_db
from app.models.all_models import User, AuditLog
from app.routes.utils.security import require_permission
from app.schemas.clinic import ClinicResponse, ClinicSettingsUpdate, AuditLogResponse
from app.services import audit

router = APIRouter(prefix="/clinic", tags=["clinic"])


def _clinic_of(current_user: User):
    if current_user.clinic is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No clinic is associated with this account"
        )
    return current_user.clinic

@router.get("", response_model=ClinicResponse)
async def get_clinic(
    current_user: User = Depends(require_permission("settings.view"))
):
    return _clinic_of(current_user)

@router.put("/settings", response_model=ClinicResponse)
async def update_clinic_settings(
    update: ClinicSettingsUpdate,
    current_user: User = Depends(require_permission("settings.edit")),
    db: Session = Depends(get_db)
):
    clinic = _clinic_of(current_user)
    data = update.model_dump(exclude_unset=True)

    for field in ("name", "email", "phone"):
        if field in data:
            setattr(clinic, field, data[field])

    # JSON column: assign a new dict so the change is flushed
    clinic_settings = dict(clinic.settings or {})
    if data.get("consultation_fee") is not None:
        clinic_settings["consultationFee"] = data["consultation_fee"]
    if data.get("sms_enabled") is not None:
        clinic_settings["smsEnabled"] = data["sms_enabled"]
    clinic.settings = clinic_settings

    audit.record(db, "clinic.settings_updated", "clinic", clinic.id, actor=current_user, details=data)
    db.commit()
    db.refresh(clinic)
    return clinic

@router.get("/audit-logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(require_permission("settings.view")),
    db: Session = Depends(get_db)
):
    return db.query(AuditLog).filter(
        AuditLog.clinic_id == current_user.clinic_id
    ).order_by(AuditLog.created_at.desc()).limit(limit).all()
