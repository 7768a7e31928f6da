# app/schemas/clinic.py

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID

from app.models.all_models import ClinicPlan, ClinicStatus


class ClinicResponse(BaseModel):
    id: UUID
    name: str
    slug: str
    email: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None
    timezone: Optional[str] = None
    plan: ClinicPlan
    status: ClinicStatus
    settings: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ClinicSettingsUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=150)
    email: Optional[str] = None
    phone: Optional[str] = None
    consultation_fee: Optional[float] = Field(None, ge=0)
    sms_enabled: Optional[bool] = None

class ClinicStatusUpdate(BaseModel):
    status: ClinicStatus
    reason: Optional[str] = None

class AuditLogResponse(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ReportSummary(BaseModel):
    total_patients: int
    active_visits: int
    visits_by_stage: Dict[str, int]
    completed_visits: int
    revenue: float
    plan_spend: float = 0.0
    pending_payments: int
    flagged_payments: int
    low_stock_items: int
    currency: Optional[str] = None

class ReportExport(BaseModel):
    kind: str
    columns: List[str]
    rows: List[List[Any]]

class SmsBroadcastRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=480)
