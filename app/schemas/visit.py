# app/schemas/visit.py

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID

from app.models.all_models import VisitStage, VisitPriority, PaymentStatus, LabOrderStatus

# ===== REQUESTS =====

class CheckInRequest(BaseModel):
    patient_id: UUID
    priority: VisitPriority = VisitPriority.NORMAL
    chief_complaint: Optional[str] = None
    insurance: Optional[Dict[str, Any]] = None

class StageChangeRequest(BaseModel):
    target_stage: VisitStage
    # the stage (and version) the client last saw; a mismatch is a stale write
    expected_stage: Optional[VisitStage] = None
    expected_version: Optional[int] = None

class ClinicalUpdate(BaseModel):
    vitals: Optional[Dict[str, Any]] = None
    chief_complaint: Optional[str] = None
    diagnosis: Optional[str] = None
    doctor_notes: Optional[str] = None
    doctor_id: Optional[UUID] = None
    priority: Optional[VisitPriority] = None
    insurance: Optional[Dict[str, Any]] = None
    expected_stage: Optional[VisitStage] = None
    expected_version: Optional[int] = None

class LabOrderCreate(BaseModel):
    test_name: str = Field(..., min_length=1, max_length=150)
    test_id: Optional[str] = None
    price: float = Field(0.0, ge=0)
    notes: Optional[str] = None
    expected_stage: Optional[VisitStage] = None

class LabResultUpdate(BaseModel):
    result: str
    flag: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = None

class PrescriptionLine(BaseModel):
    inventory_id: Optional[UUID] = None
    name: Optional[str] = None
    dosage: Optional[str] = None
    quantity: int = Field(1, ge=1)
    price: Optional[float] = Field(None, ge=0)

class PrescriptionUpdate(BaseModel):
    items: List[PrescriptionLine] = []
    expected_stage: Optional[VisitStage] = None

# ===== RESPONSES =====

class LabOrderResponse(BaseModel):
    id: UUID
    test_id: Optional[str] = None
    test_name: str
    price: float
    status: LabOrderStatus
    result: Optional[str] = None
    flag: Optional[str] = None
    notes: Optional[str] = None
    ordered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PrescriptionItemResponse(BaseModel):
    id: UUID
    inventory_id: Optional[UUID] = None
    name: str
    dosage: Optional[str] = None
    quantity: int
    price: float

    class Config:
        from_attributes = True

class VisitResponse(BaseModel):
    id: UUID
    patient_id: UUID
    patient_name: str
    doctor_id: Optional[UUID] = None
    queue_number: int
    stage: VisitStage
    stage_start_time: datetime
    start_time: datetime
    priority: str
    insurance: Optional[Dict[str, Any]] = None
    vitals: Optional[Dict[str, Any]] = None
    chief_complaint: Optional[str] = None
    diagnosis: Optional[str] = None
    doctor_notes: Optional[str] = None
    medications_dispensed: bool = False
    consultation_fee: float
    total_bill: float
    payment_status: PaymentStatus
    version: int
    lab_orders: List[LabOrderResponse] = []
    prescription: List[PrescriptionItemResponse] = []

    class Config:
        from_attributes = True

class QueueEntryResponse(BaseModel):
    visit_id: str
    patient_name: str
    queue_number: int
    stage: str
    priority: str
    stage_start_time: datetime
    wait_minutes: int
    version: int

class QueueResponse(BaseModel):
    stage: VisitStage
    entries: List[QueueEntryResponse]
    counts: Dict[str, int]
    refresh_interval_seconds: int
