# app/schemas/payment.py

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from uuid import UUID

from app.models.all_models import ClinicPlan, TransactionStatus


class VisitPaymentRequest(BaseModel):
    visit_id: UUID
    provider: str = Field("paystack", pattern=r'^(paystack|mpesa)$')
    # gateway-assigned reference, when the charge was opened client side
    reference: Optional[str] = Field(None, min_length=4, max_length=100)

class PlanPaymentRequest(BaseModel):
    plan: ClinicPlan
    provider: str = Field("paystack", pattern=r'^(paystack|mpesa)$')
    reference: Optional[str] = Field(None, min_length=4, max_length=100)

class CashPaymentRequest(BaseModel):
    visit_id: UUID
    amount: float = Field(..., gt=0)

class TransactionResponse(BaseModel):
    id: UUID
    reference: str
    amount: float
    currency: Optional[str] = None
    provider: str
    status: TransactionStatus
    meta: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")
    review_reason: Optional[str] = None
    flagged_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ReconciliationResponse(BaseModel):
    reference: str
    outcome: str
    status: TransactionStatus
    effect: Optional[str] = None
    visit_stage: Optional[str] = None
