from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from app.core.errors import (
    ClinicError,
    PayloadError,
    ReconciliationConflictError,
    ReconciliationError,
    SignatureVerificationError,
)
from app.database import get_db
from app.models.all_models import User
from app.routes.utils.security import http_error
from app.schemas.payment import (
    VisitPaymentRequest,
    PlanPaymentRequest,
    CashPaymentRequest,
    TransactionResponse,
    ReconciliationResponse,
)
from app.services import payments, webhooks
from app.utils.auth import get_current_user

router = APIRouter(prefix="/payments", tags=["payments"])
logger = logging.getLogger(__name__)

# ================================
# INITIATION
# ================================

@router.post("/visit", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def initiate_visit_payment(
    payment: VisitPaymentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Open a pending charge for a visit in Billing."""
    try:
        return payments.initiate_visit_payment(
            db, current_user, payment.visit_id, provider=payment.provider, reference=payment.reference
        )
    except ClinicError as exc:
        raise http_error(exc)

@router.post("/plan", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def initiate_plan_payment(
    payment: PlanPaymentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return payments.initiate_plan_payment(
            db, current_user, payment.plan.value, provider=payment.provider, reference=payment.reference
        )
    except ClinicError as exc:
        raise http_error(exc)

@router.post("/cash", response_model=ReconciliationResponse)
async def record_cash_payment(
    payment: CashPaymentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        result = payments.record_cash_payment(db, current_user, payment.visit_id, payment.amount)
    except ClinicError as exc:
        raise http_error(exc)
    return ReconciliationResponse(**result.model_dump())

# ================================
# PROVIDER CALLBACKS
# ================================

@router.post("/webhook/{provider}")
async def payment_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Provider confirmation callback. Unauthenticated; trust comes from the HMAC
    signature over the raw body.
    """
    body = await request.body()
    signature = request.headers.get(webhooks.signature_header(provider) or "")

    try:
        webhooks.verify_signature(provider, body, signature)
        event = webhooks.parse_event(provider, body)
    except (SignatureVerificationError, PayloadError) as exc:
        logger.warning("Rejected %s webhook: %s", provider, exc.message)
        raise http_error(exc)

    if event is None:
        return {"received": True, "status": "ignored"}

    try:
        result = payments.reconcile(db, event)
    except ReconciliationConflictError as exc:
        # acknowledged so the provider stops retrying; a human resolves it
        return {"received": True, "status": "flagged", "reference": event.reference, "reason": exc.message}
    except ReconciliationError as exc:
        raise http_error(exc)

    return {"received": True, "status": result.outcome, "reference": result.reference}

# ================================
# REVIEW
# ================================

@router.get("/transactions", response_model=List[TransactionResponse])
async def list_transactions(
    status_filter: Optional[str] = Query(None, alias="status"),
    flagged: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return payments.list_transactions(db, current_user, status=status_filter, flagged=flagged)
    except ClinicError as exc:
        raise http_error(exc)

@router.post("/transactions/{reference}/replay", response_model=ReconciliationResponse)
async def replay_transaction(
    reference: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Re-apply a flagged confirmation after the underlying record was fixed."""
    try:
        result = payments.replay_transaction(db, current_user, reference)
    except ClinicError as exc:
        raise http_error(exc)
    return ReconciliationResponse(**result.model_dump())
