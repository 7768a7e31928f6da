"""Payment initiation and reconciliation.

A transaction is created Pending when a charge starts. Confirmation arrives
later, from a provider webhook or a cashier, and is applied exactly once:
Success and Failed are terminal, so a replayed confirmation is a no-op.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    PayloadError,
    ReconciliationConflictError,
    ReconciliationError,
)
from app.core.roles import require
from app.core.stages import amounts_match, apply_transition, compute_bill, next_stage_after_payment
from app.models.all_models import (
    Clinic,
    ClinicPlan,
    ClinicStatus,
    PaymentStatus,
    Transaction,
    TransactionStatus,
    Visit,
    VisitStage,
    clinic_now,
)
from app.services import audit
from app.services.tenancy import clinic_id_of, get_scoped, scoped_query
from app.services.webhooks import PaymentEvent

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset([TransactionStatus.SUCCESS, TransactionStatus.FAILED])

PURPOSE_VISIT = "visit"
PURPOSE_PLAN = "plan"


class ReconciliationResult(BaseModel):
    reference: str
    outcome: str  # processed | duplicate
    status: TransactionStatus
    effect: Optional[str] = None
    visit_stage: Optional[str] = None


def new_reference() -> str:
    return f"JA-{uuid.uuid4().hex[:16].upper()}"


def payment_purpose(metadata: Dict[str, Any]) -> Optional[str]:
    """What a confirmed payment pays for. Plan and visit effects are exclusive."""
    tag = str(metadata.get("type") or "").strip().lower()
    if tag == PURPOSE_PLAN:
        return PURPOSE_PLAN
    if tag in ("visit", "invoice"):
        return PURPOSE_VISIT
    if not tag and (metadata.get("visitId") or metadata.get("invoiceId")):
        return PURPOSE_VISIT
    return None


# ===== INITIATION =====

def _create_transaction(db: Session, actor, amount: float, provider: str, metadata: Dict[str, Any], reference: Optional[str]):
    txn = Transaction(
        clinic_id=clinic_id_of(actor),
        reference=reference or new_reference(),
        amount=round(float(amount), 2),
        currency=actor.clinic.currency if actor.clinic else settings.CURRENCY,
        provider=provider,
        status=TransactionStatus.PENDING,
        meta=metadata,
        created_by=actor.id,
    )
    db.add(txn)
    return txn


def initiate_visit_payment(db: Session, actor, visit_id, provider: str = "paystack", reference: Optional[str] = None) -> Transaction:
    """Open a pending charge for the visit's current bill."""
    require(actor, "billing.manage")
    visit = get_scoped(db, Visit, visit_id, actor, "Visit")
    if visit.stage != VisitStage.BILLING:
        raise InvalidTransitionError("Payments can only be taken while the visit is in Billing.")
    if visit.payment_status == PaymentStatus.PAID:
        raise InvalidTransitionError("This visit has already been paid.")

    amount = compute_bill(visit)
    visit.total_bill = amount
    txn = _create_transaction(
        db, actor, amount, provider,
        {"type": "Visit", "visitId": str(visit.id), "patientId": str(visit.patient_id)},
        reference,
    )
    audit.record(db, "payment.initiated", "transaction", txn.reference, actor=actor,
                 details={"visitId": str(visit.id), "amount": amount, "provider": provider})
    _commit_new(db, txn)
    logger.info("Payment %s initiated for visit %s (%.2f via %s)", txn.reference, visit.id, amount, provider)
    return txn


def initiate_plan_payment(db: Session, actor, plan: str, provider: str = "paystack", reference: Optional[str] = None) -> Transaction:
    require(actor, "settings.billing")
    try:
        plan = ClinicPlan(str(plan).lower())
    except ValueError:
        raise PayloadError(f"Unknown plan: {plan!r}")
    amount = settings.PLAN_PRICES.get(plan.value)
    if not amount:
        raise PayloadError(f"The {plan.value} plan does not require payment.")

    txn = _create_transaction(db, actor, amount, provider, {"type": "Plan", "plan": plan.value}, reference)
    audit.record(db, "payment.initiated", "transaction", txn.reference, actor=actor,
                 details={"plan": plan.value, "amount": amount, "provider": provider})
    _commit_new(db, txn)
    logger.info("Plan payment %s initiated for clinic %s (%s)", txn.reference, txn.clinic_id, plan.value)
    return txn


def _commit_new(db: Session, txn: Transaction) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise PayloadError("A transaction with this reference already exists.", {"reference": txn.reference})
    db.refresh(txn)


# ===== RECONCILIATION =====

def _parse_uuid(value) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ReconciliationConflictError("Payment metadata references an invalid visit id", {"visitId": value})


def _settle_visit(db: Session, txn: Transaction, metadata: Dict[str, Any], amount: float, now) -> Visit:
    visit_id = _parse_uuid(metadata.get("visitId") or metadata.get("invoiceId"))
    visit = (
        db.query(Visit)
        .filter(Visit.id == visit_id, Visit.clinic_id == txn.clinic_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if visit is None:
        raise ReconciliationConflictError("Payment references a visit that does not exist", {"visitId": str(visit_id)})
    if visit.payment_status == PaymentStatus.PAID:
        raise ReconciliationConflictError(
            "Visit is already paid by another transaction",
            {"visitId": str(visit.id), "paymentRef": (visit.meta or {}).get("payment_ref")},
        )

    expected = compute_bill(visit)
    if not amounts_match(expected, amount):
        raise ReconciliationConflictError(
            "Confirmed amount does not match the bill",
            {"visitId": str(visit.id), "expected": expected, "confirmed": amount},
        )

    visit.payment_status = PaymentStatus.PAID
    visit.total_bill = round(float(amount), 2)
    visit.meta = {**(visit.meta or {}), "payment_ref": txn.reference}
    if visit.stage == VisitStage.BILLING:
        apply_transition(visit, next_stage_after_payment(visit), now)
    else:
        logger.info("Visit %s paid outside Billing (stage %s); stage left unchanged", visit.id, visit.stage.value)
    return visit


def _upgrade_plan(db: Session, txn: Transaction, metadata: Dict[str, Any], amount: float) -> Clinic:
    try:
        plan = ClinicPlan(str(metadata.get("plan") or ClinicPlan.PRO.value).lower())
    except ValueError:
        raise ReconciliationConflictError("Payment references an unknown plan", {"plan": metadata.get("plan")})
    if not amounts_match(txn.amount, amount):
        raise ReconciliationConflictError(
            "Confirmed amount does not match the plan price",
            {"expected": txn.amount, "confirmed": amount},
        )

    clinic = db.get(Clinic, txn.clinic_id)
    clinic.plan = plan
    clinic.status = ClinicStatus.ACTIVE
    return clinic


def _flag(db: Session, reference: str, event: PaymentEvent, conflict: ReconciliationConflictError, now) -> None:
    """Park a conflicting confirmation on the transaction for manual review."""
    try:
        txn = db.query(Transaction).filter(Transaction.reference == reference).first()
        clinic_id = txn.clinic_id if txn else None
        if txn is not None:
            txn.review_reason = conflict.message
            txn.flagged_at = now
            txn.meta = {**(txn.meta or {}), "pendingEvent": event.model_dump(mode="json")}
        audit.record(
            db, "payment.flagged", "transaction", reference,
            clinic_id=clinic_id, status="Failed",
            details={"reason": conflict.message, **conflict.details, "event": event.model_dump(mode="json")},
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Could not record review flag for payment %s: %s", reference, exc)
        raise ReconciliationError("Payment could not be flagged for review", {"reference": reference})


def reconcile(db: Session, event: PaymentEvent, now=None) -> ReconciliationResult:
    """Apply a confirmed payment outcome to its transaction and target.

    Terminal transactions are left untouched. Unknown references and amount
    mismatches raise ``ReconciliationConflictError`` after the anomaly is
    recorded; storage failures raise ``ReconciliationError``.
    """
    now = now or clinic_now()
    txn = (
        db.query(Transaction)
        .filter(Transaction.reference == event.reference)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if txn is None:
        logger.warning(
            "Payment confirmation for unknown reference %s (status=%s amount=%s)",
            event.reference, event.status.value, event.amount,
        )
        conflict = ReconciliationConflictError("Unknown transaction reference", {"reference": event.reference})
        _flag(db, event.reference, event, conflict, now)
        raise conflict

    if txn.status in TERMINAL_STATUSES:
        logger.info("Duplicate confirmation for %s ignored (already %s)", txn.reference, txn.status.value)
        return ReconciliationResult(reference=txn.reference, outcome="duplicate", status=txn.status)

    metadata = {**(txn.meta or {}), **(event.metadata or {})}
    effect = payment_purpose(metadata)
    visit = None
    try:
        if event.status == TransactionStatus.FAILED:
            txn.status = TransactionStatus.FAILED
        else:
            amount = event.amount if event.amount is not None else txn.amount
            if effect == PURPOSE_VISIT:
                visit = _settle_visit(db, txn, metadata, amount, now)
            elif effect == PURPOSE_PLAN:
                _upgrade_plan(db, txn, metadata, amount)
            else:
                logger.warning("Payment %s confirmed with no visit or plan in its metadata", txn.reference)
            txn.status = TransactionStatus.SUCCESS

        metadata.pop("pendingEvent", None)
        txn.meta = {**metadata, "confirmedAt": now.isoformat()}
        txn.processed_at = now
        txn.review_reason = None
        txn.flagged_at = None
        audit.record(
            db, "payment.reconciled", "transaction", txn.reference, clinic_id=txn.clinic_id,
            details={"status": txn.status.value, "effect": effect, "amount": event.amount},
        )
        db.commit()
    except ReconciliationConflictError as conflict:
        db.rollback()
        logger.warning("Payment %s flagged for review: %s %s", event.reference, conflict.message, conflict.details)
        _flag(db, event.reference, event, conflict, now)
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Failed to apply payment %s (intended effect: %s, status: %s): %s",
            event.reference, effect, event.status.value, exc,
        )
        raise ReconciliationError("Payment confirmation could not be applied", {"reference": event.reference})

    logger.info("Payment %s reconciled as %s (effect: %s)", txn.reference, txn.status.value, effect)
    return ReconciliationResult(
        reference=txn.reference,
        outcome="processed",
        status=txn.status,
        effect=effect,
        visit_stage=visit.stage.value if visit is not None else None,
    )


# ===== CASHIER & REVIEW =====

def record_cash_payment(db: Session, actor, visit_id, amount: float) -> ReconciliationResult:
    """Cash at the desk goes through the same reconciliation as gateway callbacks."""
    txn = initiate_visit_payment(db, actor, visit_id, provider="cash")
    event = PaymentEvent(reference=txn.reference, status=TransactionStatus.SUCCESS, amount=amount)
    return reconcile(db, event)


def list_transactions(db: Session, actor, status: Optional[str] = None, flagged: bool = False):
    require(actor, "billing.view")
    query = scoped_query(db, Transaction, actor)
    if status:
        try:
            query = query.filter(Transaction.status == TransactionStatus(status))
        except ValueError:
            raise PayloadError(f"Unknown transaction status: {status!r}")
    if flagged:
        query = query.filter(Transaction.flagged_at.isnot(None))
    return query.order_by(Transaction.created_at.desc()).all()


def replay_transaction(db: Session, actor, reference: str) -> ReconciliationResult:
    """Re-run the last confirmation parked on a flagged transaction."""
    require(actor, "billing.manage")
    txn = scoped_query(db, Transaction, actor).filter(Transaction.reference == reference).first()
    if txn is None:
        raise NotFoundError("Transaction not found")
    stored = (txn.meta or {}).get("pendingEvent")
    if txn.status in TERMINAL_STATUSES or not stored:
        raise InvalidTransitionError("Only flagged pending transactions can be replayed.", {"reference": reference})

    logger.info("Replaying payment %s on behalf of %s", reference, actor.email)
    return reconcile(db, PaymentEvent(**stored))
