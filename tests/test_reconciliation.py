import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import (
    AuthorizationError,
    InvalidTransitionError,
    ReconciliationConflictError,
    ReconciliationError,
)
from app.models.all_models import (
    AuditLog,
    ClinicPlan,
    LabOrder,
    PaymentStatus,
    Transaction,
    TransactionStatus,
    UserRole,
    VisitStage,
)
from app.services import payments
from app.services.webhooks import PaymentEvent

BILL_LINES = dict(labs=[("Malaria RDT", 350.0)], prescription=[("Amoxicillin", 2, 100.0, None)])


def success(reference, amount, **metadata):
    return PaymentEvent(reference=reference, status=TransactionStatus.SUCCESS, amount=amount, metadata=metadata)


@pytest.fixture
def billed_visit(make_visit):
    return make_visit(stage=VisitStage.BILLING, **BILL_LINES)


@pytest.fixture
def pending(db, accountant, billed_visit):
    return payments.initiate_visit_payment(db, accountant, billed_visit.id, reference="txn_123")


def test_initiation_snapshots_the_bill(pending, billed_visit):
    assert pending.status == TransactionStatus.PENDING
    assert pending.amount == 1050.0
    assert pending.meta["visitId"] == str(billed_visit.id)
    assert pending.meta["type"] == "Visit"


def test_initiation_needs_billing_stage(db, accountant, make_visit):
    visit = make_visit(stage=VisitStage.CONSULTATION)
    with pytest.raises(InvalidTransitionError):
        payments.initiate_visit_payment(db, accountant, visit.id)


def test_initiation_needs_billing_capability(db, receptionist, billed_visit):
    with pytest.raises(AuthorizationError):
        payments.initiate_visit_payment(db, receptionist, billed_visit.id)


def test_confirmed_payment_marks_visit_paid_and_moves_to_pharmacy(db, pending, billed_visit):
    result = payments.reconcile(db, success("txn_123", 1050))

    assert result.outcome == "processed"
    assert result.effect == "visit"
    assert result.visit_stage == "Pharmacy"
    db.expire_all()
    assert billed_visit.payment_status == PaymentStatus.PAID
    assert billed_visit.stage == VisitStage.PHARMACY
    assert billed_visit.total_bill == 1050.0
    assert billed_visit.meta["payment_ref"] == "txn_123"
    assert db.query(Transaction).filter_by(reference="txn_123").one().status == TransactionStatus.SUCCESS


def test_visit_without_prescription_goes_to_clearance(db, accountant, make_visit):
    visit = make_visit(stage=VisitStage.BILLING)
    txn = payments.initiate_visit_payment(db, accountant, visit.id)
    assert payments.reconcile(db, success(txn.reference, 500)).visit_stage == "Clearance"


def test_duplicate_delivery_is_a_no_op(db, pending, billed_visit):
    payments.reconcile(db, success("txn_123", 1050))
    db.expire_all()
    moved_at = billed_visit.stage_start_time
    version = billed_visit.version

    again = payments.reconcile(db, success("txn_123", 1050))

    assert again.outcome == "duplicate"
    db.expire_all()
    assert billed_visit.stage == VisitStage.PHARMACY
    assert billed_visit.stage_start_time == moved_at
    assert billed_visit.version == version


def test_amount_mismatch_is_flagged_and_changes_nothing(db, pending, billed_visit):
    with pytest.raises(ReconciliationConflictError, match="does not match"):
        payments.reconcile(db, success("txn_123", 900))

    db.expire_all()
    txn = db.query(Transaction).filter_by(reference="txn_123").one()
    assert txn.status == TransactionStatus.PENDING
    assert txn.review_reason == "Confirmed amount does not match the bill"
    assert txn.flagged_at is not None
    assert txn.meta["pendingEvent"]["amount"] == 900
    assert billed_visit.payment_status == PaymentStatus.PENDING
    assert billed_visit.stage == VisitStage.BILLING

    flag = db.query(AuditLog).filter_by(action="payment.flagged").one()
    assert flag.details["expected"] == 1050.0
    assert flag.details["confirmed"] == 900


def test_unknown_reference_is_recorded(db, pending):
    with pytest.raises(ReconciliationConflictError, match="Unknown transaction reference"):
        payments.reconcile(db, success("txn_missing", 1050))

    flag = db.query(AuditLog).filter_by(action="payment.flagged", resource_id="txn_missing").one()
    assert flag.clinic_id is None


def test_failed_payment_is_terminal(db, pending, billed_visit):
    payments.reconcile(db, PaymentEvent(reference="txn_123", status=TransactionStatus.FAILED))
    late = payments.reconcile(db, success("txn_123", 1050))

    assert late.outcome == "duplicate"
    assert late.status == TransactionStatus.FAILED
    db.expire_all()
    assert billed_visit.payment_status == PaymentStatus.PENDING
    assert billed_visit.stage == VisitStage.BILLING


def test_second_transaction_for_paid_visit_is_flagged(db, accountant, make_visit):
    visit = make_visit(stage=VisitStage.BILLING)
    first = payments.initiate_visit_payment(db, accountant, visit.id)
    second = payments.initiate_visit_payment(db, accountant, visit.id)
    payments.reconcile(db, success(first.reference, 500))

    with pytest.raises(ReconciliationConflictError, match="already paid"):
        payments.reconcile(db, success(second.reference, 500))


def test_plan_payment_upgrades_clinic(db, admin, clinic):
    txn = payments.initiate_plan_payment(db, admin, "pro")
    result = payments.reconcile(db, success(txn.reference, txn.amount))

    assert result.effect == "plan"
    db.expire_all()
    assert clinic.plan == ClinicPlan.PRO


def test_plan_metadata_never_touches_visits(db, admin, billed_visit):
    txn = payments.initiate_plan_payment(db, admin, "enterprise")
    # a stray visit id in the provider metadata does not turn this into a visit payment
    payments.reconcile(db, success(txn.reference, txn.amount, visitId=str(billed_visit.id)))
    db.expire_all()
    assert billed_visit.payment_status == PaymentStatus.PENDING


def test_storage_failure_is_reported_and_leaves_transaction_pending(db, pending, monkeypatch):
    def broken_commit():
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(ReconciliationError):
        payments.reconcile(db, success("txn_123", 1050))
    monkeypatch.undo()

    db.expire_all()
    assert db.query(Transaction).filter_by(reference="txn_123").one().status == TransactionStatus.PENDING


def test_cash_payment_uses_the_same_path(db, accountant, billed_visit):
    result = payments.record_cash_payment(db, accountant, billed_visit.id, 1050)

    assert result.outcome == "processed"
    txn = db.query(Transaction).filter_by(reference=result.reference).one()
    assert txn.provider == "cash"
    assert txn.reference.startswith("JA-")


def test_cash_payment_requires_billing_manage(db, make_user, billed_visit):
    nurse = make_user(UserRole.NURSE)
    with pytest.raises(AuthorizationError):
        payments.record_cash_payment(db, nurse, billed_visit.id, 1050)


def test_replay_after_correcting_the_bill(db, accountant, pending, billed_visit):
    with pytest.raises(ReconciliationConflictError):
        payments.reconcile(db, success("txn_123", 1000))

    # the lab test was priced wrongly; correct it and replay the parked confirmation
    lab = db.query(LabOrder).filter_by(visit_id=billed_visit.id).one()
    lab.price = 300.0
    db.commit()

    result = payments.replay_transaction(db, accountant, "txn_123")
    assert result.outcome == "processed"
    db.expire_all()
    txn = db.query(Transaction).filter_by(reference="txn_123").one()
    assert txn.review_reason is None
    assert "pendingEvent" not in txn.meta


def test_replay_requires_a_flagged_transaction(db, accountant, pending):
    with pytest.raises(InvalidTransitionError):
        payments.replay_transaction(db, accountant, "txn_123")
