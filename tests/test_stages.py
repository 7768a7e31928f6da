from datetime import timedelta
from types import SimpleNamespace

import pytest

from app.core.errors import AuthorizationError, InvalidTransitionError
from app.core.stages import (
    allowed_targets,
    amounts_match,
    apply_transition,
    check_transition,
    compute_bill,
    next_stage_after_payment,
    parse_stage,
)
from app.models.all_models import PaymentStatus, UserRole, UserStatus, VisitStage, clinic_now


def actor(role):
    return SimpleNamespace(role=role, status=UserStatus.ACTIVE)


def visit(stage, payment_status=PaymentStatus.PENDING, prescription=(), lab_orders=(), fee=500.0):
    return SimpleNamespace(
        stage=stage,
        payment_status=payment_status,
        prescription=list(prescription),
        lab_orders=list(lab_orders),
        consultation_fee=fee,
        stage_start_time=clinic_now(),
    )


def line(price, quantity=1):
    return SimpleNamespace(price=price, quantity=quantity)


@pytest.mark.parametrize("source, target, role", [
    (VisitStage.CHECK_IN, VisitStage.VITALS, UserRole.RECEPTIONIST),
    (VisitStage.CHECK_IN, VisitStage.CONSULTATION, UserRole.RECEPTIONIST),
    (VisitStage.VITALS, VisitStage.CONSULTATION, UserRole.NURSE),
    (VisitStage.CONSULTATION, VisitStage.LAB, UserRole.DOCTOR),
    (VisitStage.LAB, VisitStage.CONSULTATION, UserRole.LAB_TECH),
    (VisitStage.CONSULTATION, VisitStage.BILLING, UserRole.ACCOUNTANT),
    (VisitStage.LAB, VisitStage.BILLING, UserRole.ADMIN),
    (VisitStage.PHARMACY, VisitStage.CLEARANCE, UserRole.PHARMACIST),
])
def test_allowed_moves(source, target, role):
    assert check_transition(visit(source), target, actor(role))


def test_receptionist_cannot_send_to_billing():
    with pytest.raises(AuthorizationError, match="You do not have permission to send to Billing."):
        check_transition(visit(VisitStage.CONSULTATION), VisitStage.BILLING, actor(UserRole.RECEPTIONIST))


def test_nurse_cannot_dispense():
    with pytest.raises(AuthorizationError, match="Not authorized to dispense medication."):
        check_transition(visit(VisitStage.PHARMACY), VisitStage.CLEARANCE, actor(UserRole.NURSE))


@pytest.mark.parametrize("target", [VisitStage.PHARMACY, VisitStage.CLEARANCE])
def test_billing_exits_only_through_payment(target):
    with pytest.raises(InvalidTransitionError, match="payment is confirmed"):
        check_transition(visit(VisitStage.BILLING), target, actor(UserRole.SUPER_ADMIN))


def test_stages_cannot_be_skipped():
    with pytest.raises(InvalidTransitionError):
        check_transition(visit(VisitStage.CHECK_IN), VisitStage.BILLING, actor(UserRole.ADMIN))
    with pytest.raises(InvalidTransitionError):
        check_transition(visit(VisitStage.VITALS), VisitStage.CHECK_IN, actor(UserRole.ADMIN))


def test_same_stage_is_rejected():
    with pytest.raises(InvalidTransitionError, match="already in Vitals"):
        check_transition(visit(VisitStage.VITALS), VisitStage.VITALS, actor(UserRole.ADMIN))


def test_completion_requires_payment():
    with pytest.raises(InvalidTransitionError, match="Pending payment"):
        check_transition(visit(VisitStage.CLEARANCE), VisitStage.COMPLETED, actor(UserRole.DOCTOR))
    paid = visit(VisitStage.CLEARANCE, payment_status=PaymentStatus.PAID)
    assert check_transition(paid, VisitStage.COMPLETED, actor(UserRole.DOCTOR)) == "visits.complete"


def test_completion_requires_capability_before_payment_check():
    with pytest.raises(AuthorizationError, match="Not authorized to complete visits."):
        check_transition(visit(VisitStage.CLEARANCE), VisitStage.COMPLETED, actor(UserRole.NURSE))


def test_completed_is_terminal():
    done = visit(VisitStage.COMPLETED, payment_status=PaymentStatus.PAID)
    for target in VisitStage:
        with pytest.raises(InvalidTransitionError):
            check_transition(done, target, actor(UserRole.SUPER_ADMIN))


def test_unknown_stage_name():
    with pytest.raises(InvalidTransitionError, match="Unknown visit stage"):
        parse_stage("Triage")


def test_allowed_targets_exclude_payment_driven_edges():
    assert allowed_targets(VisitStage.BILLING) == []
    assert allowed_targets(VisitStage.CONSULTATION) == [VisitStage.LAB, VisitStage.BILLING]
    assert allowed_targets(VisitStage.COMPLETED) == []


def test_apply_transition_resets_stage_timer():
    v = visit(VisitStage.VITALS)
    later = v.stage_start_time + timedelta(minutes=5)
    apply_transition(v, VisitStage.CONSULTATION, now=later)
    assert v.stage == VisitStage.CONSULTATION
    assert v.stage_start_time == later


def test_stage_timer_strictly_increases():
    v = visit(VisitStage.VITALS)
    before = v.stage_start_time
    apply_transition(v, VisitStage.CONSULTATION, now=before - timedelta(seconds=3))
    assert v.stage_start_time > before


def test_after_payment_goes_to_pharmacy_only_with_prescription():
    assert next_stage_after_payment(visit(VisitStage.BILLING, prescription=[line(100, 2)])) == VisitStage.PHARMACY
    assert next_stage_after_payment(visit(VisitStage.BILLING)) == VisitStage.CLEARANCE


def test_bill_is_fee_plus_medication_plus_labs():
    v = visit(VisitStage.BILLING, prescription=[line(100, 2)], lab_orders=[line(350)])
    assert compute_bill(v) == 1050.0


def test_amounts_compare_in_minor_units():
    assert amounts_match(1050, 1050.00)
    assert amounts_match(0.1 + 0.2, 0.3)
    assert not amounts_match(1050, 900)
    assert not amounts_match(1050, 1050.01)
