"""Visit stage pipeline.

Check-In -> Vitals -> Consultation -> Lab (optional) -> Billing ->
Pharmacy (only with a prescription) -> Clearance -> Completed.

Each edge names the capability the acting user needs. Edges out of Billing
are driven by payment confirmation and cannot be requested by hand.
"""
from datetime import timedelta

from app.core.errors import InvalidTransitionError
from app.core.roles import require
from app.models.all_models import PaymentStatus, VisitStage, as_clinic_time, clinic_now

PAYMENT_DRIVEN = "payment"

QUEUE_STAGES = [
    VisitStage.CHECK_IN,
    VisitStage.VITALS,
    VisitStage.CONSULTATION,
    VisitStage.LAB,
    VisitStage.BILLING,
    VisitStage.PHARMACY,
    VisitStage.CLEARANCE,
]
TERMINAL_STAGES = frozenset([VisitStage.COMPLETED])

TRANSITIONS = {
    (VisitStage.CHECK_IN, VisitStage.VITALS): "visits.create",
    (VisitStage.CHECK_IN, VisitStage.CONSULTATION): "visits.create",
    (VisitStage.VITALS, VisitStage.CONSULTATION): "visits.edit",
    (VisitStage.CONSULTATION, VisitStage.LAB): "visits.edit",
    (VisitStage.LAB, VisitStage.CONSULTATION): "visits.edit",
    (VisitStage.CONSULTATION, VisitStage.BILLING): "billing.manage",
    (VisitStage.LAB, VisitStage.BILLING): "billing.manage",
    (VisitStage.BILLING, VisitStage.PHARMACY): PAYMENT_DRIVEN,
    (VisitStage.BILLING, VisitStage.CLEARANCE): PAYMENT_DRIVEN,
    (VisitStage.PHARMACY, VisitStage.CLEARANCE): "pharmacy.dispense",
    (VisitStage.CLEARANCE, VisitStage.COMPLETED): "visits.complete",
}

# clinical details are frozen once the bill is being prepared
EDITABLE_STAGES = frozenset([
    VisitStage.CHECK_IN,
    VisitStage.VITALS,
    VisitStage.CONSULTATION,
    VisitStage.LAB,
])

_DENIAL_MESSAGES = {
    VisitStage.BILLING: "You do not have permission to send to Billing.",
    VisitStage.COMPLETED: "Not authorized to complete visits.",
    VisitStage.CLEARANCE: "Not authorized to dispense medication.",
}


def parse_stage(value) -> VisitStage:
    try:
        return VisitStage(value)
    except ValueError:
        raise InvalidTransitionError(f"Unknown visit stage: {value!r}")


def is_active(visit) -> bool:
    return parse_stage(visit.stage) not in TERMINAL_STAGES


def allowed_targets(stage) -> list:
    current = parse_stage(stage)
    return [
        target for (source, target), guard in TRANSITIONS.items()
        if source == current and guard != PAYMENT_DRIVEN
    ]


def check_transition(visit, target, actor) -> str:
    """Validate a manual stage change. Raises, never mutates.

    Returns the capability that authorised the move.
    """
    current = parse_stage(visit.stage)
    target = parse_stage(target)

    if current in TERMINAL_STAGES:
        raise InvalidTransitionError("This visit is already completed.")
    if current == target:
        raise InvalidTransitionError(f"Visit is already in {target.value}.")

    required = TRANSITIONS.get((current, target))
    if required is None:
        raise InvalidTransitionError(
            f"Cannot move a visit from {current.value} to {target.value}.",
            {"from": current.value, "to": target.value},
        )
    if required == PAYMENT_DRIVEN:
        raise InvalidTransitionError(
            "Visits leave Billing once payment is confirmed.",
            {"from": current.value, "to": target.value},
        )

    require(actor, required, _DENIAL_MESSAGES.get(target))

    if target == VisitStage.COMPLETED and visit.payment_status != PaymentStatus.PAID:
        raise InvalidTransitionError("Pending payment: the visit cannot be completed until it is paid.")

    return required


def apply_transition(visit, target, now=None):
    """Move the visit and restart its stage timer."""
    target = parse_stage(target)
    now = as_clinic_time(now or clinic_now())
    previous = as_clinic_time(visit.stage_start_time)
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)

    visit.stage = target
    visit.stage_start_time = now
    return visit


def next_stage_after_payment(visit) -> VisitStage:
    if visit.prescription:
        return VisitStage.PHARMACY
    return VisitStage.CLEARANCE


def compute_bill(visit) -> float:
    medication = sum(float(item.price) * int(item.quantity) for item in visit.prescription)
    labs = sum(float(order.price) for order in visit.lab_orders)
    return round(float(visit.consultation_fee or 0) + medication + labs, 2)


def to_minor_units(amount) -> int:
    return int(round(float(amount) * 100))


def amounts_match(expected, confirmed) -> bool:
    return to_minor_units(expected) == to_minor_units(confirmed)
