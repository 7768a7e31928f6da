"""Patient visits: check-in, clinical updates and stage moves.

All writes re-read the visit under a row lock and carry the caller's view of
its stage (and optionally version), so two desks acting on the same patient
cannot both win.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import InvalidTransitionError, NotFoundError, PayloadError, StaleWriteError
from app.core.roles import require
from app.core.stages import EDITABLE_STAGES, apply_transition, check_transition, compute_bill, parse_stage
from app.models.all_models import (
    InventoryItem,
    LabOrder,
    LabOrderStatus,
    Patient,
    PaymentStatus,
    PrescriptionItem,
    Visit,
    VisitPriority,
    VisitStage,
    clinic_now,
)
from app.services import audit
from app.services.inventory import dispense_for_visit
from app.services.tenancy import clinic_id_of, get_scoped, scoped_query

logger = logging.getLogger(__name__)

CLINICAL_FIELDS = ("vitals", "chief_complaint", "diagnosis", "doctor_notes", "doctor_id", "priority", "insurance")


def _parse_priority(value) -> str:
    try:
        return VisitPriority(getattr(value, "value", value)).value
    except ValueError:
        raise PayloadError(f"Unknown priority: {value!r}")


def _commit(db: Session, visit: Visit) -> Visit:
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise StaleWriteError("This visit was changed by someone else. Refresh and try again.", {"visitId": str(visit.id)})
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(visit)
    return visit


def _lock_visit(db: Session, actor, visit_id, expected_stage=None, expected_version: Optional[int] = None) -> Visit:
    visit = get_scoped(db, Visit, visit_id, actor, "Visit", for_update=True)
    if expected_stage is not None and visit.stage != parse_stage(expected_stage):
        raise StaleWriteError(
            "This visit has moved on since you loaded it. Refresh and try again.",
            {"visitId": str(visit.id), "stage": visit.stage.value},
        )
    if expected_version is not None and visit.version != expected_version:
        raise StaleWriteError(
            "This visit was changed by someone else. Refresh and try again.",
            {"visitId": str(visit.id), "version": visit.version},
        )
    return visit


def _ensure_editable(visit: Visit) -> None:
    if visit.stage not in EDITABLE_STAGES:
        raise InvalidTransitionError("Clinical details are locked once the visit reaches Billing.")


def _refresh_bill(visit: Visit) -> None:
    if visit.payment_status != PaymentStatus.PAID:
        visit.total_bill = compute_bill(visit)


# ===== READS =====

def active_visits(db: Session, actor) -> List[Visit]:
    require(actor, "visits.view")
    return scoped_query(db, Visit, actor).filter(Visit.stage != VisitStage.COMPLETED).all()


def list_visits(db: Session, actor, stage: Optional[str] = None, patient_id=None, include_completed: bool = False) -> List[Visit]:
    require(actor, "visits.view")
    query = scoped_query(db, Visit, actor)
    if stage:
        query = query.filter(Visit.stage == parse_stage(stage))
    elif not include_completed:
        query = query.filter(Visit.stage != VisitStage.COMPLETED)
    if patient_id is not None:
        query = query.filter(Visit.patient_id == patient_id)
    return query.order_by(Visit.start_time.desc()).all()


def get_visit(db: Session, actor, visit_id) -> Visit:
    require(actor, "visits.view")
    return get_scoped(db, Visit, visit_id, actor, "Visit")


# ===== CHECK-IN =====

def check_in(db: Session, actor, patient_id, priority=VisitPriority.NORMAL, insurance: Optional[Dict[str, Any]] = None,
             chief_complaint: Optional[str] = None, commit: bool = True) -> Visit:
    """Open a visit at Check-In with the next queue number for the clinic."""
    require(actor, "visits.create")
    patient = get_scoped(db, Patient, patient_id, actor, "Patient")
    clinic = actor.clinic
    now = clinic_now()

    active = scoped_query(db, Visit, actor).filter(Visit.stage != VisitStage.COMPLETED).count()
    fee = clinic.consultation_fee if clinic is not None else None
    visit = Visit(
        clinic_id=clinic_id_of(actor),
        patient_id=patient.id,
        patient_name=patient.name,
        queue_number=active + 1,
        stage=VisitStage.CHECK_IN,
        stage_start_time=now,
        start_time=now,
        priority=_parse_priority(priority),
        insurance=insurance,
        chief_complaint=chief_complaint,
        payment_status=PaymentStatus.PENDING,
        meta={},
    )
    if fee is not None:
        visit.consultation_fee = fee
    visit.total_bill = visit.consultation_fee
    db.add(visit)
    db.flush()
    audit.record(db, "visit.checked_in", "visit", visit.id, actor=actor,
                 details={"patientId": str(patient.id), "queueNumber": visit.queue_number, "priority": visit.priority})
    if commit:
        db.commit()
        db.refresh(visit)
    logger.info("Checked in %s as #%s (%s)", patient.name, visit.queue_number, visit.priority)
    return visit


# ===== CLINICAL UPDATES =====

def update_clinical(db: Session, actor, visit_id, data: Dict[str, Any], expected_stage=None,
                    expected_version: Optional[int] = None) -> Visit:
    require(actor, "visits.edit")
    visit = _lock_visit(db, actor, visit_id, expected_stage, expected_version)
    _ensure_editable(visit)
    for field, value in data.items():
        if field not in CLINICAL_FIELDS:
            continue
        if field == "priority":
            value = _parse_priority(value)
        setattr(visit, field, value)
    return _commit(db, visit)


def order_lab_test(db: Session, actor, visit_id, test_name: str, price: float = 0.0, test_id: Optional[str] = None,
                   notes: Optional[str] = None, expected_stage=None) -> Visit:
    require(actor, "visits.edit")
    visit = _lock_visit(db, actor, visit_id, expected_stage)
    _ensure_editable(visit)
    visit.lab_orders.append(LabOrder(test_id=test_id, test_name=test_name, price=price, notes=notes, ordered_at=clinic_now()))
    _refresh_bill(visit)
    return _commit(db, visit)


def record_lab_result(db: Session, actor, visit_id, order_id, result: str, flag: Optional[str] = None,
                      notes: Optional[str] = None) -> Visit:
    """Lab techs and clinicians write results; orders stay priced as ordered."""
    require(actor, "visits.edit")
    visit = _lock_visit(db, actor, visit_id)
    _ensure_editable(visit)
    order = next((o for o in visit.lab_orders if o.id == order_id), None)
    if order is None:
        raise NotFoundError("Lab order not found")
    order.result = result
    order.flag = flag
    if notes is not None:
        order.notes = notes
    order.status = LabOrderStatus.COMPLETED
    order.completed_at = clinic_now()
    return _commit(db, visit)


def set_prescription(db: Session, actor, visit_id, items: Iterable[Dict[str, Any]], expected_stage=None) -> Visit:
    """Replace the prescription. Lines linked to inventory default to its name and price."""
    require(actor, "visits.edit")
    visit = _lock_visit(db, actor, visit_id, expected_stage)
    _ensure_editable(visit)

    lines = []
    for raw in items:
        line = dict(raw)
        if int(line.get("quantity") or 0) <= 0:
            raise PayloadError("Prescribed quantity must be positive")
        if line.get("inventory_id") is not None:
            stock_item = get_scoped(db, InventoryItem, line["inventory_id"], actor, "Inventory item")
            if not line.get("name"):
                line["name"] = stock_item.name
            if line.get("price") is None:
                line["price"] = stock_item.price
        if not line.get("name"):
            raise PayloadError("Prescription lines need a name or an inventory item")
        lines.append(PrescriptionItem(
            inventory_id=line.get("inventory_id"),
            name=line["name"],
            dosage=line.get("dosage"),
            quantity=int(line["quantity"]),
            price=float(line.get("price") or 0.0),
        ))

    visit.prescription = lines
    _refresh_bill(visit)
    return _commit(db, visit)


# ===== STAGE MOVES =====

def _complete(db: Session, visit: Visit) -> None:
    patient = db.get(Patient, visit.patient_id)
    started = visit.start_time or clinic_now()
    diagnosis = f"Dx: {visit.diagnosis}" if visit.diagnosis else "No Diagnosis"
    notes = f"Notes: {visit.doctor_notes}" if visit.doctor_notes else ""
    summary = f"[{started.strftime('%Y-%m-%d')}] {diagnosis}. {notes}".strip()
    patient.history = [summary] + list(patient.history or [])
    patient.last_visit = clinic_now().date()


def transition_visit(db: Session, actor, visit_id, target, expected_stage=None,
                     expected_version: Optional[int] = None) -> Visit:
    """Move a visit along the pipeline on behalf of ``actor``.

    Leaving Pharmacy dispenses the prescription; completing a visit writes the
    summary into the patient's history. Both happen in the same commit as the
    stage change.
    """
    visit = _lock_visit(db, actor, visit_id, expected_stage, expected_version)
    source = visit.stage
    capability = check_transition(visit, target, actor)
    target = parse_stage(target)

    if source == VisitStage.PHARMACY and target == VisitStage.CLEARANCE:
        dispense_for_visit(db, actor, visit)
    if target == VisitStage.BILLING:
        visit.total_bill = compute_bill(visit)
    if target == VisitStage.COMPLETED:
        _complete(db, visit)

    apply_transition(visit, target)
    audit.record(db, "visit.stage_changed", "visit", visit.id, actor=actor,
                 details={"from": source.value, "to": target.value, "capability": capability})
    _commit(db, visit)
    logger.info("Visit %s moved %s -> %s by %s", visit.id, source.value, target.value, actor.email)
    return visit
