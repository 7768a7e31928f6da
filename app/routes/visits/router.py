from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from app.config import settings
from app.core import queue
from app.core.errors import ClinicError
from app.core.stages import allowed_targets
from app.database import get_db
from app.models.all_models import User, VisitStage, clinic_now
from app.routes.utils.security import http_error
from app.schemas.visit import (
    CheckInRequest,
    StageChangeRequest,
    ClinicalUpdate,
    LabOrderCreate,
    LabResultUpdate,
    PrescriptionUpdate,
    VisitResponse,
    QueueEntryResponse,
    QueueResponse,
)
from app.services import visits as visit_service
from app.utils.auth import get_current_user

router = APIRouter(prefix="/visits", tags=["visits"])

# ===== QUEUE =====

@router.get("/queue/{stage}", response_model=QueueResponse)
async def get_stage_queue(
    stage: VisitStage,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Waiting list for one stage: highest priority first, then longest wait.
    Clients poll this every ``refresh_interval_seconds``.
    """
    try:
        active = visit_service.active_visits(db, current_user)
    except ClinicError as exc:
        raise http_error(exc)

    now = clinic_now()
    entries = [
        QueueEntryResponse(**entry._asdict(), wait_minutes=queue.wait_minutes(entry, now))
        for entry in queue.build_queue(active, stage)
    ]
    return QueueResponse(
        stage=stage,
        entries=entries,
        counts=queue.stage_counts(active),
        refresh_interval_seconds=min(settings.QUEUE_REFRESH_SECONDS, queue.MAX_REFRESH_SECONDS),
    )

# ===== VISITS =====

@router.get("", response_model=List[VisitResponse])
async def list_visits(
    stage: Optional[VisitStage] = Query(None),
    patient_id: Optional[UUID] = Query(None),
    include_completed: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return visit_service.list_visits(
            db, current_user,
            stage=stage.value if stage else None,
            patient_id=patient_id,
            include_completed=include_completed,
        )
    except ClinicError as exc:
        raise http_error(exc)

@router.post("", response_model=VisitResponse, status_code=status.HTTP_201_CREATED)
async def check_in_patient(
    check_in: CheckInRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return visit_service.check_in(
            db, current_user, check_in.patient_id,
            priority=check_in.priority,
            insurance=check_in.insurance,
            chief_complaint=check_in.chief_complaint,
        )
    except ClinicError as exc:
        raise http_error(exc)

@router.get("/{visit_id}", response_model=VisitResponse)
async def get_visit(
    visit_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return visit_service.get_visit(db, current_user, visit_id)
    except ClinicError as exc:
        raise http_error(exc)

@router.get("/{visit_id}/transitions", response_model=List[VisitStage])
async def get_allowed_transitions(
    visit_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Stages this visit may be moved to by hand (payment-driven moves excluded)."""
    try:
        visit = visit_service.get_visit(db, current_user, visit_id)
    except ClinicError as exc:
        raise http_error(exc)
    return allowed_targets(visit.stage)

@router.post("/{visit_id}/stage", response_model=VisitResponse)
async def change_stage(
    visit_id: UUID,
    change: StageChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return visit_service.transition_visit(
            db, current_user, visit_id, change.target_stage,
            expected_stage=change.expected_stage,
            expected_version=change.expected_version,
        )
    except ClinicError as exc:
        raise http_error(exc)

@router.patch("/{visit_id}", response_model=VisitResponse)
async def update_visit(
    visit_id: UUID,
    update: ClinicalUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    data = update.model_dump(exclude_unset=True, exclude={"expected_stage", "expected_version"})
    try:
        return visit_service.update_clinical(
            db, current_user, visit_id, data,
            expected_stage=update.expected_stage,
            expected_version=update.expected_version,
        )
    except ClinicError as exc:
        raise http_error(exc)

# ===== LAB & PRESCRIPTION =====

@router.post("/{visit_id}/lab-orders", response_model=VisitResponse, status_code=status.HTTP_201_CREATED)
async def order_lab_test(
    visit_id: UUID,
    order: LabOrderCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return visit_service.order_lab_test(
            db, current_user, visit_id, order.test_name,
            price=order.price, test_id=order.test_id, notes=order.notes,
            expected_stage=order.expected_stage,
        )
    except ClinicError as exc:
        raise http_error(exc)

@router.put("/{visit_id}/lab-orders/{order_id}", response_model=VisitResponse)
async def record_lab_result(
    visit_id: UUID,
    order_id: UUID,
    result: LabResultUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return visit_service.record_lab_result(
            db, current_user, visit_id, order_id, result.result, flag=result.flag, notes=result.notes,
        )
    except ClinicError as exc:
        raise http_error(exc)

@router.put("/{visit_id}/prescription", response_model=VisitResponse)
async def set_prescription(
    visit_id: UUID,
    prescription: PrescriptionUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return visit_service.set_prescription(
            db, current_user, visit_id,
            [line.model_dump() for line in prescription.items],
            expected_stage=prescription.expected_stage,
        )
    except ClinicError as exc:
        raise http_error(exc)
