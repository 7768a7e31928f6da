from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.queue import stage_counts
from app.database import get_db
from app.models.all_models import (
    User, Patient, Visit, VisitStage, Transaction, TransactionStatus, InventoryItem
)
from app.routes.utils.security import require_permission
from app.services.payments import PURPOSE_PLAN, PURPOSE_VISIT, payment_purpose
from app.schemas.clinic import ReportSummary, ReportExport

router = APIRouter(prefix="/reports", tags=["reports"])

EXPORT_COLUMNS = {
    "visits": ["queue_number", "patient_name", "stage", "priority", "start_time", "total_bill", "payment_status"],
    "transactions": ["reference", "provider", "amount", "currency", "status", "created_at", "processed_at"],
    "patients": ["name", "phone", "age", "gender", "blood_group", "last_visit"],
}
EXPORT_MODELS = {
    "visits": (Visit, Visit.start_time),
    "transactions": (Transaction, Transaction.created_at),
    "patients": (Patient, Patient.name),
}


def _cell(value):
    value = getattr(value, "value", value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value

@router.get("/summary", response_model=ReportSummary)
async def get_summary(
    current_user: User = Depends(require_permission("reports.view")),
    db: Session = Depends(get_db)
):
    clinic_id = current_user.clinic_id

    visits = db.query(Visit).filter(Visit.clinic_id == clinic_id)
    active = visits.filter(Visit.stage != VisitStage.COMPLETED).all()
    transactions = db.query(Transaction).filter(Transaction.clinic_id == clinic_id)
    # revenue is patient income; subscription payments are the clinic's own spend
    settled = {PURPOSE_VISIT: 0.0, PURPOSE_PLAN: 0.0}
    for txn in transactions.filter(Transaction.status == TransactionStatus.SUCCESS):
        purpose = payment_purpose(txn.meta or {})
        if purpose in settled:
            settled[purpose] += float(txn.amount or 0.0)

    return ReportSummary(
        total_patients=db.query(Patient).filter(Patient.clinic_id == clinic_id).count(),
        active_visits=len(active),
        visits_by_stage=stage_counts(active),
        completed_visits=visits.filter(Visit.stage == VisitStage.COMPLETED).count(),
        revenue=round(settled[PURPOSE_VISIT], 2),
        plan_spend=round(settled[PURPOSE_PLAN], 2),
        pending_payments=transactions.filter(Transaction.status == TransactionStatus.PENDING).count(),
        flagged_payments=transactions.filter(Transaction.flagged_at.isnot(None)).count(),
        low_stock_items=db.query(InventoryItem).filter(
            InventoryItem.clinic_id == clinic_id,
            InventoryItem.is_active.is_(True),
            InventoryItem.stock <= InventoryItem.min_stock_level
        ).count(),
        currency=current_user.clinic.currency if current_user.clinic else None,
    )

@router.get("/export", response_model=ReportExport)
async def export_report(
    kind: str = Query(..., pattern=r'^(visits|transactions|patients)$'),
    current_user: User = Depends(require_permission("reports.export")),
    db: Session = Depends(get_db)
):
    """Flat rows for spreadsheets; formatting is left to the client."""
    model, ordering = EXPORT_MODELS[kind]
    columns = EXPORT_COLUMNS[kind]
    records = db.query(model).filter(model.clinic_id == current_user.clinic_id).order_by(ordering).all()
    return ReportExport(
        kind=kind,
        columns=columns,
        rows=[[_cell(getattr(record, column)) for column in columns] for record in records],
    )
