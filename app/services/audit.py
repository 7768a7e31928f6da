from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.all_models import AuditLog


def record(
    db: Session,
    action: str,
    resource_type: str,
    resource_id=None,
    actor=None,
    clinic_id=None,
    details: Optional[Dict[str, Any]] = None,
    status: str = "Success",
) -> AuditLog:
    """Stage an audit entry on the session; the caller's commit persists it."""
    entry = AuditLog(
        clinic_id=clinic_id if clinic_id is not None else getattr(actor, "clinic_id", None),
        user_id=getattr(actor, "id", None),
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=details or {},
        status=status,
    )
    db.add(entry)
    return entry
