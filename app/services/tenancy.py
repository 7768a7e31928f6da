from uuid import UUID

from sqlalchemy.orm import Session

from app.core.errors import AuthorizationError, NotFoundError


def clinic_id_of(actor) -> UUID:
    """The tenant every query of ``actor`` is scoped to."""
    if actor is None or actor.clinic_id is None:
        raise AuthorizationError("No clinic context for this account.")
    return actor.clinic_id


def scoped_query(db: Session, model, actor):
    return db.query(model).filter(model.clinic_id == clinic_id_of(actor))


def get_scoped(db: Session, model, record_id, actor, label: str = None, for_update: bool = False):
    """Fetch a row by id inside the actor's clinic; other tenants' rows are invisible."""
    query = scoped_query(db, model, actor).filter(model.id == record_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    record = query.first()
    if record is None:
        raise NotFoundError(f"{label or model.__name__} not found")
    return record
