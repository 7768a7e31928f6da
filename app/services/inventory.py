import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, PayloadError
from app.core.roles import require
from app.models.all_models import InventoryAction, InventoryCategory, InventoryItem, InventoryLog
from app.services import audit
from app.services.tenancy import clinic_id_of, get_scoped, scoped_query

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "category", "unit", "stock", "min_stock_level", "price", "batch_number", "expiry_date")


def _log(db: Session, actor, item: InventoryItem, action: InventoryAction, change: int = 0, notes: str = None) -> InventoryLog:
    entry = InventoryLog(
        clinic_id=item.clinic_id,
        item_id=item.id,
        item_name=item.name,
        action=action,
        quantity_change=change,
        notes=notes,
        actor_id=getattr(actor, "id", None),
        actor_name=getattr(actor, "full_name", None) or "System",
    )
    db.add(entry)
    return entry


def _active_item(db: Session, actor, item_id) -> InventoryItem:
    item = get_scoped(db, InventoryItem, item_id, actor, "Inventory item")
    if not item.is_active:
        raise NotFoundError("Inventory item not found")
    return item


def list_items(db: Session, actor, category: Optional[str] = None) -> List[InventoryItem]:
    require(actor, "inventory.view")
    query = scoped_query(db, InventoryItem, actor).filter(InventoryItem.is_active.is_(True))
    if category:
        try:
            query = query.filter(InventoryItem.category == InventoryCategory(category))
        except ValueError:
            raise PayloadError(f"Unknown inventory category: {category!r}")
    return query.order_by(InventoryItem.name).all()


def low_stock(db: Session, actor) -> List[InventoryItem]:
    """Active items at or below their reorder level."""
    require(actor, "inventory.view")
    return (
        scoped_query(db, InventoryItem, actor)
        .filter(InventoryItem.is_active.is_(True), InventoryItem.stock <= InventoryItem.min_stock_level)
        .order_by(InventoryItem.stock)
        .all()
    )


def create_item(db: Session, actor, data: Dict[str, Any]) -> InventoryItem:
    require(actor, "inventory.create")
    item = InventoryItem(clinic_id=clinic_id_of(actor), **{k: v for k, v in data.items() if k in EDITABLE_FIELDS})
    if (item.stock or 0) < 0:
        raise PayloadError("Stock cannot be negative")
    db.add(item)
    db.flush()
    _log(db, actor, item, InventoryAction.CREATED, item.stock or 0, "Initial stock")
    db.commit()
    db.refresh(item)
    logger.info("Inventory item %s created in clinic %s", item.name, item.clinic_id)
    return item


def update_item(db: Session, actor, item_id, data: Dict[str, Any]) -> InventoryItem:
    require(actor, "inventory.edit")
    item = _active_item(db, actor, item_id)
    before = item.stock or 0
    for field, value in data.items():
        if field in EDITABLE_FIELDS:
            setattr(item, field, value)
    if (item.stock or 0) < 0:
        raise PayloadError("Stock cannot be negative")

    changed = [field for field in data if field in EDITABLE_FIELDS]
    _log(db, actor, item, InventoryAction.UPDATED, (item.stock or 0) - before, "Updated: " + ", ".join(changed))
    db.commit()
    db.refresh(item)
    return item


def restock(db: Session, actor, item_id, quantity: int, notes: Optional[str] = None) -> InventoryItem:
    require(actor, "inventory.adjust")
    if quantity <= 0:
        raise PayloadError("Restock quantity must be positive")
    item = get_scoped(db, InventoryItem, item_id, actor, "Inventory item", for_update=True)
    if not item.is_active:
        raise NotFoundError("Inventory item not found")
    item.stock = (item.stock or 0) + quantity
    _log(db, actor, item, InventoryAction.RESTOCKED, quantity, notes)
    db.commit()
    db.refresh(item)
    logger.info("Restocked %s by %s (now %s)", item.name, quantity, item.stock)
    return item


def delete_item(db: Session, actor, item_id) -> None:
    """Soft delete: the row stays so its history keeps resolving."""
    require(actor, "inventory.delete")
    item = _active_item(db, actor, item_id)
    item.is_active = False
    _log(db, actor, item, InventoryAction.DELETED, 0)
    audit.record(db, "inventory.deleted", "inventory_item", item.id, actor=actor, details={"name": item.name})
    db.commit()


def list_logs(db: Session, actor, item_id=None, limit: int = 100) -> List[InventoryLog]:
    require(actor, "inventory.view")
    query = scoped_query(db, InventoryLog, actor)
    if item_id is not None:
        query = query.filter(InventoryLog.item_id == item_id)
    return query.order_by(InventoryLog.created_at.desc()).limit(limit).all()


def dispense_for_visit(db: Session, actor, visit) -> None:
    """Take prescribed quantities out of stock. Stock floors at zero.

    Does not commit; runs inside the stage transition that releases the patient.
    """
    for line in visit.prescription:
        if line.inventory_id is None:
            continue
        item = (
            db.query(InventoryItem)
            .filter(InventoryItem.id == line.inventory_id, InventoryItem.clinic_id == visit.clinic_id)
            .with_for_update()
            .first()
        )
        if item is None:
            logger.warning("Prescribed item %s on visit %s is not in inventory", line.inventory_id, visit.id)
            continue
        before = item.stock or 0
        item.stock = max(0, before - int(line.quantity))
        if before < line.quantity:
            logger.warning("Dispensed %s x%s with only %s in stock", item.name, line.quantity, before)
        _log(db, actor, item, InventoryAction.DISPENSED, item.stock - before,
             f"Dispensed for visit #{visit.queue_number} ({visit.patient_name})")
    visit.medications_dispensed = True
