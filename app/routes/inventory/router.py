from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from app.core.errors import ClinicError
from app.database import get_db
from app.models.all_models import User
from app.routes.utils.security import http_error
from app.schemas.inventory import (
    InventoryItemCreate,
    InventoryItemUpdate,
    InventoryItemResponse,
    InventoryLogResponse,
    RestockRequest,
)
from app.services import inventory
from app.utils.auth import get_current_user

router = APIRouter(prefix="/inventory", tags=["inventory"])

@router.get("", response_model=List[InventoryItemResponse])
async def list_items(
    category: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return [InventoryItemResponse.from_item(item) for item in inventory.list_items(db, current_user, category)]
    except ClinicError as exc:
        raise http_error(exc)

@router.get("/low-stock", response_model=List[InventoryItemResponse])
async def list_low_stock(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return [InventoryItemResponse.from_item(item) for item in inventory.low_stock(db, current_user)]
    except ClinicError as exc:
        raise http_error(exc)

@router.get("/logs", response_model=List[InventoryLogResponse])
async def list_logs(
    item_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return inventory.list_logs(db, current_user, item_id=item_id, limit=limit)
    except ClinicError as exc:
        raise http_error(exc)

@router.post("", response_model=InventoryItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(
    item_data: InventoryItemCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return InventoryItemResponse.from_item(inventory.create_item(db, current_user, item_data.model_dump()))
    except ClinicError as exc:
        raise http_error(exc)

@router.put("/{item_id}", response_model=InventoryItemResponse)
async def update_item(
    item_id: UUID,
    item_update: InventoryItemUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        item = inventory.update_item(db, current_user, item_id, item_update.model_dump(exclude_unset=True))
    except ClinicError as exc:
        raise http_error(exc)
    return InventoryItemResponse.from_item(item)

@router.post("/{item_id}/restock", response_model=InventoryItemResponse)
async def restock_item(
    item_id: UUID,
    restock: RestockRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        item = inventory.restock(db, current_user, item_id, restock.quantity, restock.notes)
    except ClinicError as exc:
        raise http_error(exc)
    return InventoryItemResponse.from_item(item)

@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(
    item_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        inventory.delete_item(db, current_user, item_id)
    except ClinicError as exc:
        raise http_error(exc)
