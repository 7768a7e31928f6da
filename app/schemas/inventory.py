# app/schemas/inventory.py

from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime
from uuid import UUID

from app.models.all_models import InventoryCategory, InventoryAction


class InventoryItemBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    category: InventoryCategory = InventoryCategory.MEDICINE
    unit: str = "units"
    stock: int = Field(0, ge=0)
    min_stock_level: int = Field(10, ge=0)
    price: float = Field(0.0, ge=0)
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None

class InventoryItemCreate(InventoryItemBase):
    pass

class InventoryItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    category: Optional[InventoryCategory] = None
    unit: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    min_stock_level: Optional[int] = Field(None, ge=0)
    price: Optional[float] = Field(None, ge=0)
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None

class RestockRequest(BaseModel):
    quantity: int = Field(..., gt=0)
    notes: Optional[str] = None

class InventoryItemResponse(InventoryItemBase):
    id: UUID
    is_active: bool = True
    low_stock: bool = False
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_item(cls, item) -> "InventoryItemResponse":
        response = cls.model_validate(item)
        response.low_stock = item.stock <= item.min_stock_level
        return response

class InventoryLogResponse(BaseModel):
    id: UUID
    item_id: Optional[UUID] = None
    item_name: str
    action: InventoryAction
    quantity_change: int
    notes: Optional[str] = None
    actor_name: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
