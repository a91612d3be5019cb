from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from stockdb.apps.catalog.schemas import ProductRead
from . import models


class StockMovementBase(BaseModel):
    # Quantity bounds are checked by the service so rejected attempts
    # still reach the audit trail.
    product_id: int
    quantity: int
    reference: Optional[str] = None
    notes: Optional[str] = None


class StockInRequest(StockMovementBase):
    unit_cost: Optional[Decimal] = None


class StockOutRequest(StockMovementBase):
    reason: Optional[str] = None


class StockMovementRead(BaseModel):
    id: str
    product_id: int
    direction: models.StockMovementDirectionEnum
    quantity: int
    unit_cost: Optional[Decimal] = None
    reason: Optional[models.StockOutReasonEnum] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    quantity_before: int
    quantity_after: int
    occurred_at: datetime
    acting_user_id: str

    class Config:
        from_attributes = True


class MovementResultRead(BaseModel):
    product: ProductRead
    movement: StockMovementRead

    class Config:
        from_attributes = True


class StockReconciliation(BaseModel):
    product_id: int
    opening_quantity: int
    total_in: int
    total_out: int
    expected_quantity: int
    quantity: int
    movement_count: int
    consistent: bool


class LowStockProductRead(BaseModel):
    id: int
    name: str
    barcode: Optional[str] = None
    quantity: int
    supplier_id: Optional[int] = None

    class Config:
        from_attributes = True


class LowStockAlertRead(BaseModel):
    group_key: str
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    threshold: int
    products: List[LowStockProductRead] = Field(default_factory=list)
