from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None


class SupplierRead(SupplierCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: Optional[str] = None


class CategoryRead(CategoryCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


class ProductCreate(BaseModel):
    """
    New catalog entry. Stock always starts at zero; quantities are only
    changed through stock-in / stock-out movements.
    """

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    barcode: Optional[str] = Field(default=None, max_length=64)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    barcode: Optional[str] = Field(default=None, max_length=64)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None


class ProductRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    barcode: Optional[str] = None
    price: Decimal
    quantity: int
    opening_quantity: int
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
