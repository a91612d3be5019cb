from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship, validates

from stockdb.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False, unique=True, index=True)
    contact_name = Column(String(128), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    products = relationship("Product", back_populates="supplier", lazy="select")

    @validates("name")
    def _validate_name(self, key, value):
        value = (value or "").strip()
        if not value:
            raise ValueError("Supplier name is required.")
        return value


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @validates("name")
    def _validate_name(self, key, value):
        value = (value or "").strip()
        if not value:
            raise ValueError("Category name is required.")
        return value


class Product(Base):
    """
    A stocked product.

    `quantity` is the authoritative on-hand count. It is only changed by
    `stockdb.apps.inventory.services.apply_movement`; `opening_quantity`
    records what the product held before its first ledger movement.
    """

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        CheckConstraint("opening_quantity >= 0", name="ck_products_opening_quantity_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        Index("ix_products_supplier_quantity", "supplier_id", "quantity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    barcode = Column(String(64), nullable=True, unique=True, index=True)
    price = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    quantity = Column(Integer, nullable=False, default=0)
    opening_quantity = Column(Integer, nullable=False, default=0)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    category = relationship("Category", lazy="joined")
    supplier = relationship("Supplier", back_populates="products", lazy="joined")

    @validates("name")
    def _validate_name(self, key, value):
        value = (value or "").strip()
        if not value:
            raise ValueError("Product name is required.")
        return value

    @validates("barcode")
    def _validate_barcode(self, key, value):
        if value is None:
            return None
        value = value.strip()
        return value or None

    @validates("price")
    def _validate_price(self, key, value):
        if value is None:
            raise ValueError("Product price is required.")
        value = Decimal(str(value))
        if value < 0:
            raise ValueError("Product price cannot be negative.")
        return value

    @validates("quantity", "opening_quantity")
    def _validate_quantity(self, key, value):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{key} must be an integer.")
        if value < 0:
            raise ValueError(f"{key} cannot be negative.")
        return value

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} quantity={self.quantity}>"
