from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship, validates

from stockdb.database import Base
from stockdb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockMovementDirectionEnum(str, enum.Enum):
    IN = "in"
    OUT = "out"


class StockOutReasonEnum(str, enum.Enum):
    SALE = "Venda"
    ADJUSTMENT = "Ajuste"
    LOSS = "Perda"
    OTHER = "Outro"


class LedgerImmutabilityError(Exception):
    """Raised when code tries to change or remove a recorded movement."""

    def __init__(self, movement_id: object, operation: str) -> None:
        super().__init__(f"Stock movement {movement_id} is immutable; {operation} is not allowed.")
        self.movement_id = movement_id
        self.operation = operation


class StockMovement(Base):
    """
    One stock-in ("entrada") or stock-out ("saída") against a product.

    Rows are append-only: `quantity` is always the positive magnitude and
    `direction` gives the sign. `quantity_before` / `quantity_after`
    capture the product's on-hand count around the movement.
    """

    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        CheckConstraint(
            "(direction = 'in' AND unit_cost IS NOT NULL AND unit_cost > 0 AND reason IS NULL)"
            " OR (direction = 'out' AND reason IS NOT NULL AND unit_cost IS NULL)",
            name="ck_stock_movements_direction_attributes",
        ),
        Index("ix_stock_movements_product_time", "product_id", "occurred_at"),
        Index("ix_stock_movements_direction_time", "direction", "occurred_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    direction = Column(
        SAEnum(
            StockMovementDirectionEnum,
            name="stock_movement_direction_enum",
            native_enum=False,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        index=True,
    )
    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(12, 2), nullable=True)
    reason = Column(
        SAEnum(
            StockOutReasonEnum,
            name="stock_out_reason_enum",
            native_enum=False,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=True,
    )
    reference = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)

    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    acting_user_id = Column(String(64), nullable=False, index=True)

    product = relationship("Product", lazy="joined")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError("Movement quantity must be a positive integer.")
        return value

    @property
    def signed_quantity(self) -> int:
        if self.direction == StockMovementDirectionEnum.OUT:
            return -self.quantity
        return self.quantity

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product={self.product_id} "
            f"{self.direction.value if self.direction else None} {self.quantity}>"
        )


@event.listens_for(StockMovement, "before_update")
def _block_movement_update(mapper, connection, target):
    raise LedgerImmutabilityError(target.id, "UPDATE")


@event.listens_for(StockMovement, "before_delete")
def _block_movement_delete(mapper, connection, target):
    raise LedgerImmutabilityError(target.id, "DELETE")
