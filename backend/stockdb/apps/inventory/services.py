from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, NamedTuple, Optional, Protocol, Union

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, noload

from stockdb.apps.audit import services as audit_services
from stockdb.apps.catalog import models as catalog_models
from stockdb.security import SYSTEM_USER_ID
from . import alerts, models, schemas

logger = logging.getLogger(__name__)

try:
    LOW_STOCK_THRESHOLD: int = int(
        os.getenv("LOW_STOCK_THRESHOLD", str(alerts.DEFAULT_LOW_STOCK_THRESHOLD))
    )
except ValueError:
    LOW_STOCK_THRESHOLD = alerts.DEFAULT_LOW_STOCK_THRESHOLD

_CENT = Decimal("0.01")
_MAX_REFERENCE_LENGTH = 128

_DIRECTION_ALIASES = {
    "in": models.StockMovementDirectionEnum.IN,
    "entrada": models.StockMovementDirectionEnum.IN,
    "out": models.StockMovementDirectionEnum.OUT,
    "saida": models.StockMovementDirectionEnum.OUT,
    "saída": models.StockMovementDirectionEnum.OUT,
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StockMovementError(Exception):
    """
    Base class for expected, caller-recoverable movement failures.

    `code` is machine-readable; `context` carries the ids and quantities an
    operator needs to act on the error without looking anything else up.
    """

    code = "stock_movement_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **_jsonable(self.context)}


class ProductNotFound(StockMovementError):
    code = "product_not_found"

    def __init__(self, product_id: Any) -> None:
        super().__init__(f"Product {product_id} not found.", product_id=product_id)
        self.product_id = product_id


class InsufficientStock(StockMovementError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, *, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}.",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidMovement(StockMovementError):
    code = "invalid_movement"

    def __init__(self, message: str, *, field: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, field=field, **context)
        self.field = field


class MovementNotFound(StockMovementError):
    code = "movement_not_found"

    def __init__(self, movement_id: Any) -> None:
        super().__init__(f"Stock movement {movement_id} not found.", movement_id=movement_id)
        self.movement_id = movement_id


# ---------------------------------------------------------------------------
# Audit recording
# ---------------------------------------------------------------------------


class AuditRecorder(Protocol):
    def record(
        self,
        *,
        acting_user_id: str,
        action: str,
        description: str,
        details: Dict[str, Any],
    ) -> None:
        ...


class DatabaseAuditRecorder:
    """
    Writes one `audit_events` row per movement attempt and commits it.

    Runs after the movement transaction has committed or rolled back, so
    it never holds the product row lock. Failures are logged and do not
    undo a committed movement.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        *,
        acting_user_id: str,
        action: str,
        description: str,
        details: Dict[str, Any],
    ) -> None:
        try:
            event = audit_services.log_event(
                self.db,
                actor_user_id=acting_user_id,
                entity_type="Product",
                entity_id=str(details.get("product_id")),
                action=action,
                description=description,
                after=details,
                metadata={"module": "inventory"},
            )
            if event is None:
                self.db.rollback()
                return
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning(
                "Failed to commit stock movement audit event",
                exc_info=True,
                extra={"action": action, "product_id": details.get("product_id")},
            )


class MovementResult(NamedTuple):
    product: catalog_models.Product
    movement: models.StockMovement


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (models.StockMovementDirectionEnum, models.StockOutReasonEnum)):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _resolve_acting_user(acting_user_id: Optional[str]) -> str:
    if acting_user_id is None or not str(acting_user_id).strip():
        return SYSTEM_USER_ID
    return str(acting_user_id).strip()


def _coerce_direction(direction: Any) -> models.StockMovementDirectionEnum:
    if isinstance(direction, models.StockMovementDirectionEnum):
        return direction
    if isinstance(direction, str):
        found = _DIRECTION_ALIASES.get(direction.strip().lower())
        if found:
            return found
    raise InvalidMovement(
        f"Unknown movement direction {direction!r}; expected 'in' or 'out'.",
        field="direction",
    )


def coerce_reason(reason: Any) -> models.StockOutReasonEnum:
    """
    Accept a stock-out reason by stored value ("Venda") or by name
    ("sale"), case-insensitively.
    """
    if isinstance(reason, models.StockOutReasonEnum):
        return reason
    if isinstance(reason, str) and reason.strip():
        wanted = reason.strip().lower()
        for member in models.StockOutReasonEnum:
            if wanted in (member.value.lower(), member.name.lower()):
                return member
        allowed = ", ".join(member.value for member in models.StockOutReasonEnum)
        raise InvalidMovement(
            f"Stock-out reason {reason!r} is not allowed; expected one of: {allowed}.",
            field="reason",
        )
    raise InvalidMovement("A reason is required for stock-out movements.", field="reason")


def _coerce_unit_cost(unit_cost: Any) -> Decimal:
    if unit_cost is None or isinstance(unit_cost, bool):
        raise InvalidMovement("unit_cost is required for stock-in movements.", field="unit_cost")
    try:
        value = Decimal(str(unit_cost))
    except (InvalidOperation, ValueError):
        raise InvalidMovement(f"unit_cost {unit_cost!r} is not a number.", field="unit_cost")
    if not value.is_finite() or value <= 0:
        raise InvalidMovement("unit_cost must be greater than zero.", field="unit_cost")
    value = value.quantize(_CENT, rounding=ROUND_HALF_UP)
    if value <= 0:
        raise InvalidMovement("unit_cost must be at least 0.01.", field="unit_cost")
    return value


def _validate_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidMovement(
            f"Movement quantity must be a positive integer, got {quantity!r}.",
            field="quantity",
        )
    if quantity <= 0:
        raise InvalidMovement(
            f"Movement quantity must be greater than zero, got {quantity}.",
            field="quantity",
        )
    return quantity


def _validate_reference(reference: Optional[str]) -> Optional[str]:
    if reference is None:
        return None
    reference = str(reference).strip()
    if len(reference) > _MAX_REFERENCE_LENGTH:
        raise InvalidMovement(
            f"reference must be at most {_MAX_REFERENCE_LENGTH} characters.",
            field="reference",
        )
    return reference or None


def _validate_request(
    *,
    product_id: Any,
    direction: Any,
    quantity: Any,
    unit_cost: Any,
    reason: Any,
    reference: Optional[str],
) -> Dict[str, Any]:
    if isinstance(product_id, bool) or not isinstance(product_id, int):
        raise InvalidMovement(f"product_id must be an integer, got {product_id!r}.", field="product_id")
    direction_enum = _coerce_direction(direction)
    quantity = _validate_quantity(quantity)
    if direction_enum == models.StockMovementDirectionEnum.IN:
        if reason is not None:
            raise InvalidMovement("reason is only accepted on stock-out movements.", field="reason")
        cost = _coerce_unit_cost(unit_cost)
        reason_enum = None
    else:
        if unit_cost is not None:
            raise InvalidMovement("unit_cost is only accepted on stock-in movements.", field="unit_cost")
        cost = None
        reason_enum = coerce_reason(reason)
    return {
        "direction": direction_enum,
        "quantity": quantity,
        "unit_cost": cost,
        "reason": reason_enum,
        "reference": _validate_reference(reference),
    }


def _current_quantity(db: Session, product_id: int) -> Optional[int]:
    return db.execute(
        select(catalog_models.Product.quantity).where(catalog_models.Product.id == product_id)
    ).scalar_one_or_none()


def _apply_in_transaction(
    db: Session,
    *,
    product_id: int,
    direction: models.StockMovementDirectionEnum,
    quantity: int,
    unit_cost: Optional[Decimal],
    reason: Optional[models.StockOutReasonEnum],
    reference: Optional[str],
    notes: Optional[str],
    acting_user_id: str,
) -> MovementResult:
    Product = catalog_models.Product

    # Row lock on dialects that support it (PostgreSQL, MySQL). The guarded
    # UPDATE below keeps the check-then-act atomic everywhere else.
    locked = db.execute(
        select(Product.id, Product.quantity).where(Product.id == product_id).with_for_update()
    ).first()
    if locked is None:
        raise ProductNotFound(product_id)
    if direction == models.StockMovementDirectionEnum.OUT and locked.quantity < quantity:
        raise InsufficientStock(product_id, requested=quantity, available=locked.quantity)

    delta = quantity if direction == models.StockMovementDirectionEnum.IN else -quantity
    stmt = update(Product).where(Product.id == product_id)
    if direction == models.StockMovementDirectionEnum.OUT:
        stmt = stmt.where(Product.quantity >= quantity)
    stmt = stmt.values(quantity=Product.quantity + delta).execution_options(synchronize_session=False)
    if db.execute(stmt).rowcount != 1:
        available = _current_quantity(db, product_id)
        if available is None:
            raise ProductNotFound(product_id)
        raise InsufficientStock(product_id, requested=quantity, available=available)

    quantity_after = _current_quantity(db, product_id)
    movement = models.StockMovement(
        product_id=product_id,
        direction=direction,
        quantity=quantity,
        unit_cost=unit_cost,
        reason=reason,
        reference=reference,
        notes=notes,
        quantity_before=quantity_after - delta,
        quantity_after=quantity_after,
        occurred_at=_utcnow(),
        acting_user_id=acting_user_id,
    )
    db.add(movement)
    db.flush()

    product = db.get(Product, product_id)
    db.refresh(product)
    return MovementResult(product=product, movement=movement)


def _success_details(result: MovementResult) -> Dict[str, Any]:
    movement = result.movement
    return _jsonable(
        {
            "movement_id": movement.id,
            "product_id": result.product.id,
            "product_name": result.product.name,
            "direction": movement.direction,
            "quantity": movement.quantity,
            "delta": movement.signed_quantity,
            "old_quantity": movement.quantity_before,
            "new_quantity": movement.quantity_after,
            "acting_user_id": movement.acting_user_id,
            "unit_cost": movement.unit_cost,
            "reason": movement.reason,
            "reference": movement.reference,
        }
    )


def _success_description(details: Dict[str, Any]) -> str:
    label = "Stock in" if details["direction"] == "in" else "Stock out"
    return (
        f"{label} of {details['quantity']} for product '{details['product_name']}' "
        f"(ID: {details['product_id']}): {details['old_quantity']} -> {details['new_quantity']}."
    )


# ---------------------------------------------------------------------------
# Movements
# ---------------------------------------------------------------------------


def apply_movement(
    db: Session,
    *,
    product_id: int,
    direction: Union[models.StockMovementDirectionEnum, str],
    quantity: int,
    unit_cost: Any = None,
    reason: Any = None,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    acting_user_id: Optional[str] = None,
    recorder: Optional[AuditRecorder] = None,
) -> MovementResult:
    """
    The only path that changes `Product.quantity`.

    Validates the request, then in a single transaction applies the delta
    and appends the ledger row, and commits. Either both happen or
    neither does. Every attempt, successful or not, is passed to the
    audit recorder after the transaction has ended.

    The caller's session must hold no pending work: the movement commits
    or rolls back the whole session. InvalidMovement is raised when
    `db.new`, `db.dirty` or `db.deleted` is non-empty on entry.

    Raises ProductNotFound, InsufficientStock or InvalidMovement with no
    state changed.
    """
    if db.new or db.dirty or db.deleted:
        raise InvalidMovement(
            "Commit or roll back pending session changes before recording a stock movement.",
            field="session",
        )
    acting_user_id = _resolve_acting_user(acting_user_id)
    recorder = recorder or DatabaseAuditRecorder(db)
    attempted = {
        "product_id": product_id,
        "direction": direction,
        "quantity": quantity,
        "unit_cost": unit_cost,
        "reason": reason,
        "reference": reference,
    }

    try:
        request = _validate_request(
            product_id=product_id,
            direction=direction,
            quantity=quantity,
            unit_cost=unit_cost,
            reason=reason,
            reference=reference,
        )
        result = _apply_in_transaction(
            db,
            product_id=product_id,
            notes=notes,
            acting_user_id=acting_user_id,
            **request,
        )
        details = _success_details(result)
        db.commit()
    except StockMovementError as exc:
        db.rollback()
        _record_failure(recorder, exc, attempted=attempted, acting_user_id=acting_user_id)
        raise
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Stock movement applied",
        extra={
            "movement_id": details["movement_id"],
            "product_id": details["product_id"],
            "direction": details["direction"],
            "quantity": details["quantity"],
            "new_quantity": details["new_quantity"],
            "acting_user_id": acting_user_id,
        },
    )
    recorder.record(
        acting_user_id=acting_user_id,
        action=f"stock_{details['direction']}",
        description=_success_description(details),
        details=details,
    )
    return result


def _record_failure(
    recorder: AuditRecorder,
    exc: StockMovementError,
    *,
    attempted: Dict[str, Any],
    acting_user_id: str,
) -> None:
    direction = attempted.get("direction")
    try:
        action = f"stock_{_coerce_direction(direction).value}_failed"
    except InvalidMovement:
        action = "stock_movement_failed"
    logger.info(
        "Stock movement rejected",
        extra={"error_code": exc.code, "product_id": attempted.get("product_id"), "acting_user_id": acting_user_id},
    )
    details = {
        "product_id": attempted.get("product_id"),
        "acting_user_id": acting_user_id,
        "error": exc.to_dict(),
        "attempted": _jsonable(attempted),
    }
    recorder.record(
        acting_user_id=acting_user_id,
        action=action,
        description=f"Rejected stock movement for product {attempted.get('product_id')}: {exc.message}",
        details=_jsonable(details),
    )


def record_stock_in(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    unit_cost: Any,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    acting_user_id: Optional[str] = None,
    recorder: Optional[AuditRecorder] = None,
) -> MovementResult:
    return apply_movement(
        db,
        product_id=product_id,
        direction=models.StockMovementDirectionEnum.IN,
        quantity=quantity,
        unit_cost=unit_cost,
        reference=reference,
        notes=notes,
        acting_user_id=acting_user_id,
        recorder=recorder,
    )


def record_stock_out(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    reason: Any,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    acting_user_id: Optional[str] = None,
    recorder: Optional[AuditRecorder] = None,
) -> MovementResult:
    return apply_movement(
        db,
        product_id=product_id,
        direction=models.StockMovementDirectionEnum.OUT,
        quantity=quantity,
        reason=reason,
        reference=reference,
        notes=notes,
        acting_user_id=acting_user_id,
        recorder=recorder,
    )


# ---------------------------------------------------------------------------
# Ledger reads
# ---------------------------------------------------------------------------


def list_movements(
    db: Session,
    *,
    product_id: Optional[int] = None,
    direction: Optional[Union[models.StockMovementDirectionEnum, str]] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.StockMovement]:
    query = db.query(models.StockMovement)
    if product_id is not None:
        query = query.filter(models.StockMovement.product_id == product_id)
    if direction is not None:
        query = query.filter(models.StockMovement.direction == _coerce_direction(direction))
    return (
        query.order_by(models.StockMovement.occurred_at.desc(), models.StockMovement.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_movement(db: Session, movement_id: str) -> models.StockMovement:
    movement = db.get(models.StockMovement, movement_id)
    if not movement:
        raise MovementNotFound(movement_id)
    return movement


def reconcile_product(db: Session, product_id: int) -> schemas.StockReconciliation:
    """
    Check that opening quantity plus signed ledger movements equals the
    product's current quantity.
    """
    product = db.get(catalog_models.Product, product_id)
    if not product:
        raise ProductNotFound(product_id)

    Movement = models.StockMovement
    totals = db.execute(
        select(
            func.coalesce(
                func.sum(case((Movement.direction == models.StockMovementDirectionEnum.IN, Movement.quantity), else_=0)),
                0,
            ),
            func.coalesce(
                func.sum(case((Movement.direction == models.StockMovementDirectionEnum.OUT, Movement.quantity), else_=0)),
                0,
            ),
            func.count(Movement.id),
        ).where(Movement.product_id == product_id)
    ).one()
    total_in, total_out, movement_count = int(totals[0]), int(totals[1]), int(totals[2])
    expected = product.opening_quantity + total_in - total_out
    return schemas.StockReconciliation(
        product_id=product.id,
        opening_quantity=product.opening_quantity,
        total_in=total_in,
        total_out=total_out,
        expected_quantity=expected,
        quantity=product.quantity,
        movement_count=movement_count,
        consistent=expected == product.quantity,
    )


# ---------------------------------------------------------------------------
# Low-stock alerts
# ---------------------------------------------------------------------------


def list_low_stock_alerts(
    db: Session,
    *,
    threshold: Optional[int] = None,
) -> List[schemas.LowStockAlertRead]:
    threshold = LOW_STOCK_THRESHOLD if threshold is None else threshold
    suppliers = {
        row.id: row
        for row in db.execute(select(catalog_models.Supplier.id, catalog_models.Supplier.name)).all()
    }
    products = (
        db.query(catalog_models.Product)
        .options(noload(catalog_models.Product.supplier), noload(catalog_models.Product.category))
        .filter(catalog_models.Product.quantity < threshold)
        .order_by(catalog_models.Product.id.asc())
        .all()
    )
    grouped = alerts.compute_alerts(products, threshold=threshold, known_supplier_ids=suppliers.keys())

    results: List[schemas.LowStockAlertRead] = []
    for key, items in grouped.items():
        supplier = suppliers.get(key) if key != alerts.UNASSIGNED_GROUP else None
        results.append(
            schemas.LowStockAlertRead(
                group_key=str(key),
                supplier_id=supplier.id if supplier else None,
                supplier_name=supplier.name if supplier else None,
                threshold=threshold,
                products=[schemas.LowStockProductRead.model_validate(item) for item in items],
            )
        )
    return results
