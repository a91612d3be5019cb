from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from stockdb.database import get_db, get_read_db
from stockdb.security import get_acting_user_id
from stockdb.apps.catalog.schemas import ProductRead

from . import models, schemas, services

router = APIRouter(
    prefix="/inventory",
    tags=["inventory"],
)

_ERROR_STATUS = {
    services.ProductNotFound: status.HTTP_404_NOT_FOUND,
    services.MovementNotFound: status.HTTP_404_NOT_FOUND,
    services.InsufficientStock: status.HTTP_409_CONFLICT,
    services.InvalidMovement: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def _raise_http(exc: services.StockMovementError) -> None:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=status_code, detail=exc.to_dict())


def _result_response(result: services.MovementResult) -> schemas.MovementResultRead:
    return schemas.MovementResultRead(
        product=ProductRead.model_validate(result.product),
        movement=schemas.StockMovementRead.model_validate(result.movement),
    )


@router.post(
    "/stock-in",
    response_model=schemas.MovementResultRead,
    status_code=status.HTTP_201_CREATED,
)
def stock_in(
    payload: schemas.StockInRequest,
    db: Session = Depends(get_db),
    acting_user_id: str = Depends(get_acting_user_id),
):
    try:
        result = services.record_stock_in(
            db,
            product_id=payload.product_id,
            quantity=payload.quantity,
            unit_cost=payload.unit_cost,
            reference=payload.reference,
            notes=payload.notes,
            acting_user_id=acting_user_id,
        )
    except services.StockMovementError as exc:
        _raise_http(exc)
    return _result_response(result)


@router.post(
    "/stock-out",
    response_model=schemas.MovementResultRead,
    status_code=status.HTTP_201_CREATED,
)
def stock_out(
    payload: schemas.StockOutRequest,
    db: Session = Depends(get_db),
    acting_user_id: str = Depends(get_acting_user_id),
):
    try:
        result = services.record_stock_out(
            db,
            product_id=payload.product_id,
            quantity=payload.quantity,
            reason=payload.reason,
            reference=payload.reference,
            notes=payload.notes,
            acting_user_id=acting_user_id,
        )
    except services.StockMovementError as exc:
        _raise_http(exc)
    return _result_response(result)


@router.get("/movements", response_model=List[schemas.StockMovementRead])
def list_movements(
    product_id: Optional[int] = None,
    direction: Optional[models.StockMovementDirectionEnum] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_read_db),
):
    return services.list_movements(
        db,
        product_id=product_id,
        direction=direction,
        skip=skip,
        limit=limit,
    )


@router.get("/movements/{movement_id}", response_model=schemas.StockMovementRead)
def get_movement(movement_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.get_movement(db, movement_id)
    except services.MovementNotFound as exc:
        _raise_http(exc)


@router.get("/low-stock", response_model=List[schemas.LowStockAlertRead])
def low_stock_alerts(
    threshold: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_read_db),
):
    return services.list_low_stock_alerts(db, threshold=threshold)


@router.get(
    "/products/{product_id}/reconciliation",
    response_model=schemas.StockReconciliation,
)
def reconcile_product(product_id: int, db: Session = Depends(get_read_db)):
    try:
        return services.reconcile_product(db, product_id)
    except services.ProductNotFound as exc:
        _raise_http(exc)
