from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from stockdb.database import get_db, get_read_db
from stockdb.security import get_acting_user_id

from . import schemas, services

router = APIRouter(
    prefix="/catalog",
    tags=["catalog"],
)


def _raise_http(exc: Exception) -> None:
    if isinstance(exc, services.CatalogNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, services.CatalogConflict):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/suppliers", response_model=List[schemas.SupplierRead])
def list_suppliers(db: Session = Depends(get_read_db)):
    return services.list_suppliers(db)


@router.post(
    "/suppliers",
    response_model=schemas.SupplierRead,
    status_code=status.HTTP_201_CREATED,
)
def create_supplier(
    payload: schemas.SupplierCreate,
    db: Session = Depends(get_db),
):
    try:
        supplier = services.create_supplier(db, payload=payload)
    except (services.CatalogConflict, ValueError) as exc:
        db.rollback()
        _raise_http(exc)
    db.commit()
    db.refresh(supplier)
    return supplier


@router.get("/categories", response_model=List[schemas.CategoryRead])
def list_categories(db: Session = Depends(get_read_db)):
    return services.list_categories(db)


@router.post(
    "/categories",
    response_model=schemas.CategoryRead,
    status_code=status.HTTP_201_CREATED,
)
def create_category(
    payload: schemas.CategoryCreate,
    db: Session = Depends(get_db),
):
    try:
        category = services.create_category(db, payload=payload)
    except (services.CatalogConflict, ValueError) as exc:
        db.rollback()
        _raise_http(exc)
    db.commit()
    db.refresh(category)
    return category


@router.get("/products", response_model=List[schemas.ProductRead])
def list_products(
    supplier_id: Optional[int] = None,
    name: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_read_db),
):
    return services.list_products(db, supplier_id=supplier_id, name=name, skip=skip, limit=limit)


@router.get("/products/{product_id}", response_model=schemas.ProductRead)
def get_product(product_id: int, db: Session = Depends(get_read_db)):
    try:
        return services.get_product(db, product_id)
    except services.CatalogNotFound as exc:
        _raise_http(exc)


@router.post(
    "/products",
    response_model=schemas.ProductRead,
    status_code=status.HTTP_201_CREATED,
)
def create_product(
    payload: schemas.ProductCreate,
    db: Session = Depends(get_db),
    acting_user_id: str = Depends(get_acting_user_id),
):
    try:
        product = services.create_product(db, payload=payload, actor_user_id=acting_user_id)
    except (services.CatalogNotFound, services.CatalogConflict, ValueError) as exc:
        db.rollback()
        _raise_http(exc)
    db.commit()
    db.refresh(product)
    return product


@router.patch("/products/{product_id}", response_model=schemas.ProductRead)
def update_product(
    product_id: int,
    payload: schemas.ProductUpdate,
    db: Session = Depends(get_db),
    acting_user_id: str = Depends(get_acting_user_id),
):
    try:
        product = services.update_product(
            db,
            product_id=product_id,
            payload=payload,
            actor_user_id=acting_user_id,
        )
    except (services.CatalogNotFound, services.CatalogConflict, ValueError) as exc:
        db.rollback()
        _raise_http(exc)
    db.commit()
    db.refresh(product)
    return product
