from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session

from stockdb.apps.audit import services as audit_services
from . import models, schemas


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CatalogNotFound(Exception):
    """Raised when a supplier, category or product id does not exist."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found.")
        self.entity = entity
        self.entity_id = entity_id


class CatalogConflict(Exception):
    """Raised when a unique catalog field (name, barcode) is already taken."""

    def __init__(self, entity: str, field: str, value: object) -> None:
        super().__init__(f"{entity} with {field}={value!r} already exists.")
        self.entity = entity
        self.field = field
        self.value = value


# ---------------------------------------------------------------------------
# Suppliers / categories
# ---------------------------------------------------------------------------


def get_supplier(db: Session, supplier_id: int) -> models.Supplier:
    supplier = db.get(models.Supplier, supplier_id)
    if not supplier:
        raise CatalogNotFound("Supplier", supplier_id)
    return supplier


def list_suppliers(db: Session) -> List[models.Supplier]:
    return db.query(models.Supplier).order_by(models.Supplier.name.asc()).all()


def create_supplier(db: Session, *, payload: schemas.SupplierCreate) -> models.Supplier:
    name = payload.name.strip()
    if db.query(models.Supplier).filter(models.Supplier.name == name).first():
        raise CatalogConflict("Supplier", "name", name)
    supplier = models.Supplier(
        name=name,
        contact_name=payload.contact_name,
        contact_email=payload.contact_email,
        contact_phone=payload.contact_phone,
    )
    db.add(supplier)
    db.flush()
    return supplier


def get_category(db: Session, category_id: int) -> models.Category:
    category = db.get(models.Category, category_id)
    if not category:
        raise CatalogNotFound("Category", category_id)
    return category


def list_categories(db: Session) -> List[models.Category]:
    return db.query(models.Category).order_by(models.Category.name.asc()).all()


def create_category(db: Session, *, payload: schemas.CategoryCreate) -> models.Category:
    name = payload.name.strip()
    if db.query(models.Category).filter(models.Category.name == name).first():
        raise CatalogConflict("Category", "name", name)
    category = models.Category(name=name, description=payload.description)
    db.add(category)
    db.flush()
    return category


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def _ensure_barcode_available(db: Session, barcode: Optional[str], *, exclude_id: Optional[int] = None) -> None:
    barcode = (barcode or "").strip()
    if not barcode:
        return
    query = db.query(models.Product).filter(models.Product.barcode == barcode)
    if exclude_id is not None:
        query = query.filter(models.Product.id != exclude_id)
    if query.first():
        raise CatalogConflict("Product", "barcode", barcode)


def _product_snapshot(product: models.Product) -> dict:
    return {
        "name": product.name,
        "barcode": product.barcode,
        "price": str(product.price) if product.price is not None else None,
        "category_id": product.category_id,
        "supplier_id": product.supplier_id,
    }


def get_product(db: Session, product_id: int) -> models.Product:
    product = db.get(models.Product, product_id)
    if not product:
        raise CatalogNotFound("Product", product_id)
    return product


def list_products(
    db: Session,
    *,
    supplier_id: Optional[int] = None,
    name: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Product]:
    query = db.query(models.Product)
    if supplier_id is not None:
        query = query.filter(models.Product.supplier_id == supplier_id)
    if name:
        query = query.filter(models.Product.name.ilike(f"%{name.strip()}%"))
    return query.order_by(models.Product.name.asc(), models.Product.id.asc()).offset(skip).limit(limit).all()


def create_product(
    db: Session,
    *,
    payload: schemas.ProductCreate,
    actor_user_id: Optional[str],
) -> models.Product:
    if payload.category_id is not None:
        get_category(db, payload.category_id)
    if payload.supplier_id is not None:
        get_supplier(db, payload.supplier_id)
    _ensure_barcode_available(db, payload.barcode)

    product = models.Product(
        name=payload.name,
        description=payload.description,
        barcode=payload.barcode,
        price=payload.price,
        quantity=0,
        opening_quantity=0,
        category_id=payload.category_id,
        supplier_id=payload.supplier_id,
    )
    db.add(product)
    db.flush()
    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="Product",
        entity_id=str(product.id),
        action="create",
        description=f"Product '{product.name}' (ID: {product.id}) created.",
        after=_product_snapshot(product),
    )
    return product


def update_product(
    db: Session,
    *,
    product_id: int,
    payload: schemas.ProductUpdate,
    actor_user_id: Optional[str],
) -> models.Product:
    product = get_product(db, product_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return product

    if changes.get("category_id") is not None:
        get_category(db, changes["category_id"])
    if changes.get("supplier_id") is not None:
        get_supplier(db, changes["supplier_id"])
    if "barcode" in changes:
        _ensure_barcode_available(db, changes["barcode"], exclude_id=product.id)

    before = _product_snapshot(product)
    for field, value in changes.items():
        setattr(product, field, value)
    db.add(product)
    db.flush()
    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="Product",
        entity_id=str(product.id),
        action="update",
        description=f"Product '{product.name}' (ID: {product.id}) updated.",
        before=before,
        after=_product_snapshot(product),
    )
    return product
