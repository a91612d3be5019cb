from __future__ import annotations

import logging
from decimal import Decimal

from stockdb.database import Base, WriteSessionLocal, write_engine
from stockdb.apps.catalog import models as catalog_models
from stockdb.apps.catalog import schemas as catalog_schemas
from stockdb.apps.catalog import services as catalog_services
from stockdb.apps.inventory import models as inventory_models
from stockdb.apps.inventory import services as inventory_services
from stockdb.apps.audit import models as audit_models  # noqa: F401

logger = logging.getLogger("stockdb.seed_demo")

SEED_USER_ID = "seed-demo"

SUPPLIERS = ("Catarinense Pharma", "ABPlast", "Catarinense Pharma Filial")

CATEGORIES = ("HD", "SSD", "Memória Ram", "Teclado e Mouse")

PRODUCTS = (
    # name, description, barcode, category, supplier, price, unit cost, stock
    ("Kingston A400", "SSD 240GB SATA III", "740617261219", "SSD", "Catarinense Pharma", "189.90", "120.00", 10),
    ("Corsair Vengeance LPX", "16GB (2x8GB) DDR4 3200MHz", "843591070000", "Memória Ram", "ABPlast", "329.90", "240.00", 3),
    ("Logitech MK270", "Combo Teclado e Mouse sem Fio", "097855140620", "Teclado e Mouse", "Catarinense Pharma", "149.90", "95.00", 15),
    ("Seagate Barracuda 1TB", "HD Interno 1TB Sata III", "763649007540", "HD", "ABPlast", "279.90", "190.00", 2),
)


def _get_or_create_supplier(db, name: str) -> catalog_models.Supplier:
    supplier = db.query(catalog_models.Supplier).filter(catalog_models.Supplier.name == name).first()
    if supplier:
        return supplier
    supplier = catalog_services.create_supplier(db, payload=catalog_schemas.SupplierCreate(name=name))
    db.commit()
    db.refresh(supplier)
    return supplier


def _get_or_create_category(db, name: str) -> catalog_models.Category:
    category = db.query(catalog_models.Category).filter(catalog_models.Category.name == name).first()
    if category:
        return category
    category = catalog_services.create_category(db, payload=catalog_schemas.CategoryCreate(name=name))
    db.commit()
    db.refresh(category)
    return category


def _seed_product(db, row, suppliers, categories) -> None:
    name, description, barcode, category, supplier, price, unit_cost, stock = row
    product = db.query(catalog_models.Product).filter(catalog_models.Product.barcode == barcode).first()
    if product:
        logger.info("Product %s already seeded (quantity %s)", name, product.quantity)
        return
    product = catalog_services.create_product(
        db,
        payload=catalog_schemas.ProductCreate(
            name=name,
            description=description,
            barcode=barcode,
            price=Decimal(price),
            category_id=categories[category].id,
            supplier_id=suppliers[supplier].id,
        ),
        actor_user_id=SEED_USER_ID,
    )
    db.commit()
    inventory_services.record_stock_in(
        db,
        product_id=product.id,
        quantity=stock,
        unit_cost=Decimal(unit_cost),
        reference="seed-demo",
        notes="Initial demo stock",
        acting_user_id=SEED_USER_ID,
    )


def _seed_sale(db) -> None:
    already_sold = (
        db.query(inventory_models.StockMovement)
        .filter(
            inventory_models.StockMovement.direction == inventory_models.StockMovementDirectionEnum.OUT,
            inventory_models.StockMovement.reference == "seed-demo",
        )
        .first()
    )
    if already_sold:
        return
    product = db.query(catalog_models.Product).filter(catalog_models.Product.barcode == "097855140620").one()
    inventory_services.record_stock_out(
        db,
        product_id=product.id,
        quantity=1,
        reason="Venda",
        reference="seed-demo",
        acting_user_id=SEED_USER_ID,
    )


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=write_engine)
    db = WriteSessionLocal()
    try:
        suppliers = {name: _get_or_create_supplier(db, name) for name in SUPPLIERS}
        categories = {name: _get_or_create_category(db, name) for name in CATEGORIES}
        for row in PRODUCTS:
            _seed_product(db, row, suppliers, categories)

        _seed_sale(db)
        for alert in inventory_services.list_low_stock_alerts(db):
            logger.info(
                "Low stock for %s: %s",
                alert.supplier_name or alert.group_key,
                ", ".join(f"{item.name} ({item.quantity})" for item in alert.products),
            )
    finally:
        db.close()


if __name__ == "__main__":
    main()
