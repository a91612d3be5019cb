"""Create catalog, stock ledger and audit tables.

Revision ID: 5e1a9c3b7d20
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "5e1a9c3b7d20"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return bool(insp.has_table(table_name))


def _index_exists(table_name: str, index_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    if not insp.has_table(table_name):
        return False
    idxs = insp.get_indexes(table_name)
    return any(i.get("name") == index_name for i in idxs)


def _create_index_if_missing(index_name: str, table_name: str, columns, **kwargs) -> None:
    if not _index_exists(table_name, index_name):
        op.create_index(index_name, table_name, columns, **kwargs)


def upgrade() -> None:
    if not _table_exists("suppliers"):
        op.create_table(
            "suppliers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            sa.Column("contact_name", sa.String(length=128), nullable=True),
            sa.Column("contact_email", sa.String(length=255), nullable=True),
            sa.Column("contact_phone", sa.String(length=32), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
    _create_index_if_missing("ix_suppliers_id", "suppliers", ["id"])
    _create_index_if_missing("ix_suppliers_name", "suppliers", ["name"], unique=True)

    if not _table_exists("categories"):
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
    _create_index_if_missing("ix_categories_id", "categories", ["id"])
    _create_index_if_missing("ix_categories_name", "categories", ["name"], unique=True)

    if not _table_exists("products"):
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("barcode", sa.String(length=64), nullable=True),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("opening_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column(
                "category_id",
                sa.Integer(),
                sa.ForeignKey("categories.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column(
                "supplier_id",
                sa.Integer(),
                sa.ForeignKey("suppliers.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
            sa.CheckConstraint("opening_quantity >= 0", name="ck_products_opening_quantity_non_negative"),
            sa.CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        )
    _create_index_if_missing("ix_products_id", "products", ["id"])
    _create_index_if_missing("ix_products_name", "products", ["name"])
    _create_index_if_missing("ix_products_barcode", "products", ["barcode"], unique=True)
    _create_index_if_missing("ix_products_category_id", "products", ["category_id"])
    _create_index_if_missing("ix_products_supplier_id", "products", ["supplier_id"])
    _create_index_if_missing("ix_products_supplier_quantity", "products", ["supplier_id", "quantity"])

    if not _table_exists("stock_movements"):
        op.create_table(
            "stock_movements",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column(
                "product_id",
                sa.Integer(),
                sa.ForeignKey("products.id", ondelete="RESTRICT"),
                nullable=False,
            ),
            sa.Column(
                "direction",
                sa.Enum("in", "out", name="stock_movement_direction_enum", native_enum=False),
                nullable=False,
            ),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_cost", sa.Numeric(12, 2), nullable=True),
            sa.Column(
                "reason",
                sa.Enum("Venda", "Ajuste", "Perda", "Outro", name="stock_out_reason_enum", native_enum=False),
                nullable=True,
            ),
            sa.Column("reference", sa.String(length=128), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("quantity_before", sa.Integer(), nullable=False),
            sa.Column("quantity_after", sa.Integer(), nullable=False),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("acting_user_id", sa.String(length=64), nullable=False),
            sa.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
            sa.CheckConstraint(
                "(direction = 'in' AND unit_cost IS NOT NULL AND unit_cost > 0 AND reason IS NULL)"
                " OR (direction = 'out' AND reason IS NOT NULL AND unit_cost IS NULL)",
                name="ck_stock_movements_direction_attributes",
            ),
        )
    _create_index_if_missing("ix_stock_movements_id", "stock_movements", ["id"])
    _create_index_if_missing("ix_stock_movements_product_id", "stock_movements", ["product_id"])
    _create_index_if_missing("ix_stock_movements_direction", "stock_movements", ["direction"])
    _create_index_if_missing("ix_stock_movements_acting_user_id", "stock_movements", ["acting_user_id"])
    _create_index_if_missing("ix_stock_movements_product_time", "stock_movements", ["product_id", "occurred_at"])
    _create_index_if_missing("ix_stock_movements_direction_time", "stock_movements", ["direction", "occurred_at"])

    if not _table_exists("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("entity_type", sa.String(length=64), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=False),
            sa.Column("action", sa.String(length=64), nullable=False),
            sa.Column("actor_user_id", sa.String(length=64), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("before", sa.JSON(), nullable=True),
            sa.Column("after", sa.JSON(), nullable=True),
            sa.Column("correlation_id", sa.String(length=64), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
    _create_index_if_missing("ix_audit_events_id", "audit_events", ["id"])
    _create_index_if_missing("ix_audit_events_entity_type", "audit_events", ["entity_type"])
    _create_index_if_missing("ix_audit_events_entity_id", "audit_events", ["entity_id"])
    _create_index_if_missing("ix_audit_events_actor_user_id", "audit_events", ["actor_user_id"])
    _create_index_if_missing("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
    _create_index_if_missing("ix_audit_events_correlation_id", "audit_events", ["correlation_id"])
    _create_index_if_missing("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
    _create_index_if_missing("ix_audit_events_action", "audit_events", ["action"])
    if not _index_exists("audit_events", "ix_audit_events_time_desc"):
        op.create_index("ix_audit_events_time_desc", "audit_events", [sa.text("occurred_at DESC")])


def downgrade() -> None:
    # Guarded drops (safe if partially applied)
    for table_name in ("audit_events", "stock_movements", "products", "categories", "suppliers"):
        if _table_exists(table_name):
            op.drop_table(table_name)
