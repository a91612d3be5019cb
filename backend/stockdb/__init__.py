# backend/stockdb/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- The package exposes a clear surface.

The actual model classes are kept in stockdb/apps/*/models.py.
"""

from .apps.catalog import models as catalog_models        # products / suppliers / categories
from .apps.inventory import models as inventory_models    # stock movement ledger
from .apps.audit import models as audit_models            # audit events

__all__ = [
    "catalog_models",
    "inventory_models",
    "audit_models",
]
