"""
Low-stock alert aggregation.

Pure, read-only grouping of products whose on-hand quantity is below a
threshold, keyed by supplier. Works on ORM products, schemas or plain
dicts; anything carrying `quantity` and `supplier_id`.

Grouping policy:
- products with no supplier, or with a supplier id outside
  `known_supplier_ids` (when that set is given), land in the
  ``"unassigned"`` bucket; nothing is dropped;
- each bucket is ordered by quantity ascending, ties keep input order;
- buckets appear in order of first appearance, ``"unassigned"`` last.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Mapping
from typing import Any, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = 5
UNASSIGNED_GROUP = "unassigned"

GroupKey = Union[int, str]


def _field(product: Any, name: str) -> Any:
    if isinstance(product, Mapping):
        return product.get(name)
    return getattr(product, name, None)


def quantity_of(product: Any) -> int:
    """On-hand quantity of a product; unreadable values count as empty stock."""
    raw = _field(product, "quantity")
    if raw is None:
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning(
            "Unreadable product quantity treated as zero",
            extra={"product_id": _field(product, "id"), "quantity": repr(raw)},
        )
        return 0


def _group_key(product: Any, known_supplier_ids: Optional[set]) -> GroupKey:
    supplier_id = _field(product, "supplier_id")
    if supplier_id is None or not isinstance(supplier_id, Hashable):
        return UNASSIGNED_GROUP
    if known_supplier_ids is not None and supplier_id not in known_supplier_ids:
        logger.warning(
            "Low-stock product references an unknown supplier",
            extra={"product_id": _field(product, "id"), "supplier_id": supplier_id},
        )
        return UNASSIGNED_GROUP
    return supplier_id


def compute_alerts(
    products: Optional[Iterable[Any]],
    threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    known_supplier_ids: Optional[Iterable[Any]] = None,
) -> Dict[GroupKey, List[Any]]:
    """
    Group products with ``quantity < threshold`` by supplier.

    Returns an empty dict when nothing qualifies. Never raises on product
    data it cannot classify.
    """
    known = set(known_supplier_ids) if known_supplier_ids is not None else None
    grouped: Dict[GroupKey, List[Any]] = {}
    unassigned: List[Any] = []

    for product in products or ():
        if quantity_of(product) >= threshold:
            continue
        key = _group_key(product, known)
        if key == UNASSIGNED_GROUP:
            unassigned.append(product)
        else:
            grouped.setdefault(key, []).append(product)

    for key in grouped:
        grouped[key].sort(key=quantity_of)
    if unassigned:
        grouped[UNASSIGNED_GROUP] = sorted(unassigned, key=quantity_of)
    return grouped
