# Overview: Service-layer operations for the inventory ledger; the only stock mutation path.

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm.util import identity_key

from ..extensions import db
from ..models import Item
from .errors import ItemNotFoundError, NegativeStockError, VersionConflict
"""
Inventory Ledger Invariants (authoritative)

- Item.quantity is never negative.
- Every quantity change increments Item.version by exactly one.
- apply_delta is a single conditional UPDATE guarded by the caller's
  expected version and by the non-negative rule. There is no
  read-then-write window for a concurrent writer to slip into.
- A rejected delta never retries itself: the caller re-reads and decides.
- Reads use column queries so a stale identity-map Item is never trusted.
"""

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockSnapshot:
    item_id: int
    quantity: int
    version: int


def get_item_snapshot(item_id: int, *, include_inactive: bool = False) -> StockSnapshot:
    """Current (quantity, version) for an item, read straight from the database."""
    query = db.session.query(Item.quantity, Item.version).filter(Item.id == item_id)
    if not include_inactive:
        query = query.filter(Item.is_active.is_(True))
    row = query.first()
    if row is None:
        raise ItemNotFoundError(f"Item {item_id} not found", item_id=item_id)
    return StockSnapshot(item_id=item_id, quantity=row.quantity, version=row.version)


def get_quantity(item_id: int) -> int:
    return get_item_snapshot(item_id).quantity


def apply_delta(item_id: int, delta: int, expected_version: int) -> StockSnapshot:
    """
    Atomically add delta to an item's quantity.

    Succeeds only if the stored version still equals expected_version and
    the result stays >= 0; on success the version is incremented.

    Returns:
        StockSnapshot: quantity and version after the update

    Raises:
        VersionConflict: the item changed since the caller read it
        NegativeStockError: the delta would drive quantity below zero
        ItemNotFoundError: no such item
    """
    if not isinstance(delta, int) or isinstance(delta, bool):
        raise TypeError("delta must be an integer")

    stmt = (
        update(Item)
        .where(
            Item.id == item_id,
            Item.version == expected_version,
            Item.quantity + delta >= 0,
        )
        .values(
            quantity=Item.quantity + delta,
            version=Item.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount:
        _expire_cached_item(item_id)
        snapshot = get_item_snapshot(item_id, include_inactive=True)
        logger.debug(
            "Ledger delta applied item=%s delta=%s version=%s->%s quantity=%s",
            item_id, delta, expected_version, snapshot.version, snapshot.quantity,
        )
        return snapshot

    # Nothing matched: work out which guard rejected the update
    row = db.session.query(Item.quantity, Item.version).filter(Item.id == item_id).first()
    if row is None:
        raise ItemNotFoundError(f"Item {item_id} not found", item_id=item_id)

    if row.version != expected_version:
        logger.warning(
            "Ledger version conflict item=%s expected=%s current=%s",
            item_id, expected_version, row.version,
        )
        raise VersionConflict(
            f"Item {item_id} changed concurrently (expected version {expected_version}, "
            f"found {row.version})",
            item_id=item_id,
            expected_version=expected_version,
            current_version=row.version,
        )

    logger.warning(
        "Ledger negative stock rejected item=%s quantity=%s delta=%s",
        item_id, row.quantity, delta,
    )
    raise NegativeStockError(
        f"Item {item_id} has {row.quantity} on hand; applying {delta} would go below zero",
        item_id=item_id,
        quantity=row.quantity,
        delta=delta,
    )


def _expire_cached_item(item_id: int) -> None:
    """Drop any identity-map copy so the next attribute access reloads it."""
    cached = db.session.identity_map.get(identity_key(Item, item_id))
    if cached is not None:
        db.session.expire(cached)
