# Overview: Service-layer operations for the item catalogue (categories, items, admin edits).

# backend/eventstock/services/inventory_service.py

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Item
from . import ledger_service
from .errors import (
    CategoryNotFoundError,
    ItemNotFoundError,
    QuantityOutOfRangeError,
    ValidationFailure,
    VersionConflict,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Categories
# =============================================================================

def create_category(name: str, is_consumable: bool = False) -> Category:
    name = (name or "").strip()
    if not name:
        raise ValidationFailure("Category name is required")

    category = Category(name=name, is_consumable=bool(is_consumable))
    db.session.add(category)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ValidationFailure(f"Category {name!r} already exists")
    return category


def get_or_create_category(name: str, is_consumable: bool = False) -> Category:
    """Look a category up by name, creating it on first use."""
    category = db.session.query(Category).filter_by(name=name.strip()).first()
    if category:
        return category
    return create_category(name, is_consumable=is_consumable)


def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name).all()


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if not category:
        raise CategoryNotFoundError(f"Category {category_id} not found")
    return category


def is_item_consumable(item_id: int) -> bool:
    """
    Whether short returns of this item are expected.

    Uncategorized items are treated as durable, so they need a reason.
    """
    row = (
        db.session.query(Category.is_consumable)
        .select_from(Item)
        .outerjoin(Category, Item.category_id == Category.id)
        .filter(Item.id == item_id)
        .first()
    )
    if row is None:
        raise ItemNotFoundError(f"Item {item_id} not found", item_id=item_id)
    return bool(row.is_consumable)


# =============================================================================
# Items
# =============================================================================

def create_item(
    name: str,
    quantity: int = 0,
    category_id: int | None = None,
    description: str | None = None,
    location: str | None = None,
) -> Item:
    """
    Create an item with an opening quantity (version 0).

    Raises:
        ValidationFailure: missing name
        QuantityOutOfRangeError: negative opening quantity
        CategoryNotFoundError: unknown category_id
    """
    name = (name or "").strip()
    if not name:
        raise ValidationFailure("Item name is required")
    if quantity < 0:
        raise QuantityOutOfRangeError("Opening quantity cannot be negative", minimum=0)
    if category_id is not None:
        get_category(category_id)

    item = Item(
        name=name,
        quantity=quantity,
        version=0,
        category_id=category_id,
        description=description,
        location=location,
        is_active=True,
    )
    db.session.add(item)
    db.session.flush()
    logger.info("Item created id=%s name=%r quantity=%s", item.id, item.name, quantity)
    return item


def get_item(item_id: int, *, include_inactive: bool = False) -> Item:
    item = db.session.get(Item, item_id)
    if not item or (not item.is_active and not include_inactive):
        raise ItemNotFoundError(f"Item {item_id} not found", item_id=item_id)
    return item


def list_items(*, category_id: int | None = None, include_inactive: bool = False) -> list[Item]:
    query = db.session.query(Item)
    if not include_inactive:
        query = query.filter(Item.is_active.is_(True))
    if category_id is not None:
        query = query.filter(Item.category_id == category_id)
    return query.order_by(Item.name).all()


def update_item_details(item_id: int, **fields) -> Item:
    """
    Edit descriptive fields. Quantity is deliberately not accepted here;
    use set_item_quantity so the version is checked and bumped.
    """
    allowed = {"name", "description", "location", "category_id"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationFailure(f"Fields not editable: {', '.join(sorted(unknown))}")

    item = get_item(item_id)
    if "category_id" in fields and fields["category_id"] is not None:
        get_category(fields["category_id"])
    if "name" in fields:
        name = (fields["name"] or "").strip()
        if not name:
            raise ValidationFailure("Item name is required")
        fields["name"] = name

    for key, value in fields.items():
        setattr(item, key, value)
    db.session.flush()
    return item


def set_item_quantity(item_id: int, quantity: int, expected_version: int) -> ledger_service.StockSnapshot:
    """
    Administrative stock correction.

    Goes through the ledger's conditional update so the edit is rejected if
    a task touched the item after the administrator loaded it.
    """
    if quantity < 0:
        raise QuantityOutOfRangeError("Quantity cannot be negative", minimum=0, item_id=item_id)

    snapshot = ledger_service.get_item_snapshot(item_id)
    if snapshot.version != expected_version:
        raise VersionConflict(
            f"Item {item_id} changed since it was loaded (expected version {expected_version}, "
            f"found {snapshot.version})",
            item_id=item_id,
            expected_version=expected_version,
            current_version=snapshot.version,
        )

    result = ledger_service.apply_delta(item_id, quantity - snapshot.quantity, expected_version)
    logger.info(
        "Item quantity set by admin id=%s %s->%s version=%s",
        item_id, snapshot.quantity, result.quantity, result.version,
    )
    return result


def soft_delete_item(item_id: int) -> Item:
    """Hide an item from the catalogue while keeping task/audit references intact."""
    item = get_item(item_id)
    item.is_active = False
    db.session.flush()
    logger.info("Item soft-deleted id=%s", item_id)
    return item
