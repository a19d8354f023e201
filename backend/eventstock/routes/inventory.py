# backend/eventstock/routes/inventory.py
"""
Item catalogue routes.

SECURITY: All routes require an identified caller.
- Reads are open to any role
- Creating, editing and deleting items and categories requires the admin role

Quantity edits go through the ledger and must carry the item version the
administrator loaded (expected_version); a stale version answers 409.
"""
from flask import Blueprint, jsonify, request

from ..extensions import db
from ..decorators import require_auth, require_role
from ..http_errors import bad_request, error_response, unexpected_error
from ..services import inventory_service
from ..services.errors import InventoryError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

ITEM_DETAIL_FIELDS = {"name", "description", "location", "category_id"}


def _truthy(value) -> bool:
    return str(value).lower() in {"1", "true", "yes"}


# =============================================================================
# Categories
# =============================================================================

@inventory_bp.get("/categories")
@require_auth
def list_categories():
    categories = inventory_service.list_categories()
    return jsonify({"categories": [c.to_dict() for c in categories]}), 200


@inventory_bp.post("/categories")
@require_auth
@require_role("admin")
def create_category():
    """Request body: {"name": str, "is_consumable": bool}"""
    data = request.get_json(silent=True) or {}

    try:
        category = inventory_service.create_category(
            data.get("name"),
            is_consumable=bool(data.get("is_consumable", False)),
        )
        db.session.commit()
        return jsonify(category.to_dict()), 201
    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error("Failed to create category")


# =============================================================================
# Items
# =============================================================================

@inventory_bp.get("/items")
@require_auth
def list_items():
    """Query: category_id, include_inactive"""
    category_id = request.args.get("category_id", type=int)
    items = inventory_service.list_items(
        category_id=category_id,
        include_inactive=_truthy(request.args.get("include_inactive", "")),
    )
    return jsonify({"items": [item.to_dict() for item in items]}), 200


@inventory_bp.get("/items/<int:item_id>")
@require_auth
def get_item(item_id: int):
    try:
        item = inventory_service.get_item(item_id)
    except InventoryError as e:
        return error_response(e)
    return jsonify(item.to_dict()), 200


@inventory_bp.post("/items")
@require_auth
@require_role("admin")
def create_item():
    """
    Create an item.

    Request body:
    {
        "name": str,
        "quantity": int (default 0),
        "category_id": int (optional),
        "description": str (optional),
        "location": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    quantity = data.get("quantity", 0)
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        return bad_request("quantity must be an integer")

    try:
        item = inventory_service.create_item(
            data.get("name"),
            quantity=quantity,
            category_id=data.get("category_id"),
            description=data.get("description"),
            location=data.get("location"),
        )
        db.session.commit()
        return jsonify(item.to_dict()), 201
    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error("Failed to create item")


@inventory_bp.patch("/items/<int:item_id>")
@require_auth
@require_role("admin")
def update_item(item_id: int):
    """
    Edit an item.

    Request body: any of name, description, location, category_id; and/or
    {"quantity": int, "expected_version": int} for a stock correction.

    Returns:
        200: Updated item
        400: Invalid field or value
        404: Item not found
        409: Item changed since it was loaded
    """
    data = request.get_json(silent=True) or {}

    unknown = set(data) - ITEM_DETAIL_FIELDS - {"quantity", "expected_version"}
    if unknown:
        return bad_request(f"Fields not editable: {', '.join(sorted(unknown))}")

    try:
        details = {key: data[key] for key in ITEM_DETAIL_FIELDS if key in data}
        if details:
            inventory_service.update_item_details(item_id, **details)

        if "quantity" in data:
            if "expected_version" not in data:
                db.session.rollback()
                return bad_request("expected_version is required when setting quantity")
            quantity = data["quantity"]
            if not isinstance(quantity, int) or isinstance(quantity, bool):
                db.session.rollback()
                return bad_request("quantity must be an integer")
            inventory_service.set_item_quantity(item_id, quantity, int(data["expected_version"]))

        item = inventory_service.get_item(item_id)
        db.session.commit()
        return jsonify(item.to_dict()), 200

    except (TypeError, ValueError):
        db.session.rollback()
        return bad_request("expected_version must be an integer")
    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error(f"Failed to update item {item_id}")


@inventory_bp.delete("/items/<int:item_id>")
@require_auth
@require_role("admin")
def delete_item(item_id: int):
    """Soft delete: the item disappears from the catalogue; history stays."""
    try:
        item = inventory_service.soft_delete_item(item_id)
        db.session.commit()
        return jsonify(item.to_dict()), 200
    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error(f"Failed to delete item {item_id}")
