# backend/eventstock/routes/events.py
"""
Event and reservation routes.

Reservations are intent only; nothing here touches the ledger.
"""
from flask import Blueprint, jsonify, request

from ..extensions import db
from ..decorators import require_auth
from ..http_errors import bad_request, error_response, unexpected_error
from ..services import reservation_service
from ..services.errors import InventoryError


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


@events_bp.get("")
@require_auth
def list_events():
    events = reservation_service.list_events()
    return jsonify({"events": [event.to_dict() for event in events]}), 200


@events_bp.post("")
@require_auth
def create_event():
    """
    Create an event by name; an existing event with that name is returned as is.

    Request body: {"name": str}
    """
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return bad_request("Event name is required")

    try:
        event = reservation_service.resolve_event(event_name=name, create=True)
        db.session.commit()
        return jsonify(event.to_dict()), 201
    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error("Failed to create event")


@events_bp.get("/<int:event_id>/reservations")
@require_auth
def list_reservations(event_id: int):
    try:
        reservations = reservation_service.list_reservations(event_id)
    except InventoryError as e:
        return error_response(e)
    return jsonify({"reservations": [r.to_dict() for r in reservations]}), 200


@events_bp.post("/<int:event_id>/reservations")
@require_auth
def add_reservation(event_id: int):
    """
    Reserve an item for an event.

    Request body:
    {
        "item_id": int,
        "quantity": int  // positive, at most the item's on-hand quantity
    }

    Returns:
        201: Reservation created
        400: Bad quantity, insufficient stock or duplicate reservation
        404: Event or item not found
    """
    data = request.get_json(silent=True) or {}

    try:
        reservation = reservation_service.add_reservation(
            event_id=event_id,
            item_id=data["item_id"],
            quantity=data["quantity"],
        )
        db.session.commit()
        return jsonify(reservation.to_dict()), 201

    except KeyError as e:
        db.session.rollback()
        return bad_request(f"Missing required field: {e}")
    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error("Failed to add reservation")


@events_bp.delete("/reservations/<int:reservation_id>")
@require_auth
def remove_reservation(reservation_id: int):
    try:
        reservation_service.remove_reservation(reservation_id)
        db.session.commit()
        return jsonify({"deleted": reservation_id}), 200
    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error(f"Failed to remove reservation {reservation_id}")


@events_bp.get("/<int:event_id>/summary")
@require_auth
def event_summary(event_id: int):
    """Per-reservation on-hand, remaining and checked-out status for an event."""
    try:
        event = reservation_service.resolve_event(event_id=event_id)
        rows = reservation_service.summarize_event(event_id)
    except InventoryError as e:
        return error_response(e)
    return jsonify({"event": event.to_dict(), "reservations": rows}), 200
