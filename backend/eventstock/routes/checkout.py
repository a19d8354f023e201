# backend/eventstock/routes/checkout.py
"""
Checkout / check-in task API routes.

All routes require an identified caller (X-User-Id).

Transaction semantics:
- Every successful call commits once at the end.
- Validation / not-found / concurrency failures roll back, EXCEPT during
  checkout completion: lines already debited before the failing one are
  committed, so calling /complete again resumes where it stopped.
"""
from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..decorators import require_auth
from ..http_errors import bad_request, error_response, stale_response, unexpected_error
from ..services.errors import InventoryError, PartialCompletionError


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _engine():
    return current_app.extensions["checkout_engine"]


def _optional_int(value, field: str):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer")


@checkout_bp.post("")
@require_auth
def create_task():
    """
    Create a checkout or check-in task.

    Request body:
    {
        "type": "checkout" | "checkin",
        "event_id": int (optional),
        "event_name": str (optional; checkout creates the event if missing)
    }

    Returns:
        201: Task with its lines
        400: Invalid request
        404: Event not found / nothing to check in
    """
    data = request.get_json(silent=True) or {}

    try:
        task = _engine().create_task(
            data["type"],
            g.user_id,
            event_id=_optional_int(data.get("event_id"), "event_id"),
            event_name=data.get("event_name"),
        )
        db.session.commit()
        return jsonify(task.to_dict(include_lines=True)), 201

    except KeyError as e:
        db.session.rollback()
        return bad_request(f"Missing required field: {e}")
    except ValueError as e:
        db.session.rollback()
        return bad_request(str(e))
    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error("Failed to create checkout task")


@checkout_bp.get("")
@require_auth
def list_tasks():
    """List tasks, newest first. Query: event_id, status, type, limit."""
    try:
        tasks = _engine().list_tasks(
            event_id=_optional_int(request.args.get("event_id"), "event_id"),
            status=request.args.get("status") or None,
            task_type=request.args.get("type") or None,
            limit=min(_optional_int(request.args.get("limit"), "limit") or 100, 500),
        )
    except ValueError as e:
        return bad_request(str(e))
    return jsonify({"tasks": [task.to_dict() for task in tasks]}), 200


@checkout_bp.get("/<int:task_id>")
@require_auth
def get_task(task_id: int):
    try:
        task = _engine().get_task(task_id)
    except InventoryError as e:
        return error_response(e)
    return jsonify(task.to_dict(include_lines=True)), 200


@checkout_bp.put("/lines/<int:line_id>")
@require_auth
def update_line(line_id: int):
    """
    Record the operator's count for one line.

    Request body:
    {
        "actual_quantity": int,
        "status": "checked" | "checked_in" | "cancelled",
        "reason": str (optional),
        "reason_code": "damaged" | "lost" | "other" (optional),
        "expected_version": int (optional, item version the operator saw)
    }

    Returns:
        200: Updated line and its task
        400: Validation failure (range, missing reason, bad transition)
        404: Line not found
        409: Ledger conflict; reload the item and retry
    """
    data = request.get_json(silent=True) or {}

    try:
        engine = _engine()
        line = engine.update_line(
            line_id,
            data["actual_quantity"],
            data["status"],
            g.user_id,
            data.get("reason"),
            reason_code=data.get("reason_code"),
            expected_version=_optional_int(data.get("expected_version"), "expected_version"),
        )
        db.session.commit()
        return jsonify({"line": line.to_dict(), "task": line.task.to_dict()}), 200

    except KeyError as e:
        db.session.rollback()
        return bad_request(f"Missing required field: {e}")
    except ValueError as e:
        db.session.rollback()
        return bad_request(str(e))
    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except StaleDataError as e:
        db.session.rollback()
        return stale_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error(f"Failed to update checkout line {line_id}")


@checkout_bp.post("/lines/<int:line_id>/validate")
@require_auth
def validate_line(line_id: int):
    """
    Dry-run a line edit. Nothing is written.

    Request body: {"actual_quantity": int, "reason": str, "reason_code": str}

    Returns:
        200: {"valid": true, "reason_required": bool, "reason": str | null}
        400: The edit would be rejected (body explains why)
    """
    data = request.get_json(silent=True) or {}

    try:
        verdict = _engine().validate_line(
            line_id,
            data["actual_quantity"],
            reason=data.get("reason"),
            reason_code=data.get("reason_code"),
        )
    except KeyError as e:
        return bad_request(f"Missing required field: {e}")
    except InventoryError as e:
        return error_response(e)
    finally:
        db.session.rollback()

    return jsonify({
        "valid": True,
        "actual_quantity": verdict.actual_quantity,
        "reason_required": verdict.reason_required,
        "reason": verdict.reason,
    }), 200


@checkout_bp.post("/<int:task_id>/complete")
@require_auth
def complete_task(task_id: int):
    """
    Complete a task. For checkout this debits every pending line.

    Returns:
        200: Completed task
        400: A line fails validation (earlier lines stay debited)
        404: Task not found
        409: Ledger conflict on a line (earlier lines stay debited)
        500: Partial completion; audit write failed (body lists succeeded lines)
    """
    try:
        task = _engine().complete_task(task_id, g.user_id)
        db.session.commit()
        return jsonify(task.to_dict(include_lines=True)), 200

    except PartialCompletionError as e:
        # Keep the debited and audited lines; the operator must see them
        db.session.commit()
        current_app.logger.error(
            "Checkout task %s partially completed; succeeded lines %s",
            task_id, e.succeeded_line_ids,
        )
        return error_response(e)
    except InventoryError as e:
        if e.line_id is not None:
            db.session.commit()
        else:
            db.session.rollback()
        return error_response(e)
    except StaleDataError as e:
        db.session.rollback()
        return stale_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error(f"Failed to complete task {task_id}")


@checkout_bp.post("/<int:task_id>/cancel")
@require_auth
def cancel_task(task_id: int):
    try:
        task = _engine().cancel_task(task_id, g.user_id)
        db.session.commit()
        return jsonify(task.to_dict(include_lines=True)), 200

    except InventoryError as e:
        db.session.rollback()
        return error_response(e)
    except StaleDataError as e:
        db.session.rollback()
        return stale_response(e)
    except Exception:
        db.session.rollback()
        return unexpected_error(f"Failed to cancel task {task_id}")
