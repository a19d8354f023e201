# backend/eventstock/routes/audit.py
"""
Audit trail read API.

Time semantics:
- start_date / end_date accept ISO-8601 dates or datetimes with Z/offsets;
  they are normalized to UTC-naive and both bounds are inclusive.
- A bare end date ("2026-05-01") covers that whole day.
- Results are newest first and capped by AUDIT_QUERY_LIMIT.
"""
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth
from ..http_errors import bad_request, error_response
from ..services import audit_service
from ..services.errors import InventoryError
from ..time_utils import parse_iso_datetime


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


def _parse_end(value):
    end = parse_iso_datetime(value)
    if end is not None and len(value.strip()) == 10:
        end = end + timedelta(days=1) - timedelta(microseconds=1)
    return end


@audit_bp.get("")
@require_auth
def list_audit_logs():
    """Query: start_date, end_date, item_id, task_id, action, limit"""
    cap = current_app.config["AUDIT_QUERY_LIMIT"]

    try:
        start = parse_iso_datetime(request.args.get("start_date"))
        end = _parse_end(request.args.get("end_date"))
    except ValueError:
        return bad_request("start_date and end_date must be ISO-8601 dates", code="invalid_date")

    limit = request.args.get("limit", type=int) or cap

    try:
        entries = audit_service.query(
            start,
            end,
            item_id=request.args.get("item_id", type=int),
            task_id=request.args.get("task_id", type=int),
            action=request.args.get("action") or None,
            limit=min(limit, cap),
        )
    except InventoryError as e:
        return error_response(e)

    return jsonify({"entries": [entry.to_dict() for entry in entries], "count": len(entries)}), 200
