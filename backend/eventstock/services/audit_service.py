# Overview: Service-layer operations for the audit trail; append-only writes and time-ordered reads.

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLogEntry
from ..time_utils import utcnow
from .errors import AuditWriteError, ValidationFailure
"""
Audit Trail Invariants (authoritative)

- Append-only: no updates, no deletes.
- One entry per ledger mutation, written inside the same DB transaction.
- A failed write is surfaced to the caller as AuditWriteError; nothing here
  retries it.
- Query order is occurred_at DESC, id DESC; date bounds are inclusive.
"""

logger = logging.getLogger(__name__)

ACTION_CHECKOUT = "checkout"
ACTION_CHECKIN = "checkin"
ACTION_QUANTITY_MISMATCH = "quantity_mismatch"

ACTIONS = (ACTION_CHECKOUT, ACTION_CHECKIN, ACTION_QUANTITY_MISMATCH)


def record(
    user_id: str,
    action: str,
    item_id: int,
    task_id: int | None,
    delta: int,
    reason: str | None = None,
    *,
    line_id: int | None = None,
    occurred_at: Optional[datetime] = None,
) -> AuditLogEntry:
    """
    Append one audit entry and flush it.

    Raises:
        ValidationFailure: unknown action
        AuditWriteError: the insert failed
    """
    if action not in ACTIONS:
        raise ValidationFailure(f"Unknown audit action {action!r}")

    entry = AuditLogEntry(
        user_id=str(user_id),
        action=action,
        item_id=item_id,
        task_id=task_id,
        line_id=line_id,
        quantity_delta=delta,
        reason=reason,
        occurred_at=occurred_at or utcnow(),
    )
    try:
        db.session.add(entry)
        db.session.flush()
    except SQLAlchemyError as exc:
        logger.error(
            "Audit write failed action=%s item=%s task=%s line=%s delta=%s",
            action, item_id, task_id, line_id, delta,
        )
        raise AuditWriteError(
            f"Could not record {action} audit entry: {exc.__class__.__name__}",
            line_id=line_id,
            item_id=item_id,
        ) from exc
    return entry


def query(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    *,
    item_id: int | None = None,
    task_id: int | None = None,
    action: str | None = None,
    limit: int | None = None,
) -> list[AuditLogEntry]:
    """Entries newest first, optionally bounded by an inclusive date range."""
    if start is not None and end is not None and start > end:
        raise ValidationFailure("start must not be after end")
    if action is not None and action not in ACTIONS:
        raise ValidationFailure(f"Unknown audit action {action!r}")

    q = db.session.query(AuditLogEntry)
    if start is not None:
        q = q.filter(AuditLogEntry.occurred_at >= start)
    if end is not None:
        q = q.filter(AuditLogEntry.occurred_at <= end)
    if item_id is not None:
        q = q.filter(AuditLogEntry.item_id == item_id)
    if task_id is not None:
        q = q.filter(AuditLogEntry.task_id == task_id)
    if action is not None:
        q = q.filter(AuditLogEntry.action == action)

    q = q.order_by(AuditLogEntry.occurred_at.desc(), AuditLogEntry.id.desc())
    if limit is not None:
        q = q.limit(max(1, limit))
    return q.all()
