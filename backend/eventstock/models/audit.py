from __future__ import annotations

from ..extensions import db
from eventstock.time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    Append-only record of a stock-affecting action.

    - One row per ledger mutation (checkout, checkin), plus a
      quantity_mismatch row when a check-in returns a different amount
      than went out.
    - Written in the same DB transaction as the mutation it records.
    - Never updated or deleted.
    """
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        db.Index("ix_audit_log_entries_occurred_id", "occurred_at", "id"),
        db.Index("ix_audit_log_entries_item_occurred", "item_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.String(64), nullable=False, index=True)
    # checkout, checkin, quantity_mismatch
    action = db.Column(db.String(32), nullable=False, index=True)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)
    task_id = db.Column(db.Integer, db.ForeignKey("checkout_tasks.id"), nullable=True, index=True)
    line_id = db.Column(db.Integer, db.ForeignKey("checkout_lines.id"), nullable=True)

    # Negative for stock leaving, positive for stock returning
    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item")

    def __repr__(self) -> str:
        return f"<AuditLogEntry id={self.id} action={self.action} item_id={self.item_id} delta={self.quantity_delta}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "task_id": self.task_id,
            "line_id": self.line_id,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
