from __future__ import annotations

from ..extensions import db
from eventstock.time_utils import to_utc_z


class CheckoutTask(db.Model):
    """
    One operator-initiated batch action against an event's stock.

    LIFECYCLE:
    1. pending: created, lines seeded from reservations (checkout) or from
       open checked-out lines (checkin)
    2. in_progress: at least one line has been edited
    3. completed: every line settled, ledger updated (terminal)
    4. cancelled: abandoned before completion (terminal)

    Terminal tasks are never reopened.
    """
    __tablename__ = "checkout_tasks"
    __table_args__ = (
        db.Index("ix_checkout_tasks_event_type_status", "event_id", "type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)

    # checkout, checkin
    type = db.Column(db.String(16), nullable=False)
    # pending, in_progress, completed, cancelled
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Identity provider user ids; no local user table
    created_by_user_id = db.Column(db.String(64), nullable=False)
    cancelled_by_user_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    event = db.relationship("Event", backref=db.backref("tasks", lazy=True))
    lines = db.relationship(
        "CheckoutLine",
        back_populates="task",
        lazy=True,
        order_by="CheckoutLine.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CheckoutTask id={self.id} type={self.type} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "event_id": self.event_id,
            "event_name": self.event.name if self.event else None,
            "type": self.type,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class CheckoutLine(db.Model):
    """
    A single item movement within a task.

    original_quantity is what the line was seeded with (reserved amount for
    checkout, checked-out amount for checkin); actual_quantity is what the
    operator says really moved.
    """
    __tablename__ = "checkout_lines"
    __table_args__ = (
        db.CheckConstraint("actual_quantity >= 0", name="ck_checkout_lines_actual_non_negative"),
        db.CheckConstraint("original_quantity >= 0", name="ck_checkout_lines_original_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("checkout_tasks.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    # Null for ad-hoc and check-in lines
    reservation_id = db.Column(db.Integer, db.ForeignKey("event_reservations.id"), nullable=True, index=True)
    # Check-in lines point back at the checkout line they return
    source_line_id = db.Column(db.Integer, db.ForeignKey("checkout_lines.id"), nullable=True, index=True)

    original_quantity = db.Column(db.Integer, nullable=False)
    actual_quantity = db.Column(db.Integer, nullable=False)

    # pending, checked, checked_in, cancelled
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    reason = db.Column(db.Text, nullable=True)

    checked_by_user_id = db.Column(db.String(64), nullable=True)
    checked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    task = db.relationship("CheckoutTask", back_populates="lines")
    item = db.relationship("Item")
    reservation = db.relationship("EventReservation")
    source_line = db.relationship("CheckoutLine", remote_side=[id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<CheckoutLine id={self.id} task_id={self.task_id} item_id={self.item_id} "
            f"status={self.status} {self.actual_quantity}/{self.original_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "reservation_id": self.reservation_id,
            "source_line_id": self.source_line_id,
            "original_quantity": self.original_quantity,
            "actual_quantity": self.actual_quantity,
            "status": self.status,
            "reason": self.reason,
            "checked_by_user_id": self.checked_by_user_id,
            "checked_at": to_utc_z(self.checked_at),
            "version_id": self.version_id,
        }
