from __future__ import annotations

from ..extensions import db
from eventstock.time_utils import to_utc_z


class Event(db.Model):
    """
    An occasion stock is loaned out for.

    Operators pick events by name; tasks and reservations point at the id.
    """
    __tablename__ = "events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Event id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class EventReservation(db.Model):
    """
    Quantity of an item earmarked for an event.

    Represents intent only: nothing leaves the ledger until a checkout task
    built from these rows is completed.
    """
    __tablename__ = "event_reservations"
    __table_args__ = (
        db.UniqueConstraint("event_id", "item_id", name="uq_event_reservations_event_item"),
        db.CheckConstraint("quantity > 0", name="ck_event_reservations_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    event = db.relationship("Event", backref=db.backref("reservations", lazy=True, order_by="EventReservation.id"))
    item = db.relationship("Item")

    def __repr__(self) -> str:
        return f"<EventReservation id={self.id} event_id={self.event_id} item_id={self.item_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "event_name": self.event.name if self.event else None,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
