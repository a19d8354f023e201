from __future__ import annotations

from ..extensions import db
from eventstock.time_utils import to_utc_z


class Category(db.Model):
    """
    Item category.

    is_consumable decides whether short returns need a justification:
    consumable stock is expected to be partly used up at an event.
    """
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    is_consumable = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r} consumable={self.is_consumable}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_consumable": self.is_consumable,
            "created_at": to_utc_z(self.created_at),
        }


class Item(db.Model):
    """
    Inventory ledger row: one physical stock record per item.

    QUANTITY INVARIANTS:
    - quantity is never negative (CHECK constraint backs the service guard)
    - quantity only changes through ledger_service.apply_delta or an
      administrative edit, and every change bumps version by exactly one
    - version starts at 0 and never goes backwards

    Items are soft-deleted (is_active=False) so task and audit history keep
    their references.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_items_quantity_non_negative"),
        db.Index("ix_items_category_active", "category_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)
    description = db.Column(db.Text, nullable=True)
    location = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("items", lazy=True))

    def __repr__(self) -> str:
        return f"<Item id={self.id} name={self.name!r} qty={self.quantity} v={self.version}>"

    @property
    def is_consumable(self) -> bool:
        return bool(self.category and self.category.is_consumable)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category_id": self.category_id,
            "category": self.category.name if self.category else None,
            "is_consumable": self.is_consumable,
            "description": self.description,
            "location": self.location,
            "quantity": self.quantity,
            "version": self.version,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
