# backend/eventstock/services/reservation_service.py
"""
Event reservation list.

WHY: Operators earmark stock for an event ahead of time. A reservation is
intent only; it seeds checkout lines but never touches the ledger itself.

RULES:
- Reserved quantity is a positive integer no larger than current on-hand
- One reservation per (event, item); change the quantity by removing and
  re-adding while no checkout has used it
- A reservation referenced by a live checkout line cannot be removed
"""
from __future__ import annotations

import logging

from sqlalchemy import func

from eventstock.extensions import db
from eventstock.models import CheckoutLine, CheckoutTask, Event, EventReservation
from eventstock.services import ledger_service
from eventstock.services.concurrency import lock_for_update, run_with_retry
from eventstock.services.errors import (
    DuplicateReservationError,
    EventNotFoundError,
    InsufficientStockError,
    QuantityOutOfRangeError,
    ReservationLockedError,
    ReservationNotFoundError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Events
# =============================================================================

def resolve_event(
    event_id: int | None = None,
    event_name: str | None = None,
    *,
    create: bool = False,
) -> Event:
    """
    Find an event by id or by name.

    Args:
        event_id: Event id (takes precedence)
        event_name: Event name, matched exactly after trimming
        create: Create the event when looked up by name and missing

    Raises:
        EventNotFoundError: nothing matched and nothing could be created
    """
    if event_id is not None:
        event = db.session.get(Event, event_id)
        if not event:
            raise EventNotFoundError(f"Event {event_id} not found")
        return event

    name = (event_name or "").strip()
    if not name:
        raise EventNotFoundError("An event id or event name is required")

    event = db.session.query(Event).filter_by(name=name).first()
    if event:
        return event
    if not create:
        raise EventNotFoundError(f"Event {name!r} not found")

    event = Event(name=name)
    db.session.add(event)
    db.session.flush()
    logger.info("Event created id=%s name=%r", event.id, name)
    return event


def list_events() -> list[Event]:
    return db.session.query(Event).order_by(Event.name).all()


# =============================================================================
# Reservations
# =============================================================================

def list_reservations(event_id: int) -> list[EventReservation]:
    resolve_event(event_id=event_id)
    return (
        db.session.query(EventReservation)
        .filter_by(event_id=event_id)
        .order_by(EventReservation.id)
        .all()
    )


def add_reservation(event_id: int, item_id: int, quantity: int) -> EventReservation:
    """
    Earmark quantity of an item for an event.

    Raises:
        QuantityOutOfRangeError: quantity is not a positive integer
        InsufficientStockError: quantity exceeds the item's on-hand stock
        DuplicateReservationError: the item is already reserved for the event
        EventNotFoundError / ItemNotFoundError: unknown references
    """
    def _op():
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise QuantityOutOfRangeError(
                "Reserved quantity must be a positive integer",
                minimum=1,
                item_id=item_id,
            )

        event = resolve_event(event_id=event_id)
        on_hand = ledger_service.get_quantity(item_id)
        if quantity > on_hand:
            raise InsufficientStockError(
                f"Cannot reserve {quantity} of item {item_id}; only {on_hand} on hand",
                item_id=item_id,
                requested=quantity,
                on_hand=on_hand,
            )

        existing = (
            db.session.query(EventReservation)
            .filter_by(event_id=event.id, item_id=item_id)
            .first()
        )
        if existing:
            raise DuplicateReservationError(
                f"Item {item_id} is already reserved for event {event.id}",
                item_id=item_id,
            )

        reservation = EventReservation(event_id=event.id, item_id=item_id, quantity=quantity)
        db.session.add(reservation)
        db.session.flush()
        logger.info(
            "Reservation added id=%s event=%s item=%s quantity=%s",
            reservation.id, event.id, item_id, quantity,
        )
        return reservation

    return run_with_retry(_op)


def remove_reservation(reservation_id: int) -> None:
    """
    Delete a reservation that no live checkout line depends on.

    Raises:
        ReservationNotFoundError: unknown id
        ReservationLockedError: a non-cancelled checkout line references it
    """
    def _op():
        reservation = lock_for_update(
            db.session.query(EventReservation).filter_by(id=reservation_id)
        ).first()
        if not reservation:
            raise ReservationNotFoundError(f"Reservation {reservation_id} not found")

        in_use = (
            db.session.query(func.count(CheckoutLine.id))
            .filter(
                CheckoutLine.reservation_id == reservation_id,
                CheckoutLine.status != "cancelled",
            )
            .scalar()
        )
        if in_use:
            raise ReservationLockedError(
                f"Reservation {reservation_id} is already used by a checkout",
                item_id=reservation.item_id,
            )

        # Cancelled lines keep their history but drop the dangling reference
        db.session.query(CheckoutLine).filter(
            CheckoutLine.reservation_id == reservation_id,
        ).update({CheckoutLine.reservation_id: None}, synchronize_session="fetch")

        db.session.delete(reservation)
        db.session.flush()
        logger.info("Reservation removed id=%s", reservation_id)

    return run_with_retry(_op)


def summarize_event(event_id: int) -> list[dict]:
    """
    Reservation overview for an event.

    For each reservation: reserved and on-hand quantity, what would remain
    after the reservation leaves (on_hand - reserved), whether stock is
    currently out for this event, and who last handled it.
    """
    rows = []
    for reservation in list_reservations(event_id):
        lines = (
            db.session.query(CheckoutLine)
            .join(CheckoutTask, CheckoutTask.id == CheckoutLine.task_id)
            .filter(
                CheckoutTask.event_id == event_id,
                CheckoutLine.item_id == reservation.item_id,
                CheckoutLine.status != "cancelled",
            )
            .order_by(CheckoutLine.id)
            .all()
        )
        checked_out = [
            line for line in lines
            if line.task.type == "checkout" and line.status == "checked" and line.actual_quantity > 0
        ]
        returned_ids = {
            line.source_line_id for line in lines
            if line.task.type == "checkin" and line.status == "checked_in"
        }
        open_lines = [line for line in checked_out if line.id not in returned_ids]

        handled = [line for line in lines if line.checked_at is not None]
        last = max(handled, key=lambda line: (line.checked_at, line.id)) if handled else None

        on_hand = ledger_service.get_item_snapshot(reservation.item_id, include_inactive=True).quantity
        rows.append({
            **reservation.to_dict(),
            "on_hand_quantity": on_hand,
            "remaining_quantity": on_hand - reservation.quantity,
            "is_checked_out": bool(open_lines),
            "checked_out_quantity": sum(line.actual_quantity for line in open_lines),
            "last_checked_by": last.checked_by_user_id if last else None,
            "last_checked_at": last.to_dict()["checked_at"] if last else None,
        })
    return rows
