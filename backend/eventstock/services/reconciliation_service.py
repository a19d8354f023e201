# Overview: Pure validation rules for checkout and check-in line quantities.

"""
Reconciliation rules (authoritative)

- Check-in: 0 <= actual <= original (nothing comes back that did not go out).
- Check-in: a reason is required iff the item's category is NOT consumable
  and actual != original. Consumables may come back short without comment.
- Checkout: 0 <= actual <= reserved AND actual <= on-hand; the tighter bound
  wins. No reason is ever required.

Nothing here reads or writes the database. The task engine calls these
functions for dry-run validation and again right before each ledger
mutation, with freshly read stock figures.
"""
from __future__ import annotations

from dataclasses import dataclass

from .errors import InsufficientStockError, QuantityOutOfRangeError, ReasonRequiredError, ValidationFailure


REASON_CODES = {
    "damaged": "Damaged",
    "lost": "Lost",
    "other": "Other",
}


@dataclass(frozen=True)
class LineVerdict:
    """Outcome of validating one line; reason is the normalized text to store."""
    actual_quantity: int
    reason_required: bool
    reason: str | None


def _check_quantity(value, *, line_id: int | None = None, item_id: int | None = None) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise QuantityOutOfRangeError(
            "Quantity must be a whole number",
            line_id=line_id,
            item_id=item_id,
        )
    return value


def format_reason(reason: str | None, reason_code: str | None = None) -> str | None:
    """
    Normalize operator-supplied reason input.

    - Blank text counts as no reason.
    - With a reason_code the stored text is "<code>: <description>"; every
      code needs a description.
    """
    text = (reason or "").strip() or None

    if reason_code is None or not str(reason_code).strip():
        return text

    code = str(reason_code).strip().lower()
    if code not in REASON_CODES:
        raise ValidationFailure(
            f"Unknown reason code {reason_code!r}; expected one of {', '.join(REASON_CODES)}"
        )
    if text is None:
        raise ValidationFailure(f"A description is required with reason code {code!r}")
    return f"{code}: {text}"


def reason_required(*, is_consumable: bool, original_quantity: int, actual_quantity: int) -> bool:
    return (not is_consumable) and actual_quantity != original_quantity


def validate_checkin_line(
    *,
    original_quantity: int,
    actual_quantity: int,
    is_consumable: bool,
    reason: str | None = None,
    reason_code: str | None = None,
    line_id: int | None = None,
    item_id: int | None = None,
) -> LineVerdict:
    """
    Validate a return.

    Raises:
        QuantityOutOfRangeError: actual outside [0, original]
        ReasonRequiredError: durable item came back short/over with no reason
    """
    actual = _check_quantity(actual_quantity, line_id=line_id, item_id=item_id)
    if actual < 0 or actual > original_quantity:
        raise QuantityOutOfRangeError(
            f"Returned quantity {actual} must be between 0 and {original_quantity}",
            minimum=0,
            maximum=original_quantity,
            line_id=line_id,
            item_id=item_id,
        )

    text = format_reason(reason, reason_code)
    required = reason_required(
        is_consumable=is_consumable,
        original_quantity=original_quantity,
        actual_quantity=actual,
    )
    if required and not text:
        raise ReasonRequiredError(
            f"A reason is required: {actual} of {original_quantity} returned for a non-consumable item",
            line_id=line_id,
            item_id=item_id,
        )

    return LineVerdict(actual_quantity=actual, reason_required=required, reason=text)


def validate_checkout_line(
    *,
    actual_quantity: int,
    reserved_quantity: int,
    on_hand_quantity: int | None,
    line_id: int | None = None,
    item_id: int | None = None,
) -> LineVerdict:
    """
    Validate an outgoing quantity against the reservation and live stock.

    on_hand_quantity=None skips the stock bound; completion passes None
    because the ledger's non-negative guard enforces it atomically.

    Raises:
        QuantityOutOfRangeError: negative, or above the reserved quantity
        InsufficientStockError: above what is on hand right now
    """
    actual = _check_quantity(actual_quantity, line_id=line_id, item_id=item_id)
    if actual < 0 or actual > reserved_quantity:
        upper = reserved_quantity if on_hand_quantity is None else min(reserved_quantity, on_hand_quantity)
        raise QuantityOutOfRangeError(
            f"Checkout quantity {actual} must be between 0 and the reserved {reserved_quantity}",
            minimum=0,
            maximum=max(upper, 0),
            line_id=line_id,
            item_id=item_id,
        )
    if on_hand_quantity is not None and actual > on_hand_quantity:
        raise InsufficientStockError(
            f"Only {on_hand_quantity} on hand; cannot check out {actual}",
            requested=actual,
            on_hand=on_hand_quantity,
            line_id=line_id,
            item_id=item_id,
        )

    return LineVerdict(actual_quantity=actual, reason_required=False, reason=None)
