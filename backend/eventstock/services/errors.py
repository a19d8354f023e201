# Overview: Exception taxonomy shared by the ledger, reservation, audit and checkout services.

from __future__ import annotations


class InventoryError(Exception):
    """
    Base class for every failure the checkout core reports.

    Each error names the line and/or item it concerns so an operator can be
    pointed at the offending row. Routes render to_dict() as the JSON body.
    """
    code = "inventory_error"

    def __init__(self, message: str, *, line_id: int | None = None, item_id: int | None = None):
        super().__init__(message)
        self.message = message
        self.line_id = line_id
        self.item_id = item_id

    def to_dict(self) -> dict:
        data = {"error": self.message, "code": self.code}
        if self.line_id is not None:
            data["line_id"] = self.line_id
        if self.item_id is not None:
            data["item_id"] = self.item_id
        return data


# =============================================================================
# Families
# =============================================================================

class ValidationFailure(InventoryError):
    """Rejected before any mutation; the operator corrects input and resubmits."""
    code = "validation_error"


class NotFoundFailure(InventoryError):
    code = "not_found"


class ConcurrencyFailure(InventoryError):
    """Lost a race on the ledger; the caller may re-fetch and retry."""
    code = "concurrency_error"


class ConsistencyFailure(InventoryError):
    """Stock and audit trail disagree; must be surfaced, never swallowed."""
    code = "consistency_error"


# =============================================================================
# Validation errors
# =============================================================================

class ReasonRequiredError(ValidationFailure):
    code = "reason_required"


class QuantityOutOfRangeError(ValidationFailure):
    code = "quantity_out_of_range"

    def __init__(self, message: str, *, minimum: int = 0, maximum: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.minimum = minimum
        self.maximum = maximum

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["minimum"] = self.minimum
        data["maximum"] = self.maximum
        return data


class InsufficientStockError(ValidationFailure):
    code = "insufficient_stock"

    def __init__(self, message: str, *, requested: int, on_hand: int, **kwargs):
        super().__init__(message, **kwargs)
        self.requested = requested
        self.on_hand = on_hand

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["requested"] = self.requested
        data["on_hand"] = self.on_hand
        return data


class InvalidStateError(ValidationFailure):
    """Requested transition is not allowed from the current status."""
    code = "invalid_state"


class DuplicateReservationError(ValidationFailure):
    code = "duplicate_reservation"


class ReservationLockedError(ValidationFailure):
    """Reservation already feeds a checkout line and can no longer be removed."""
    code = "reservation_locked"


# =============================================================================
# Not found
# =============================================================================

class ItemNotFoundError(NotFoundFailure):
    code = "item_not_found"


class CategoryNotFoundError(NotFoundFailure):
    code = "category_not_found"


class EventNotFoundError(NotFoundFailure):
    code = "event_not_found"


class ReservationNotFoundError(NotFoundFailure):
    code = "reservation_not_found"


class TaskNotFoundError(NotFoundFailure):
    code = "task_not_found"


class LineNotFoundError(NotFoundFailure):
    code = "line_not_found"


class NothingToCheckInError(NotFoundFailure):
    """No checked-out lines are open for the event."""
    code = "nothing_to_check_in"


# =============================================================================
# Concurrency errors
# =============================================================================

class VersionConflict(ConcurrencyFailure):
    code = "version_conflict"

    def __init__(self, message: str, *, expected_version: int, current_version: int, **kwargs):
        super().__init__(message, **kwargs)
        self.expected_version = expected_version
        self.current_version = current_version

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["expected_version"] = self.expected_version
        data["current_version"] = self.current_version
        return data


class NegativeStockError(ConcurrencyFailure):
    code = "negative_stock"

    def __init__(self, message: str, *, quantity: int, delta: int, **kwargs):
        super().__init__(message, **kwargs)
        self.quantity = quantity
        self.delta = delta

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["quantity"] = self.quantity
        data["delta"] = self.delta
        return data


# =============================================================================
# Consistency errors
# =============================================================================

class AuditWriteError(ConsistencyFailure):
    """The audit store rejected an insert."""
    code = "audit_write_failed"


class PartialCompletionError(ConsistencyFailure):
    """
    Checkout completion stopped part way because an audit write failed.

    succeeded_line_ids were debited and audited and stay committed;
    line_id names the line whose audit write failed (its debit was undone).
    """
    code = "partial_completion"

    def __init__(self, message: str, *, task_id: int, succeeded_line_ids: list[int], **kwargs):
        super().__init__(message, **kwargs)
        self.task_id = task_id
        self.succeeded_line_ids = list(succeeded_line_ids)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["task_id"] = self.task_id
        data["succeeded_line_ids"] = self.succeeded_line_ids
        return data
