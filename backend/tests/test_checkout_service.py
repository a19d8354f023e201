"""
Checkout / check-in task engine tests.

Verifies:
- Checkout completion debits each line once and audits it
- Check-in credits immediately, with the reason rule for durable items
- complete_task is idempotent and resumes after a failure
- Ledger conflicts surface with the offending line and are never retried
- Audit failures surface as PartialCompletionError with the succeeded lines
"""

import pytest

from eventstock.models import AuditLogEntry
from eventstock.services import audit_service, inventory_service, ledger_service, reservation_service
from eventstock.services.checkout_service import CheckoutEngine
from eventstock.services.errors import (
    AuditWriteError,
    EventNotFoundError,
    InsufficientStockError,
    InvalidStateError,
    ItemNotFoundError,
    NegativeStockError,
    NothingToCheckInError,
    PartialCompletionError,
    QuantityOutOfRangeError,
    ReasonRequiredError,
    ValidationFailure,
    VersionConflict,
)


def _audit(db_session, action=None):
    query = db_session.query(AuditLogEntry)
    if action:
        query = query.filter_by(action=action)
    return query.order_by(AuditLogEntry.id).all()


@pytest.fixture
def tent_checked_out(db_session, engine, event, tent):
    """5 tents reserved for the event and checked out."""
    reservation_service.add_reservation(event.id, tent.id, 5)
    task = engine.create_task("checkout", "alice", event_id=event.id)
    engine.complete_task(task.id, "alice")
    db_session.commit()
    return task


class FailingAudit:
    """Audit collaborator that rejects the nth write."""

    def __init__(self, fail_on_call):
        self.fail_on_call = fail_on_call
        self.calls = 0

    def record(self, *args, **kwargs):
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise AuditWriteError("audit store unavailable", line_id=kwargs.get("line_id"))
        return audit_service.record(*args, **kwargs)


class RacingLedger:
    """Ledger collaborator where another writer bumps the item right after every read."""

    def get_item_snapshot(self, item_id, **kwargs):
        snapshot = ledger_service.get_item_snapshot(item_id, **kwargs)
        ledger_service.apply_delta(item_id, 0, snapshot.version)
        return snapshot

    def apply_delta(self, item_id, delta, expected_version):
        return ledger_service.apply_delta(item_id, delta, expected_version)


# =============================================================================
# TASK CREATION
# =============================================================================


class TestCreateTask:

    def test_checkout_seeds_one_line_per_reservation(self, db_session, engine, event, tent, candles):
        reservation_service.add_reservation(event.id, tent.id, 5)
        reservation_service.add_reservation(event.id, candles.id, 30)

        task = engine.create_task("checkout", "alice", event_id=event.id)

        assert task.status == "pending"
        assert task.created_by_user_id == "alice"
        assert [(l.item_id, l.original_quantity, l.actual_quantity, l.status) for l in task.lines] == [
            (tent.id, 5, 5, "pending"),
            (candles.id, 30, 30, "pending"),
        ]
        # Creating a task never moves stock
        assert ledger_service.get_quantity(tent.id) == 20

    def test_checkout_creates_event_by_name(self, db_session, engine):
        task = engine.create_task("checkout", "alice", event_name="Navratri")
        assert task.event.name == "Navratri"
        assert task.lines == []

    def test_second_checkout_skips_reservations_already_in_progress(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        engine.create_task("checkout", "alice", event_id=event.id)

        second = engine.create_task("checkout", "bob", event_id=event.id)
        assert second.lines == []

    def test_reservation_still_out_is_not_reseeded(self, db_session, engine, event, tent_checked_out):
        assert engine.create_task("checkout", "bob", event_id=event.id).lines == []

        checkin = engine.create_task("checkin", "bob", event_id=event.id)
        engine.update_line(checkin.lines[0].id, 5, "checked_in", "bob")

        again = engine.create_task("checkout", "bob", event_id=event.id)
        assert len(again.lines) == 1

    def test_deactivated_item_is_not_seeded(self, db_session, engine, event, tent, candles):
        reservation_service.add_reservation(event.id, tent.id, 5)
        reservation_service.add_reservation(event.id, candles.id, 10)
        inventory_service.soft_delete_item(candles.id)

        task = engine.create_task("checkout", "alice", event_id=event.id)

        assert [line.item_id for line in task.lines] == [tent.id]

    def test_invalid_type(self, db_session, engine, event):
        with pytest.raises(ValidationFailure):
            engine.create_task("return", "alice", event_id=event.id)

    def test_checkin_for_unknown_event(self, db_session, engine):
        with pytest.raises(EventNotFoundError):
            engine.create_task("checkin", "alice", event_name="Nowhere")

    def test_checkin_with_nothing_out(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        with pytest.raises(NothingToCheckInError):
            engine.create_task("checkin", "alice", event_id=event.id)

    def test_checkin_seeds_from_checked_out_lines(self, db_session, engine, event, tent, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)

        [line] = checkin.lines
        assert line.status == "checked"
        assert line.original_quantity == 5
        assert line.source_line_id == tent_checked_out.lines[0].id
        assert line.reservation_id is None

    def test_lines_claimed_by_open_checkin_are_not_reseeded(self, db_session, engine, event, tent_checked_out):
        engine.create_task("checkin", "bob", event_id=event.id)
        with pytest.raises(NothingToCheckInError):
            engine.create_task("checkin", "carol", event_id=event.id)


# =============================================================================
# CHECKOUT COMPLETION
# =============================================================================


class TestCheckoutCompletion:

    def test_tent_checkout(self, db_session, engine, event, tent, tent_checked_out):
        assert tent_checked_out.status == "completed"
        assert tent_checked_out.completed_at is not None
        assert tent_checked_out.lines[0].status == "checked"

        snapshot = ledger_service.get_item_snapshot(tent.id)
        assert (snapshot.quantity, snapshot.version) == (15, 1)

        [entry] = _audit(db_session)
        assert entry.action == "checkout"
        assert entry.quantity_delta == -5
        assert entry.line_id == tent_checked_out.lines[0].id

    def test_complete_twice_is_idempotent(self, db_session, engine, tent, tent_checked_out):
        again = engine.complete_task(tent_checked_out.id, "alice")

        assert again.status == "completed"
        assert ledger_service.get_quantity(tent.id) == 15
        assert len(_audit(db_session)) == 1

    def test_operator_count_is_debited(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        task = engine.create_task("checkout", "alice", event_id=event.id)

        line = engine.update_line(task.lines[0].id, 4, "checked", "bob")
        assert line.status == "pending"
        assert line.actual_quantity == 4
        assert line.checked_by_user_id == "bob"
        assert task.status == "in_progress"

        engine.complete_task(task.id, "alice")
        assert ledger_service.get_quantity(tent.id) == 16
        assert _audit(db_session)[0].quantity_delta == -4
        assert _audit(db_session)[0].user_id == "alice"

    def test_zero_quantity_line_moves_nothing(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        task = engine.create_task("checkout", "alice", event_id=event.id)
        engine.update_line(task.lines[0].id, 0, "checked", "alice")

        engine.complete_task(task.id, "alice")

        assert task.lines[0].status == "checked"
        assert ledger_service.get_item_snapshot(tent.id).version == 0
        assert _audit(db_session) == []
        with pytest.raises(NothingToCheckInError):
            engine.create_task("checkin", "alice", event_id=event.id)

    def test_count_above_reservation_rejected(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        task = engine.create_task("checkout", "alice", event_id=event.id)

        with pytest.raises(QuantityOutOfRangeError) as exc_info:
            engine.update_line(task.lines[0].id, 6, "checked", "alice")
        assert exc_info.value.line_id == task.lines[0].id

    def test_count_above_on_hand_rejected(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        task = engine.create_task("checkout", "alice", event_id=event.id)
        inventory_service.set_item_quantity(tent.id, 3, expected_version=0)

        with pytest.raises(InsufficientStockError):
            engine.update_line(task.lines[0].id, 5, "checked", "alice")

    def test_stock_gone_before_completion(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        task = engine.create_task("checkout", "alice", event_id=event.id)
        inventory_service.set_item_quantity(tent.id, 3, expected_version=0)

        with pytest.raises(NegativeStockError) as exc_info:
            engine.complete_task(task.id, "alice")

        assert exc_info.value.line_id == task.lines[0].id
        assert ledger_service.get_quantity(tent.id) == 3
        assert task.lines[0].status == "pending"
        assert task.status != "completed"

    def test_version_conflict_is_not_retried(self, db_session, event, tent):
        racing = CheckoutEngine(ledger=RacingLedger())
        reservation_service.add_reservation(event.id, tent.id, 5)
        task = racing.create_task("checkout", "alice", event_id=event.id)

        with pytest.raises(VersionConflict) as exc_info:
            racing.complete_task(task.id, "alice")

        assert exc_info.value.line_id == task.lines[0].id
        assert task.lines[0].status == "pending"
        assert _audit(db_session) == []

    def test_cancelled_line_is_skipped(self, db_session, engine, event, tent, candles):
        reservation_service.add_reservation(event.id, tent.id, 5)
        reservation_service.add_reservation(event.id, candles.id, 10)
        task = engine.create_task("checkout", "alice", event_id=event.id)

        engine.update_line(task.lines[1].id, 10, "cancelled", "alice")
        engine.complete_task(task.id, "alice")

        assert ledger_service.get_quantity(tent.id) == 15
        assert ledger_service.get_quantity(candles.id) == 100
        assert task.lines[1].status == "cancelled"

    def test_deactivated_item_is_not_shipped(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        task = engine.create_task("checkout", "alice", event_id=event.id)
        line = task.lines[0]
        inventory_service.soft_delete_item(tent.id)

        with pytest.raises(ItemNotFoundError):
            engine.update_line(line.id, 4, "checked", "bob")
        with pytest.raises(ItemNotFoundError) as exc_info:
            engine.complete_task(task.id, "alice")

        assert exc_info.value.line_id == line.id
        assert line.status == "pending"
        assert task.status != "completed"
        snapshot = ledger_service.get_item_snapshot(tent.id, include_inactive=True)
        assert (snapshot.quantity, snapshot.version) == (20, 0)
        assert _audit(db_session) == []

        # Cancelling the line lets the rest of the task finish
        engine.update_line(line.id, 0, "cancelled", "alice", reason="item retired")
        engine.complete_task(task.id, "alice")

        assert task.status == "completed"
        assert line.status == "cancelled"
        assert ledger_service.get_item_snapshot(tent.id, include_inactive=True).quantity == 20


class TestPartialCompletion:

    def test_audit_failure_reports_succeeded_lines_and_resumes(self, db_session, engine, event, tent, candles):
        reservation_service.add_reservation(event.id, tent.id, 5)
        reservation_service.add_reservation(event.id, candles.id, 10)
        flaky = CheckoutEngine(audit=FailingAudit(fail_on_call=2))
        task = flaky.create_task("checkout", "alice", event_id=event.id)
        tent_line, candle_line = task.lines

        with pytest.raises(PartialCompletionError) as exc_info:
            flaky.complete_task(task.id, "alice")

        err = exc_info.value
        assert err.succeeded_line_ids == [tent_line.id]
        assert err.line_id == candle_line.id
        assert err.task_id == task.id

        # The failing line's debit was undone with its savepoint
        assert ledger_service.get_quantity(tent.id) == 15
        assert ledger_service.get_quantity(candles.id) == 100
        assert tent_line.status == "checked"
        assert candle_line.status == "pending"
        assert task.status == "in_progress"
        db_session.commit()

        engine.complete_task(task.id, "alice")

        assert task.status == "completed"
        assert ledger_service.get_quantity(tent.id) == 15
        assert ledger_service.get_quantity(candles.id) == 90
        assert [e.quantity_delta for e in _audit(db_session, "checkout")] == [-5, -10]


# =============================================================================
# CHECK-IN
# =============================================================================


class TestCheckin:

    def test_tent_short_return_with_reason(self, db_session, engine, event, tent, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)

        line = engine.update_line(
            checkin.lines[0].id, 3, "checked_in", "bob", reason="two poles snapped", reason_code="damaged",
        )

        assert line.status == "checked_in"
        assert line.reason == "damaged: two poles snapped"
        assert ledger_service.get_quantity(tent.id) == 18

        # One entry for the one credit, labelled as a mismatch
        entries = db_session.query(AuditLogEntry).filter_by(task_id=checkin.id).all()
        assert len(entries) == 1
        [credit] = entries
        assert credit.action == "quantity_mismatch"
        assert credit.quantity_delta == 3
        assert credit.reason == "damaged: two poles snapped"
        assert credit.line_id == line.id

        # Last open line settled: the task completes itself
        assert checkin.status == "completed"

    def test_audit_deltas_match_stock_movement(self, db_session, engine, event, tent, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)
        engine.update_line(checkin.lines[0].id, 3, "checked_in", "bob", reason="two poles snapped")

        assert sum(e.quantity_delta for e in _audit(db_session)) == -2
        assert ledger_service.get_quantity(tent.id) == 20 - 2

    def test_tent_full_return_without_reason(self, db_session, engine, event, tent, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)

        line = engine.update_line(checkin.lines[0].id, 5, "checked_in", "bob")

        assert line.status == "checked_in"
        assert line.reason is None
        assert ledger_service.get_quantity(tent.id) == 20
        assert _audit(db_session, "quantity_mismatch") == []
        [credit] = _audit(db_session, "checkin")
        assert credit.quantity_delta == 5

    def test_short_return_without_reason_rejected(self, db_session, engine, event, tent, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)

        with pytest.raises(ReasonRequiredError) as exc_info:
            engine.update_line(checkin.lines[0].id, 4, "checked_in", "bob")

        assert exc_info.value.line_id == checkin.lines[0].id
        assert checkin.lines[0].status == "checked"
        assert ledger_service.get_quantity(tent.id) == 15

    def test_consumable_short_return_needs_no_reason(self, db_session, engine, event, candles):
        reservation_service.add_reservation(event.id, candles.id, 10)
        checkout = engine.create_task("checkout", "alice", event_id=event.id)
        engine.complete_task(checkout.id, "alice")

        checkin = engine.create_task("checkin", "bob", event_id=event.id)
        engine.update_line(checkin.lines[0].id, 4, "checked_in", "bob")

        assert ledger_service.get_quantity(candles.id) == 94
        [credit] = _audit(db_session, "quantity_mismatch")
        assert credit.quantity_delta == 4
        assert credit.reason is None
        assert _audit(db_session, "checkin") == []

    def test_nothing_returned_writes_no_entry(self, db_session, engine, event, tent, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)
        line = engine.update_line(
            checkin.lines[0].id, 0, "checked_in", "bob", reason="left at venue", reason_code="lost",
        )

        assert line.status == "checked_in"
        assert line.reason == "lost: left at venue"
        assert ledger_service.get_item_snapshot(tent.id).version == 1
        assert db_session.query(AuditLogEntry).filter_by(task_id=checkin.id).count() == 0

    def test_return_above_checked_out_rejected(self, db_session, engine, event, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)
        with pytest.raises(QuantityOutOfRangeError):
            engine.update_line(checkin.lines[0].id, 6, "checked_in", "bob")

    def test_stale_expected_version_rejected(self, db_session, engine, event, tent, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)

        with pytest.raises(VersionConflict) as exc_info:
            engine.update_line(checkin.lines[0].id, 5, "checked_in", "bob", expected_version=0)

        assert exc_info.value.line_id == checkin.lines[0].id
        assert checkin.lines[0].status == "checked"
        assert ledger_service.get_quantity(tent.id) == 15

    def test_line_cannot_be_checked_in_twice(self, db_session, engine, event, tent_checked_out, candles):
        reservation_service.add_reservation(event.id, candles.id, 10)
        second = engine.create_task("checkout", "alice", event_id=event.id)
        engine.complete_task(second.id, "alice")

        checkin = engine.create_task("checkin", "bob", event_id=event.id)
        tent_line = checkin.lines[0]
        engine.update_line(tent_line.id, 5, "checked_in", "bob")

        with pytest.raises(InvalidStateError):
            engine.update_line(tent_line.id, 5, "checked_in", "bob")

    def test_complete_with_open_lines_rejected(self, db_session, engine, event, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)
        with pytest.raises(InvalidStateError):
            engine.complete_task(checkin.id, "bob")


# =============================================================================
# VALIDATION DRY RUN
# =============================================================================


class TestValidateLine:

    def test_reports_reason_requirement_without_writing(self, db_session, engine, event, tent, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)

        with pytest.raises(ReasonRequiredError):
            engine.validate_line(checkin.lines[0].id, 3)

        verdict = engine.validate_line(checkin.lines[0].id, 3, reason="torn")
        assert verdict.reason_required is True
        assert checkin.lines[0].status == "checked"
        assert ledger_service.get_quantity(tent.id) == 15

    def test_checkout_line_bounds(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        task = engine.create_task("checkout", "alice", event_id=event.id)

        assert engine.validate_line(task.lines[0].id, 5).actual_quantity == 5
        with pytest.raises(QuantityOutOfRangeError):
            engine.validate_line(task.lines[0].id, 6)


# =============================================================================
# CANCELLATION AND LISTING
# =============================================================================


class TestCancelTask:

    def test_cancel_checkout_moves_no_stock(self, db_session, engine, event, tent):
        reservation_service.add_reservation(event.id, tent.id, 5)
        task = engine.create_task("checkout", "alice", event_id=event.id)

        cancelled = engine.cancel_task(task.id, "bob")

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by_user_id == "bob"
        assert cancelled.lines[0].status == "cancelled"
        assert ledger_service.get_quantity(tent.id) == 20

    def test_cancel_twice_returns_task(self, db_session, engine, event):
        task = engine.create_task("checkout", "alice", event_id=event.id)
        engine.cancel_task(task.id, "alice")
        assert engine.cancel_task(task.id, "alice").status == "cancelled"

    def test_completed_task_cannot_be_cancelled(self, db_session, engine, tent_checked_out):
        with pytest.raises(InvalidStateError):
            engine.cancel_task(tent_checked_out.id, "alice")

    def test_cancelled_task_cannot_be_completed(self, db_session, engine, event):
        task = engine.create_task("checkout", "alice", event_id=event.id)
        engine.cancel_task(task.id, "alice")
        with pytest.raises(InvalidStateError):
            engine.complete_task(task.id, "alice")

    def test_cancelled_checkin_releases_lines(self, db_session, engine, event, tent_checked_out):
        checkin = engine.create_task("checkin", "bob", event_id=event.id)
        engine.cancel_task(checkin.id, "bob")

        retry = engine.create_task("checkin", "bob", event_id=event.id)
        assert len(retry.lines) == 1

    def test_list_tasks_filters(self, db_session, engine, event, tent_checked_out):
        engine.create_task("checkin", "bob", event_id=event.id)

        assert len(engine.list_tasks(event_id=event.id)) == 2
        assert [t.type for t in engine.list_tasks(task_type="checkin")] == ["checkin"]
        assert [t.id for t in engine.list_tasks(status="completed")] == [tent_checked_out.id]
