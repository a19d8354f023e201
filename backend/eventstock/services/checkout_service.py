# backend/eventstock/services/checkout_service.py
"""
Checkout / check-in task engine.

WHY: Stock loaned to an event leaves in one operator action and comes back
in another. Each action is a task made of lines; the engine decides what
each line may do, moves stock through the ledger and writes the audit trail.

TASK LIFECYCLE:
1. pending: created, lines seeded
2. in_progress: first line edited
3. completed: all lines settled (terminal)
4. cancelled: abandoned (terminal)

LINE LIFECYCLE:
- checkout: pending -> checked (at task completion, when debited) | cancelled
- checkin:  checked -> checked_in (immediately credited) | cancelled

LEDGER RULES:
- Checkout debits happen in complete_task, one SAVEPOINT per line, each
  guarded by the item version read right before the debit.
- Check-in credits happen in update_line, before the line is marked.
- A ledger rejection is raised to the caller; the engine never retries.
- Lines already checked are skipped, so complete_task can be re-invoked to
  resume a half-finished checkout.
"""
from __future__ import annotations

import logging

from sqlalchemy import and_, exists, or_
from sqlalchemy.orm import aliased

from eventstock.extensions import db
from eventstock.models import CheckoutLine, CheckoutTask
from eventstock.services import (
    audit_service,
    inventory_service,
    ledger_service,
    reconciliation_service,
    reservation_service,
)
from eventstock.services.concurrency import lock_for_update, run_with_retry
from eventstock.services.errors import (
    AuditWriteError,
    ConcurrencyFailure,
    InvalidStateError,
    LineNotFoundError,
    NotFoundFailure,
    NothingToCheckInError,
    PartialCompletionError,
    TaskNotFoundError,
    ValidationFailure,
)
from eventstock.time_utils import utcnow

logger = logging.getLogger(__name__)


# Task type constants
TASK_TYPE_CHECKOUT = "checkout"
TASK_TYPE_CHECKIN = "checkin"
TASK_TYPES = (TASK_TYPE_CHECKOUT, TASK_TYPE_CHECKIN)

# Task status constants
TASK_STATUS_PENDING = "pending"
TASK_STATUS_IN_PROGRESS = "in_progress"
TASK_STATUS_COMPLETED = "completed"
TASK_STATUS_CANCELLED = "cancelled"
TASK_TERMINAL_STATUSES = (TASK_STATUS_COMPLETED, TASK_STATUS_CANCELLED)

# Line status constants
LINE_STATUS_PENDING = "pending"
LINE_STATUS_CHECKED = "checked"
LINE_STATUS_CHECKED_IN = "checked_in"
LINE_STATUS_CANCELLED = "cancelled"

# Allowed per-line transitions by task type
LINE_TRANSITIONS = {
    TASK_TYPE_CHECKOUT: {
        LINE_STATUS_PENDING: {LINE_STATUS_CHECKED, LINE_STATUS_CANCELLED},
    },
    TASK_TYPE_CHECKIN: {
        LINE_STATUS_CHECKED: {LINE_STATUS_CHECKED_IN, LINE_STATUS_CANCELLED},
    },
}


class CheckoutEngine:
    """
    Task state machine over injected collaborators.

    ledger, reservations, audit and catalog default to the service modules;
    tests and callers can pass substitutes with the same functions.
    """

    def __init__(
        self,
        *,
        ledger=ledger_service,
        reservations=reservation_service,
        audit=audit_service,
        catalog=inventory_service,
        rules=reconciliation_service,
    ):
        self.ledger = ledger
        self.reservations = reservations
        self.audit = audit
        self.catalog = catalog
        self.rules = rules

    # =========================================================================
    # Task creation
    # =========================================================================

    def create_task(
        self,
        task_type: str,
        user_id: str,
        *,
        event_id: int | None = None,
        event_name: str | None = None,
    ) -> CheckoutTask:
        """
        Create a checkout or check-in task for an event.

        Args:
            task_type: "checkout" or "checkin"
            user_id: Operator creating the task
            event_id / event_name: Event reference; checkout creates the
                event by name if it does not exist yet

        Returns:
            CheckoutTask: The new task with its seeded lines

        Raises:
            ValidationFailure: unknown task type or missing user
            EventNotFoundError: event could not be resolved (or created)
            NothingToCheckInError: check-in with no open checked-out lines
        """
        if task_type not in TASK_TYPES:
            raise ValidationFailure(f"Invalid task type: {task_type!r}")
        if not user_id:
            raise ValidationFailure("user_id is required")

        def _op():
            if task_type == TASK_TYPE_CHECKOUT:
                return self._create_checkout_task(user_id, event_id, event_name)
            return self._create_checkin_task(user_id, event_id, event_name)

        return run_with_retry(_op)

    def _create_checkout_task(self, user_id, event_id, event_name) -> CheckoutTask:
        event = self.reservations.resolve_event(event_id=event_id, event_name=event_name, create=True)

        task = CheckoutTask(
            event_id=event.id,
            type=TASK_TYPE_CHECKOUT,
            status=TASK_STATUS_PENDING,
            created_by_user_id=str(user_id),
        )
        db.session.add(task)
        db.session.flush()

        busy = self._reservations_in_use(event.id)
        for reservation in self.reservations.list_reservations(event.id):
            if reservation.id in busy or not reservation.item.is_active:
                continue
            db.session.add(CheckoutLine(
                task_id=task.id,
                item_id=reservation.item_id,
                reservation_id=reservation.id,
                original_quantity=reservation.quantity,
                actual_quantity=reservation.quantity,
                status=LINE_STATUS_PENDING,
            ))
        db.session.flush()
        db.session.refresh(task)

        logger.info(
            "Checkout task created id=%s event=%s lines=%s user=%s",
            task.id, event.id, len(task.lines), user_id,
        )
        return task

    def _reservations_in_use(self, event_id: int) -> set[int]:
        """
        Reservation ids that must not seed another checkout line:
        - on a pending line of an unfinished checkout
        - checked out and not yet checked back in
        """
        returned = aliased(CheckoutLine)
        came_back = exists().where(and_(
            returned.source_line_id == CheckoutLine.id,
            returned.status == LINE_STATUS_CHECKED_IN,
        ))
        rows = (
            db.session.query(CheckoutLine.reservation_id)
            .join(CheckoutTask, CheckoutTask.id == CheckoutLine.task_id)
            .filter(
                CheckoutTask.event_id == event_id,
                CheckoutTask.type == TASK_TYPE_CHECKOUT,
                CheckoutLine.reservation_id.isnot(None),
                or_(
                    and_(
                        CheckoutTask.status.in_([TASK_STATUS_PENDING, TASK_STATUS_IN_PROGRESS]),
                        CheckoutLine.status == LINE_STATUS_PENDING,
                    ),
                    and_(
                        CheckoutLine.status == LINE_STATUS_CHECKED,
                        CheckoutLine.actual_quantity > 0,
                        ~came_back,
                    ),
                ),
            )
            .all()
        )
        return {row.reservation_id for row in rows}

    def _create_checkin_task(self, user_id, event_id, event_name) -> CheckoutTask:
        event = self.reservations.resolve_event(event_id=event_id, event_name=event_name, create=False)

        open_lines = self.open_checked_out_lines(event.id)
        if not open_lines:
            raise NothingToCheckInError(f"No checked-out items to check in for event {event.name!r}")

        task = CheckoutTask(
            event_id=event.id,
            type=TASK_TYPE_CHECKIN,
            status=TASK_STATUS_PENDING,
            created_by_user_id=str(user_id),
        )
        db.session.add(task)
        db.session.flush()

        for source in open_lines:
            db.session.add(CheckoutLine(
                task_id=task.id,
                item_id=source.item_id,
                source_line_id=source.id,
                original_quantity=source.actual_quantity,
                actual_quantity=source.actual_quantity,
                status=LINE_STATUS_CHECKED,
            ))
        db.session.flush()
        db.session.refresh(task)

        logger.info(
            "Check-in task created id=%s event=%s lines=%s user=%s",
            task.id, event.id, len(task.lines), user_id,
        )
        return task

    def open_checked_out_lines(self, event_id: int) -> list[CheckoutLine]:
        """
        Checkout lines of an event whose stock is out and not yet claimed
        by a live check-in line.
        """
        returning = aliased(CheckoutLine)
        claimed = exists().where(and_(
            returning.source_line_id == CheckoutLine.id,
            returning.status != LINE_STATUS_CANCELLED,
        ))
        return (
            db.session.query(CheckoutLine)
            .join(CheckoutTask, CheckoutTask.id == CheckoutLine.task_id)
            .filter(
                CheckoutTask.event_id == event_id,
                CheckoutTask.type == TASK_TYPE_CHECKOUT,
                CheckoutLine.status == LINE_STATUS_CHECKED,
                CheckoutLine.actual_quantity > 0,
                ~claimed,
            )
            .order_by(CheckoutLine.id)
            .all()
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_task(self, task_id: int) -> CheckoutTask:
        task = db.session.get(CheckoutTask, task_id)
        if not task:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    def list_tasks(
        self,
        *,
        event_id: int | None = None,
        status: str | None = None,
        task_type: str | None = None,
        limit: int = 100,
    ) -> list[CheckoutTask]:
        query = db.session.query(CheckoutTask)
        if event_id is not None:
            query = query.filter(CheckoutTask.event_id == event_id)
        if status:
            query = query.filter(CheckoutTask.status == status)
        if task_type:
            query = query.filter(CheckoutTask.type == task_type)
        return query.order_by(CheckoutTask.created_at.desc(), CheckoutTask.id.desc()).limit(limit).all()

    def _load_line(self, line_id: int) -> CheckoutLine:
        line = lock_for_update(db.session.query(CheckoutLine).filter_by(id=line_id)).first()
        if not line:
            raise LineNotFoundError(f"Line {line_id} not found", line_id=line_id)
        return line

    def _load_task(self, task_id: int) -> CheckoutTask:
        task = lock_for_update(db.session.query(CheckoutTask).filter_by(id=task_id)).first()
        if not task:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    # =========================================================================
    # Line validation and updates
    # =========================================================================

    def _check_transition(self, task: CheckoutTask, line: CheckoutLine, status: str) -> None:
        if task.status in TASK_TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Task {task.id} is {task.status}; its lines can no longer change",
                line_id=line.id,
            )
        allowed = LINE_TRANSITIONS[task.type].get(line.status, set())
        if status not in allowed:
            raise InvalidStateError(
                f"Line {line.id} cannot move from {line.status} to {status} on a {task.type} task",
                line_id=line.id,
            )

    def validate_line(
        self,
        line_id: int,
        actual_quantity: int,
        *,
        reason: str | None = None,
        reason_code: str | None = None,
    ) -> reconciliation_service.LineVerdict:
        """
        Dry-run the rules for a proposed line edit. Nothing is written.

        Raises the same validation errors update_line would.
        """
        line = self._load_line(line_id)
        task = line.task
        if task.type == TASK_TYPE_CHECKIN:
            return self.rules.validate_checkin_line(
                original_quantity=line.original_quantity,
                actual_quantity=actual_quantity,
                is_consumable=self.catalog.is_item_consumable(line.item_id),
                reason=reason,
                reason_code=reason_code,
                line_id=line.id,
                item_id=line.item_id,
            )
        return self.rules.validate_checkout_line(
            actual_quantity=actual_quantity,
            reserved_quantity=line.original_quantity,
            on_hand_quantity=self.ledger.get_item_snapshot(line.item_id).quantity,
            line_id=line.id,
            item_id=line.item_id,
        )

    def update_line(
        self,
        line_id: int,
        actual_quantity: int,
        status: str,
        user_id: str,
        reason: str | None = None,
        *,
        reason_code: str | None = None,
        expected_version: int | None = None,
    ) -> CheckoutLine:
        """
        Record what an operator counted for one line.

        Checkout lines only store the quantity here (the debit happens in
        complete_task). Check-in lines credit the ledger immediately and
        then move to checked_in.

        Args:
            line_id: Line being edited
            actual_quantity: Quantity that really moved
            status: Target status (checked / checked_in / cancelled)
            user_id: Operator
            reason: Free-text justification
            reason_code: Optional damaged / lost / other
            expected_version: Item version the operator saw; defaults to a
                fresh read right before the credit

        Raises:
            InvalidStateError, QuantityOutOfRangeError, InsufficientStockError,
            ReasonRequiredError, VersionConflict, NegativeStockError,
            AuditWriteError
        """
        if not user_id:
            raise ValidationFailure("user_id is required", line_id=line_id)

        line = self._load_line(line_id)
        task = line.task
        self._check_transition(task, line, status)

        if status == LINE_STATUS_CANCELLED:
            self._cancel_line(line, user_id, reason, reason_code)
        elif task.type == TASK_TYPE_CHECKOUT:
            self._record_checkout_count(line, actual_quantity, user_id)
        else:
            self._check_in_line(line, actual_quantity, user_id, reason, reason_code, expected_version)

        if task.status == TASK_STATUS_PENDING:
            task.status = TASK_STATUS_IN_PROGRESS
        if task.type == TASK_TYPE_CHECKIN:
            self._finish_checkin_if_settled(task)

        db.session.flush()
        return line

    def _cancel_line(self, line, user_id, reason, reason_code) -> None:
        line.status = LINE_STATUS_CANCELLED
        line.reason = self.rules.format_reason(reason, reason_code)
        line.checked_by_user_id = str(user_id)
        line.checked_at = utcnow()
        logger.info("Line cancelled id=%s task=%s user=%s", line.id, line.task_id, user_id)

    def _record_checkout_count(self, line, actual_quantity, user_id) -> None:
        verdict = self.rules.validate_checkout_line(
            actual_quantity=actual_quantity,
            reserved_quantity=line.original_quantity,
            on_hand_quantity=self.ledger.get_item_snapshot(line.item_id).quantity,
            line_id=line.id,
            item_id=line.item_id,
        )
        # Stays pending until complete_task debits it
        line.actual_quantity = verdict.actual_quantity
        line.checked_by_user_id = str(user_id)
        line.checked_at = utcnow()

    def _check_in_line(self, line, actual_quantity, user_id, reason, reason_code, expected_version) -> None:
        is_consumable = self.catalog.is_item_consumable(line.item_id)
        verdict = self.rules.validate_checkin_line(
            original_quantity=line.original_quantity,
            actual_quantity=actual_quantity,
            is_consumable=is_consumable,
            reason=reason,
            reason_code=reason_code,
            line_id=line.id,
            item_id=line.item_id,
        )

        with db.session.begin_nested():
            if verdict.actual_quantity > 0:
                if expected_version is None:
                    expected_version = self.ledger.get_item_snapshot(
                        line.item_id, include_inactive=True,
                    ).version
                try:
                    self.ledger.apply_delta(line.item_id, verdict.actual_quantity, expected_version)
                except ConcurrencyFailure as exc:
                    exc.line_id = line.id
                    raise
                # One entry per credit; short returns are labelled as mismatches
                if verdict.actual_quantity != line.original_quantity:
                    action = audit_service.ACTION_QUANTITY_MISMATCH
                else:
                    action = audit_service.ACTION_CHECKIN
                self.audit.record(
                    user_id,
                    action,
                    line.item_id,
                    line.task_id,
                    verdict.actual_quantity,
                    verdict.reason,
                    line_id=line.id,
                )

            line.actual_quantity = verdict.actual_quantity
            line.reason = verdict.reason
            line.status = LINE_STATUS_CHECKED_IN
            line.checked_by_user_id = str(user_id)
            line.checked_at = utcnow()
            db.session.flush()

        logger.info(
            "Line checked in id=%s task=%s item=%s returned=%s/%s user=%s",
            line.id, line.task_id, line.item_id,
            verdict.actual_quantity, line.original_quantity, user_id,
        )

    def _finish_checkin_if_settled(self, task: CheckoutTask) -> None:
        if any(line.status == LINE_STATUS_CHECKED for line in task.lines):
            return
        task.status = TASK_STATUS_COMPLETED
        task.completed_at = utcnow()
        logger.info("Check-in task completed id=%s", task.id)

    # =========================================================================
    # Completion and cancellation
    # =========================================================================

    def complete_task(self, task_id: int, user_id: str | None = None) -> CheckoutTask:
        """
        Finalize a task.

        Checkout: debit every pending line, audit it and mark it checked,
        then complete the task. Re-invoking after a failure resumes with
        the remaining lines; a completed task is returned unchanged.

        Check-in: complete once no line is still waiting to be checked in.

        Raises:
            TaskNotFoundError
            InvalidStateError: cancelled task, or check-in lines still open
            VersionConflict / NegativeStockError: ledger rejected a line
                (earlier lines stay debited; line_id names the failure)
            QuantityOutOfRangeError: a line exceeds its reservation
            PartialCompletionError: audit write failed after earlier lines
                were debited
        """
        task = self._load_task(task_id)

        if task.status == TASK_STATUS_COMPLETED:
            return task
        if task.status == TASK_STATUS_CANCELLED:
            raise InvalidStateError(f"Task {task.id} is cancelled and cannot be completed")

        if task.type == TASK_TYPE_CHECKIN:
            still_open = [line.id for line in task.lines if line.status == LINE_STATUS_CHECKED]
            if still_open:
                raise InvalidStateError(
                    f"Task {task.id} still has lines waiting to be checked in: {still_open}",
                    line_id=still_open[0],
                )
            self._finish_checkin_if_settled(task)
            db.session.flush()
            return task

        actor = str(user_id or task.created_by_user_id)
        succeeded: list[int] = []
        for line in task.lines:
            if line.status != LINE_STATUS_PENDING:
                continue
            try:
                self._debit_line(task, line, actor)
            except AuditWriteError as exc:
                self._mark_progress(task, succeeded)
                raise PartialCompletionError(
                    f"Task {task.id} stopped at line {line.id}: audit write failed; "
                    f"{len(succeeded)} line(s) completed before it",
                    task_id=task.id,
                    succeeded_line_ids=succeeded,
                    line_id=line.id,
                    item_id=line.item_id,
                ) from exc
            except (ConcurrencyFailure, ValidationFailure, NotFoundFailure) as exc:
                exc.line_id = line.id
                self._mark_progress(task, succeeded)
                logger.warning(
                    "Checkout completion halted task=%s line=%s: %s",
                    task.id, line.id, exc.message,
                )
                raise
            succeeded.append(line.id)

        task.status = TASK_STATUS_COMPLETED
        task.completed_at = utcnow()
        db.session.flush()
        logger.info("Checkout task completed id=%s lines_debited=%s", task.id, len(succeeded))
        return task

    def _debit_line(self, task: CheckoutTask, line: CheckoutLine, actor: str) -> None:
        """Re-validate, debit, audit and mark one line inside its own SAVEPOINT."""
        with db.session.begin_nested():
            # Deactivated items are not shipped; the line has to be cancelled
            snapshot = self.ledger.get_item_snapshot(line.item_id)
            self.rules.validate_checkout_line(
                actual_quantity=line.actual_quantity,
                reserved_quantity=line.original_quantity,
                on_hand_quantity=None,
                line_id=line.id,
                item_id=line.item_id,
            )
            if line.actual_quantity > 0:
                self.ledger.apply_delta(line.item_id, -line.actual_quantity, snapshot.version)
                self.audit.record(
                    actor,
                    audit_service.ACTION_CHECKOUT,
                    line.item_id,
                    task.id,
                    -line.actual_quantity,
                    line_id=line.id,
                )
            line.status = LINE_STATUS_CHECKED
            if line.checked_by_user_id is None:
                line.checked_by_user_id = actor
                line.checked_at = utcnow()
            db.session.flush()

    def _mark_progress(self, task: CheckoutTask, succeeded: list[int]) -> None:
        if task.status == TASK_STATUS_PENDING and succeeded:
            task.status = TASK_STATUS_IN_PROGRESS
            db.session.flush()

    def cancel_task(self, task_id: int, user_id: str) -> CheckoutTask:
        """
        Abandon a task. Open lines become cancelled; stock is not touched.

        Checkout lines already debited by an interrupted completion stay
        checked, so they can still be checked in later.

        Raises:
            TaskNotFoundError
            InvalidStateError: task already completed
        """
        def _op():
            task = self._load_task(task_id)
            if task.status == TASK_STATUS_CANCELLED:
                return task
            if task.status == TASK_STATUS_COMPLETED:
                raise InvalidStateError(f"Task {task.id} is completed and cannot be cancelled")

            open_status = LINE_STATUS_PENDING if task.type == TASK_TYPE_CHECKOUT else LINE_STATUS_CHECKED
            now = utcnow()
            for line in task.lines:
                if line.status == open_status:
                    line.status = LINE_STATUS_CANCELLED

            task.status = TASK_STATUS_CANCELLED
            task.cancelled_at = now
            task.cancelled_by_user_id = str(user_id)
            db.session.flush()
            logger.info("Task cancelled id=%s type=%s user=%s", task.id, task.type, user_id)
            return task

        return run_with_retry(_op)
