"""
Reconciliation rule tests. Pure functions, no database.
"""

import pytest

from eventstock.services.errors import (
    InsufficientStockError,
    QuantityOutOfRangeError,
    ReasonRequiredError,
    ValidationFailure,
)
from eventstock.services.reconciliation_service import (
    format_reason,
    reason_required,
    validate_checkin_line,
    validate_checkout_line,
)


class TestReasonRule:

    @pytest.mark.parametrize("actual", [0, 3, 4])
    def test_durable_short_return_needs_reason(self, actual):
        with pytest.raises(ReasonRequiredError) as exc_info:
            validate_checkin_line(
                original_quantity=5,
                actual_quantity=actual,
                is_consumable=False,
                line_id=7,
                item_id=3,
            )
        assert exc_info.value.line_id == 7
        assert exc_info.value.item_id == 3

    def test_durable_full_return_needs_no_reason(self):
        verdict = validate_checkin_line(original_quantity=5, actual_quantity=5, is_consumable=False)
        assert verdict.reason_required is False
        assert verdict.reason is None

    @pytest.mark.parametrize("actual", [0, 2, 5])
    def test_consumable_never_needs_reason(self, actual):
        verdict = validate_checkin_line(original_quantity=5, actual_quantity=actual, is_consumable=True)
        assert verdict.reason_required is False
        assert verdict.actual_quantity == actual

    def test_blank_reason_counts_as_missing(self):
        with pytest.raises(ReasonRequiredError):
            validate_checkin_line(
                original_quantity=5, actual_quantity=4, is_consumable=False, reason="   ",
            )

    def test_reason_is_trimmed(self):
        verdict = validate_checkin_line(
            original_quantity=5, actual_quantity=4, is_consumable=False, reason="  one torn  ",
        )
        assert verdict.reason_required is True
        assert verdict.reason == "one torn"

    def test_reason_required_helper(self):
        assert reason_required(is_consumable=False, original_quantity=3, actual_quantity=2)
        assert not reason_required(is_consumable=True, original_quantity=3, actual_quantity=2)
        assert not reason_required(is_consumable=False, original_quantity=3, actual_quantity=3)


class TestReasonCodes:

    def test_code_with_description(self):
        assert format_reason("pole snapped", "damaged") == "damaged: pole snapped"

    def test_code_is_lowercased(self):
        assert format_reason("left at venue", "LOST") == "lost: left at venue"

    @pytest.mark.parametrize("code", ["damaged", "lost", "other"])
    def test_every_code_needs_description(self, code):
        with pytest.raises(ValidationFailure):
            format_reason("", code)
        with pytest.raises(ValidationFailure):
            format_reason(None, code)

    def test_unknown_code(self):
        with pytest.raises(ValidationFailure):
            format_reason("gone", "stolen")

    def test_code_satisfies_reason_rule(self):
        verdict = validate_checkin_line(
            original_quantity=5, actual_quantity=3, is_consumable=False,
            reason="two left behind", reason_code="lost",
        )
        assert verdict.reason == "lost: two left behind"


class TestQuantityBounds:

    def test_checkin_over_original_rejected(self):
        with pytest.raises(QuantityOutOfRangeError) as exc_info:
            validate_checkin_line(original_quantity=5, actual_quantity=6, is_consumable=True)
        assert exc_info.value.maximum == 5

    def test_checkin_negative_rejected(self):
        with pytest.raises(QuantityOutOfRangeError):
            validate_checkin_line(original_quantity=5, actual_quantity=-1, is_consumable=True)

    def test_non_integer_rejected(self):
        with pytest.raises(QuantityOutOfRangeError):
            validate_checkin_line(original_quantity=5, actual_quantity="4", is_consumable=True)

    def test_checkout_within_bounds(self):
        verdict = validate_checkout_line(actual_quantity=3, reserved_quantity=5, on_hand_quantity=20)
        assert verdict.actual_quantity == 3
        assert verdict.reason_required is False

    def test_checkout_over_reserved(self):
        with pytest.raises(QuantityOutOfRangeError) as exc_info:
            validate_checkout_line(actual_quantity=6, reserved_quantity=5, on_hand_quantity=20)
        assert exc_info.value.maximum == 5

    def test_checkout_over_on_hand(self):
        with pytest.raises(InsufficientStockError) as exc_info:
            validate_checkout_line(actual_quantity=5, reserved_quantity=5, on_hand_quantity=4)
        assert exc_info.value.on_hand == 4
        assert exc_info.value.requested == 5

    def test_checkout_without_stock_bound(self):
        verdict = validate_checkout_line(actual_quantity=5, reserved_quantity=5, on_hand_quantity=None)
        assert verdict.actual_quantity == 5
