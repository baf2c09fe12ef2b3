"""Tests for signal validation."""

from datetime import timedelta

import pytest

from tradeverify.backtest.validator import is_valid_signal, validate_signal
from tradeverify.core.enums import ValidationErrorKind
from tradeverify.core.exceptions import SignalValidationError


class TestValidateSignal:
    """Structural checks run before any data is touched."""

    def test_valid_signal_passes(self, signal):
        validate_signal(signal)
        assert is_valid_signal(signal)

    @pytest.mark.parametrize(
        "overrides, kind",
        [
            ({"entry_price": 0.0}, ValidationErrorKind.NON_POSITIVE_ENTRY),
            ({"entry_price": -5.0}, ValidationErrorKind.NON_POSITIVE_ENTRY),
            ({"stop_loss_price": 0.0}, ValidationErrorKind.NON_POSITIVE_STOP_LOSS),
            ({"stop_loss_price": 50000.0}, ValidationErrorKind.STOP_LOSS_NOT_BELOW_ENTRY),
            ({"stop_loss_price": 50500.0}, ValidationErrorKind.STOP_LOSS_NOT_BELOW_ENTRY),
            ({"tp1_price": 50000.0}, ValidationErrorKind.TARGET_NOT_ABOVE_ENTRY),
            ({"tp2_price": 51000.0}, ValidationErrorKind.TARGETS_NOT_ASCENDING),
            ({"tp3_price": 51500.0}, ValidationErrorKind.TARGETS_NOT_ASCENDING),
            ({"tp2_allocation": -10.0, "tp3_allocation": 70.0}, ValidationErrorKind.NEGATIVE_ALLOCATION),
            ({"tp3_allocation": 40.0}, ValidationErrorKind.ALLOCATION_SUM),
            ({"time_horizon": timedelta(0)}, ValidationErrorKind.NON_POSITIVE_HORIZON),
        ],
    )
    def test_rejections(self, make_signal, overrides, kind):
        """Each structural defect is reported with its own kind."""
        bad = make_signal(**overrides)
        with pytest.raises(SignalValidationError) as exc_info:
            validate_signal(bad)
        assert exc_info.value.kind == kind
        assert exc_info.value.message
        assert not is_valid_signal(bad)

    def test_allocation_within_tolerance(self, make_signal):
        """Allocations may be off by up to 0.01 percent."""
        validate_signal(make_signal(tp3_allocation=30.005))
        validate_signal(make_signal(tp3_allocation=29.995))

    def test_allocation_outside_tolerance(self, make_signal):
        with pytest.raises(SignalValidationError) as exc_info:
            validate_signal(make_signal(tp3_allocation=30.02))
        assert exc_info.value.kind == ValidationErrorKind.ALLOCATION_SUM

    def test_zero_allocation_allowed(self, make_signal):
        """A take-profit may carry no weight as long as the sum is 100."""
        validate_signal(make_signal(tp2_allocation=0.0, tp3_allocation=60.0))

    def test_message_mentions_values(self, make_signal):
        with pytest.raises(SignalValidationError) as exc_info:
            validate_signal(make_signal(stop_loss_price=51000.0))
        assert "51000.0" in str(exc_info.value)
