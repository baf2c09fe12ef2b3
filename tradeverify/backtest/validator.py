"""
Signal validation.

Rejects structurally invalid signals before any candle is fetched or scored.
Pure: no side effects, no I/O.
"""

from tradeverify.core.enums import ValidationErrorKind
from tradeverify.core.exceptions import SignalValidationError
from tradeverify.core.models import TradeSignal

ALLOCATION_TOLERANCE = 0.01


def validate_signal(signal: TradeSignal) -> None:
    """
    Check a signal for structural validity.

    Long-only price ordering: stop_loss < entry < tp1 < tp2 < tp3.

    Raises:
        SignalValidationError: first failed check, with a distinct kind
    """
    if signal.entry_price <= 0:
        raise SignalValidationError(
            ValidationErrorKind.NON_POSITIVE_ENTRY,
            f"Entry price must be positive (got {signal.entry_price})",
        )

    if signal.stop_loss_price <= 0:
        raise SignalValidationError(
            ValidationErrorKind.NON_POSITIVE_STOP_LOSS,
            f"Stop loss price must be positive (got {signal.stop_loss_price})",
        )

    if signal.stop_loss_price >= signal.entry_price:
        raise SignalValidationError(
            ValidationErrorKind.STOP_LOSS_NOT_BELOW_ENTRY,
            f"Stop loss price must be below entry price "
            f"({signal.stop_loss_price} >= {signal.entry_price})",
        )

    if signal.tp1_price <= signal.entry_price:
        raise SignalValidationError(
            ValidationErrorKind.TARGET_NOT_ABOVE_ENTRY,
            f"TP1 price must be above entry price ({signal.tp1_price} <= {signal.entry_price})",
        )

    if signal.tp2_price <= signal.tp1_price:
        raise SignalValidationError(
            ValidationErrorKind.TARGETS_NOT_ASCENDING,
            f"TP2 price must be above TP1 price ({signal.tp2_price} <= {signal.tp1_price})",
        )

    if signal.tp3_price <= signal.tp2_price:
        raise SignalValidationError(
            ValidationErrorKind.TARGETS_NOT_ASCENDING,
            f"TP3 price must be above TP2 price ({signal.tp3_price} <= {signal.tp2_price})",
        )

    for label, allocation in (
        ("TP1", signal.tp1_allocation),
        ("TP2", signal.tp2_allocation),
        ("TP3", signal.tp3_allocation),
    ):
        if allocation < 0:
            raise SignalValidationError(
                ValidationErrorKind.NEGATIVE_ALLOCATION,
                f"{label} allocation must be non-negative (got {allocation}%)",
            )

    total = signal.total_allocation
    if abs(total - 100) > ALLOCATION_TOLERANCE:
        raise SignalValidationError(
            ValidationErrorKind.ALLOCATION_SUM,
            f"Allocations must sum to 100% (got {total}%)",
        )

    if signal.time_horizon.total_seconds() <= 0:
        raise SignalValidationError(
            ValidationErrorKind.NON_POSITIVE_HORIZON,
            f"Time horizon must be positive (got {signal.time_horizon})",
        )


def is_valid_signal(signal: TradeSignal) -> bool:
    """Boolean form of validate_signal."""
    try:
        validate_signal(signal)
    except SignalValidationError:
        return False
    return True
