"""
TradeVerify enumerations.
"""

from enum import Enum


class TradeStatus(str, Enum):
    """Lifecycle status of a tracked trade signal."""

    ACTIVE = "active"
    COMPLETED_SUCCESS = "completed_success"
    COMPLETED_FAILURE = "completed_failure"
    EXPIRED = "expired"
    INCOMPLETE_DATA = "incomplete_data"

    @property
    def is_terminal(self) -> bool:
        return self != TradeStatus.ACTIVE

    @classmethod
    def terminal(cls) -> list:
        """All statuses a trade can settle into."""
        return [
            cls.COMPLETED_SUCCESS,
            cls.COMPLETED_FAILURE,
            cls.EXPIRED,
            cls.INCOMPLETE_DATA,
        ]


class TargetKind(str, Enum):
    """A price level tracked on a signal."""

    TP1 = "tp1"
    TP2 = "tp2"
    TP3 = "tp3"
    STOP_LOSS = "stop_loss"

    @property
    def is_take_profit(self) -> bool:
        return self != TargetKind.STOP_LOSS

    @classmethod
    def take_profits_descending(cls) -> list:
        """Take-profit levels in evaluation order (highest first)."""
        return [cls.TP3, cls.TP2, cls.TP1]


class ValidationErrorKind(str, Enum):
    """Why a signal was rejected before simulation."""

    NON_POSITIVE_ENTRY = "non_positive_entry"
    NON_POSITIVE_STOP_LOSS = "non_positive_stop_loss"
    STOP_LOSS_NOT_BELOW_ENTRY = "stop_loss_not_below_entry"
    TARGET_NOT_ABOVE_ENTRY = "target_not_above_entry"
    TARGETS_NOT_ASCENDING = "targets_not_ascending"
    NEGATIVE_ALLOCATION = "negative_allocation"
    ALLOCATION_SUM = "allocation_sum"
    NON_POSITIVE_HORIZON = "non_positive_horizon"


class QualityRecommendation(str, Enum):
    """Verdict attached to a data quality score."""

    EXCELLENT = "excellent"  # >= 90
    GOOD = "good"  # 70-89
    POOR = "poor"  # < 70


class DriverPhase(str, Enum):
    """Backtest driver state machine."""

    PENDING = "pending"
    VALIDATING = "validating"
    SCORING = "scoring"
    REPLAYING = "replaying"
    SETTLED = "settled"
    INCOMPLETE = "incomplete"


# Candle interval per timeframe label
TIMEFRAME_MINUTES = {
    "1m": 1,
    "5m": 5,
    "15m": 15,
    "30m": 30,
    "1h": 60,
    "4h": 240,
    "1d": 1440,
    "1w": 10080,
}
