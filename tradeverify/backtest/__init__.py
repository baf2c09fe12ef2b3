"""TradeVerify backtesting: validation, data quality, hit detection and settlement."""

from .validator import validate_signal, is_valid_signal
from .quality import (
    DataQualityScorer,
    GapRecord,
    OHLCViolation,
    PriceMove,
    QualityReport,
    passes_quality_gate,
)
from .hit_detection import advance, replay
from .settlement import (
    CompletedFailure,
    CompletedSuccess,
    Expired,
    IncompleteData,
    SettlementCosts,
    SettlementRecord,
    incomplete,
    settle,
)
from .engine import BacktestResult, BacktestRunner, ensure_sufficient_data, run_backtest

__all__ = [
    # Validation
    "validate_signal",
    "is_valid_signal",
    # Data quality
    "DataQualityScorer",
    "GapRecord",
    "OHLCViolation",
    "PriceMove",
    "QualityReport",
    "passes_quality_gate",
    # Hit detection
    "advance",
    "replay",
    # Settlement
    "CompletedFailure",
    "CompletedSuccess",
    "Expired",
    "IncompleteData",
    "SettlementCosts",
    "SettlementRecord",
    "incomplete",
    "settle",
    # Driver
    "BacktestResult",
    "BacktestRunner",
    "ensure_sufficient_data",
    "run_backtest",
]
