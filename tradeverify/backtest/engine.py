"""
Backtest driver.

run_backtest() is pure: it validates the signal, gates on data quality,
truncates the candles to the signal's lifetime, replays them through the
hit detection engine and settles the result.

BacktestRunner wraps it with candle fetching and optional persistence.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from tradeverify.core.enums import DriverPhase, TradeStatus
from tradeverify.core.exceptions import InsufficientDataError, SignalValidationError, UpstreamFetchError
from tradeverify.core.models import Candle, HitState, TradeSignal
from tradeverify.data.base import timeframe_interval

from .hit_detection import advance
from .quality import DEFAULT_MIN_QUALITY_SCORE, DataQualityScorer, QualityReport, passes_quality_gate
from .settlement import SettlementCosts, SettlementRecord, incomplete, settle
from .validator import validate_signal

if TYPE_CHECKING:
    from tradeverify.data.fallback import MarketDataService
    from tradeverify.storage.service import StorageService

logger = logging.getLogger(__name__)

# Consecutive candles farther apart than this many intervals produce a warning
GAP_WARNING_INTERVALS = 2


@dataclass(frozen=True)
class BacktestResult:
    """Final, immutable outcome of one backtest run."""

    signal_id: str
    settlement: SettlementRecord
    data_source: str
    data_resolution: str
    quality_report: Optional[QualityReport] = None
    candles_replayed: int = 0
    replay_window_end: Optional[datetime] = None
    phase_history: Tuple[DriverPhase, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def status(self) -> TradeStatus:
        return self.settlement.status

    @property
    def hit_state(self) -> Optional[HitState]:
        return getattr(self.settlement, "hit_state", None)

    def to_dict(self) -> dict:
        return {
            "signal_id": self.signal_id,
            "data_source": self.data_source,
            "data_resolution": self.data_resolution,
            "candles_replayed": self.candles_replayed,
            "replay_window_end": self.replay_window_end.isoformat() if self.replay_window_end else None,
            "phase_history": [p.value for p in self.phase_history],
            "warnings": list(self.warnings),
            "quality_report": self.quality_report.to_dict() if self.quality_report else None,
            **self.settlement.to_dict(),
        }


def _elapsed_minutes(signal: TradeSignal, state: HitState) -> int:
    """Minutes from generation to the terminal hit, or the full horizon."""
    if state.is_terminal and state.last_hit_at is not None:
        return int((state.last_hit_at - signal.generated_at).total_seconds() // 60)
    return signal.horizon_minutes


def _gap_warnings(window: List[Candle], interval: timedelta) -> List[str]:
    warnings = []
    limit = interval * GAP_WARNING_INTERVALS
    for prev, curr in zip(window, window[1:]):
        delta = curr.timestamp - prev.timestamp
        if delta > limit:
            warnings.append(
                f"Data gap detected: {int(delta.total_seconds() // 60)} minutes between "
                f"{prev.timestamp.isoformat()} and {curr.timestamp.isoformat()}"
            )
    return warnings


def ensure_sufficient_data(
    signal: TradeSignal,
    window: Sequence[Candle],
    quality_score: float,
    min_quality_score: float = DEFAULT_MIN_QUALITY_SCORE,
) -> None:
    """
    Gate a truncated candle window before replay.

    Raises:
        InsufficientDataError: score below the gate, or no candles inside the signal's lifetime
    """
    if not passes_quality_gate(quality_score, min_quality_score):
        raise InsufficientDataError(
            f"Insufficient data quality: {quality_score:.1f}% (minimum {min_quality_score:.0f}% required)",
            quality_score,
        )

    if not window:
        raise InsufficientDataError(
            f"No candles between {signal.generated_at.isoformat()} and {signal.expires_at.isoformat()} "
            f"for {signal.symbol}",
            quality_score,
        )


def run_backtest(
    signal: TradeSignal,
    candles: Sequence[Candle],
    data_source: str,
    data_resolution: str,
    quality_score: Optional[float] = None,
    *,
    costs: Optional[SettlementCosts] = None,
    scorer: Optional[DataQualityScorer] = None,
    min_quality_score: float = DEFAULT_MIN_QUALITY_SCORE,
) -> BacktestResult:
    """
    Backtest a signal against historical candles.

    Args:
        signal: Signal to evaluate
        candles: Historical candles (any order, may extend past the horizon)
        data_source: Provider the candles came from
        data_resolution: Candle timeframe (e.g. "1h")
        quality_score: Pre-computed quality score; scored here when None
        costs: Settlement costs
        scorer: Quality scorer used when quality_score is None
        min_quality_score: Inclusive quality gate

    Returns:
        BacktestResult. Failures are reported as IncompleteData, never raised.
    """
    phases = [DriverPhase.PENDING]

    def _result(settlement: SettlementRecord, **kwargs) -> BacktestResult:
        phases.append(
            DriverPhase.INCOMPLETE if settlement.status == TradeStatus.INCOMPLETE_DATA else DriverPhase.SETTLED
        )
        return BacktestResult(
            signal_id=signal.signal_id,
            settlement=settlement,
            data_source=data_source,
            data_resolution=data_resolution,
            phase_history=tuple(phases),
            **kwargs,
        )

    # Validate
    phases.append(DriverPhase.VALIDATING)
    try:
        validate_signal(signal)
    except SignalValidationError as e:
        logger.info(f"Signal {signal.signal_id} rejected: {e.message}")
        return _result(incomplete(e.message, 0.0))

    if not candles:
        return _result(
            incomplete(f"No historical price data available for {signal.symbol} ({data_resolution})", 0.0)
        )

    # Score
    phases.append(DriverPhase.SCORING)
    interval = timeframe_interval(data_resolution)
    start, end = signal.generated_at, signal.expires_at
    window = sorted((c for c in candles if start <= c.timestamp <= end), key=lambda c: c.timestamp)

    report = None
    if quality_score is None:
        report = (scorer or DataQualityScorer()).score(window, start, end, interval)
        quality_score = report.overall_score

    try:
        ensure_sufficient_data(signal, window, quality_score, min_quality_score)
    except InsufficientDataError as e:
        logger.info(f"Signal {signal.signal_id}: {e}")
        return _result(incomplete(str(e), e.quality_score), quality_report=report)

    # Replay
    phases.append(DriverPhase.REPLAYING)
    warnings = _gap_warnings(window, interval)
    for w in warnings:
        logger.warning(f"{signal.signal_id}: {w}")

    state = HitState()
    for candle in window:
        state, _ = advance(signal, state, candle)

    settlement = settle(signal, state, _elapsed_minutes(signal, state), quality_score, costs)

    logger.info(
        f"Backtest {signal.signal_id} ({signal.symbol}): {settlement.status.value}, "
        f"net ${settlement.net_profit_loss_usd:.2f}, {len(window)} candles from {data_source}"
    )

    return _result(
        settlement,
        quality_report=report,
        candles_replayed=len(window),
        replay_window_end=window[-1].timestamp,
        warnings=tuple(warnings),
    )


class BacktestRunner:
    """
    Fetches candles for signals, backtests them and optionally stores results.
    """

    def __init__(
        self,
        market_data: "MarketDataService",
        storage: Optional["StorageService"] = None,
        costs: Optional[SettlementCosts] = None,
        min_quality_score: float = DEFAULT_MIN_QUALITY_SCORE,
    ):
        self.market_data = market_data
        self.storage = storage
        self.costs = costs or SettlementCosts()
        self.min_quality_score = min_quality_score

    async def run(self, signal: TradeSignal) -> BacktestResult:
        """
        Backtest one signal.

        Raises:
            UpstreamFetchError: every provider failed to return candles
        """
        try:
            validate_signal(signal)
        except SignalValidationError:
            # Rejected before anything is fetched
            result = run_backtest(signal, [], "none", signal.timeframe, costs=self.costs)
            await self._store(signal, result)
            return result

        window = await self.market_data.fetch_candles(
            signal.symbol, signal.generated_at, signal.expires_at, signal.timeframe
        )

        result = run_backtest(
            signal,
            window.candles,
            window.source,
            window.resolution,
            window.quality_score,
            costs=self.costs,
            min_quality_score=self.min_quality_score,
        )
        result = replace(
            result,
            quality_report=window.quality_report or result.quality_report,
            warnings=tuple(window.warnings) + result.warnings,
        )

        await self._store(signal, result)
        return result

    async def run_many(self, signals: Sequence[TradeSignal]) -> List[BacktestResult]:
        """Backtest several signals. A fetch failure becomes IncompleteData for that signal only."""
        results = []
        for signal in signals:
            try:
                result = await self.run(signal)
            except UpstreamFetchError as e:
                logger.warning(f"Backtest {signal.signal_id}: {e}")
                result = BacktestResult(
                    signal_id=signal.signal_id,
                    settlement=incomplete(f"No data: {e}", 0.0),
                    data_source="none",
                    data_resolution=signal.timeframe,
                    phase_history=(DriverPhase.PENDING, DriverPhase.INCOMPLETE),
                )
                await self._store(signal, result)
            results.append(result)
        return results

    async def _store(self, signal: TradeSignal, result: BacktestResult) -> None:
        if self.storage is not None:
            await self.storage.save_backtest_result(signal, result)
