"""
Data quality scoring for candle windows.

Quality score calculation:
- Completeness (60%): candles present vs candles expected for the window
- Validity (30%): candles with consistent OHLC relationships
- Consistency (10%): candles without an outlier single-step price move

Score ranges:
- 90-100: excellent
- 70-89: good
- <70: poor (backtest/verification does not proceed)
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import List, Sequence

import numpy as np

from tradeverify.core.enums import QualityRecommendation
from tradeverify.core.models import Candle
from tradeverify.data.base import candles_to_frame

logger = logging.getLogger(__name__)

COMPLETENESS_WEIGHT = 0.6
VALIDITY_WEIGHT = 0.3
CONSISTENCY_WEIGHT = 0.1

DEFAULT_MIN_QUALITY_SCORE = 70.0


@dataclass(frozen=True)
class GapRecord:
    """A run of missing candles between two present ones."""

    start: datetime
    end: datetime
    missed_count: int

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "missed_count": self.missed_count,
        }


@dataclass(frozen=True)
class OHLCViolation:
    """A candle whose high/low do not bracket its open/close."""

    timestamp: datetime
    violation: str
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class PriceMove:
    """A single-step move (previous close -> open) above the outlier threshold."""

    timestamp: datetime
    from_price: float
    to_price: float
    percentage_change: float


@dataclass
class QualityReport:
    """Result of scoring one candle window."""

    completeness: float
    validity: float
    consistency: float
    overall_score: float
    total_candles: int
    expected_candles: int
    gaps: List[GapRecord] = field(default_factory=list)
    ohlc_violations: List[OHLCViolation] = field(default_factory=list)
    suspicious_moves: List[PriceMove] = field(default_factory=list)
    recommendation: QualityRecommendation = QualityRecommendation.POOR

    @property
    def missed_candles(self) -> int:
        return sum(g.missed_count for g in self.gaps)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["recommendation"] = self.recommendation.value
        d["gaps"] = [g.to_dict() for g in self.gaps]
        return d


def recommendation_for(score: float) -> QualityRecommendation:
    """Map an overall score to its recommendation."""
    if score >= 90:
        return QualityRecommendation.EXCELLENT
    if score >= 70:
        return QualityRecommendation.GOOD
    return QualityRecommendation.POOR


def passes_quality_gate(score: float, threshold: float = DEFAULT_MIN_QUALITY_SCORE) -> bool:
    """Inclusive gate: a score equal to the threshold passes."""
    return score >= threshold


def expected_candle_count(start: datetime, end: datetime, interval: timedelta) -> int:
    """Number of candles a complete window should contain (at least 1)."""
    interval_s = interval.total_seconds()
    if interval_s <= 0:
        raise ValueError(f"Sampling interval must be positive (got {interval})")
    window_s = (end - start).total_seconds()
    return max(1, int(window_s // interval_s))


@dataclass
class DataQualityScorer:
    """
    Scores a candle window for completeness, OHLC validity and outlier moves.

    Violations are recorded, never corrected.
    """

    max_price_change_pct: float = 50.0
    gap_tolerance_multiplier: float = 1.5

    def score(
        self,
        candles: Sequence[Candle],
        expected_start: datetime,
        expected_end: datetime,
        interval: timedelta,
    ) -> QualityReport:
        """
        Score a candle window.

        Args:
            candles: Candles for the window (any order)
            expected_start: Start of the window the candles should cover
            expected_end: End of the window
            interval: Expected sampling interval

        Returns:
            QualityReport with component scores and the individual findings
        """
        expected = expected_candle_count(expected_start, expected_end, interval)

        if not candles:
            return QualityReport(
                completeness=0.0,
                validity=0.0,
                consistency=0.0,
                overall_score=0.0,
                total_candles=0,
                expected_candles=expected,
                recommendation=QualityRecommendation.POOR,
            )

        ordered = sorted(candles, key=lambda c: c.timestamp)
        frame = candles_to_frame(ordered)
        n = len(ordered)

        gaps = self._detect_gaps(ordered, frame, interval)
        violations = self._detect_ohlc_violations(ordered, frame)
        moves = self._detect_suspicious_moves(ordered, frame)

        completeness = min(100.0, n / expected * 100)
        validity = (n - len(violations)) / n * 100
        consistency = (n - len(moves)) / n * 100

        overall = (
            completeness * COMPLETENESS_WEIGHT
            + validity * VALIDITY_WEIGHT
            + consistency * CONSISTENCY_WEIGHT
        )
        overall = round(max(0.0, min(100.0, overall)), 2)

        report = QualityReport(
            completeness=round(completeness, 2),
            validity=round(validity, 2),
            consistency=round(consistency, 2),
            overall_score=overall,
            total_candles=n,
            expected_candles=expected,
            gaps=gaps,
            ohlc_violations=violations,
            suspicious_moves=moves,
            recommendation=recommendation_for(overall),
        )

        logger.debug(
            f"Quality {overall} ({report.recommendation.value}): {n}/{expected} candles, "
            f"{len(gaps)} gaps, {len(violations)} OHLC violations, {len(moves)} outlier moves"
        )
        return report

    def _detect_gaps(self, ordered: List[Candle], frame, interval: timedelta) -> List[GapRecord]:
        if len(ordered) < 2:
            return []

        interval_s = interval.total_seconds()
        deltas = frame["timestamp"].diff().dt.total_seconds().to_numpy()
        max_gap_s = interval_s * self.gap_tolerance_multiplier

        gaps = []
        for pos in np.flatnonzero(deltas > max_gap_s):
            gaps.append(
                GapRecord(
                    start=ordered[pos - 1].timestamp,
                    end=ordered[pos].timestamp,
                    missed_count=int(deltas[pos] // interval_s) - 1,
                )
            )
        return gaps

    def _detect_ohlc_violations(self, ordered: List[Candle], frame) -> List[OHLCViolation]:
        valid = (
            (frame["low"] <= frame["open"])
            & (frame["low"] <= frame["close"])
            & (frame["high"] >= frame["open"])
            & (frame["high"] >= frame["close"])
            & (frame["low"] <= frame["high"])
        ).to_numpy()

        violations = []
        for pos in np.flatnonzero(~valid):
            c = ordered[pos]
            issues = []
            if c.high < c.open:
                issues.append(f"High ({c.high}) < Open ({c.open})")
            if c.high < c.close:
                issues.append(f"High ({c.high}) < Close ({c.close})")
            if c.low > c.open:
                issues.append(f"Low ({c.low}) > Open ({c.open})")
            if c.low > c.close:
                issues.append(f"Low ({c.low}) > Close ({c.close})")
            if c.high < c.low:
                issues.append(f"High ({c.high}) < Low ({c.low})")
            violations.append(
                OHLCViolation(
                    timestamp=c.timestamp,
                    violation="; ".join(issues),
                    open=c.open,
                    high=c.high,
                    low=c.low,
                    close=c.close,
                )
            )
        return violations

    def _detect_suspicious_moves(self, ordered: List[Candle], frame) -> List[PriceMove]:
        if len(ordered) < 2:
            return []

        prev_close = frame["close"].shift(1)
        pct = ((frame["open"] - prev_close).abs() / prev_close * 100).to_numpy()

        moves = []
        for pos in np.flatnonzero(np.nan_to_num(pct, nan=0.0) > self.max_price_change_pct):
            moves.append(
                PriceMove(
                    timestamp=ordered[pos].timestamp,
                    from_price=ordered[pos - 1].close,
                    to_price=ordered[pos].open,
                    percentage_change=float(pct[pos]),
                )
            )
        return moves
