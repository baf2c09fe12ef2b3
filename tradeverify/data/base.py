"""
TradeVerify Base Data Provider

Abstract base class and data models for market data providers.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, List, Optional

import pandas as pd

from tradeverify.core.enums import TIMEFRAME_MINUTES
from tradeverify.core.exceptions import TradeVerifyConfigError, UpstreamFetchError
from tradeverify.core.models import Candle, PriceSample

if TYPE_CHECKING:
    from tradeverify.backtest.quality import GapRecord, QualityReport

logger = logging.getLogger(__name__)

CANDLE_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


@dataclass
class PriceQuote:
    """Current price for a symbol from one provider."""
    symbol: str
    price: float
    timestamp: datetime
    source: str

    def age_seconds(self, now: datetime) -> float:
        return (now - self.timestamp).total_seconds()

    def is_fresh(self, now: datetime, max_age_seconds: float) -> bool:
        """Positive price, observed no more than max_age_seconds before now."""
        return self.price > 0 and self.age_seconds(now) <= max_age_seconds

    def to_sample(self) -> PriceSample:
        return PriceSample(price=self.price, timestamp=self.timestamp, source=self.source)


@dataclass
class CandleWindow:
    """Candles for one symbol over a requested window, with their quality report."""
    symbol: str
    candles: List[Candle]
    source: str
    resolution: str
    quality_report: Optional["QualityReport"] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def quality_score(self) -> Optional[float]:
        return self.quality_report.overall_score if self.quality_report else None

    @property
    def gaps(self) -> List["GapRecord"]:
        return list(self.quality_report.gaps) if self.quality_report else []


class BaseDataProvider(ABC):
    """
    Abstract base class for market data providers.

    Implementations raise UpstreamFetchError (or let transport errors
    propagate) instead of returning placeholder data.
    """

    name = "base"

    def __init__(self):
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    async def connect(self) -> bool:
        """Connect to the data provider."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the data provider."""
        pass

    @abstractmethod
    async def get_current_price(self, symbol: str) -> PriceQuote:
        """Get the latest traded price for a symbol."""
        pass

    @abstractmethod
    async def get_bars(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        """
        Get OHLCV bars for a symbol.

        Args:
            symbol: Instrument symbol (e.g. BTC_USD)
            timeframe: Bar timeframe (1m, 5m, 15m, 1h, 4h, 1d, ...)
            start: First bar open time to include
            end: Last bar open time to include

        Returns:
            DataFrame with columns: timestamp, open, high, low, close, volume
        """
        pass

    async def get_candles(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe: str,
    ) -> List[Candle]:
        """Bars in [start, end] as Candles, oldest first."""
        df = await self.get_bars(symbol, normalize_timeframe(timeframe), start, end)
        if df is None or df.empty:
            raise UpstreamFetchError(f"{self.name}: no candles for {symbol} {timeframe}")

        df = df[(df["timestamp"] >= pd.Timestamp(start)) & (df["timestamp"] <= pd.Timestamp(end))]
        candles = frame_to_candles(df)
        if not candles:
            raise UpstreamFetchError(
                f"{self.name}: no candles for {symbol} between {start.isoformat()} and {end.isoformat()}"
            )
        return candles


# =============================================================================
# Timeframe utilities
# =============================================================================


def normalize_timeframe(timeframe: str) -> str:
    """Normalize timeframe string to standard format."""
    tf = timeframe.upper().replace("MIN", "M").replace("HOUR", "H").replace("DAY", "D")

    mappings = {
        "1M": "1m", "5M": "5m", "15M": "15m", "30M": "30m",
        "1H": "1h", "4H": "4h",
        "1D": "1d", "D": "1d", "DAILY": "1d",
        "1W": "1w", "W": "1w", "WEEKLY": "1w",
    }

    return mappings.get(tf, timeframe.lower())


def timeframe_interval(timeframe: str) -> timedelta:
    """Sampling interval of a timeframe label."""
    tf = normalize_timeframe(timeframe)
    if tf not in TIMEFRAME_MINUTES:
        raise TradeVerifyConfigError(f"Unknown timeframe: {timeframe}")
    return timedelta(minutes=TIMEFRAME_MINUTES[tf])


# =============================================================================
# Frame conversion
# =============================================================================


def candles_to_frame(candles: List[Candle]) -> pd.DataFrame:
    """Candles -> DataFrame with the standard OHLCV columns."""
    return pd.DataFrame(
        {
            "timestamp": pd.to_datetime([c.timestamp for c in candles], utc=True),
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        },
        columns=CANDLE_COLUMNS,
    )


def frame_to_candles(df: pd.DataFrame) -> List[Candle]:
    """OHLCV DataFrame -> Candles sorted by timestamp. Rows with missing prices are dropped."""
    df = df.dropna(subset=["open", "high", "low", "close"]).sort_values("timestamp")
    candles = []
    for row in df.itertuples(index=False):
        ts = pd.Timestamp(row.timestamp)
        if ts.tzinfo is None:
            ts = ts.tz_localize(timezone.utc)
        candles.append(
            Candle(
                timestamp=ts.to_pydatetime(),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume) if pd.notna(row.volume) else 0.0,
            )
        )
    return candles
