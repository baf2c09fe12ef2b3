"""
Provider fallback chain.

Providers are tried in an explicit order. The first success wins; if all
fail, UpstreamFetchError lists every provider's error. There is no
synthetic fallback data.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from tradeverify.backtest.quality import DataQualityScorer
from tradeverify.core.exceptions import TradeVerifyConfigError, UpstreamFetchError

from .base import BaseDataProvider, CandleWindow, PriceQuote, normalize_timeframe, timeframe_interval
from .crypto import BinanceProvider, KrakenProvider

logger = logging.getLogger(__name__)

S = TypeVar("S")
T = TypeVar("T")

PROVIDERS: Dict[str, Type[BaseDataProvider]] = {
    "binance": BinanceProvider,
    "kraken": KrakenProvider,
}


def _strategy_name(strategy) -> str:
    return getattr(strategy, "name", type(strategy).__name__)


async def try_in_order(
    strategies: Sequence[S],
    call: Callable[[S], Awaitable[T]],
    what: str = "request",
) -> Tuple[T, S]:
    """
    Run `call` against each strategy until one succeeds.

    Args:
        strategies: Ordered strategies (primary first)
        call: Coroutine factory applied to a strategy
        what: Description used in log and error messages

    Returns:
        (result, strategy that produced it)

    Raises:
        UpstreamFetchError: every strategy failed (errors in order tried)
    """
    if not strategies:
        raise UpstreamFetchError(f"{what}: no providers configured")

    errors: List[str] = []
    for strategy in strategies:
        name = _strategy_name(strategy)
        try:
            result = await call(strategy)
        except Exception as e:
            logger.warning(f"{what}: {name} failed: {e}")
            errors.append(f"{name}: {e}")
            continue

        if errors:
            logger.info(f"{what}: served by {name} after {len(errors)} failure(s)")
        return result, strategy

    raise UpstreamFetchError(
        f"{what}: all providers failed, no fallback data ({'; '.join(errors)})",
        errors=errors,
    )


class MarketDataService:
    """
    Candles and current prices through an ordered provider chain.

    Candle windows are scored for data quality on the way out.
    """

    def __init__(
        self,
        providers: Sequence[BaseDataProvider],
        scorer: Optional[DataQualityScorer] = None,
    ):
        self.providers = list(providers)
        self.scorer = scorer or DataQualityScorer()

    @classmethod
    def from_settings(cls, settings=None) -> "MarketDataService":
        """Build providers in the configured order."""
        if settings is None:
            from tradeverify.config.settings import get_settings
            settings = get_settings()

        providers = []
        for name in settings.provider_order:
            provider_cls = PROVIDERS.get(name.lower())
            if provider_cls is None:
                raise TradeVerifyConfigError(f"Unknown market data provider: {name}")
            providers.append(provider_cls(timeout=settings.http_timeout_seconds))

        scorer = DataQualityScorer(
            max_price_change_pct=settings.max_price_change_pct,
            gap_tolerance_multiplier=settings.gap_tolerance_multiplier,
        )
        return cls(providers, scorer)

    async def fetch_candles(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        resolution: str,
    ) -> CandleWindow:
        """Candles for [start, end] from the first provider that returns any."""
        resolution = normalize_timeframe(resolution)
        interval = timeframe_interval(resolution)

        candles, provider = await try_in_order(
            self.providers,
            lambda p: p.get_candles(symbol, start, end, resolution),
            what=f"candles {symbol} {resolution}",
        )

        report = self.scorer.score(candles, start, end, interval)
        warnings = [
            f"{g.missed_count} missing candle(s) between {g.start.isoformat()} and {g.end.isoformat()}"
            for g in report.gaps
        ]

        logger.info(
            f"Fetched {len(candles)} {resolution} candles for {symbol} from {provider.name} "
            f"(quality {report.overall_score}, {report.recommendation.value})"
        )

        return CandleWindow(
            symbol=symbol,
            candles=candles,
            source=provider.name,
            resolution=resolution,
            quality_report=report,
            warnings=warnings,
        )

    async def fetch_current_price(self, symbol: str) -> PriceQuote:
        """Current price from the first provider that answers."""
        quote, _ = await try_in_order(
            self.providers,
            lambda p: p.get_current_price(symbol),
            what=f"price {symbol}",
        )
        return quote

    async def close(self) -> None:
        for provider in self.providers:
            await provider.disconnect()
