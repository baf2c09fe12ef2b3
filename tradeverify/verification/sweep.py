"""
Live verification sweep.

Periodically checks every active signal against the current market price:
- Expired signals are settled from their recorded hits, no price needed
- One price fetch per distinct symbol per sweep, shared by its trades
- All hits of one sample are written in a single UPDATE that only matches
  the state the sweep loaded, so a sweep holding an outdated state gets a
  conflict and retries next cycle; settlement and the status transition
  are conditional too
- A failure for one symbol leaves its trades active for the next sweep
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from tradeverify.backtest.hit_detection import advance
from tradeverify.backtest.settlement import SettlementCosts, settle
from tradeverify.core.exceptions import PersistenceConflictError, UpstreamFetchError
from tradeverify.core.models import HitState, TradeSignal
from tradeverify.data.base import PriceQuote
from tradeverify.data.fallback import MarketDataService
from tradeverify.storage.service import StorageService

logger = logging.getLogger(__name__)

# Live samples are validated one by one (positive, fresh), so a settled
# live trade carries a full quality score.
LIVE_QUALITY_SCORE = 100.0


@dataclass
class SweepSummary:
    """Counters for one sweep."""

    started_at: datetime
    total: int = 0
    verified: int = 0
    updated: int = 0
    expired: int = 0
    failed: int = 0
    conflicts: int = 0
    deferred: int = 0
    errors: List[str] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.failed == 0 or self.verified > 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "total": self.total,
            "verified": self.verified,
            "updated": self.updated,
            "expired": self.expired,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "deferred": self.deferred,
            "errors": list(self.errors),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class LiveVerificationSweep:
    """
    Verifies active signals against live prices.

    Usage:
        sweep = LiveVerificationSweep(storage, market_data)
        summary = await sweep.run_once()
    """

    def __init__(
        self,
        storage: StorageService,
        market_data: MarketDataService,
        costs: Optional[SettlementCosts] = None,
        max_concurrency: int = 5,
        max_price_age_seconds: float = 300,
        time_budget_seconds: float = 240.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.market_data = market_data
        self.costs = costs or SettlementCosts()
        self.max_concurrency = max_concurrency
        self.max_price_age_seconds = max_price_age_seconds
        self.time_budget_seconds = time_budget_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # Per-trade locks, shared by overlapping run_once() calls on this instance
        self._locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, storage: StorageService, market_data: MarketDataService, settings=None):
        if settings is None:
            from tradeverify.config.settings import get_settings
            settings = get_settings()
        return cls(
            storage,
            market_data,
            costs=SettlementCosts.from_settings(settings),
            max_concurrency=settings.sweep_max_concurrency,
            max_price_age_seconds=settings.max_price_age_seconds,
            time_budget_seconds=settings.sweep_time_budget_seconds,
        )

    def _lock_for(self, signal_id: str) -> asyncio.Lock:
        return self._locks.setdefault(signal_id, asyncio.Lock())

    def _release_locks(self, signal_ids: Iterable[str]) -> None:
        """Drop locks no overlapping run_once() is holding."""
        for signal_id in signal_ids:
            lock = self._locks.get(signal_id)
            if lock is not None and not lock.locked():
                del self._locks[signal_id]

    async def run_once(self, now: Optional[datetime] = None) -> SweepSummary:
        """
        Verify every active signal once.

        Args:
            now: Evaluation time (defaults to the clock)
        """
        now = now or self._clock()
        started = time.monotonic()
        summary = SweepSummary(started_at=now)

        active = await self.storage.load_active()
        summary.total = len(active)
        logger.info(f"Verification sweep: {summary.total} active trades")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        prices: Dict[str, asyncio.Future] = {}

        def price_for(symbol: str) -> asyncio.Future:
            if symbol not in prices:
                prices[symbol] = asyncio.ensure_future(self.market_data.fetch_current_price(symbol))
            return prices[symbol]

        async def verify(signal: TradeSignal) -> None:
            async with semaphore:
                if time.monotonic() - started >= self.time_budget_seconds:
                    summary.deferred += 1
                    return
                async with self._lock_for(signal.signal_id):
                    await self._verify_trade(signal, now, price_for, summary)

        await asyncio.gather(*(verify(signal) for signal, _ in active))
        self._release_locks(signal.signal_id for signal, _ in active)

        summary.finished_at = now + timedelta(seconds=time.monotonic() - started)

        if summary.deferred:
            logger.warning(f"Sweep time budget exhausted, {summary.deferred} trades deferred")
        logger.info(
            f"Sweep complete: {summary.verified} verified, {summary.updated} updated, "
            f"{summary.expired} expired, {summary.failed} failed, {summary.conflicts} conflicts"
        )
        return summary

    async def _verify_trade(
        self,
        signal: TradeSignal,
        now: datetime,
        price_for: Callable[[str], asyncio.Future],
        summary: SweepSummary,
    ) -> None:
        try:
            # Re-read under the lock: an overlapping sweep may have moved it on
            state = await self.storage.load_state(signal)

            if state.is_terminal:
                await self._settle(signal, state)
                summary.verified += 1
                summary.updated += 1
                return

            if now > signal.expires_at:
                settlement = settle(signal, state, signal.horizon_minutes, LIVE_QUALITY_SCORE, self.costs)
                await self.storage.settle_trade(signal.signal_id, settlement, verify_hits=True)
                summary.verified += 1
                summary.updated += 1
                summary.expired += 1
                logger.info(f"Trade {signal.signal_id} expired ({settlement.status.value})")
                return

            try:
                quote = await price_for(signal.symbol)
            except UpstreamFetchError as e:
                summary.failed += 1
                summary.errors.append(f"Failed to fetch price for {signal.symbol} (trade {signal.signal_id}): {e}")
                return

            if not quote.is_fresh(now, self.max_price_age_seconds):
                summary.failed += 1
                summary.errors.append(
                    f"Invalid price data for {signal.symbol} (trade {signal.signal_id}): "
                    f"price {quote.price} at {quote.timestamp.isoformat()}"
                )
                return

            if await self._apply_quote(signal, state, quote):
                summary.updated += 1
            summary.verified += 1

        except PersistenceConflictError as e:
            summary.conflicts += 1
            logger.info(f"Trade {signal.signal_id}: {e}, will retry next sweep")
        except Exception as e:
            summary.failed += 1
            summary.errors.append(f"Error verifying trade {signal.signal_id}: {e}")
            logger.exception(f"Error verifying trade {signal.signal_id}")

    async def _apply_quote(
        self,
        signal: TradeSignal,
        state: HitState,
        quote: PriceQuote,
    ) -> bool:
        """Advance with one live sample; returns True if anything was recorded."""
        sample = quote.to_sample()
        new_state, hits = advance(signal, state, sample)

        if not hits:
            await self.storage.mark_verified(signal.signal_id, sample.timestamp, quote.source)
            return False

        # Conditional on the loaded state: a stale sweep gets a conflict, not a double close
        await self.storage.record_hits(signal.signal_id, state, new_state, quote.source)

        if new_state.is_terminal:
            await self._settle(signal, new_state)

        return True

    async def _settle(self, signal: TradeSignal, state: HitState) -> None:
        elapsed = int((state.last_hit_at - signal.generated_at).total_seconds() // 60)
        settlement = settle(signal, state, elapsed, LIVE_QUALITY_SCORE, self.costs)
        await self.storage.settle_trade(signal.signal_id, settlement, verify_hits=True)
        logger.info(
            f"Trade {signal.signal_id} settled: {settlement.status.value}, "
            f"net ${settlement.net_profit_loss_usd:.2f}"
        )
