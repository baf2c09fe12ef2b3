"""
StorageService - single interface to all database operations.
Used by the backtest runner, signal intake and the verification sweep.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Tuple

from tradeverify.core.enums import TargetKind, TradeStatus
from tradeverify.core.exceptions import PersistenceConflictError
from tradeverify.core.models import HitState, TradeSignal
from tradeverify.storage.database import get_async_session, init_db_async
from tradeverify.storage.repositories import HitStateRepository, SignalRepository

if TYPE_CHECKING:
    from tradeverify.backtest.engine import BacktestResult
    from tradeverify.backtest.settlement import SettlementRecord

logger = logging.getLogger(__name__)


class StorageService:
    """
    Unified storage interface for TradeVerify.

    Usage:
        storage = StorageService()
        await storage.initialize()

        await storage.activate_signal(signal, user_id="u1")
        active = await storage.load_active()
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url
        self._initialized = False

    async def initialize(self) -> bool:
        """Initialize database connection and create tables if needed."""
        await init_db_async(url=self.database_url)
        self._initialized = True
        logger.info("Storage initialized")
        return True

    # === SIGNAL OPERATIONS ===

    async def activate_signal(self, signal: TradeSignal, user_id: Optional[str] = None) -> None:
        """Store a signal as active together with its empty result row."""
        async with get_async_session() as session:
            await SignalRepository(session).save(signal, TradeStatus.ACTIVE, user_id=user_id)
            await HitStateRepository(session).create_empty(signal.signal_id)

    async def get_signal(self, signal_id: str) -> Optional[dict]:
        async with get_async_session() as session:
            record = await SignalRepository(session).get_by_id(signal_id)
            return record.to_dict() if record else None

    async def get_result(self, signal_id: str) -> Optional[dict]:
        async with get_async_session() as session:
            record = await HitStateRepository(session).get(signal_id)
            return record.to_dict() if record else None

    async def load_active(self) -> List[Tuple[TradeSignal, HitState]]:
        """Every active signal with its persisted hit state."""
        async with get_async_session() as session:
            records = await SignalRepository(session).get_active()
            hits = HitStateRepository(session)
            loaded = []
            for record in records:
                signal = record.to_signal()
                loaded.append((signal, await hits.load_state(signal)))
            return loaded

    async def load_state(self, signal: TradeSignal) -> HitState:
        async with get_async_session() as session:
            return await HitStateRepository(session).load_state(signal)

    # === HIT OPERATIONS ===

    async def record_hit(
        self,
        signal_id: str,
        kind: TargetKind,
        hit_at: datetime,
        hit_price: float,
        source: str,
        stop_loss_allocation: Optional[float] = None,
    ) -> bool:
        async with get_async_session() as session:
            return await HitStateRepository(session).record_hit(
                signal_id, kind, hit_at, hit_price, source, stop_loss_allocation
            )

    async def record_hits(
        self,
        signal_id: str,
        loaded: HitState,
        updated: HitState,
        source: str,
    ) -> List[TargetKind]:
        """
        Record all new hits of one sample against the state they were computed from.

        Raises:
            PersistenceConflictError: the stored hits no longer match `loaded`
        """
        async with get_async_session() as session:
            return await HitStateRepository(session).record_hits(signal_id, loaded, updated, source)

    async def mark_verified(self, signal_id: str, verified_at: datetime, source: str) -> None:
        async with get_async_session() as session:
            await HitStateRepository(session).mark_verified(signal_id, verified_at, source)

    # === SETTLEMENT OPERATIONS ===

    async def settle_trade(
        self,
        signal_id: str,
        settlement: "SettlementRecord",
        verify_hits: bool = False,
    ) -> None:
        """
        Store a settlement and move the signal out of active, atomically.

        Args:
            verify_hits: also require the stored hit flags to match the
                settlement's hit state (live settlement from a loaded state)

        Raises:
            PersistenceConflictError: the signal was already settled, or the
                stored hits differ from the ones it was settled on; nothing is written
        """
        async with get_async_session() as session:
            hits = HitStateRepository(session)
            state = getattr(settlement, "hit_state", None)
            if verify_hits and state is not None:
                record = await hits.get(signal_id, for_update=True)
                if record is not None and any(
                    getattr(record, f"{kind.value}_hit") != state.target(kind).hit for kind in TargetKind
                ):
                    raise PersistenceConflictError(
                        f"Hit state of signal {signal_id} changed before settlement"
                    )
            await hits.save_settlement(signal_id, settlement)
            await SignalRepository(session).transition_status(signal_id, settlement.status)

    async def save_backtest_result(self, signal: TradeSignal, result: "BacktestResult") -> None:
        """Store a backtest outcome, creating the signal row if it is new."""
        async with get_async_session() as session:
            signals = SignalRepository(session)
            if await signals.get_by_id(signal.signal_id) is None:
                await signals.save(signal, TradeStatus.ACTIVE)

            await HitStateRepository(session).save_settlement(
                signal.signal_id,
                result.settlement,
                data_source=result.data_source,
                data_resolution=result.data_resolution,
                include_hits=True,
            )
            # Re-running a backtest overwrites the previous outcome
            await signals.transition_status(
                signal.signal_id, result.status, expected=list(TradeStatus)
            )


# Singleton
_storage: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """Get global storage service instance."""
    global _storage
    if _storage is None:
        _storage = StorageService()
    return _storage
