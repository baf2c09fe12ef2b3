"""
TradeVerify Data Repositories

Data access layer. Every state-changing write is a conditional UPDATE so
that overlapping writers (two sweeps, a sweep and a backtest) cannot
double-count a hit or settle a trade twice.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tradeverify.core.enums import TargetKind, TradeStatus
from tradeverify.core.exceptions import PersistenceConflictError
from tradeverify.core.models import HitState, TradeSignal

from .models import TradeResultRecord, TradeSignalRecord

logger = logging.getLogger(__name__)

_SETTLEMENT_COLUMNS = (
    "gross_profit_loss_usd",
    "fees_usd",
    "slippage_usd",
    "net_profit_loss_usd",
    "profit_loss_percentage",
    "trade_duration_minutes",
    "trade_size_usd",
    "data_quality_score",
    "reason",
)


# =============================================================================
# SIGNAL REPOSITORY
# =============================================================================

class SignalRepository:
    """Repository for tracked signals."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(
        self,
        signal: TradeSignal,
        status: TradeStatus = TradeStatus.ACTIVE,
        user_id: Optional[str] = None,
    ) -> TradeSignalRecord:
        """Save a new signal."""
        record = TradeSignalRecord.from_signal(signal, status=status.value, user_id=user_id)
        self.session.add(record)
        await self.session.flush()
        logger.info(f"Saved signal {signal.signal_id} ({signal.symbol}) as {status.value}")
        return record

    async def get_by_id(self, signal_id: str) -> Optional[TradeSignalRecord]:
        """Get signal by ID."""
        result = await self.session.execute(
            select(TradeSignalRecord).where(TradeSignalRecord.signal_id == signal_id)
        )
        return result.scalar_one_or_none()

    async def get_active(self) -> List[TradeSignalRecord]:
        """All signals still being tracked, oldest expiry first."""
        result = await self.session.execute(
            select(TradeSignalRecord)
            .where(TradeSignalRecord.status == TradeStatus.ACTIVE.value)
            .order_by(TradeSignalRecord.expires_at)
        )
        return list(result.scalars().all())

    async def transition_status(
        self,
        signal_id: str,
        to: TradeStatus,
        expected: Iterable[TradeStatus] = (TradeStatus.ACTIVE,),
    ) -> None:
        """
        Move a signal to a new status if it is currently in one of `expected`.

        Raises:
            PersistenceConflictError: the row is missing or was already moved
        """
        expected_values = [s.value for s in expected]
        result = await self.session.execute(
            update(TradeSignalRecord)
            .where(
                TradeSignalRecord.signal_id == signal_id,
                TradeSignalRecord.status.in_(expected_values),
            )
            .values(status=to.value, updated_at=datetime.now(timezone.utc))
        )
        if result.rowcount != 1:
            raise PersistenceConflictError(
                f"Signal {signal_id} not in {expected_values}, cannot move to {to.value}"
            )
        logger.info(f"Signal {signal_id} -> {to.value}")


# =============================================================================
# HIT STATE REPOSITORY
# =============================================================================

class HitStateRepository:
    """Repository for per-signal hit state and settlement."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_empty(self, signal_id: str) -> TradeResultRecord:
        """Create the result row for a newly activated signal (no hits)."""
        record = TradeResultRecord(signal_id=signal_id)
        self.session.add(record)
        await self.session.flush()
        return record

    async def get(self, signal_id: str, for_update: bool = False) -> Optional[TradeResultRecord]:
        query = select(TradeResultRecord).where(TradeResultRecord.signal_id == signal_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def load_state(self, signal: TradeSignal) -> HitState:
        """Persisted hit state of a signal (empty if no row exists yet)."""
        record = await self.get(signal.signal_id)
        return record.hit_state(signal) if record else HitState()

    async def record_hit(
        self,
        signal_id: str,
        kind: TargetKind,
        hit_at: datetime,
        hit_price: float,
        source: str,
        stop_loss_allocation: Optional[float] = None,
    ) -> bool:
        """
        Mark a target as hit, only if it is not already marked and the
        stop-loss has not closed the trade.

        Returns:
            True if this call recorded the hit, False if it was already recorded
        """
        prefix = kind.value
        hit_column = getattr(TradeResultRecord, f"{prefix}_hit")
        conditions = [TradeResultRecord.signal_id == signal_id, hit_column.is_(False)]
        if kind != TargetKind.STOP_LOSS:
            conditions.append(TradeResultRecord.stop_loss_hit.is_(False))

        values = {
            f"{prefix}_hit": True,
            f"{prefix}_hit_at": hit_at,
            f"{prefix}_hit_price": hit_price,
            "verification_data_source": source,
            "last_verified_at": hit_at,
            "updated_at": datetime.now(timezone.utc),
        }
        if kind == TargetKind.STOP_LOSS and stop_loss_allocation is not None:
            values["stop_loss_allocation"] = stop_loss_allocation

        result = await self.session.execute(
            update(TradeResultRecord)
            .where(*conditions)
            .values(**values)
        )

        recorded = result.rowcount == 1
        if recorded:
            logger.info(f"Signal {signal_id}: {prefix} hit at {hit_price} ({source})")
        else:
            logger.debug(f"Signal {signal_id}: {prefix} already recorded")
        return recorded

    async def record_hits(
        self,
        signal_id: str,
        loaded: HitState,
        updated: HitState,
        source: str,
    ) -> List[TargetKind]:
        """
        Write every target hit in `updated` but not in `loaded` with a single
        UPDATE that only matches while the stored flags still equal `loaded`.

        Returns:
            The newly recorded targets (empty if nothing changed)

        Raises:
            PersistenceConflictError: another writer changed the hit state first
        """
        new_hits = [k for k in TargetKind if updated.target(k).hit and not loaded.target(k).hit]
        if not new_hits:
            return []

        values = {
            "verification_data_source": source,
            "updated_at": datetime.now(timezone.utc),
        }
        for kind in new_hits:
            target = updated.target(kind)
            values[f"{kind.value}_hit"] = True
            values[f"{kind.value}_hit_at"] = target.hit_at
            values[f"{kind.value}_hit_price"] = target.hit_price
        if TargetKind.STOP_LOSS in new_hits:
            values["stop_loss_allocation"] = updated.stop_loss_allocation
        values["last_verified_at"] = max(updated.target(k).hit_at for k in new_hits)

        conditions = [TradeResultRecord.signal_id == signal_id]
        for kind in TargetKind:
            column = getattr(TradeResultRecord, f"{kind.value}_hit")
            conditions.append(column.is_(loaded.target(kind).hit))

        result = await self.session.execute(
            update(TradeResultRecord).where(*conditions).values(**values)
        )
        if result.rowcount != 1:
            raise PersistenceConflictError(
                f"Hit state of signal {signal_id} changed since it was loaded"
            )

        for kind in new_hits:
            logger.info(f"Signal {signal_id}: {kind.value} hit at {updated.target(kind).hit_price} ({source})")
        return new_hits

    async def mark_verified(self, signal_id: str, verified_at: datetime, source: str) -> None:
        """Record that a live price was checked for this signal."""
        await self.session.execute(
            update(TradeResultRecord)
            .where(TradeResultRecord.signal_id == signal_id)
            .values(last_verified_at=verified_at, verification_data_source=source)
        )

    async def save_settlement(
        self,
        signal_id: str,
        settlement,
        data_source: Optional[str] = None,
        data_resolution: Optional[str] = None,
        include_hits: bool = False,
    ) -> TradeResultRecord:
        """
        Store a settlement record, creating the result row if needed.

        Args:
            include_hits: also write hit columns from the settlement's hit
                state (backtests, which never go through record_hit)
        """
        record = await self.get(signal_id)
        if record is None:
            record = await self.create_empty(signal_id)

        data = settlement.to_dict()
        for column in _SETTLEMENT_COLUMNS:
            setattr(record, column, data[column])
        record.status = data["status"]
        record.settlement_data = {"legs": data["legs"], "hit_state": data["hit_state"]}
        record.settled_at = datetime.now(timezone.utc)
        if data_source is not None:
            record.data_source = data_source
        if data_resolution is not None:
            record.data_resolution = data_resolution

        state = getattr(settlement, "hit_state", None)
        if include_hits and state is not None:
            for kind in TargetKind:
                target = state.target(kind)
                setattr(record, f"{kind.value}_hit", target.hit)
                setattr(record, f"{kind.value}_hit_at", target.hit_at)
                setattr(record, f"{kind.value}_hit_price", target.hit_price)
            record.stop_loss_allocation = state.stop_loss_allocation if state.stop_loss.hit else None

        await self.session.flush()
        logger.info(f"Saved settlement for {signal_id}: {record.status}")
        return record
