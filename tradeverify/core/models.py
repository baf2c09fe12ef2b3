"""
TradeVerify Core Data Models

Pydantic model for the incoming trade signal.
Dataclasses for candles, price samples and per-trade hit state.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .enums import TargetKind

UTC = timezone.utc

# Allocation left over after all three take-profits may not be exactly 0
# because allocations are only required to sum to 100 +/- 0.01.
ALLOCATION_EPSILON = 0.01


class TradeSignal(BaseModel):
    """
    A synthetic long trade signal.

    Structural rules (price ordering, allocation sum) are checked by the
    validator rather than here so that a malformed signal can still be
    represented and settled as incomplete_data.
    """

    signal_id: str
    symbol: str

    entry_price: float
    tp1_price: float
    tp1_allocation: float
    tp2_price: float
    tp2_allocation: float
    tp3_price: float
    tp3_allocation: float
    stop_loss_price: float

    generated_at: datetime
    time_horizon: timedelta
    timeframe: str = Field(default="1h", description="Candle resolution used for backtests")

    model_config = ConfigDict(frozen=True)

    @property
    def expires_at(self) -> datetime:
        return self.generated_at + self.time_horizon

    @property
    def horizon_minutes(self) -> int:
        return int(self.time_horizon.total_seconds() // 60)

    @property
    def total_allocation(self) -> float:
        return self.tp1_allocation + self.tp2_allocation + self.tp3_allocation

    def price_for(self, kind: TargetKind) -> float:
        """Contractual price of a target level."""
        return {
            TargetKind.TP1: self.tp1_price,
            TargetKind.TP2: self.tp2_price,
            TargetKind.TP3: self.tp3_price,
            TargetKind.STOP_LOSS: self.stop_loss_price,
        }[kind]

    def allocation_for(self, kind: TargetKind) -> float:
        """Allocation weight (percent) of a take-profit level."""
        if kind == TargetKind.STOP_LOSS:
            raise ValueError("stop-loss has no fixed allocation")
        return {
            TargetKind.TP1: self.tp1_allocation,
            TargetKind.TP2: self.tp2_allocation,
            TargetKind.TP3: self.tp3_allocation,
        }[kind]


@dataclass(frozen=True)
class Candle:
    """OHLCV data for one sampling interval."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class PriceSample:
    """A single live price observation."""

    price: float
    timestamp: datetime
    source: str = "unknown"


@dataclass(frozen=True)
class TargetHit:
    """Whether, when and at what price a level was reached."""

    hit: bool = False
    hit_at: Optional[datetime] = None
    hit_price: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "hit": self.hit,
            "hit_at": self.hit_at.isoformat() if self.hit_at else None,
            "hit_price": self.hit_price,
        }


@dataclass(frozen=True)
class HitState:
    """
    Per-trade record of which targets have been reached.

    Shared by historical replay and live verification. Never mutated in
    place: the detection engine returns a new instance per step.
    """

    tp1: TargetHit = field(default_factory=TargetHit)
    tp2: TargetHit = field(default_factory=TargetHit)
    tp3: TargetHit = field(default_factory=TargetHit)
    stop_loss: TargetHit = field(default_factory=TargetHit)
    remaining_allocation: float = 100.0
    # Allocation the stop-loss liquidated (remaining at the moment it fired)
    stop_loss_allocation: float = 0.0

    @classmethod
    def from_hits(
        cls,
        signal: TradeSignal,
        hits: Dict[TargetKind, TargetHit],
        stop_loss_allocation: Optional[float] = None,
    ) -> "HitState":
        """
        Rebuild a state from persisted per-target hits.

        remaining_allocation is re-derived from the take-profits recorded so
        far rather than stored, so it can never drift from the hit flags.
        """
        tp1 = hits.get(TargetKind.TP1, TargetHit())
        tp2 = hits.get(TargetKind.TP2, TargetHit())
        tp3 = hits.get(TargetKind.TP3, TargetHit())
        stop = hits.get(TargetKind.STOP_LOSS, TargetHit())

        remaining = 100.0
        for kind, target in ((TargetKind.TP1, tp1), (TargetKind.TP2, tp2), (TargetKind.TP3, tp3)):
            if target.hit:
                remaining -= signal.allocation_for(kind)
        remaining = max(0.0, remaining)

        sl_allocation = 0.0
        if stop.hit:
            sl_allocation = remaining if stop_loss_allocation is None else stop_loss_allocation
            remaining = 0.0

        return cls(
            tp1=tp1,
            tp2=tp2,
            tp3=tp3,
            stop_loss=stop,
            remaining_allocation=remaining,
            stop_loss_allocation=sl_allocation,
        )

    def target(self, kind: TargetKind) -> TargetHit:
        return {
            TargetKind.TP1: self.tp1,
            TargetKind.TP2: self.tp2,
            TargetKind.TP3: self.tp3,
            TargetKind.STOP_LOSS: self.stop_loss,
        }[kind]

    def with_hit(self, kind: TargetKind, hit: TargetHit, **changes) -> "HitState":
        """Copy of this state with one target replaced."""
        return replace(self, **{kind.value: hit}, **changes)

    @property
    def any_take_profit_hit(self) -> bool:
        return self.tp1.hit or self.tp2.hit or self.tp3.hit

    @property
    def is_fully_realized(self) -> bool:
        """Whole position closed through take-profits."""
        if self.stop_loss.hit:
            return False
        all_hit = self.tp1.hit and self.tp2.hit and self.tp3.hit
        return all_hit or (self.any_take_profit_hit and self.remaining_allocation <= ALLOCATION_EPSILON)

    @property
    def is_terminal(self) -> bool:
        return self.stop_loss.hit or self.is_fully_realized

    def hits_in_order(self) -> List[Tuple[TargetKind, TargetHit]]:
        """Recorded hits sorted chronologically (ties keep tp1..sl order)."""
        recorded = [
            (kind, self.target(kind))
            for kind in (TargetKind.TP1, TargetKind.TP2, TargetKind.TP3, TargetKind.STOP_LOSS)
            if self.target(kind).hit
        ]
        return sorted(recorded, key=lambda item: item[1].hit_at or datetime.min.replace(tzinfo=UTC))

    @property
    def last_hit_at(self) -> Optional[datetime]:
        ordered = self.hits_in_order()
        return ordered[-1][1].hit_at if ordered else None

    def to_dict(self) -> dict:
        d = asdict(self)
        for kind in TargetKind:
            d[kind.value] = self.target(kind).to_dict()
        return d
