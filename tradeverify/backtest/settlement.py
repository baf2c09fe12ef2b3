"""
Settlement: converts a final HitState into realized P/L.

Each take-profit realizes its own allocation at its level price. A stop-loss
realizes only the allocation still open when it fired. Fees and slippage are
fixed per standardized trade and charged once.

The result is one of four record types, one per terminal status.
IncompleteData carries no P/L at all: a trade that never ran has nothing
to report beyond why.
"""

import logging
from dataclasses import dataclass, field
from typing import ClassVar, List, Optional, Union

from tradeverify.core.enums import TargetKind, TradeStatus
from tradeverify.core.models import HitState, TradeSignal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementCosts:
    """Standardized trade size and per-trade costs (USD)."""

    trade_size_usd: float = 1000.0
    fees_usd: float = 2.0
    slippage_usd: float = 2.0

    @classmethod
    def from_settings(cls, settings=None) -> "SettlementCosts":
        if settings is None:
            from tradeverify.config.settings import get_settings
            settings = get_settings()
        return cls(
            trade_size_usd=settings.trade_size_usd,
            fees_usd=settings.fees_usd,
            slippage_usd=settings.slippage_usd,
        )


@dataclass(frozen=True)
class RealizedLeg:
    """P/L of one closed slice of the position."""

    kind: TargetKind
    price: float
    allocation: float
    profit_loss_usd: float

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "price": self.price,
            "allocation": self.allocation,
            "profit_loss_usd": self.profit_loss_usd,
        }


# =============================================================================
# Settlement records
# =============================================================================


@dataclass(frozen=True)
class _Settled:
    """Fields shared by every record that actually ran."""

    status: ClassVar[TradeStatus]

    gross_profit_loss_usd: float
    fees_usd: float
    slippage_usd: float
    net_profit_loss_usd: float
    profit_loss_percentage: float
    trade_duration_minutes: int
    trade_size_usd: float
    data_quality_score: float
    hit_state: HitState
    legs: List[RealizedLeg] = field(default_factory=list)

    @property
    def is_profitable(self) -> bool:
        return self.net_profit_loss_usd > 0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "gross_profit_loss_usd": self.gross_profit_loss_usd,
            "fees_usd": self.fees_usd,
            "slippage_usd": self.slippage_usd,
            "net_profit_loss_usd": self.net_profit_loss_usd,
            "profit_loss_percentage": self.profit_loss_percentage,
            "trade_duration_minutes": self.trade_duration_minutes,
            "trade_size_usd": self.trade_size_usd,
            "data_quality_score": self.data_quality_score,
            "hit_state": self.hit_state.to_dict(),
            "legs": [leg.to_dict() for leg in self.legs],
            "reason": None,
        }


@dataclass(frozen=True)
class CompletedSuccess(_Settled):
    """At least one take-profit hit, stop-loss never hit."""

    status: ClassVar[TradeStatus] = TradeStatus.COMPLETED_SUCCESS


@dataclass(frozen=True)
class CompletedFailure(_Settled):
    """Stop-loss hit (possibly after some take-profits)."""

    status: ClassVar[TradeStatus] = TradeStatus.COMPLETED_FAILURE


@dataclass(frozen=True)
class Expired(_Settled):
    """Horizon elapsed without any target being reached."""

    status: ClassVar[TradeStatus] = TradeStatus.EXPIRED


@dataclass(frozen=True)
class IncompleteData:
    """The trade could not be evaluated. No fees or slippage are charged."""

    status: ClassVar[TradeStatus] = TradeStatus.INCOMPLETE_DATA

    reason: str
    data_quality_score: float = 0.0

    @property
    def is_profitable(self) -> bool:
        return False

    def to_dict(self) -> dict:
        # Stored rows carry explicit zeros rather than missing columns
        return {
            "status": self.status.value,
            "gross_profit_loss_usd": 0.0,
            "fees_usd": 0.0,
            "slippage_usd": 0.0,
            "net_profit_loss_usd": 0.0,
            "profit_loss_percentage": 0.0,
            "trade_duration_minutes": 0,
            "trade_size_usd": 0.0,
            "data_quality_score": self.data_quality_score,
            "hit_state": None,
            "legs": [],
            "reason": self.reason,
        }


SettlementRecord = Union[CompletedSuccess, CompletedFailure, Expired, IncompleteData]


# =============================================================================
# Calculator
# =============================================================================


def _leg_pnl(entry: float, price: float, allocation: float, trade_size: float) -> float:
    return (price - entry) / entry * (allocation / 100) * trade_size


def settle(
    signal: TradeSignal,
    state: HitState,
    elapsed_minutes: int,
    quality_score: float,
    costs: Optional[SettlementCosts] = None,
) -> SettlementRecord:
    """
    Compute the settlement record for a final hit state.

    Args:
        signal: The settled signal
        state: Final hit state
        elapsed_minutes: Minutes from generation to the terminal hit (or full horizon)
        quality_score: Data quality score of the evaluated window
        costs: Trade size, fees and slippage (defaults: $1000, $2, $2)

    Returns:
        CompletedFailure if the stop-loss was hit, CompletedSuccess if any
        take-profit was hit, otherwise Expired
    """
    costs = costs or SettlementCosts()
    entry = signal.entry_price
    size = costs.trade_size_usd

    legs: List[RealizedLeg] = []
    for kind in (TargetKind.TP1, TargetKind.TP2, TargetKind.TP3):
        target = state.target(kind)
        if not target.hit:
            continue
        price = target.hit_price if target.hit_price is not None else signal.price_for(kind)
        allocation = signal.allocation_for(kind)
        legs.append(RealizedLeg(kind, price, allocation, round(_leg_pnl(entry, price, allocation, size), 2)))

    if state.stop_loss.hit:
        allocation = state.stop_loss_allocation
        price = signal.stop_loss_price
        legs.append(
            RealizedLeg(
                TargetKind.STOP_LOSS, price, allocation, round(_leg_pnl(entry, price, allocation, size), 2)
            )
        )

    gross = round(sum(_leg_pnl(entry, leg.price, leg.allocation, size) for leg in legs), 2)
    net = round(gross - costs.fees_usd - costs.slippage_usd, 2)
    pct = round(gross / size * 100, 2) if size else 0.0

    if state.stop_loss.hit:
        record_cls = CompletedFailure
    elif state.any_take_profit_hit:
        record_cls = CompletedSuccess
    else:
        record_cls = Expired

    record = record_cls(
        gross_profit_loss_usd=gross,
        fees_usd=costs.fees_usd,
        slippage_usd=costs.slippage_usd,
        net_profit_loss_usd=net,
        profit_loss_percentage=pct,
        trade_duration_minutes=int(elapsed_minutes),
        trade_size_usd=size,
        data_quality_score=quality_score,
        hit_state=state,
        legs=legs,
    )

    logger.debug(
        f"Settled {signal.signal_id}: {record.status.value} gross ${gross:.2f} net ${net:.2f} "
        f"over {elapsed_minutes} min"
    )
    return record


def incomplete(reason: str, quality_score: float = 0.0) -> IncompleteData:
    """Record for a trade that could not be evaluated."""
    return IncompleteData(reason=reason, data_quality_score=quality_score)
