"""
TradeVerify Database Models

SQLAlchemy models for tracked trade signals and their results.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from tradeverify.core.enums import TargetKind
from tradeverify.core.models import HitState, TargetHit, TradeSignal


class Base(DeclarativeBase):
    pass


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on round-trip; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_id() -> str:
    return str(uuid4())


# =============================================================================
# TRADE SIGNAL RECORD
# =============================================================================

class TradeSignalRecord(Base):
    """
    One tracked signal.

    Status moves from active to exactly one terminal status, once.
    """
    __tablename__ = "trade_signals"

    id = Column(String(36), primary_key=True, default=_new_id)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    signal_id = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(String(64), index=True)
    symbol = Column(String(20), nullable=False, index=True)

    # Levels
    entry_price = Column(Float, nullable=False)
    tp1_price = Column(Float, nullable=False)
    tp1_allocation = Column(Float, nullable=False)
    tp2_price = Column(Float, nullable=False)
    tp2_allocation = Column(Float, nullable=False)
    tp3_price = Column(Float, nullable=False)
    tp3_allocation = Column(Float, nullable=False)
    stop_loss_price = Column(Float, nullable=False)

    # Lifetime
    generated_at = Column(DateTime(timezone=True), nullable=False)
    time_horizon_seconds = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    timeframe = Column(String(8), nullable=False, default="1h")

    status = Column(String(20), nullable=False, default="active", index=True)

    result = relationship("TradeResultRecord", back_populates="signal", uselist=False)

    __table_args__ = (
        Index("ix_trade_signals_status_expires", "status", "expires_at"),
        Index("ix_trade_signals_user_created", "user_id", "created_at"),
    )

    @classmethod
    def from_signal(cls, signal: TradeSignal, status: str = "active", user_id: Optional[str] = None):
        return cls(
            signal_id=signal.signal_id,
            user_id=user_id,
            symbol=signal.symbol,
            entry_price=signal.entry_price,
            tp1_price=signal.tp1_price,
            tp1_allocation=signal.tp1_allocation,
            tp2_price=signal.tp2_price,
            tp2_allocation=signal.tp2_allocation,
            tp3_price=signal.tp3_price,
            tp3_allocation=signal.tp3_allocation,
            stop_loss_price=signal.stop_loss_price,
            generated_at=signal.generated_at,
            time_horizon_seconds=int(signal.time_horizon.total_seconds()),
            expires_at=signal.expires_at,
            timeframe=signal.timeframe,
            status=status,
        )

    def to_signal(self) -> TradeSignal:
        return TradeSignal(
            signal_id=self.signal_id,
            symbol=self.symbol,
            entry_price=self.entry_price,
            tp1_price=self.tp1_price,
            tp1_allocation=self.tp1_allocation,
            tp2_price=self.tp2_price,
            tp2_allocation=self.tp2_allocation,
            tp3_price=self.tp3_price,
            tp3_allocation=self.tp3_allocation,
            stop_loss_price=self.stop_loss_price,
            generated_at=as_utc(self.generated_at),
            time_horizon=timedelta(seconds=self.time_horizon_seconds),
            timeframe=self.timeframe,
        )

    def to_dict(self) -> dict:
        return {
            "signal_id": self.signal_id,
            "user_id": self.user_id,
            "symbol": self.symbol,
            "entry_price": self.entry_price,
            "tp1_price": self.tp1_price,
            "tp1_allocation": self.tp1_allocation,
            "tp2_price": self.tp2_price,
            "tp2_allocation": self.tp2_allocation,
            "tp3_price": self.tp3_price,
            "tp3_allocation": self.tp3_allocation,
            "stop_loss_price": self.stop_loss_price,
            "generated_at": as_utc(self.generated_at).isoformat(),
            "expires_at": as_utc(self.expires_at).isoformat(),
            "timeframe": self.timeframe,
            "status": self.status,
        }

    def __repr__(self):
        return f"<TradeSignal {self.signal_id}: {self.symbol} {self.status}>"


# =============================================================================
# TRADE RESULT RECORD
# =============================================================================

class TradeResultRecord(Base):
    """
    Hit state and settlement of one signal.

    Created empty when the signal is activated. Each *_hit flag flips from
    false to true at most once (see HitStateRepository.record_hit).
    """
    __tablename__ = "trade_results"

    id = Column(String(36), primary_key=True, default=_new_id)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    signal_id = Column(String(64), ForeignKey("trade_signals.signal_id"), unique=True, nullable=False)
    signal = relationship("TradeSignalRecord", back_populates="result")

    # Per-target hits
    tp1_hit = Column(Boolean, nullable=False, default=False)
    tp1_hit_at = Column(DateTime(timezone=True))
    tp1_hit_price = Column(Float)
    tp2_hit = Column(Boolean, nullable=False, default=False)
    tp2_hit_at = Column(DateTime(timezone=True))
    tp2_hit_price = Column(Float)
    tp3_hit = Column(Boolean, nullable=False, default=False)
    tp3_hit_at = Column(DateTime(timezone=True))
    tp3_hit_price = Column(Float)
    stop_loss_hit = Column(Boolean, nullable=False, default=False)
    stop_loss_hit_at = Column(DateTime(timezone=True))
    stop_loss_hit_price = Column(Float)
    stop_loss_allocation = Column(Float)

    # Settlement
    status = Column(String(20))
    reason = Column(Text)
    gross_profit_loss_usd = Column(Float)
    fees_usd = Column(Float)
    slippage_usd = Column(Float)
    net_profit_loss_usd = Column(Float)
    profit_loss_percentage = Column(Float)
    trade_duration_minutes = Column(Integer)
    trade_size_usd = Column(Float)
    data_quality_score = Column(Float)
    settlement_data = Column(JSON)
    settled_at = Column(DateTime(timezone=True))

    # Provenance
    data_source = Column(String(30))
    data_resolution = Column(String(8))
    verification_data_source = Column(String(30))
    last_verified_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_trade_results_status", "status"),
    )

    def target_hit(self, kind: TargetKind) -> TargetHit:
        prefix = kind.value
        if not getattr(self, f"{prefix}_hit"):
            return TargetHit()
        return TargetHit(
            hit=True,
            hit_at=as_utc(getattr(self, f"{prefix}_hit_at")),
            hit_price=getattr(self, f"{prefix}_hit_price"),
        )

    def hit_state(self, signal: TradeSignal) -> HitState:
        hits: Dict[TargetKind, TargetHit] = {kind: self.target_hit(kind) for kind in TargetKind}
        return HitState.from_hits(signal, hits, stop_loss_allocation=self.stop_loss_allocation)

    def to_dict(self) -> dict:
        d = {
            "signal_id": self.signal_id,
            "status": self.status,
            "reason": self.reason,
            "stop_loss_allocation": self.stop_loss_allocation,
            "gross_profit_loss_usd": self.gross_profit_loss_usd,
            "fees_usd": self.fees_usd,
            "slippage_usd": self.slippage_usd,
            "net_profit_loss_usd": self.net_profit_loss_usd,
            "profit_loss_percentage": self.profit_loss_percentage,
            "trade_duration_minutes": self.trade_duration_minutes,
            "trade_size_usd": self.trade_size_usd,
            "data_quality_score": self.data_quality_score,
            "data_source": self.data_source,
            "data_resolution": self.data_resolution,
            "verification_data_source": self.verification_data_source,
            "last_verified_at": as_utc(self.last_verified_at).isoformat() if self.last_verified_at else None,
        }
        for kind in TargetKind:
            d[kind.value] = self.target_hit(kind).to_dict()
        return d

    def __repr__(self):
        return f"<TradeResult {self.signal_id}: {self.status} net={self.net_profit_loss_usd}>"
