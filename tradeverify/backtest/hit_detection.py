"""
Target-hit detection.

Advances a HitState by one price observation. Used both for historical
replay (candles) and live verification (single price samples), so the two
paths cannot disagree about what counts as a hit.

Rules, checked in this order for every sample:
1. Terminal state (stop-loss hit, or position fully realized) -> no change
2. Stop-loss: low <= stop_loss_price -> hit, remaining allocation liquidated
3. Take-profits, highest first (tp3, tp2, tp1): high >= level -> hit at the
   level price, remaining allocation reduced by the level's weight

A stop-loss hit on a sample ends evaluation of that sample: no take-profit
is credited alongside it.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple, Union

from tradeverify.core.enums import TargetKind
from tradeverify.core.models import Candle, HitState, PriceSample, TargetHit, TradeSignal

logger = logging.getLogger(__name__)

Sample = Union[Candle, PriceSample]


def _sample_bounds(sample: Sample) -> Tuple[float, float, datetime]:
    """(low, high, timestamp) of a sample. A price sample is its own low and high."""
    if isinstance(sample, Candle):
        return sample.low, sample.high, sample.timestamp
    return sample.price, sample.price, sample.timestamp


def advance(
    signal: TradeSignal,
    state: HitState,
    sample: Sample,
) -> Tuple[HitState, List[TargetKind]]:
    """
    Apply one sample to a hit state.

    Args:
        signal: The signal being tracked
        state: Current hit state (not modified)
        sample: Candle or live price sample

    Returns:
        (new_state, targets newly hit by this sample)
    """
    if state.is_terminal:
        return state, []

    low, high, ts = _sample_bounds(sample)

    if low <= signal.stop_loss_price:
        new_state = state.with_hit(
            TargetKind.STOP_LOSS,
            TargetHit(hit=True, hit_at=ts, hit_price=signal.stop_loss_price),
            stop_loss_allocation=state.remaining_allocation,
            remaining_allocation=0.0,
        )
        logger.debug(f"{signal.signal_id}: stop loss hit at {ts.isoformat()} (low {low})")
        return new_state, [TargetKind.STOP_LOSS]

    new_hits: List[TargetKind] = []
    for kind in TargetKind.take_profits_descending():
        if state.target(kind).hit:
            continue
        level = signal.price_for(kind)
        if high >= level:
            remaining = max(0.0, state.remaining_allocation - signal.allocation_for(kind))
            state = state.with_hit(
                kind,
                TargetHit(hit=True, hit_at=ts, hit_price=level),
                remaining_allocation=remaining,
            )
            new_hits.append(kind)

    if new_hits:
        logger.debug(
            f"{signal.signal_id}: {', '.join(k.value for k in new_hits)} hit at {ts.isoformat()} "
            f"(high {high}, remaining {state.remaining_allocation}%)"
        )

    return state, new_hits


def replay(
    signal: TradeSignal,
    samples: Iterable[Sample],
    state: Optional[HitState] = None,
) -> HitState:
    """Fold advance() over samples in the order given."""
    state = state if state is not None else HitState()
    for sample in samples:
        state, _ = advance(signal, state, sample)
    return state
