"""Tests for target-hit detection."""

from datetime import datetime, timedelta, timezone

import pytest

from tradeverify.backtest.hit_detection import advance, replay
from tradeverify.core.enums import TargetKind
from tradeverify.core.models import HitState, PriceSample

GENERATED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


def sample(price: float, hours: float = 1) -> PriceSample:
    return PriceSample(price=price, timestamp=GENERATED_AT + timedelta(hours=hours), source="test")


class TestStopLoss:
    """Stop-loss is checked first and ends the trade."""

    def test_stop_loss_hit(self, signal, make_candle):
        state, hits = advance(signal, HitState(), make_candle(1, low=48900.0))

        assert hits == [TargetKind.STOP_LOSS]
        assert state.stop_loss.hit
        assert state.stop_loss.hit_price == 49000.0
        assert state.stop_loss.hit_at == GENERATED_AT + timedelta(hours=1)
        assert state.stop_loss_allocation == 100.0
        assert state.remaining_allocation == 0.0
        assert state.is_terminal

    def test_stop_loss_wins_over_take_profit_in_same_candle(self, signal, make_candle):
        """A candle spanning both stop and TP3 counts only the stop."""
        state, hits = advance(signal, HitState(), make_candle(1, high=53500.0, low=48500.0))

        assert hits == [TargetKind.STOP_LOSS]
        assert not state.any_take_profit_hit

    def test_stop_loss_boundary_inclusive(self, signal, make_candle):
        state, hits = advance(signal, HitState(), make_candle(1, low=49000.0))
        assert hits == [TargetKind.STOP_LOSS]

    def test_stop_loss_absorbs_remaining_only(self, signal, make_candle):
        """After TP1 (40%) the stop liquidates the remaining 60%."""
        state, _ = advance(signal, HitState(), make_candle(1, high=51100.0))
        state, hits = advance(signal, state, make_candle(2, low=48900.0))

        assert hits == [TargetKind.STOP_LOSS]
        assert state.tp1.hit
        assert state.stop_loss_allocation == pytest.approx(60.0)
        assert state.remaining_allocation == 0.0

    def test_nothing_after_stop_loss(self, signal, make_candle):
        state, _ = advance(signal, HitState(), make_candle(1, low=48900.0))
        after, hits = advance(signal, state, make_candle(2, high=54000.0))

        assert hits == []
        assert after is state


class TestTakeProfits:
    def test_tp1_hit_at_level_price(self, signal, make_candle):
        """Hit price is the level, not the candle high."""
        state, hits = advance(signal, HitState(), make_candle(1, high=51100.0))

        assert hits == [TargetKind.TP1]
        assert state.tp1.hit_price == 51000.0
        assert state.remaining_allocation == pytest.approx(60.0)
        assert not state.is_terminal

    def test_tp_boundary_inclusive(self, signal, make_candle):
        state, hits = advance(signal, HitState(), make_candle(1, high=51000.0))
        assert hits == [TargetKind.TP1]

    def test_just_below_level_not_hit(self, signal, make_candle):
        state, hits = advance(signal, HitState(), make_candle(1, high=50999.99, low=49000.01))
        assert hits == []
        assert state == HitState()

    def test_gap_through_all_levels(self, signal, make_candle):
        """One candle crossing every TP credits all of them, highest first."""
        state, hits = advance(signal, HitState(), make_candle(1, high=53500.0))

        assert hits == [TargetKind.TP3, TargetKind.TP2, TargetKind.TP1]
        assert all(state.target(k).hit for k in (TargetKind.TP1, TargetKind.TP2, TargetKind.TP3))
        assert state.remaining_allocation == pytest.approx(0.0)
        assert state.is_fully_realized
        assert state.is_terminal

    def test_tp2_without_tp1_candle(self, signal, make_candle):
        """A jump straight past TP2 credits TP2 and TP1 together."""
        state, hits = advance(signal, HitState(), make_candle(1, high=52200.0))
        assert hits == [TargetKind.TP2, TargetKind.TP1]
        assert state.remaining_allocation == pytest.approx(30.0)

    def test_fully_realized_ignores_later_stop(self, signal, make_candle):
        state, _ = advance(signal, HitState(), make_candle(1, high=53500.0))
        after, hits = advance(signal, state, make_candle(2, low=40000.0))

        assert hits == []
        assert not after.stop_loss.hit

    def test_hits_are_never_undone(self, signal, make_candle):
        """Price falling back below a level keeps the hit."""
        state = replay(
            signal,
            [
                make_candle(1, high=51100.0),
                make_candle(2, high=50100.0, low=49500.0),
            ],
        )
        assert state.tp1.hit
        assert state.tp1.hit_at == GENERATED_AT + timedelta(hours=1)

    def test_same_sample_twice_is_idempotent(self, signal, make_candle):
        candle = make_candle(1, high=51100.0)
        once, _ = advance(signal, HitState(), candle)
        twice, hits = advance(signal, once, candle)

        assert hits == []
        assert twice == once

    def test_remaining_never_negative(self, make_signal, make_candle):
        signal = make_signal(tp3_allocation=30.005)
        state, _ = advance(signal, HitState(), make_candle(1, high=53500.0))
        assert state.remaining_allocation == 0.0
        assert state.is_terminal


class TestPriceSamples:
    """Live samples use the same rules, with price as both low and high."""

    def test_live_take_profit(self, signal):
        state, hits = advance(signal, HitState(), sample(51500.0))
        assert hits == [TargetKind.TP1]
        assert state.tp1.hit_price == 51000.0

    def test_live_stop_loss(self, signal):
        state, hits = advance(signal, HitState(), sample(48999.0))
        assert hits == [TargetKind.STOP_LOSS]

    def test_live_price_between_levels(self, signal):
        state, hits = advance(signal, HitState(), sample(50500.0))
        assert hits == []

    def test_replay_matches_live_for_same_path(self, signal, make_candle):
        """Candles whose range collapses to a price behave like live samples."""
        prices = [50500.0, 51200.0, 52100.0, 48800.0]
        live = replay(signal, [sample(p, h) for h, p in enumerate(prices, start=1)])
        historical = replay(
            signal,
            [make_candle(h, open_=p, high=p, low=p, close=p) for h, p in enumerate(prices, start=1)],
        )
        assert live == historical
        assert live.stop_loss_allocation == pytest.approx(30.0)


class TestHitStateRebuild:
    def test_from_hits_derives_remaining(self, signal, make_candle):
        state = replay(signal, [make_candle(1, high=51100.0), make_candle(2, low=48000.0)])
        hits = {kind: state.target(kind) for kind in TargetKind}

        rebuilt = HitState.from_hits(signal, hits)

        assert rebuilt == state

    def test_hits_in_order(self, signal, make_candle):
        state = replay(signal, [make_candle(1, high=51100.0), make_candle(3, high=52100.0)])
        order = [kind for kind, _ in state.hits_in_order()]

        assert order == [TargetKind.TP1, TargetKind.TP2]
        assert state.last_hit_at == GENERATED_AT + timedelta(hours=3)
