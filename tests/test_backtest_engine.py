"""Tests for the backtest driver and runner."""

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradeverify.backtest.engine import BacktestRunner, ensure_sufficient_data, run_backtest
from tradeverify.backtest.quality import DataQualityScorer
from tradeverify.core.enums import DriverPhase, TradeStatus
from tradeverify.core.exceptions import InsufficientDataError, UpstreamFetchError
from tradeverify.data.base import CandleWindow

GENERATED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)

SETTLED_PHASES = (
    DriverPhase.PENDING,
    DriverPhase.VALIDATING,
    DriverPhase.SCORING,
    DriverPhase.REPLAYING,
    DriverPhase.SETTLED,
)


# =============================================================================
# run_backtest
# =============================================================================

class TestRunBacktest:
    """Validation, quality gate, truncation, replay and settlement."""

    def test_single_take_profit(self, signal, make_candle):
        candle = make_candle(1, open_=50500.0, high=51100.0, low=50400.0, close=51000.0)
        result = run_backtest(signal, [candle], "binance", "1h", quality_score=100.0)

        assert result.status == TradeStatus.COMPLETED_SUCCESS
        assert result.settlement.gross_profit_loss_usd == pytest.approx(8.0)
        assert result.settlement.net_profit_loss_usd == pytest.approx(4.0)
        # Not fully realized, so the trade ran for the whole horizon
        assert result.settlement.trade_duration_minutes == 1440
        assert result.hit_state.remaining_allocation == pytest.approx(60.0)
        assert result.phase_history == SETTLED_PHASES

    def test_immediate_stop_loss(self, signal, make_candle):
        result = run_backtest(signal, [make_candle(1, low=48900.0)], "binance", "1h", quality_score=100.0)

        assert result.status == TradeStatus.COMPLETED_FAILURE
        assert result.settlement.gross_profit_loss_usd == pytest.approx(-20.0)
        assert result.settlement.trade_duration_minutes == 60

    def test_take_profits_then_stop(self, signal, make_candle):
        candles = [
            make_candle(1, high=51100.0),
            make_candle(2, high=52100.0),
            make_candle(3, low=48900.0),
        ]
        result = run_backtest(signal, candles, "binance", "1h", quality_score=100.0)

        assert result.status == TradeStatus.COMPLETED_FAILURE
        assert result.settlement.gross_profit_loss_usd == pytest.approx(14.0)
        assert result.hit_state.stop_loss_allocation == pytest.approx(30.0)
        assert result.settlement.trade_duration_minutes == 180

    def test_fully_realized_duration(self, signal, make_candle):
        result = run_backtest(signal, [make_candle(2, high=53500.0)], "binance", "1h", quality_score=100.0)

        assert result.status == TradeStatus.COMPLETED_SUCCESS
        assert result.settlement.gross_profit_loss_usd == pytest.approx(38.0)
        assert result.settlement.trade_duration_minutes == 120

    def test_no_candles(self, signal):
        result = run_backtest(signal, [], "binance", "1h")

        assert result.status == TradeStatus.INCOMPLETE_DATA
        assert result.settlement.data_quality_score == 0.0
        assert result.settlement.reason == "No historical price data available for BTC_USD (1h)"
        assert result.phase_history == (DriverPhase.PENDING, DriverPhase.VALIDATING, DriverPhase.INCOMPLETE)
        assert result.settlement.to_dict()["fees_usd"] == 0.0

    def test_quality_gate_inclusive(self, signal, make_candle):
        candles = [make_candle(1, high=51100.0)]

        passed = run_backtest(signal, candles, "binance", "1h", quality_score=70.0)
        failed = run_backtest(signal, candles, "binance", "1h", quality_score=69.9)

        assert passed.status == TradeStatus.COMPLETED_SUCCESS
        assert failed.status == TradeStatus.INCOMPLETE_DATA
        assert failed.settlement.data_quality_score == 69.9
        assert failed.settlement.reason == "Insufficient data quality: 69.9% (minimum 70% required)"
        assert DriverPhase.REPLAYING not in failed.phase_history

    def test_candles_after_expiry_ignored(self, signal, make_candle):
        """A crash after the horizon cannot turn the trade into a loss."""
        candles = [
            make_candle(1, high=51100.0),
            make_candle(23),
            make_candle(25, low=40000.0),
        ]
        result = run_backtest(signal, candles, "binance", "1h", quality_score=100.0)

        assert result.status == TradeStatus.COMPLETED_SUCCESS
        assert result.replay_window_end <= signal.expires_at
        assert result.candles_replayed == 2

    def test_candles_before_generation_ignored(self, signal, make_candle):
        candles = [make_candle(-2, low=40000.0), make_candle(1)]
        result = run_backtest(signal, candles, "binance", "1h", quality_score=100.0)

        assert result.status == TradeStatus.EXPIRED
        assert result.candles_replayed == 1

    def test_window_boundaries_inclusive(self, signal, make_candle):
        """Candles stamped exactly at generation and expiry are replayed."""
        candles = [make_candle(0), make_candle(24, high=51100.0)]
        result = run_backtest(signal, candles, "binance", "1h", quality_score=100.0)

        assert result.status == TradeStatus.COMPLETED_SUCCESS
        assert result.replay_window_end == signal.expires_at

    def test_unsorted_candles(self, signal, make_candle):
        candles = [make_candle(3, low=48900.0), make_candle(2, high=52100.0), make_candle(1, high=51100.0)]
        result = run_backtest(signal, candles, "binance", "1h", quality_score=100.0)

        assert result.settlement.gross_profit_loss_usd == pytest.approx(14.0)

    def test_only_out_of_window_candles(self, signal, make_candle):
        result = run_backtest(signal, [make_candle(30)], "binance", "1h", quality_score=100.0)

        assert result.status == TradeStatus.INCOMPLETE_DATA
        assert result.settlement.reason.startswith("No candles between")

    def test_invalid_signal(self, make_signal, make_candle):
        bad = make_signal(stop_loss_price=50500.0)
        result = run_backtest(bad, [make_candle(1)], "binance", "1h", quality_score=100.0)

        assert result.status == TradeStatus.INCOMPLETE_DATA
        assert "Stop loss price must be below entry price" in result.settlement.reason
        assert result.phase_history == (DriverPhase.PENDING, DriverPhase.VALIDATING, DriverPhase.INCOMPLETE)

    def test_scores_window_when_no_score_given(self, signal, flat_candles):
        result = run_backtest(signal, flat_candles, "binance", "1h")

        assert result.status == TradeStatus.EXPIRED
        assert result.quality_report is not None
        assert result.settlement.data_quality_score == 100.0
        assert result.settlement.net_profit_loss_usd == pytest.approx(-4.0)
        assert result.settlement.trade_duration_minutes == 1440

    def test_sparse_window_fails_gate(self, signal, make_candle):
        result = run_backtest(signal, [make_candle(1, high=51100.0)], "binance", "1h")

        assert result.status == TradeStatus.INCOMPLETE_DATA
        assert result.quality_report.total_candles == 1
        assert result.settlement.data_quality_score < 70.0

    def test_custom_scorer_and_threshold(self, signal, make_candle):
        candles = [make_candle(h) for h in range(12)]
        result = run_backtest(
            signal, candles, "binance", "1h",
            scorer=DataQualityScorer(), min_quality_score=75.0,
        )
        assert result.status == TradeStatus.INCOMPLETE_DATA
        assert "minimum 75% required" in result.settlement.reason

    def test_ensure_sufficient_data(self, signal, make_candle):
        ensure_sufficient_data(signal, [make_candle(1)], 70.0)

        with pytest.raises(InsufficientDataError) as exc_info:
            ensure_sufficient_data(signal, [make_candle(1)], 42.5)
        assert exc_info.value.quality_score == 42.5

        with pytest.raises(InsufficientDataError, match="No candles between"):
            ensure_sufficient_data(signal, [], 100.0)

    def test_gap_warning(self, signal, make_candle):
        candles = [make_candle(1), make_candle(5)]
        result = run_backtest(signal, candles, "binance", "1h", quality_score=100.0)

        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("Data gap detected: 240 minutes between")

    def test_to_dict(self, signal, make_candle):
        result = run_backtest(signal, [make_candle(1, low=48900.0)], "kraken", "1h", quality_score=100.0)
        data = result.to_dict()

        assert data["signal_id"] == signal.signal_id
        assert data["status"] == "completed_failure"
        assert data["data_source"] == "kraken"
        assert data["phase_history"][-1] == "settled"
        assert data["replay_window_end"] == (GENERATED_AT + timedelta(hours=1)).isoformat()

    def test_result_is_immutable(self, signal, make_candle):
        result = run_backtest(signal, [make_candle(1), make_candle(5)], "binance", "1h", quality_score=100.0)

        with pytest.raises(FrozenInstanceError):
            result.data_source = "kraken"
        with pytest.raises(AttributeError):
            result.warnings.append("tampered")
        assert isinstance(result.phase_history, tuple)


# =============================================================================
# BacktestRunner
# =============================================================================

class TestBacktestRunner:
    def setup_method(self):
        self.market_data = MagicMock()
        self.market_data.fetch_candles = AsyncMock()

    def _window(self, candles, score=100.0):
        report = DataQualityScorer().score(candles, GENERATED_AT, GENERATED_AT + timedelta(hours=24), timedelta(hours=1))
        report.overall_score = score
        return CandleWindow(
            symbol="BTC_USD",
            candles=candles,
            source="binance",
            resolution="1h",
            quality_report=report,
            warnings=["1 missing candle(s) between a and b"],
        )

    @pytest.mark.asyncio
    async def test_run_uses_fetched_window(self, signal, make_candle):
        self.market_data.fetch_candles.return_value = self._window([make_candle(1, high=51100.0)])
        runner = BacktestRunner(self.market_data)

        result = await runner.run(signal)

        self.market_data.fetch_candles.assert_awaited_once_with(
            "BTC_USD", signal.generated_at, signal.expires_at, "1h"
        )
        assert result.status == TradeStatus.COMPLETED_SUCCESS
        assert result.data_source == "binance"
        assert result.quality_report is not None
        assert result.warnings == ("1 missing candle(s) between a and b",)

    @pytest.mark.asyncio
    async def test_run_gates_on_window_score(self, signal, make_candle):
        self.market_data.fetch_candles.return_value = self._window([make_candle(1)], score=50.0)
        result = await BacktestRunner(self.market_data).run(signal)

        assert result.status == TradeStatus.INCOMPLETE_DATA
        assert result.settlement.data_quality_score == 50.0

    @pytest.mark.asyncio
    async def test_invalid_signal_not_fetched(self, make_signal):
        result = await BacktestRunner(self.market_data).run(make_signal(tp1_price=49999.0))

        assert result.status == TradeStatus.INCOMPLETE_DATA
        self.market_data.fetch_candles.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_propagates_upstream_failure(self, signal):
        self.market_data.fetch_candles.side_effect = UpstreamFetchError("all providers failed")

        with pytest.raises(UpstreamFetchError):
            await BacktestRunner(self.market_data).run(signal)

    @pytest.mark.asyncio
    async def test_run_many_isolates_failures(self, make_signal, make_candle):
        ok = make_signal(signal_id="ok")
        broken = make_signal(signal_id="broken", symbol="ETH_USD")

        async def fetch(symbol, start, end, resolution):
            if symbol == "ETH_USD":
                raise UpstreamFetchError("all providers failed")
            return self._window([make_candle(1, low=48900.0)])

        self.market_data.fetch_candles.side_effect = fetch
        storage = MagicMock()
        storage.save_backtest_result = AsyncMock()

        results = await BacktestRunner(self.market_data, storage).run_many([ok, broken])

        assert [r.status for r in results] == [TradeStatus.COMPLETED_FAILURE, TradeStatus.INCOMPLETE_DATA]
        assert results[1].settlement.reason.startswith("No data:")
        assert storage.save_backtest_result.await_count == 2
