"""Tests for the command line entry points."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pandas as pd

from tradeverify.core.exceptions import UpstreamFetchError
from tradeverify.scripts.run_backtest import load_candles_csv, main


def _write_inputs(tmp_path, signal, candles):
    signal_path = tmp_path / "signal.json"
    signal_path.write_text(signal.model_dump_json())

    csv_path = tmp_path / "candles.csv"
    pd.DataFrame(
        {
            "timestamp": [c.timestamp.isoformat() for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
        }
    ).to_csv(csv_path, index=False)
    return str(signal_path), str(csv_path)


class TestRunBacktestScript:
    def test_load_candles_csv(self, tmp_path, signal, flat_candles):
        _, csv_path = _write_inputs(tmp_path, signal, flat_candles)

        candles = load_candles_csv(csv_path)

        assert len(candles) == 24
        assert candles[0].timestamp == signal.generated_at
        assert candles[0].volume == 0.0

    def test_json_output(self, tmp_path, capsys, signal, flat_candles, make_candle):
        candles = list(flat_candles)
        candles[3] = make_candle(3, high=51100.0, close=50500.0)
        signal_path, csv_path = _write_inputs(tmp_path, signal, candles)

        exit_code = main(["--signal", signal_path, "--candles", csv_path, "--json"])

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "completed_success"
        assert data["data_source"] == "csv"
        assert data["gross_profit_loss_usd"] == 8.0
        assert data["candles_replayed"] == 24

    def test_text_output(self, tmp_path, capsys, signal, flat_candles):
        signal_path, csv_path = _write_inputs(tmp_path, signal, flat_candles)

        assert main(["--signal", signal_path, "--candles", csv_path]) == 0
        out = capsys.readouterr().out
        assert "BACKTEST sig-test-001" in out
        assert "expired" in out

    def test_store_closes_database(self, tmp_path, monkeypatch, capsys, signal, flat_candles):
        from tradeverify.storage import database

        db_path = tmp_path / "backtests.db"
        monkeypatch.setenv("TRADEVERIFY_DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
        signal_path, csv_path = _write_inputs(tmp_path, signal, flat_candles)

        assert main(["--signal", signal_path, "--candles", csv_path, "--store", "--json"]) == 0

        assert db_path.exists()
        assert database._async_engine is None
        assert json.loads(capsys.readouterr().out)["status"] == "expired"

    def test_fetch_failure_exits_non_zero(self, tmp_path, signal, flat_candles):
        signal_path, _ = _write_inputs(tmp_path, signal, flat_candles)
        market_data = MagicMock()
        market_data.fetch_candles = AsyncMock(side_effect=UpstreamFetchError("all providers failed"))
        market_data.close = AsyncMock()

        with patch("tradeverify.data.fallback.MarketDataService.from_settings", return_value=market_data):
            assert main(["--signal", signal_path]) == 1

        market_data.fetch_candles.assert_awaited_once()
        market_data.close.assert_awaited_once()
