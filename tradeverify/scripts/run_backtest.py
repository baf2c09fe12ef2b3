"""
Backtest one trade signal.

The signal is read from a JSON file. Candles come from a CSV file
(timestamp, open, high, low, close[, volume]) or, without --candles, from
the configured market data providers.

Usage::

    python -m tradeverify.scripts.run_backtest --signal signal.json --candles btc_1h.csv
    python -m tradeverify.scripts.run_backtest --signal signal.json --store
    python -m tradeverify.scripts.run_backtest --signal signal.json --json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s  %(name)-30s  %(levelname)-7s  %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Terminal colours
# ---------------------------------------------------------------------------

class Colors:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    GRAY = "\033[90m"
    BOLD = "\033[1m"
    END = "\033[0m"


if not (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()):
    Colors.GREEN = Colors.YELLOW = Colors.RED = ""
    Colors.GRAY = Colors.BOLD = Colors.END = ""


def colorize(text: str, status: str) -> str:
    color = {
        "completed_success": Colors.GREEN,
        "completed_failure": Colors.RED,
        "expired": Colors.YELLOW,
        "incomplete_data": Colors.GRAY,
    }.get(status, "")
    return f"{color}{text}{Colors.END}"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TradeVerify - backtest one trade signal")
    parser.add_argument("--signal", required=True, help="Path to signal JSON")
    parser.add_argument("--candles", help="Path to candle CSV (fetched from providers if omitted)")
    parser.add_argument("--source", default="csv", help="Data source label for CSV candles")
    parser.add_argument("--resolution", help="Candle timeframe (defaults to the signal's)")
    parser.add_argument("--store", action="store_true", help="Persist the result")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def load_candles_csv(path: str):
    """Read candles from CSV. Timestamps are interpreted as UTC."""
    from tradeverify.data.base import frame_to_candles

    df = pd.read_csv(path)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    if "volume" not in df.columns:
        df["volume"] = 0.0
    return frame_to_candles(df)


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

async def _run(args) -> int:
    from tradeverify.backtest.engine import BacktestRunner, run_backtest
    from tradeverify.backtest.quality import DataQualityScorer
    from tradeverify.backtest.settlement import SettlementCosts
    from tradeverify.config.settings import get_settings
    from tradeverify.core.exceptions import UpstreamFetchError
    from tradeverify.core.models import TradeSignal
    from tradeverify.data.fallback import MarketDataService
    from tradeverify.storage.database import close_database_async
    from tradeverify.storage.service import StorageService

    settings = get_settings()
    signal = TradeSignal.model_validate_json(Path(args.signal).read_text())
    costs = SettlementCosts.from_settings(settings)

    storage = None
    market_data = None
    try:
        if args.store:
            storage = StorageService()
            await storage.initialize()

        if args.candles:
            scorer = DataQualityScorer(
                max_price_change_pct=settings.max_price_change_pct,
                gap_tolerance_multiplier=settings.gap_tolerance_multiplier,
            )
            result = run_backtest(
                signal,
                load_candles_csv(args.candles),
                args.source,
                args.resolution or signal.timeframe,
                costs=costs,
                scorer=scorer,
                min_quality_score=settings.min_quality_score,
            )
            if storage is not None:
                await storage.save_backtest_result(signal, result)
        else:
            market_data = MarketDataService.from_settings(settings)
            runner = BacktestRunner(market_data, storage, costs, settings.min_quality_score)
            try:
                result = await runner.run(signal)
            except UpstreamFetchError as e:
                logger.error(f"Backtest {signal.signal_id} failed: {e}")
                return 1
    finally:
        if market_data is not None:
            await market_data.close()
        if storage is not None:
            await close_database_async()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0

    _print_result(result)
    return 0


def _print_result(result) -> None:
    data = result.to_dict()
    status = data["status"]

    print("\n" + "=" * 60)
    print(f"  {Colors.BOLD}BACKTEST {result.signal_id}{Colors.END}")
    print("=" * 60)
    print(f"  Status:        {colorize(status, status)}")
    print(f"  Data:          {result.data_source} {result.data_resolution}, {result.candles_replayed} candles")
    print(f"  Quality:       {data['data_quality_score']:.1f}")

    if data["reason"]:
        print(f"  Reason:        {data['reason']}")
    else:
        for leg in data["legs"]:
            print(f"  {leg['kind']:<14} {leg['allocation']:>5.1f}% @ {leg['price']:<12} ${leg['profit_loss_usd']:>9.2f}")
        print(f"  Gross P/L:     ${data['gross_profit_loss_usd']:.2f}")
        print(f"  Fees+slippage: ${data['fees_usd'] + data['slippage_usd']:.2f}")
        print(f"  Net P/L:       ${data['net_profit_loss_usd']:.2f} ({data['profit_loss_percentage']:.2f}%)")
        print(f"  Duration:      {data['trade_duration_minutes']} min")

    for w in result.warnings:
        print(f"  {Colors.YELLOW}warning{Colors.END}: {w}")
    print("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
