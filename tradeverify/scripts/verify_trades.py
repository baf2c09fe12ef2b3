"""
Verify active trades against live prices.

Usage::

    python -m tradeverify.scripts.verify_trades            # one sweep
    python -m tradeverify.scripts.verify_trades --loop     # every sweep_interval_seconds
    python -m tradeverify.scripts.verify_trades --json
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(name)-30s  %(levelname)-7s  %(message)s",
)
logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TradeVerify - live trade verification sweep")
    parser.add_argument("--loop", action="store_true", help="Keep sweeping at the configured interval")
    parser.add_argument("--interval", type=float, help="Override sweep_interval_seconds")
    parser.add_argument("--database-url", help="Override database_url")
    parser.add_argument("--json", action="store_true", help="Print the sweep summary as JSON")
    return parser.parse_args(argv)


async def _run(args) -> int:
    from tradeverify.config.settings import get_settings
    from tradeverify.data.fallback import MarketDataService
    from tradeverify.scheduler.main_loop import SweepScheduler
    from tradeverify.storage.database import close_database_async
    from tradeverify.storage.service import StorageService
    from tradeverify.verification.sweep import LiveVerificationSweep

    settings = get_settings()
    storage = StorageService(database_url=args.database_url)
    await storage.initialize()

    market_data = MarketDataService.from_settings(settings)
    sweep = LiveVerificationSweep.from_settings(storage, market_data, settings)

    try:
        if args.loop:
            scheduler = SweepScheduler(sweep, interval_seconds=args.interval or settings.sweep_interval_seconds)
            scheduler.setup_signal_handlers()
            await scheduler.run()
            return 0 if scheduler.failed_cycles == 0 else 1

        summary = await sweep.run_once()
        if args.json:
            print(json.dumps(summary.to_dict(), indent=2))
        else:
            for error in summary.errors:
                logger.warning(error)
        return 0 if summary.success else 1
    finally:
        await market_data.close()
        await close_database_async()


def main(argv: Optional[List[str]] = None) -> int:
    return asyncio.run(_run(_parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
