"""
TradeVerify Sweep Scheduler

Runs the live verification sweep at a fixed cadence until stopped.
"""

import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import List, Optional

from tradeverify.verification.sweep import LiveVerificationSweep, SweepSummary

logger = logging.getLogger(__name__)


class SweepScheduler:
    """
    Fixed-cadence sweep runner.

    Responsibilities:
    1. Run one sweep per interval
    2. Log each summary
    3. Survive a failing sweep (next cycle runs as scheduled)
    4. Graceful shutdown on stop() or SIGINT/SIGTERM
    """

    def __init__(
        self,
        sweep: LiveVerificationSweep,
        interval_seconds: float = 3600,
        max_cycles: Optional[int] = None,
    ):
        self.sweep = sweep
        self.interval_seconds = interval_seconds
        self.max_cycles = max_cycles
        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

        # Stats
        self.cycle_count = 0
        self.failed_cycles = 0
        self.start_time: Optional[datetime] = None
        self.summaries: List[SweepSummary] = []

    async def run_cycle(self) -> Optional[SweepSummary]:
        """Run one sweep; errors are logged, not raised."""
        self.cycle_count += 1
        try:
            summary = await self.sweep.run_once()
        except Exception as e:
            self.failed_cycles += 1
            logger.error(f"Sweep cycle {self.cycle_count} failed: {e}")
            return None

        self.summaries.append(summary)
        logger.info(f"Sweep cycle {self.cycle_count}: {summary.to_dict()}")
        if not summary.success:
            logger.warning(f"Sweep cycle {self.cycle_count} completed with {summary.failed} failures")
        return summary

    async def run(self) -> None:
        """Run sweeps until stop() is called (or max_cycles is reached)."""
        self.running = True
        self._stop_event = asyncio.Event()
        self.start_time = datetime.now(timezone.utc)
        logger.info(f"Sweep scheduler started (every {self.interval_seconds}s)")

        try:
            while self.running:
                await self.run_cycle()

                if self.max_cycles is not None and self.cycle_count >= self.max_cycles:
                    break

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Sweep scheduler cancelled")
        finally:
            self.running = False
            logger.info(
                f"Sweep scheduler stopped after {self.cycle_count} cycles "
                f"({self.failed_cycles} failed)"
            )

    def stop(self) -> None:
        """Stop after the current cycle."""
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()

    def setup_signal_handlers(self) -> None:
        """Stop gracefully on SIGINT/SIGTERM."""
        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}")
            self.stop()

        signal.signal(signal.SIGINT, handle_signal)

        # Not available on Windows
        if sys.platform != "win32":
            signal.signal(signal.SIGTERM, handle_signal)
