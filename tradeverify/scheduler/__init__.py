"""TradeVerify Scheduler - fixed-cadence verification sweeps."""

from tradeverify.scheduler.main_loop import SweepScheduler

__all__ = ["SweepScheduler"]
