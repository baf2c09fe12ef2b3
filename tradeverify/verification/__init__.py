"""TradeVerify live verification: signal intake, rate limits and the verification sweep."""

from .cooldown import InMemoryTTLStore, IntakeRateLimiter, KeyedTTLStore
from .intake import IntakeDecision, SignalIntake
from .sweep import LiveVerificationSweep, SweepSummary

__all__ = [
    "InMemoryTTLStore",
    "IntakeRateLimiter",
    "KeyedTTLStore",
    "IntakeDecision",
    "SignalIntake",
    "LiveVerificationSweep",
    "SweepSummary",
]
