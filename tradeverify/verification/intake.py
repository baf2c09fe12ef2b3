"""
Signal intake.

Accepts a generated signal for live tracking: validate, apply the per-user
rate limits, then persist it as active with an empty hit state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError

from tradeverify.backtest.validator import validate_signal
from tradeverify.core.exceptions import SignalValidationError
from tradeverify.core.models import TradeSignal
from tradeverify.storage.service import StorageService

from .cooldown import IntakeRateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntakeDecision:
    """Outcome of a submission."""

    accepted: bool
    reason: Optional[str] = None
    retry_after: Optional[float] = None  # seconds

    def to_dict(self) -> dict:
        return {"accepted": self.accepted, "reason": self.reason, "retry_after": self.retry_after}


class SignalIntake:
    """
    Gatekeeper between the signal generator and the verification sweep.

    Usage:
        intake = SignalIntake(storage, IntakeRateLimiter(InMemoryTTLStore()))
        decision = await intake.submit("user-1", signal)
    """

    def __init__(self, storage: StorageService, limiter: IntakeRateLimiter):
        self.storage = storage
        self.limiter = limiter

    async def submit(
        self,
        user_id: str,
        signal: TradeSignal,
        now: Optional[datetime] = None,
    ) -> IntakeDecision:
        now = now or datetime.now(timezone.utc)

        try:
            validate_signal(signal)
        except SignalValidationError as e:
            logger.info(f"Rejected {signal.signal_id} from {user_id}: {e.message}")
            return IntakeDecision(accepted=False, reason=e.message)

        allowed, reason, retry_after = self.limiter.check(user_id, now)
        if not allowed:
            logger.info(f"Rate limited {user_id}: {reason}")
            return IntakeDecision(accepted=False, reason=reason, retry_after=retry_after)

        if signal.expires_at <= now:
            return IntakeDecision(
                accepted=False,
                reason=f"Signal expired at {signal.expires_at.isoformat()}",
            )

        try:
            await self.storage.activate_signal(signal, user_id=user_id)
        except IntegrityError:
            logger.warning(f"Duplicate signal {signal.signal_id} from {user_id}")
            return IntakeDecision(accepted=False, reason=f"Signal {signal.signal_id} already exists")

        self.limiter.record(user_id, now)
        logger.info(f"Accepted {signal.signal_id} ({signal.symbol}) from {user_id}")
        return IntakeDecision(accepted=True)
