"""
Signal intake rate limits.

Rules (per user):
- Cooldown: one accepted signal per 60 seconds
- Daily limit: 20 accepted signals per 24 hour window (window starts at
  the first accepted signal)

State lives in an injected KeyedTTLStore, so a shared store can back
several processes and tests can use a fresh one.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class KeyedTTLStore(ABC):
    """Key/value store whose entries expire. All calls take an explicit `now`."""

    @abstractmethod
    def get(self, key: str, now: datetime) -> Optional[Any]:
        """Value for key, or None if missing or expired."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: timedelta, now: datetime) -> None:
        """Store a value that expires ttl after now."""
        pass

    @abstractmethod
    def incr(self, key: str, ttl: timedelta, now: datetime) -> int:
        """
        Increment a counter and return the new value.

        A missing or expired counter starts at 1 with a fresh ttl; an
        existing one keeps its original expiry.
        """
        pass

    @abstractmethod
    def expires_in(self, key: str, now: datetime) -> Optional[timedelta]:
        """Time until the key expires, or None if missing or expired."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


@dataclass
class _Entry:
    value: Any
    expires_at: datetime


class InMemoryTTLStore(KeyedTTLStore):
    """Single-process KeyedTTLStore backed by a dict."""

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}

    def _live(self, key: str, now: datetime) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if now >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def get(self, key: str, now: datetime) -> Optional[Any]:
        entry = self._live(key, now)
        return entry.value if entry else None

    def set(self, key: str, value: Any, ttl: timedelta, now: datetime) -> None:
        self._entries[key] = _Entry(value=value, expires_at=now + ttl)

    def incr(self, key: str, ttl: timedelta, now: datetime) -> int:
        entry = self._live(key, now)
        if entry is None:
            self._entries[key] = _Entry(value=1, expires_at=now + ttl)
            return 1
        entry.value += 1
        return entry.value

    def expires_in(self, key: str, now: datetime) -> Optional[timedelta]:
        entry = self._live(key, now)
        return entry.expires_at - now if entry else None

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear_expired(self, now: datetime) -> int:
        """Drop expired entries to prevent memory growth."""
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Cleared %d expired rate limit entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class IntakeRateLimiter:
    """
    Per-user cooldown and daily limit.

    Usage:
        limiter = IntakeRateLimiter(InMemoryTTLStore())

        allowed, reason, retry_after = limiter.check(user_id, now)
        if allowed:
            accept(signal)
            limiter.record(user_id, now)
    """

    def __init__(
        self,
        store: KeyedTTLStore,
        cooldown_seconds: int = 60,
        daily_limit: int = 20,
        window: timedelta = timedelta(hours=24),
    ):
        self.store = store
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.daily_limit = daily_limit
        self.window = window

    @classmethod
    def from_settings(cls, store: KeyedTTLStore, settings=None) -> "IntakeRateLimiter":
        if settings is None:
            from tradeverify.config.settings import get_settings
            settings = get_settings()
        return cls(
            store,
            cooldown_seconds=settings.intake_cooldown_seconds,
            daily_limit=settings.intake_daily_limit,
        )

    @staticmethod
    def _cooldown_key(user_id: str) -> str:
        return f"intake:cooldown:{user_id}"

    @staticmethod
    def _daily_key(user_id: str) -> str:
        return f"intake:daily:{user_id}"

    def check(self, user_id: str, now: datetime) -> Tuple[bool, Optional[str], Optional[float]]:
        """
        Check whether a user may submit a signal now.

        Returns:
            (allowed, reason, retry_after_seconds)
        """
        remaining = self.store.expires_in(self._cooldown_key(user_id), now)
        if remaining is not None:
            seconds = math.ceil(remaining.total_seconds())
            return (
                False,
                f"Please wait {seconds} seconds before submitting another trade signal",
                float(seconds),
            )

        count = self.store.get(self._daily_key(user_id), now) or 0
        if count >= self.daily_limit:
            reset_in = self.store.expires_in(self._daily_key(user_id), now) or timedelta(0)
            hours = math.ceil(reset_in.total_seconds() / 3600)
            return (
                False,
                f"Daily limit of {self.daily_limit} trades reached. Resets in {hours} hours",
                reset_in.total_seconds(),
            )

        return True, None, None

    def record(self, user_id: str, now: datetime) -> None:
        """Record an accepted submission."""
        self.store.set(self._cooldown_key(user_id), now, self.cooldown, now)
        count = self.store.incr(self._daily_key(user_id), self.window, now)
        logger.debug("Recorded intake for %s (%d/%d today)", user_id, count, self.daily_limit)
