"""
TradeVerify custom exceptions.
"""

from typing import List, Optional

from .enums import ValidationErrorKind


class TradeVerifyError(Exception):
    """Base exception for TradeVerify."""

    pass


class TradeVerifyConfigError(TradeVerifyError):
    """Configuration error."""

    pass


class SignalValidationError(TradeVerifyError):
    """Malformed signal. Fatal for the signal, no simulation is attempted."""

    def __init__(self, kind: ValidationErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class InsufficientDataError(TradeVerifyError):
    """Empty or low-quality candle window. Not retryable without new data."""

    def __init__(self, message: str, quality_score: float = 0.0):
        super().__init__(message)
        self.quality_score = quality_score


class UpstreamFetchError(TradeVerifyError):
    """Every market data provider failed. Retryable."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class PersistenceConflictError(TradeVerifyError):
    """A concurrent update won the race. Safe to retry, updates are idempotent."""

    pass
