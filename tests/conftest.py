"""
TradeVerify Test Configuration
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from tradeverify.core.models import Candle, TradeSignal
from tradeverify.storage.database import close_database_async
from tradeverify.storage.service import StorageService

UTC = timezone.utc
GENERATED_AT = datetime(2024, 1, 1, 0, 0, tzinfo=UTC)


def _base_signal(**overrides) -> TradeSignal:
    """BTC long: entry 50000, TPs 51000/52000/53000 (40/30/30), stop 49000, 24h."""
    base = {
        "signal_id": "sig-test-001",
        "symbol": "BTC_USD",
        "entry_price": 50000.0,
        "tp1_price": 51000.0,
        "tp1_allocation": 40.0,
        "tp2_price": 52000.0,
        "tp2_allocation": 30.0,
        "tp3_price": 53000.0,
        "tp3_allocation": 30.0,
        "stop_loss_price": 49000.0,
        "generated_at": GENERATED_AT,
        "time_horizon": timedelta(hours=24),
        "timeframe": "1h",
    }
    base.update(overrides)
    return TradeSignal(**base)


def _candle(hours: float, open_: float = 50000.0, high: float = 50100.0,
            low: float = 49900.0, close: float = 50000.0) -> Candle:
    """Candle `hours` after GENERATED_AT. Defaults stay between stop and TP1."""
    return Candle(
        timestamp=GENERATED_AT + timedelta(hours=hours),
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=1.0,
    )


@pytest.fixture
def make_signal():
    """Factory for signals; keyword overrides applied on top of the base signal."""
    return _base_signal


@pytest.fixture
def signal():
    return _base_signal()


@pytest.fixture
def make_candle():
    return _candle


@pytest.fixture
def flat_candles():
    """Hourly candles covering the base signal's 24h window without touching any level."""
    return [_candle(h) for h in range(24)]


# --- Storage fixtures ---

@pytest_asyncio.fixture
async def storage():
    """StorageService on in-memory SQLite. Use for sequential access only."""
    service = StorageService(database_url="sqlite+aiosqlite:///:memory:")
    await service.initialize()
    yield service
    await close_database_async()


@pytest_asyncio.fixture
async def file_storage(tmp_path):
    """StorageService on a file-backed SQLite database (one connection per session)."""
    service = StorageService(database_url=f"sqlite+aiosqlite:///{tmp_path / 'tradeverify.db'}")
    await service.initialize()
    yield service
    await close_database_async()
