"""TradeVerify Storage Layer - Database models and utilities."""

from tradeverify.storage.models import (
    Base,
    TradeResultRecord,
    TradeSignalRecord,
)
from tradeverify.storage.database import (
    get_database_url,
    get_async_engine,
    get_async_session,
    init_db_async,
    drop_all_tables_async,
    check_database_health_async,
    close_database_async,
)

__all__ = [
    "Base",
    "TradeResultRecord",
    "TradeSignalRecord",
    "get_database_url",
    "get_async_engine",
    "get_async_session",
    "init_db_async",
    "drop_all_tables_async",
    "check_database_health_async",
    "close_database_async",
]
