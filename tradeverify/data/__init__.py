from .base import (
    BaseDataProvider,
    CandleWindow,
    PriceQuote,
    candles_to_frame,
    frame_to_candles,
    normalize_timeframe,
    timeframe_interval,
)
from .crypto import BinanceProvider, KrakenProvider

__all__ = [
    "BaseDataProvider",
    "CandleWindow",
    "PriceQuote",
    "candles_to_frame",
    "frame_to_candles",
    "normalize_timeframe",
    "timeframe_interval",
    "BinanceProvider",
    "KrakenProvider",
]
