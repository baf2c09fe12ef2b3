"""
Binance & Kraken Crypto Data Providers

Public REST APIs (no authentication required for market data).
Binance is the primary source, Kraken the fallback.

Binance rate limits: 1200 requests/minute
Kraken rate limits: ~15 requests/second (public)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pandas as pd

from tradeverify.core.exceptions import UpstreamFetchError

from .base import CANDLE_COLUMNS, BaseDataProvider, PriceQuote

logger = logging.getLogger(__name__)


# =============================================================================
# Binance Provider
# =============================================================================


class BinanceProvider(BaseDataProvider):
    """
    Binance cryptocurrency data provider.

    Symbols use the BASE_QUOTE form (BTC_USD); USD maps to USDT.
    """

    name = "binance"
    BASE_URL = "https://api.binance.com"
    MAX_KLINES = 1000

    TIMEFRAME_MAP = {
        "1m": "1m",
        "5m": "5m",
        "15m": "15m",
        "30m": "30m",
        "1h": "1h",
        "4h": "4h",
        "1d": "1d",
        "1w": "1w",
    }

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def connect(self) -> bool:
        """Test connection to Binance API."""
        try:
            response = await self.client.get(f"{self.BASE_URL}/api/v3/ping")
        except httpx.HTTPError as e:
            logger.error(f"Failed to connect to Binance: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Binance ping failed: {response.status_code}")
            return False

        self._connected = True
        logger.info("Connected to Binance API")
        return True

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
        self._connected = False

    def _convert_symbol(self, symbol: str) -> str:
        """
        Convert symbol to Binance format.

        Examples:
            BTC_USD -> BTCUSDT
            ETH_USD -> ETHUSDT
        """
        if "_" in symbol:
            base, quote = symbol.split("_", 1)
            if quote == "USD":
                quote = "USDT"
            return f"{base}{quote}"
        return symbol

    async def get_current_price(self, symbol: str) -> PriceQuote:
        """Latest traded price for a crypto pair."""
        response = await self.client.get(
            f"{self.BASE_URL}/api/v3/ticker/price",
            params={"symbol": self._convert_symbol(symbol)},
        )
        if response.status_code != 200:
            raise UpstreamFetchError(f"binance: price request for {symbol} returned {response.status_code}")

        data = response.json()
        return PriceQuote(
            symbol=symbol,
            price=float(data["price"]),
            timestamp=datetime.now(timezone.utc),
            source=self.name,
        )

    async def get_bars(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        """
        Get OHLCV bars between start and end, paging through klines.

        Returns:
            DataFrame with columns: timestamp, open, high, low, close, volume
        """
        binance_tf = self.TIMEFRAME_MAP.get(timeframe)
        if binance_tf is None:
            raise UpstreamFetchError(f"binance: unsupported timeframe {timeframe}")

        start_ms = int(start.timestamp() * 1000)
        end_ms = int(end.timestamp() * 1000)
        rows: List[list] = []

        while start_ms <= end_ms:
            params: Dict[str, Any] = {
                "symbol": self._convert_symbol(symbol),
                "interval": binance_tf,
                "startTime": start_ms,
                "endTime": end_ms,
                "limit": self.MAX_KLINES,
            }
            response = await self.client.get(f"{self.BASE_URL}/api/v3/klines", params=params)
            if response.status_code != 200:
                raise UpstreamFetchError(f"binance: klines for {symbol} returned {response.status_code}")

            page = response.json()
            rows.extend(page)
            if len(page) < self.MAX_KLINES:
                break
            start_ms = int(page[-1][0]) + 1

        if not rows:
            return pd.DataFrame(columns=CANDLE_COLUMNS)

        # Binance kline format:
        # [open_time, open, high, low, close, volume, close_time, ...]
        df = pd.DataFrame(
            rows,
            columns=[
                "open_time", "open", "high", "low", "close", "volume",
                "close_time", "quote_volume", "trades", "taker_buy_base",
                "taker_buy_quote", "ignore",
            ],
        )

        for col in ["open", "high", "low", "close", "volume"]:
            df[col] = pd.to_numeric(df[col], errors="coerce")

        df["timestamp"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)

        return df[CANDLE_COLUMNS].drop_duplicates("timestamp").copy()


# =============================================================================
# Kraken Provider
# =============================================================================


class KrakenProvider(BaseDataProvider):
    """
    Kraken cryptocurrency data provider.

    Fallback for Binance. Kraken's OHLC endpoint returns at most 720 bars
    from `since`, so long windows at fine resolutions come back truncated
    and score lower on completeness.
    """

    name = "kraken"
    BASE_URL = "https://api.kraken.com/0/public"

    SYMBOL_MAP = {
        "BTC_USD": "XXBTZUSD",
        "ETH_USD": "XETHZUSD",
        "SOL_USD": "SOLUSD",
        "XRP_USD": "XXRPZUSD",
        "ADA_USD": "ADAUSD",
        "DOT_USD": "DOTUSD",
        "LINK_USD": "LINKUSD",
        "AVAX_USD": "AVAXUSD",
        "ATOM_USD": "ATOMUSD",
        "LTC_USD": "XLTCZUSD",
        "DOGE_USD": "XDGUSD",
    }

    TIMEFRAME_MAP = {
        "1m": 1,
        "5m": 5,
        "15m": 15,
        "30m": 30,
        "1h": 60,
        "4h": 240,
        "1d": 1440,
        "1w": 10080,
    }

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def connect(self) -> bool:
        """Test connection to Kraken API."""
        try:
            response = await self.client.get(f"{self.BASE_URL}/Time")
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to connect to Kraken: {e}")
            return False

        if data.get("error"):
            logger.error(f"Kraken connection error: {data.get('error')}")
            return False

        self._connected = True
        logger.info("Connected to Kraken API")
        return True

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
        self._connected = False

    def _convert_symbol(self, symbol: str) -> str:
        """Convert symbol to Kraken pair name."""
        return self.SYMBOL_MAP.get(symbol, symbol.replace("_", ""))

    async def _public(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.get(f"{self.BASE_URL}/{endpoint}", params=params)
        if response.status_code != 200:
            raise UpstreamFetchError(f"kraken: {endpoint} returned {response.status_code}")

        data = response.json()
        if data.get("error"):
            raise UpstreamFetchError(f"kraken: {endpoint} error {data['error']}")

        result = data.get("result") or {}
        result.pop("last", None)
        if not result:
            raise UpstreamFetchError(f"kraken: {endpoint} returned no result for {params.get('pair')}")
        return result

    async def get_current_price(self, symbol: str) -> PriceQuote:
        """Last trade price for a crypto pair."""
        result = await self._public("Ticker", {"pair": self._convert_symbol(symbol)})
        ticker = list(result.values())[0]

        return PriceQuote(
            symbol=symbol,
            price=float(ticker["c"][0]),
            timestamp=datetime.now(timezone.utc),
            source=self.name,
        )

    async def get_bars(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        """Get OHLCV bars starting at `start` (end filtering is left to get_candles)."""
        interval = self.TIMEFRAME_MAP.get(timeframe)
        if interval is None:
            raise UpstreamFetchError(f"kraken: unsupported timeframe {timeframe}")

        result = await self._public(
            "OHLC",
            {
                "pair": self._convert_symbol(symbol),
                "interval": interval,
                # Kraken's 'since' is exclusive
                "since": int(start.timestamp()) - 1,
            },
        )
        ohlc = list(result.values())[0]

        # Kraken OHLC format: [time, open, high, low, close, vwap, volume, count]
        df = pd.DataFrame(
            ohlc,
            columns=["timestamp", "open", "high", "low", "close", "vwap", "volume", "count"],
        )

        for col in ["open", "high", "low", "close", "volume"]:
            df[col] = pd.to_numeric(df[col], errors="coerce")

        df["timestamp"] = pd.to_datetime(df["timestamp"], unit="s", utc=True)

        return df[CANDLE_COLUMNS].copy()
