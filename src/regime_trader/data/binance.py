"""Binance market data client."""

from __future__ import annotations

import pandas as pd  # type: ignore[import-untyped]
from binance.client import Client  # type: ignore[import-untyped]
from binance.exceptions import BinanceAPIException, BinanceRequestException  # type: ignore[import-untyped]

from regime_trader.config import Settings
from regime_trader.utils.logging import get_logger

MIN_VALID_CANDLES = 30

_KLINE_COLUMNS = [
    "open_time",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "close_time",
    "quote_asset_volume",
    "number_of_trades",
    "taker_buy_base_asset_volume",
    "taker_buy_quote_asset_volume",
    "ignore",
]
_NUMERIC_COLUMNS = ["open", "high", "low", "close", "volume"]
_OUTPUT_COLUMNS = ["open_time", "open", "high", "low", "close", "volume", "close_time"]


def empty_ohlcv() -> pd.DataFrame:
    return pd.DataFrame(columns=_OUTPUT_COLUMNS)


def normalize_klines(rows: list[list[object]]) -> pd.DataFrame:
    """Turn raw kline rows into a clean, ascending OHLCV frame.

    Rows with NaN or non-positive values are dropped. Fewer than 30 surviving
    rows yields an empty frame.
    """
    if not rows:
        return empty_ohlcv()
    df = pd.DataFrame(rows, columns=_KLINE_COLUMNS[: len(rows[0])])
    for col in _NUMERIC_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df["open_time"] = pd.to_numeric(df["open_time"], errors="coerce")
    df = df.dropna(subset=_NUMERIC_COLUMNS + ["open_time"])
    df = df[(df[_NUMERIC_COLUMNS] > 0).all(axis=1)].copy()
    if len(df) < MIN_VALID_CANDLES:
        return empty_ohlcv()
    df["open_time"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)
    if "close_time" in df.columns:
        df["close_time"] = pd.to_datetime(
            pd.to_numeric(df["close_time"], errors="coerce"), unit="ms", utc=True
        )
    else:
        df["close_time"] = df["open_time"]
    df = df.sort_values("open_time").reset_index(drop=True)
    return df[_OUTPUT_COLUMNS]


class BinanceDataClient:
    """Read-only client for futures klines and last prices."""

    _INTERVAL_MAP = {
        "1m": Client.KLINE_INTERVAL_1MINUTE,
        "5m": Client.KLINE_INTERVAL_5MINUTE,
        "15m": Client.KLINE_INTERVAL_15MINUTE,
        "30m": Client.KLINE_INTERVAL_30MINUTE,
        "1h": Client.KLINE_INTERVAL_1HOUR,
        "4h": Client.KLINE_INTERVAL_4HOUR,
        "1d": Client.KLINE_INTERVAL_1DAY,
    }

    def __init__(self, settings: Settings, client: Client | None = None) -> None:
        self._settings = settings
        self._logger = get_logger("regime_trader.data.binance")
        self._supported = set(settings.symbols)
        self._client = client or Client(
            api_key=settings.binance_api_key or None,
            api_secret=settings.binance_api_secret or None,
            testnet=settings.binance_testnet,
        )

    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        """Fetch futures klines; empty frame on any rejection."""
        resolved_interval = self._INTERVAL_MAP.get(interval.lower())
        if resolved_interval is None:
            raise ValueError(f"unsupported_interval: {interval}")
        if symbol not in self._supported:
            self._logger.warning("unsupported_symbol", symbol=symbol)
            return empty_ohlcv()

        try:
            rows = self._client.futures_klines(
                symbol=symbol, interval=resolved_interval, limit=limit
            )
        except (BinanceAPIException, BinanceRequestException) as exc:
            self._logger.warning(
                "klines_fetch_failed", symbol=symbol, interval=interval, error=str(exc)
            )
            return empty_ohlcv()

        df = normalize_klines(rows)
        if df.empty:
            self._logger.warning(
                "klines_insufficient", symbol=symbol, interval=interval, raw_rows=len(rows)
            )
        return df

    def fetch_last_price(self, symbol: str) -> float | None:
        """Latest futures mark price. Returns None on failure."""
        try:
            payload = self._client.futures_symbol_ticker(symbol=symbol)
            value = float(payload.get("price", 0.0))
            return value if value > 0 else None
        except Exception as exc:  # noqa: BLE001 - keep pipeline resilient.
            self._logger.warning("price_fetch_failed", symbol=symbol, error=str(exc))
            return None
