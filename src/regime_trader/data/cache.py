"""Time-bounded candle cache in front of the market data client."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pandas as pd  # type: ignore[import-untyped]


class CandleSource(Protocol):
    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        """Return an ascending OHLCV frame (possibly empty)."""


@dataclass(slots=True)
class _Entry:
    data: pd.DataFrame
    fetched_at: float


class CandleCache:
    """Per (symbol, interval, limit) cache. Entries older than the TTL are
    never served; a miss always refetches."""

    def __init__(
        self,
        source: CandleSource,
        *,
        ttl_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[tuple[str, str, int], _Entry] = {}
        self._lock = threading.Lock()

    def get(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        key = (symbol, interval, limit)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now - entry.fetched_at < self._ttl_s:
                return entry.data
        data = self._source.fetch_ohlcv(symbol, interval, limit)
        with self._lock:
            self._entries[key] = _Entry(data=data, fetched_at=now)
        return data

    def get_multi(
        self, symbol: str, intervals: list[str], limit: int
    ) -> dict[str, pd.DataFrame]:
        return {interval: self.get(symbol, interval, limit) for interval in intervals}

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
