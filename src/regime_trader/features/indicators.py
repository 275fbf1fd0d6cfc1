"""Technical indicators computed on normalized OHLCV frames.

All functions take pandas objects ordered oldest-first and return pandas
objects aligned with the input index. A series shorter than the minimum an
indicator needs raises ``InsufficientData`` instead of being truncated.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import pandas as pd  # type: ignore[import-untyped]

from regime_trader.errors import InsufficientData

MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9


def require_length(data: pd.Series | pd.DataFrame, minimum: int, what: str) -> None:
    """Reject inputs shorter than ``minimum`` rows."""
    if len(data) < minimum:
        raise InsufficientData(minimum, len(data), what)


def ema(series: pd.Series, period: int) -> pd.Series:
    require_length(series, period, f"ema_{period}")
    return series.astype(float).ewm(span=period, adjust=False).mean()


def rsi(close: pd.Series, period: int = 14) -> pd.Series:
    """Wilder RSI; the first ``period`` rows are NaN."""
    require_length(close, period + 1, f"rsi_{period}")
    delta = close.astype(float).diff()
    gain = delta.clip(lower=0.0)
    loss = -delta.clip(upper=0.0)
    avg_gain = gain.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    avg_loss = loss.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    rs = avg_gain / avg_loss
    out = 100.0 - 100.0 / (1.0 + rs)
    # Flat windows (no gains and no losses) are neutral.
    flat = (avg_gain == 0) & (avg_loss == 0)
    return out.mask(flat, 50.0)


def macd(
    close: pd.Series,
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> pd.DataFrame:
    """MACD line, signal line and histogram."""
    require_length(close, slow, "macd")
    line = ema(close, fast) - ema(close, slow)
    signal_line = line.ewm(span=signal, adjust=False).mean()
    return pd.DataFrame({"macd": line, "signal": signal_line, "hist": line - signal_line})


def true_range(df: pd.DataFrame) -> pd.Series:
    high = df["high"].astype(float)
    low = df["low"].astype(float)
    close = df["close"].astype(float)
    prev_close = close.shift(1)
    tr_components = pd.concat(
        [
            (high - low).abs(),
            (high - prev_close).abs(),
            (low - prev_close).abs(),
        ],
        axis=1,
    )
    return tr_components.max(axis=1)


def atr(df: pd.DataFrame, period: int = 14) -> pd.Series:
    """Simple-mean ATR over the last ``period`` true ranges."""
    require_length(df, period + 1, f"atr_{period}")
    return true_range(df).rolling(window=period, min_periods=period).mean()


def wilder_atr(df: pd.DataFrame, period: int = 14) -> pd.Series:
    require_length(df, period + 1, f"atr_{period}")
    return true_range(df).ewm(alpha=1 / period, adjust=False, min_periods=period).mean()


def adx(df: pd.DataFrame, period: int = 14) -> pd.Series:
    """Average Directional Index on a 0-100 scale."""
    require_length(df, period + 1, f"adx_{period}")
    high = df["high"].astype(float)
    low = df["low"].astype(float)

    high_diff = high - high.shift(1)
    low_diff = low.shift(1) - low
    plus_dm = high_diff.where((high_diff > low_diff) & (high_diff > 0), 0.0)
    minus_dm = low_diff.where((low_diff > high_diff) & (low_diff > 0), 0.0)

    tr_smooth = true_range(df).ewm(alpha=1 / period, adjust=False).mean()
    plus_di = 100 * plus_dm.ewm(alpha=1 / period, adjust=False).mean() / tr_smooth
    minus_di = 100 * minus_dm.ewm(alpha=1 / period, adjust=False).mean() / tr_smooth

    di_sum = plus_di + minus_di
    dx = (100 * (plus_di - minus_di).abs() / di_sum.where(di_sum != 0)).fillna(0.0)
    return dx.ewm(alpha=1 / period, adjust=False).mean()


def linear_slope(values: Sequence[float] | pd.Series | np.ndarray) -> float:
    """Least-squares slope of ``values`` against their index."""
    y = np.asarray(values, dtype=float)
    n = y.size
    if n == 0:
        return 0.0
    x = np.arange(n, dtype=float)
    x_dev = x - x.mean()
    denominator = float((x_dev**2).sum())
    if denominator == 0:
        return 0.0
    return float((x_dev * (y - y.mean())).sum() / denominator)


def volume_percent(volume: pd.Series, window: int = 50) -> float:
    """Last volume as a fraction of the trailing-window maximum."""
    if volume.empty:
        return 0.0
    max_volume = float(volume.iloc[-window:].max())
    if max_volume <= 0:
        return 0.0
    return float(volume.iloc[-1]) / max_volume


def last_value(series: pd.Series, default: float = 0.0, offset: int = 1) -> float:
    """Value ``offset`` rows from the end, skipping NaN warmup rows."""
    clean = series.dropna()
    if len(clean) < offset:
        return default
    return float(clean.iloc[-offset])
