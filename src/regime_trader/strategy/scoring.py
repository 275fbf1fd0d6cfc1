"""Indicator snapshot, divergence detection and weighted signal score."""

from __future__ import annotations

from collections.abc import Sequence

import pandas as pd  # type: ignore[import-untyped]

from regime_trader.features.indicators import (
    adx,
    ema,
    last_value,
    linear_slope,
    macd,
    require_length,
    rsi,
    volume_percent,
    wilder_atr,
)
from regime_trader.types import IndicatorSnapshot
from regime_trader.utils.logging import get_logger

MIN_SIGNAL_CANDLES = 26
RSI_TREND_WINDOW = 20
MIN_DIVERGENCE_POINTS = 5

# (rsi, macd, ema_slope, atr, adx, divergence)
SCORE_WEIGHTS = (1.2, 0.5, 1.5, 1.0, 1.0, 0.3)
SCORE_DIVISOR = 5.5

_logger = get_logger("regime_trader.strategy.scoring")


def divergence_score(rsi_trend: Sequence[float], price_trend: Sequence[float]) -> float:
    """Score disagreement between the RSI trend and the price trend.

    Returns ``min(|rsi_slope - price_slope|, 1)`` when a divergence pattern is
    present and 0 otherwise; always 0 for fewer than five points.
    """
    if len(rsi_trend) < MIN_DIVERGENCE_POINTS or len(price_trend) < MIN_DIVERGENCE_POINTS:
        return 0.0

    rsi_slope = linear_slope(rsi_trend)
    price_slope = linear_slope(price_trend)
    slope_diff = abs(rsi_slope - price_slope)

    opposite = _sign(rsi_slope) != _sign(price_slope)
    price_flat = abs(price_slope) < 0.002
    rsi_leading = abs(rsi_slope) > abs(price_slope) * 3

    has_divergence = (
        (opposite and slope_diff > 0.2)
        or (price_flat and abs(rsi_slope) > 0.1)
        or (rsi_leading and slope_diff > 0.25)
    )
    if not has_divergence:
        return 0.0
    return round(min(slope_diff, 1.0), 4)


def weighted_score(
    *,
    rsi: float,
    macd_hist: float,
    ema_slope: float,
    atr_pct: float,
    adx: float,
    divergence: float = 0.0,
) -> float:
    """Fixed-weight blend of per-indicator components, clamped to [0, 1]."""
    if rsi > 70 or rsi < 30:
        rsi_c = 1.0
    elif rsi > 55 or rsi < 45:
        rsi_c = 0.8
    else:
        rsi_c = 0.5

    macd_c = 1.0 if abs(macd_hist) > 0.0002 else 0.3

    if abs(ema_slope) > 0.003:
        ema_c = 1.0
    elif abs(ema_slope) > 0.0015:
        ema_c = 0.7
    else:
        ema_c = 0.3

    if atr_pct > 0.005:
        atr_c = 1.0
    elif atr_pct > 0.003:
        atr_c = 0.7
    else:
        atr_c = 0.4

    if adx > 30:
        adx_c = 1.0
    elif adx > 20:
        adx_c = 0.7
    else:
        adx_c = 0.4

    if divergence > 0.3:
        div_c = 1.0
    elif divergence > 0.1:
        div_c = 0.6
    else:
        div_c = 0.3

    components = (rsi_c, macd_c, ema_c, atr_c, adx_c, div_c)
    total = sum(w * c for w, c in zip(SCORE_WEIGHTS, components, strict=True))
    return max(0.0, min(1.0, total / SCORE_DIVISOR))


def build_snapshot(df: pd.DataFrame) -> IndicatorSnapshot:
    """Compute the indicator snapshot of one series (at least 26 candles)."""
    require_length(df, MIN_SIGNAL_CANDLES, "signal")
    close = df["close"].astype(float)
    last_close = float(close.iloc[-1])

    ema_fast = last_value(ema(close, 5))
    ema_slow = last_value(ema(close, 20))
    atr_value = last_value(wilder_atr(df, 14))
    macd_frame = macd(close)
    hist = macd_frame["hist"]
    hist_now = last_value(hist)
    rsi_series = rsi(close).dropna()
    adx_series = adx(df, 14)
    adx_now = last_value(adx_series)

    rsi_trend = [float(v) for v in rsi_series.iloc[-RSI_TREND_WINDOW:]]
    price_trend = [float(v) for v in close.iloc[-len(rsi_trend):]] if rsi_trend else []

    snapshot = IndicatorSnapshot(
        ema_fast=ema_fast,
        ema_slow=ema_slow,
        ema_slope=(ema_fast - ema_slow) / ema_slow if ema_slow else 0.0,
        atr=atr_value,
        atr_pct=atr_value / last_close if last_close else 0.0,
        macd=last_value(macd_frame["macd"]),
        macd_hist=hist_now,
        macd_hist_prev=last_value(hist, hist_now, offset=2),
        rsi=last_value(rsi_series, 50.0),
        rsi_trend=rsi_trend,
        adx=adx_now,
        adx_prev=last_value(adx_series, adx_now, offset=2),
        volume_pct=volume_percent(df["volume"].astype(float)),
        divergence_score=divergence_score(rsi_trend, price_trend),
        price_slope=linear_slope(price_trend),
        last_close=last_close,
    )
    snapshot.score = weighted_score(
        rsi=snapshot.rsi,
        macd_hist=snapshot.macd_hist,
        ema_slope=snapshot.ema_slope,
        atr_pct=snapshot.atr_pct,
        adx=snapshot.adx,
        divergence=snapshot.divergence_score,
    )
    return snapshot


def check_signals(symbol: str, df: pd.DataFrame) -> tuple[IndicatorSnapshot, bool, str]:
    """Score a series without raising on short input.

    Returns ``(snapshot, passed, reason)``; fewer than 26 candles yields a
    zeroed snapshot with ``passed=False``.
    """
    if len(df) < MIN_SIGNAL_CANDLES:
        _logger.info("signal_insufficient_candles", symbol=symbol, candles=len(df))
        return (
            IndicatorSnapshot(),
            False,
            f"insufficient_candles: need {MIN_SIGNAL_CANDLES}, got {len(df)}",
        )
    snapshot = build_snapshot(df)
    _logger.debug(
        "signal_snapshot",
        symbol=symbol,
        ema_slope=round(snapshot.ema_slope, 6),
        atr_pct=round(snapshot.atr_pct, 6),
        rsi=round(snapshot.rsi, 2),
        adx=round(snapshot.adx, 2),
        macd_hist=round(snapshot.macd_hist, 6),
        divergence=snapshot.divergence_score,
        score=round(snapshot.score, 4),
    )
    return snapshot, True, "signal_calculated"


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)
