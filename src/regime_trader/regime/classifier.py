"""Market regime classification from one or two candle series."""

from __future__ import annotations

from dataclasses import dataclass

import pandas as pd  # type: ignore[import-untyped]

from regime_trader.features.indicators import (
    adx,
    atr,
    ema,
    last_value,
    macd,
    require_length,
    rsi,
)
from regime_trader.types import Regime, RegimeResult

MIN_REGIME_CANDLES = 30
DISAGREEMENT_PENALTY = 0.8
_TREND_SCORE_MAX = 10.0


@dataclass(slots=True, frozen=True)
class RegimeMetrics:
    """Inputs of the regime decision, derived from one series."""

    ema_slope: float
    atr_pct: float
    atr_slope: float
    adx: float
    macd_slope: float
    rsi_slope: float

    @property
    def base_confidence(self) -> float:
        trend_score = abs(self.ema_slope) + abs(self.macd_slope) + self.adx + abs(self.rsi_slope)
        return max(0.0, min(1.0, trend_score / _TREND_SCORE_MAX))


def compute_regime_metrics(df: pd.DataFrame) -> RegimeMetrics:
    """Derive regime metrics; requires at least 30 candles."""
    require_length(df, MIN_REGIME_CANDLES, "regime")
    close = df["close"].astype(float)
    last_close = float(close.iloc[-1])

    ema_fast = last_value(ema(close, 5))
    ema_slow = last_value(ema(close, 20))
    ema_slope = (ema_fast - ema_slow) / ema_slow if ema_slow else 0.0

    atr_pct = last_value(atr(df, 14)) / last_close
    atr_long_pct = last_value(atr(df, 28)) / last_close

    hist = macd(close)["hist"]
    rsi_series = rsi(close)

    return RegimeMetrics(
        ema_slope=ema_slope,
        atr_pct=atr_pct,
        atr_slope=atr_pct - atr_long_pct,
        adx=last_value(adx(df, 14)),
        macd_slope=last_value(hist) - last_value(hist, offset=2),
        rsi_slope=last_value(rsi_series, 50.0) - last_value(rsi_series, 50.0, offset=2),
    )


def classify_metrics(metrics: RegimeMetrics) -> tuple[Regime, float]:
    """Apply the regime precedence; the first matching rule wins."""
    m = metrics
    conf = m.base_confidence
    if m.ema_slope > 0.002 and m.macd_slope > 0 and m.adx > 15 and m.rsi_slope > 0:
        return "bullish", conf
    if m.ema_slope < -0.002 and m.macd_slope < 0 and m.adx > 15 and m.rsi_slope < 0:
        return "bearish", conf
    if m.atr_pct > 0.015 and abs(m.atr_slope) > 0.01:
        return "volatile_uncertain", conf
    if m.adx < 10 and abs(m.ema_slope) < 0.001:
        return "flat_or_choppy", conf
    return "neutral", conf * 0.5


def classify_regime(df: pd.DataFrame, timeframe: str) -> RegimeResult:
    """Classify one candle series. Raises ``InsufficientData`` below 30 candles."""
    regime, confidence = classify_metrics(compute_regime_metrics(df))
    return RegimeResult(regime=regime, confidence=confidence, timeframe=timeframe)


def combine_regimes(primary: RegimeResult, confirmation: RegimeResult) -> RegimeResult:
    """Merge two timeframe verdicts.

    Agreement averages the confidences. Disagreement defers to the
    confirmation (bias) timeframe with its confidence scaled down.
    """
    if primary.regime == confirmation.regime:
        return RegimeResult(
            regime=primary.regime,
            confidence=(primary.confidence + confirmation.confidence) / 2,
            timeframe=f"{primary.timeframe}+{confirmation.timeframe}",
        )
    return RegimeResult(
        regime=confirmation.regime,
        confidence=confirmation.confidence * DISAGREEMENT_PENALTY,
        timeframe=confirmation.timeframe,
    )


def guess_market_regime(
    df_primary: pd.DataFrame,
    df_confirmation: pd.DataFrame,
    *,
    primary_label: str = "30m",
    confirmation_label: str = "1h",
) -> RegimeResult:
    """Classify both timeframes and combine them."""
    return combine_regimes(
        classify_regime(df_primary, primary_label),
        classify_regime(df_confirmation, confirmation_label),
    )
