from __future__ import annotations

import math
from dataclasses import replace

import pandas as pd

from regime_trader.data.cache import CandleCache
from regime_trader.storage.kv import MemoryStore
from regime_trader.strategy.entry import (
    EntryDecisionEngine,
    EntryMetrics,
    RuleSet,
    build_rule_sets,
    candle_position,
    format_rejection,
    select_direction,
)
from regime_trader.strategy.thresholds import ThresholdSet, ThresholdStore


def _long_metrics() -> EntryMetrics:
    return EntryMetrics(
        signal_score=0.8,
        rsi=45.0,
        rsi_slope=0.5,
        atr_pct=0.5,
        adx=20.0,
        adx_slope=-1.0,
        divergence=0.0,
        price_slope=0.1,
        ema_slope=0.002,
        macd_accel=0.01,
        volume_pct=0.5,
        trigger_position="bottom",
    )


class _FrameSource:
    def __init__(self, rows: int) -> None:
        self.rows = rows

    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        closes = [100 + i * 0.2 + 2 * math.sin(i / 4) for i in range(self.rows)]
        return pd.DataFrame(
            {
                "open": [c - 0.1 for c in closes],
                "high": [c + 0.8 for c in closes],
                "low": [c - 0.8 for c in closes],
                "close": closes,
                "volume": [1000.0 for _ in closes],
            }
        )


class _BrokenSource:
    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        raise RuntimeError("exchange down")


def _engine(source: object) -> EntryDecisionEngine:
    return EntryDecisionEngine(CandleCache(source), ThresholdStore(MemoryStore()))


def test_candle_position_breakpoints() -> None:
    assert candle_position(5, 10, 0, 9) == "top"
    assert candle_position(5, 10, 0, 7) == "anticipation_top"
    assert candle_position(5, 10, 0, 5) == "middle"
    assert candle_position(5, 10, 0, 3) == "anticipation_bottom"
    assert candle_position(5, 10, 0, 1) == "bottom"


def test_candle_position_zero_range() -> None:
    assert candle_position(10, 10, 10, 10) == "bottom"


def test_long_rule_set_wins() -> None:
    winner, failures = select_direction(_long_metrics(), build_rule_sets(ThresholdSet()))
    assert winner is not None
    assert winner.name == "long"
    assert winner.direction == "long"
    assert failures == {}


def test_long_reversal_resolves_to_short() -> None:
    metrics = replace(_long_metrics(), rsi=85.0, adx_slope=1.0, trigger_position="top")
    winner, failures = select_direction(metrics, build_rule_sets(ThresholdSet()))
    assert winner is not None
    assert winner.name == "longReversal"
    assert winner.direction == "short"
    assert set(failures) == {"long", "short"}


def test_short_reversal_resolves_to_long() -> None:
    metrics = replace(
        _long_metrics(),
        rsi=15.0,
        rsi_slope=-0.5,
        adx_slope=1.0,
        price_slope=-0.1,
        ema_slope=-0.002,
        macd_accel=-0.01,
    )
    winner, _ = select_direction(metrics, build_rule_sets(ThresholdSet()))
    assert winner is not None
    assert winner.name == "shortReversal"
    assert winner.direction == "long"


def test_precedence_prefers_earlier_rule_set() -> None:
    long_set = build_rule_sets(ThresholdSet())[0]
    bullish = RuleSet("bullishLong", "long", "bullishLong override", long_set.predicates)
    winner, _ = select_direction(_long_metrics(), (long_set, bullish))
    assert winner is not None and winner.name == "long"
    winner, _ = select_direction(_long_metrics(), (bullish, long_set))
    assert winner is not None and winner.name == "bullishLong"


def test_rejection_lists_failures_per_rule_set() -> None:
    metrics = replace(_long_metrics(), signal_score=0.2, trigger_position="middle")
    winner, failures = select_direction(metrics, build_rule_sets(ThresholdSet()))
    assert winner is None
    assert list(failures) == [
        "long",
        "short",
        "longReversal",
        "shortReversal",
        "bearishShort",
        "bullishLong",
    ]
    reason = format_rejection(failures)
    assert reason.startswith("signal_rejected:")
    assert "(long): signalScore=0.2 [expected > 0.5]" in reason
    assert "candlePos=middle" in reason


def test_thresholds_drive_cutoffs() -> None:
    strict = ThresholdSet(adx_min=25.0)
    winner, failures = select_direction(_long_metrics(), build_rule_sets(strict))
    assert winner is None
    assert any(item.startswith("adx=20") for item in failures["long"])


def test_engine_insufficient_candles() -> None:
    evaluation = _engine(_FrameSource(rows=20)).evaluate("BTCUSDT", "neutral")
    assert evaluation.passed is False
    assert evaluation.score == 0.0
    assert evaluation.direction is None
    assert evaluation.reason.startswith("insufficient_candles")


def test_engine_never_raises() -> None:
    evaluation = _engine(_BrokenSource()).evaluate("BTCUSDT", "bullish")
    assert evaluation.passed is False
    assert evaluation.confidence == "low"
    assert evaluation.reason == "error: exchange down"


def test_engine_evaluates_full_series() -> None:
    evaluation = _engine(_FrameSource(rows=120)).evaluate("BTCUSDT", "bullish")
    assert 0.0 <= evaluation.score <= 1.0
    if evaluation.passed:
        assert evaluation.direction in ("long", "short")
        assert evaluation.confidence == "medium"
    else:
        assert evaluation.reason.startswith("signal_rejected:")
        assert evaluation.confidence == "low"
