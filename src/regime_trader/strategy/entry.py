"""Multi-rule-set entry decisioning on a confirmation + trigger timeframe."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

import pandas as pd  # type: ignore[import-untyped]

from regime_trader.data.cache import CandleCache
from regime_trader.features.indicators import linear_slope
from regime_trader.strategy.scoring import check_signals
from regime_trader.strategy.thresholds import ThresholdSet, ThresholdStore
from regime_trader.types import (
    CandlePosition,
    Direction,
    IndicatorSnapshot,
    Regime,
    SignalEvaluation,
)
from regime_trader.utils.logging import get_logger, log_trade_signal

_BOTTOMS: frozenset[str] = frozenset({"bottom", "anticipation_bottom"})
_TOPS: frozenset[str] = frozenset({"top", "anticipation_top"})


def candle_position(open_: float, high: float, low: float, close: float) -> CandlePosition:
    """Where the close sits inside the candle's [low, high] range."""
    span = (high - low) or 1.0
    pos = (close - low) / span
    if pos >= 0.8:
        return "top"
    if pos >= 0.67:
        return "anticipation_top"
    if pos <= 0.2:
        return "bottom"
    if pos <= 0.33:
        return "anticipation_bottom"
    return "middle"


@dataclass(slots=True, frozen=True)
class EntryMetrics:
    """Values the rule sets are evaluated against."""

    signal_score: float
    rsi: float
    rsi_slope: float
    atr_pct: float  # percent of price
    adx: float
    adx_slope: float
    divergence: float
    price_slope: float
    ema_slope: float
    macd_accel: float
    volume_pct: float
    trigger_position: CandlePosition

    @classmethod
    def from_snapshot(cls, snapshot: IndicatorSnapshot, trigger: pd.DataFrame) -> EntryMetrics:
        last = trigger.iloc[-1]
        return cls(
            signal_score=snapshot.score,
            rsi=snapshot.rsi,
            rsi_slope=linear_slope(snapshot.rsi_trend),
            atr_pct=snapshot.atr_pct * 100,
            adx=snapshot.adx,
            adx_slope=snapshot.adx_slope,
            divergence=snapshot.divergence_score,
            price_slope=snapshot.price_slope,
            ema_slope=snapshot.ema_slope,
            macd_accel=snapshot.macd_accel,
            volume_pct=snapshot.volume_pct,
            trigger_position=candle_position(
                float(last["open"]), float(last["high"]), float(last["low"]), float(last["close"])
            ),
        )


@dataclass(slots=True, frozen=True)
class Predicate:
    name: str
    metric: str
    check: Callable[[Any], bool]
    expected: str


@dataclass(slots=True, frozen=True)
class RuleSet:
    """A named conjunction of predicates resolving to one direction."""

    name: str
    direction: Direction
    reason: str
    predicates: tuple[Predicate, ...]

    def failures(self, metrics: EntryMetrics) -> list[str]:
        values = asdict(metrics)
        failed = []
        for p in self.predicates:
            value = values[p.metric]
            if not p.check(value):
                failed.append(f"{p.name}={_fmt(value)} [expected {p.expected}]")
        return failed


def _gt(name: str, metric: str, bound: float, suffix: str = "") -> Predicate:
    return Predicate(name, metric, lambda v: v > bound, f"> {bound:g}{suffix}")


def _lt(name: str, metric: str, bound: float) -> Predicate:
    return Predicate(name, metric, lambda v: v < bound, f"< {bound:g}")


def _ge(name: str, metric: str, bound: float) -> Predicate:
    return Predicate(name, metric, lambda v: v >= bound, f">= {bound:g}")


def _between(name: str, metric: str, band: tuple[float, float]) -> Predicate:
    lo, hi = band
    return Predicate(name, metric, lambda v: lo <= v <= hi, f"{lo:g}-{hi:g}")


def _in(name: str, metric: str, allowed: frozenset[str]) -> Predicate:
    return Predicate(name, metric, lambda v: v in allowed, "/".join(sorted(allowed, reverse=True)))


def _ema(rising: bool, t: ThresholdSet) -> Predicate:
    lo, hi = t.ema_slope_min, t.ema_slope_max
    if rising:
        return Predicate("emaSlope", "ema_slope", lambda v: lo < v <= hi, f"> {lo:g}")
    return Predicate("emaSlope", "ema_slope", lambda v: -hi <= v < -lo, f"< {-lo:g}")


def build_rule_sets(t: ThresholdSet) -> tuple[RuleSet, ...]:
    """The six rule sets in precedence order."""

    def common(*, rsi: Predicate, rsi_up: bool, adx_up: bool, trend_up: bool,
               trigger: frozenset[str]) -> tuple[Predicate, ...]:
        preds = [
            _gt("signalScore", "signal_score", t.signal_score_min),
            rsi,
            _gt("rsiSlope", "rsi_slope", 0) if rsi_up else _lt("rsiSlope", "rsi_slope", 0),
            _gt("atr", "atr_pct", t.atr_pct_min, "%"),
            _gt("adx", "adx", t.adx_min),
            _gt("adxSlope", "adx_slope", 0) if adx_up else _lt("adxSlope", "adx_slope", 0),
            _ge("divergence", "divergence", t.divergence_min),
            _gt("priceSlope", "price_slope", 0) if trend_up else _lt("priceSlope", "price_slope", 0),
            _ema(trend_up, t),
            _gt("macdAccel", "macd_accel", 0) if trend_up else _lt("macdAccel", "macd_accel", 0),
            _in("candlePos", "trigger_position", trigger),
        ]
        if t.volume_pct_min > 0:
            preds.append(_ge("volumePct", "volume_pct", t.volume_pct_min))
        return tuple(preds)

    return (
        RuleSet("long", "long", "sniper criteria met", common(
            rsi=_between("rsi", "rsi", t.rsi_long_band),
            rsi_up=True, adx_up=False, trend_up=True, trigger=_BOTTOMS,
        )),
        RuleSet("short", "short", "sniper criteria met", common(
            rsi=_between("rsi", "rsi", t.rsi_short_band),
            rsi_up=False, adx_up=False, trend_up=False, trigger=_TOPS,
        )),
        RuleSet("longReversal", "short", "reversal criteria met", common(
            rsi=_gt("rsi", "rsi", t.rsi_reversal_high),
            rsi_up=True, adx_up=True, trend_up=True, trigger=_TOPS,
        )),
        RuleSet("shortReversal", "long", "reversal criteria met", common(
            rsi=_lt("rsi", "rsi", t.rsi_reversal_low),
            rsi_up=False, adx_up=True, trend_up=False, trigger=_BOTTOMS,
        )),
        RuleSet("bearishShort", "short", "bearishShort override", common(
            rsi=_between("rsi", "rsi", t.rsi_bearish_band),
            rsi_up=False, adx_up=False, trend_up=True, trigger=_TOPS,
        )),
        RuleSet("bullishLong", "long", "bullishLong override", common(
            rsi=_between("rsi", "rsi", t.rsi_bullish_band),
            rsi_up=True, adx_up=False, trend_up=False, trigger=_BOTTOMS,
        )),
    )


def select_direction(
    metrics: EntryMetrics, rule_sets: tuple[RuleSet, ...]
) -> tuple[RuleSet | None, dict[str, list[str]]]:
    """First fully satisfied rule set wins; otherwise all failures by set."""
    failures: dict[str, list[str]] = {}
    for rule_set in rule_sets:
        failed = rule_set.failures(metrics)
        if not failed:
            return rule_set, failures
        failures[rule_set.name] = failed
    return None, failures


def format_rejection(failures: dict[str, list[str]]) -> str:
    lines = [f"({name}): {'; '.join(items)}" for name, items in failures.items()]
    return "signal_rejected:\n" + "\n".join(lines)


class EntryDecisionEngine:
    """Scores the confirmation timeframe and applies the rule sets."""

    def __init__(
        self,
        cache: CandleCache,
        thresholds: ThresholdStore,
        *,
        confirmation_interval: str = "30m",
        trigger_interval: str = "1h",
        limit: int = 300,
    ) -> None:
        self._cache = cache
        self._thresholds = thresholds
        self._confirmation = confirmation_interval
        self._trigger = trigger_interval
        self._limit = limit
        self._logger = get_logger("regime_trader.strategy.entry")

    def evaluate(self, symbol: str, regime: Regime) -> SignalEvaluation:
        """Never raises; failures come back as a rejected evaluation."""
        try:
            return self._evaluate(symbol, regime)
        except Exception as exc:  # noqa: BLE001 - boundary for per-symbol work.
            self._logger.exception("entry_evaluation_failed", symbol=symbol, error=str(exc))
            return SignalEvaluation(
                symbol=symbol,
                score=0.0,
                direction=None,
                reason=f"error: {exc}",
                confidence="low",
                passed=False,
                regime=regime,
            )

    def _evaluate(self, symbol: str, regime: Regime) -> SignalEvaluation:
        frames = self._cache.get_multi(symbol, [self._confirmation, self._trigger], self._limit)
        confirmation = frames[self._confirmation]
        trigger = frames[self._trigger]

        snapshot, passed, reason = check_signals(symbol, confirmation)
        if not passed:
            return SignalEvaluation(
                symbol=symbol,
                score=0.0,
                direction=None,
                reason=reason,
                confidence="low",
                passed=False,
                snapshot=snapshot,
                regime=regime,
            )
        if trigger.empty:
            return SignalEvaluation(
                symbol=symbol,
                score=snapshot.score,
                direction=None,
                reason="insufficient_trigger_candles",
                confidence="low",
                passed=False,
                snapshot=snapshot,
                regime=regime,
            )

        thresholds, status = self._thresholds.resolve(symbol, regime)
        metrics = EntryMetrics.from_snapshot(snapshot, trigger)
        winner, failures = select_direction(metrics, build_rule_sets(thresholds))

        if winner is None:
            return SignalEvaluation(
                symbol=symbol,
                score=snapshot.score,
                direction=None,
                reason=format_rejection(failures),
                confidence="low",
                passed=False,
                snapshot=snapshot,
                regime=regime,
            )

        log_trade_signal(
            self._logger,
            symbol=symbol,
            direction=winner.direction,
            signal_type=winner.name,
            score=round(snapshot.score, 4),
            regime=regime,
            thresholds=status,
        )
        return SignalEvaluation(
            symbol=symbol,
            score=snapshot.score,
            direction=winner.direction,
            reason=winner.reason,
            confidence="high" if status == "fresh" else "medium",
            passed=True,
            snapshot=snapshot,
            triggered_by=winner.name,
            regime=regime,
            trigger_position=metrics.trigger_position,
        )


def _fmt(value: object) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    return str(value)
