"""Tunable per-(symbol, regime) thresholds with staleness fallback."""

from __future__ import annotations

import shlex
import subprocess
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from regime_trader.errors import MissingOrStaleConfig
from regime_trader.storage.kv import KeyValueStore
from regime_trader.types import Regime
from regime_trader.utils.logging import get_logger

ThresholdStatus = Literal["fresh", "stale", "missing"]
RegenerationHook = Callable[[str, Regime], None]


class ThresholdSet(BaseModel):
    """Numeric cutoffs used by the entry rule sets."""

    model_config = ConfigDict(extra="ignore")

    signal_score_min: float = Field(default=0.5, ge=0.0, le=1.0)
    divergence_min: float = Field(default=0.0, ge=0.0, le=1.0)
    volume_pct_min: float = Field(default=0.0, ge=0.0)
    atr_pct_min: float = Field(default=0.25, ge=0.0, description="ATR as percent of price")
    adx_min: float = Field(default=10.0, ge=0.0)
    rsi_long_band: tuple[float, float] = (35.0, 55.0)
    rsi_short_band: tuple[float, float] = (35.0, 55.0)
    rsi_reversal_high: float = 80.0
    rsi_reversal_low: float = 20.0
    rsi_bearish_band: tuple[float, float] = (65.0, 80.0)
    rsi_bullish_band: tuple[float, float] = (20.0, 35.0)
    ema_slope_min: float = 0.0
    ema_slope_max: float = 1.0
    tp_multiplier: float = Field(default=1.6, gt=0.0)
    sl_multiplier: float = Field(default=1.0, gt=0.0)
    leverage: float = Field(default=50.0, gt=0.0)
    enabled: bool = True
    timestamp: str | None = None

    def age_seconds(self, now: float) -> float | None:
        if not self.timestamp:
            return None
        tuned_at = datetime.fromisoformat(self.timestamp)
        if tuned_at.tzinfo is None:
            tuned_at = tuned_at.replace(tzinfo=timezone.utc)
        return now - tuned_at.timestamp()


def threshold_key(symbol: str, regime: str) -> str:
    return f"{symbol.upper()}_{regime}"


class ThresholdStore:
    """Threshold sets keyed by ``SYMBOL_regime``.

    Stale (older than ``max_age_s``) or missing sets resolve to defaults and
    fire the regeneration hook; callers never wait for the regeneration.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_age_s: float = 12 * 3600,
        regenerate: RegenerationHook | None = None,
        regenerate_every_s: float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._max_age_s = max_age_s
        self._regenerate = regenerate
        self._regenerate_every_s = regenerate_every_s
        self._requested: dict[str, float] = {}
        self._requested_lock = threading.Lock()
        self._clock = clock
        self._logger = get_logger("regime_trader.strategy.thresholds")

    def get(self, symbol: str, regime: Regime) -> ThresholdSet | None:
        raw = self._store.get(threshold_key(symbol, regime))
        if not isinstance(raw, dict):
            return None
        try:
            return ThresholdSet.model_validate(raw)
        except ValidationError as exc:
            self._logger.warning(
                "threshold_set_invalid",
                key=threshold_key(symbol, regime),
                error=exc.errors()[0]["msg"],
            )
            return None

    def save(self, symbol: str, regime: Regime, thresholds: ThresholdSet) -> ThresholdSet:
        stamped = thresholds.model_copy(
            update={"timestamp": datetime.fromtimestamp(self._clock(), timezone.utc).isoformat()}
        )
        self._store.put(threshold_key(symbol, regime), stamped.model_dump(mode="json"))
        return stamped

    def is_outdated(self, symbol: str, regime: Regime) -> bool:
        thresholds = self.get(symbol, regime)
        if thresholds is None:
            return True
        age = thresholds.age_seconds(self._clock())
        return age is None or age > self._max_age_s

    def require(self, symbol: str, regime: Regime) -> ThresholdSet:
        """Return a fresh, enabled set or raise ``MissingOrStaleConfig``."""
        thresholds = self.get(symbol, regime)
        key = threshold_key(symbol, regime)
        if thresholds is None or not thresholds.enabled:
            raise MissingOrStaleConfig(f"missing: {key}")
        age = thresholds.age_seconds(self._clock())
        if age is None or age > self._max_age_s:
            raise MissingOrStaleConfig(f"stale: {key}")
        return thresholds

    def resolve(self, symbol: str, regime: Regime) -> tuple[ThresholdSet, ThresholdStatus]:
        """Return usable thresholds, falling back to defaults."""
        try:
            return self.require(symbol, regime), "fresh"
        except MissingOrStaleConfig as exc:
            status: ThresholdStatus = "missing" if str(exc).startswith("missing") else "stale"
        self._logger.info(
            "threshold_fallback",
            key=threshold_key(symbol, regime),
            status=status,
        )
        self._request_regeneration(symbol, regime)
        return ThresholdSet(), status

    def _request_regeneration(self, symbol: str, regime: Regime) -> None:
        if self._regenerate is None:
            return
        key = threshold_key(symbol, regime)
        now = self._clock()
        with self._requested_lock:
            last = self._requested.get(key)
            if last is not None and now - last < self._regenerate_every_s:
                return
            self._requested[key] = now
        try:
            self._regenerate(symbol, regime)
        except Exception as exc:  # noqa: BLE001 - regeneration is best effort.
            self._logger.warning(
                "threshold_regeneration_failed",
                key=threshold_key(symbol, regime),
                error=str(exc),
            )


def command_regenerator(command: str, leverage_for: Callable[[str], float]) -> RegenerationHook:
    """Build a hook launching an external tuner without waiting for it."""
    logger = get_logger("regime_trader.strategy.thresholds")

    def _launch(symbol: str, regime: Regime) -> None:
        rendered = command.format(symbol=symbol, regime=regime, leverage=leverage_for(regime))
        subprocess.Popen(  # noqa: S603 - operator supplied command.
            shlex.split(rendered),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        logger.info("threshold_regeneration_started", symbol=symbol, regime=regime)

    return _launch
