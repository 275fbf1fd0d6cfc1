"""Per-symbol outcome history and cooldown windows."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Literal

from regime_trader.storage.kv import KeyValueStore
from regime_trader.types import CooldownRecord, TradeResult
from regime_trader.utils.logging import get_logger, log_risk_event

HISTORY_LIMIT = 10
LOSS_COOLDOWN_S = 60 * 60
WIN_STREAK_COOLDOWN_S = 60 * 60
LOSS_CLUSTER_COOLDOWN_S = 90 * 60
LOW_WIN_RATE_COOLDOWN_S = 120 * 60


class CooldownManager:
    """Tracks win/loss outcomes per symbol and derives ``cooldown_until``.

    Rules run in order after each outcome and every matching rule
    overwrites the deadline, so a later rule wins even when shorter:

    1. loss: 60 min
    2. otherwise three wins in a row: 60 min
    3. two or more losses in the last three: 90 min
    4. five outcomes in the last-five window with win rate below 50%: 120 min
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock
        self._logger = get_logger("regime_trader.risk.cooldown")

    def get_record(self, symbol: str) -> CooldownRecord:
        raw = self._store.get(symbol)
        if not isinstance(raw, dict):
            return CooldownRecord()
        history = [r for r in raw.get("history", []) if r in ("win", "loss")]
        return CooldownRecord(
            history=history[-HISTORY_LIMIT:],
            cooldown_until=float(raw.get("cooldown_until", 0.0)),
        )

    def record_outcome(self, symbol: str, result: TradeResult) -> CooldownRecord:
        outcome: Literal["win", "loss"] = "win" if result == "win" else "loss"
        record = self.get_record(symbol)
        record.history.append(outcome)
        record.history = record.history[-HISTORY_LIMIT:]

        now = self._clock()
        last3 = record.history[-3:]
        last5 = record.history[-5:]
        rule = ""

        if outcome == "loss":
            record.cooldown_until = now + LOSS_COOLDOWN_S
            rule = "loss"
        elif len(last3) == 3 and all(r == "win" for r in last3):
            record.cooldown_until = now + WIN_STREAK_COOLDOWN_S
            rule = "win_streak"

        if last3.count("loss") >= 2:
            record.cooldown_until = now + LOSS_CLUSTER_COOLDOWN_S
            rule = "loss_cluster"

        if len(last5) == 5 and last5.count("win") / 5 < 0.5:
            record.cooldown_until = now + LOW_WIN_RATE_COOLDOWN_S
            rule = "low_win_rate"

        self._store.put(
            symbol,
            {"history": list(record.history), "cooldown_until": record.cooldown_until},
        )
        if rule:
            log_risk_event(
                self._logger,
                event_type="cooldown",
                action=rule,
                symbol=symbol,
                minutes=round((record.cooldown_until - now) / 60),
            )
        return record

    def cooldown_until(self, symbol: str) -> float:
        return self.get_record(symbol).cooldown_until

    def is_in_cooldown(self, symbol: str) -> bool:
        return self._clock() < self.cooldown_until(symbol)
