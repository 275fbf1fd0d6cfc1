"""Persisted position snapshots and pre-entry reconciliation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from regime_trader.errors import StaleCacheMismatch
from regime_trader.storage.kv import KeyValueStore
from regime_trader.types import ExchangePosition, PositionSnapshot
from regime_trader.utils.logging import get_logger, log_risk_event

VOLATILE_ATR_PCT = 0.6
VOLATILE_TOLERANCE = 0.002
CALM_TOLERANCE = 0.0005


@dataclass(slots=True, frozen=True)
class ReconcileResult:
    allowed: bool
    reason: Literal["no_snapshot", "stale_cache_removed", "position_already_tracked"]


def entry_tolerance(price: float, atr_pct: float) -> float:
    """Absolute price tolerance; ``atr_pct`` is in percent of price."""
    return price * (VOLATILE_TOLERANCE if atr_pct >= VOLATILE_ATR_PCT else CALM_TOLERANCE)


class PositionStore:
    """Position snapshots keyed by symbol."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._logger = get_logger("regime_trader.positions.store")

    def load_all(self) -> dict[str, PositionSnapshot]:
        return {
            symbol: PositionSnapshot.from_dict(payload)
            for symbol, payload in self._store.load_all().items()
            if isinstance(payload, dict)
        }

    def save_all(self, snapshots: dict[str, PositionSnapshot]) -> None:
        self._store.save_all({symbol: s.to_dict() for symbol, s in snapshots.items()})

    def get(self, symbol: str) -> PositionSnapshot | None:
        payload = self._store.get(symbol)
        return PositionSnapshot.from_dict(payload) if isinstance(payload, dict) else None

    def put(self, snapshot: PositionSnapshot) -> None:
        self._store.put(snapshot.symbol, snapshot.to_dict())

    def remove(self, symbol: str) -> bool:
        return self._store.remove(symbol)

    def reconcile_before_entry(
        self,
        symbol: str,
        candidate_price: float,
        atr_pct: float,
        open_positions: Callable[[], list[ExchangePosition]],
    ) -> ReconcileResult:
        """Decide whether a stored snapshot blocks a new entry.

        The executor is the source of truth: a snapshot whose position is no
        longer open is discarded and the entry goes ahead.

        Raises:
            StaleCacheMismatch: the snapshot's entry price is beyond tolerance
                but the executor still reports the position open.
        """
        snapshot = self.get(symbol)
        if snapshot is None:
            return ReconcileResult(allowed=True, reason="no_snapshot")

        tolerance = entry_tolerance(candidate_price, atr_pct)
        within = abs(snapshot.entry_price - candidate_price) <= tolerance
        if any(p.symbol == symbol for p in open_positions()):
            if within:
                return ReconcileResult(allowed=False, reason="position_already_tracked")
            log_risk_event(
                self._logger,
                event_type="reconcile",
                action="refuse",
                symbol=symbol,
                stored_entry=snapshot.entry_price,
                candidate_price=candidate_price,
            )
            raise StaleCacheMismatch(
                f"{symbol}: stored entry {snapshot.entry_price} vs {candidate_price}"
            )

        self.remove(symbol)
        self._logger.info(
            "stale_cache_removed",
            symbol=symbol,
            stored_entry=snapshot.entry_price,
            candidate_price=candidate_price,
        )
        return ReconcileResult(allowed=True, reason="stale_cache_removed")
