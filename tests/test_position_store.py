from __future__ import annotations

from pathlib import Path

import pytest

from regime_trader.errors import StaleCacheMismatch
from regime_trader.positions.store import PositionStore, entry_tolerance
from regime_trader.storage.kv import JsonFileStore, MemoryStore
from regime_trader.types import ExchangePosition, PositionSnapshot


def _snapshot(symbol: str = "BTCUSDT", entry_price: float = 100.0) -> PositionSnapshot:
    return PositionSnapshot(
        symbol=symbol,
        direction="short",
        entry_price=entry_price,
        leverage=50.0,
        market_regime="bearish",
        tx_ref="paper-abc",
        opened_at=1_700_000_000.0,
        signal_score=0.72,
        rsi=62.5,
        atr=1.3,
        atr_pct=0.013,
        tp=1.92,
        sl=1.2,
        rrr=1.6,
        phase="trail",
        lowest_fav=97.5,
        per_position_budget=10.0,
        trade_type="override",
        triggered_by="fallback",
        entry_reason="Fallback Entry: Signal Score Override",
        note="rule_set=bearishShort",
    )


def test_snapshot_round_trip_through_file_store(tmp_path: Path) -> None:
    store = PositionStore(JsonFileStore(tmp_path / "positions.json"))
    original = _snapshot()
    store.put(original)

    reloaded = PositionStore(JsonFileStore(tmp_path / "positions.json")).get("BTCUSDT")
    assert reloaded == original
    assert PositionSnapshot.from_dict({**original.to_dict(), "legacy": 1}) == original


def test_remove_and_load_all() -> None:
    store = PositionStore(MemoryStore())
    store.put(_snapshot("BTCUSDT"))
    store.put(_snapshot("ETHUSDT"))
    assert set(store.load_all()) == {"BTCUSDT", "ETHUSDT"}
    assert store.remove("BTCUSDT") is True
    assert store.remove("BTCUSDT") is False
    assert set(store.load_all()) == {"ETHUSDT"}


def test_tolerance_depends_on_volatility() -> None:
    assert entry_tolerance(100.0, 0.7) == pytest.approx(0.2)
    assert entry_tolerance(100.0, 0.1) == pytest.approx(0.05)


def test_reconcile_without_snapshot_allows_entry() -> None:
    store = PositionStore(MemoryStore())
    result = store.reconcile_before_entry("BTCUSDT", 100.0, 0.5, lambda: [])
    assert result.allowed and result.reason == "no_snapshot"


def test_reconcile_within_tolerance_refuses_open_position() -> None:
    store = PositionStore(MemoryStore())
    store.put(_snapshot(entry_price=100.15))
    open_positions = [ExchangePosition("BTCUSDT", "short", 1.0, 100.15)]
    result = store.reconcile_before_entry("BTCUSDT", 100.0, 0.7, lambda: open_positions)
    assert not result.allowed
    assert result.reason == "position_already_tracked"
    assert store.get("BTCUSDT") is not None


def test_reconcile_within_tolerance_allows_when_exchange_flat() -> None:
    store = PositionStore(MemoryStore())
    store.put(_snapshot(entry_price=100.0))
    result = store.reconcile_before_entry("BTCUSDT", 100.0, 0.7, lambda: [])
    assert result.allowed
    assert result.reason == "stale_cache_removed"
    assert store.get("BTCUSDT") is None


def test_reconcile_removes_stale_snapshot() -> None:
    store = PositionStore(MemoryStore())
    store.put(_snapshot(entry_price=100.15))
    result = store.reconcile_before_entry("BTCUSDT", 100.0, 0.1, lambda: [])
    assert result.allowed
    assert result.reason == "stale_cache_removed"
    assert store.get("BTCUSDT") is None


def test_reconcile_refuses_when_exchange_still_open() -> None:
    store = PositionStore(MemoryStore())
    store.put(_snapshot(entry_price=105.0))
    open_positions = [ExchangePosition("BTCUSDT", "short", 1.0, 105.0)]
    with pytest.raises(StaleCacheMismatch) as excinfo:
        store.reconcile_before_entry("BTCUSDT", 100.0, 0.1, lambda: open_positions)
    assert excinfo.value.reason == "entry_mismatch_existing"
    assert store.get("BTCUSDT") is not None
