from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from regime_trader.errors import ExecutionFailure, PersistenceFailure
from regime_trader.journal.trades import TradeLog
from regime_trader.positions.lifecycle import (
    PositionLifecycleManager,
    compute_tp_sl,
    evaluate_position,
)
from regime_trader.positions.store import PositionStore
from regime_trader.risk.cooldown import CooldownManager
from regime_trader.storage.kv import MemoryStore
from regime_trader.types import ExchangePosition, OrderAmounts, PositionSnapshot, TradeLogEntry


def _snapshot(direction: str = "long", **overrides: object) -> PositionSnapshot:
    snapshot = PositionSnapshot(
        symbol="BTCUSDT",
        direction=direction,  # type: ignore[arg-type]
        entry_price=100.0,
        leverage=100.0,
        market_regime="bullish",
        tx_ref="tx-open",
        opened_at=1_700_000_000.0,
        signal_score=0.8,
        atr=1.0,
        rrr=1.6,
    )
    return replace(snapshot, **overrides)


class _FakeExecutor:
    def __init__(self, fail_closes: int = 0) -> None:
        self.fail_closes = fail_closes
        self.closed: list[str] = []

    def open_position(
        self, symbol: str, direction: str, amounts: OrderAmounts, leverage: float, price: float
    ) -> str:
        return "tx-open"

    def close_position(self, symbol: str, price: float | None = None) -> str:
        if self.fail_closes > 0:
            self.fail_closes -= 1
            raise ExecutionFailure("rejected")
        self.closed.append(symbol)
        return "tx-close"

    def get_open_positions(self) -> list[ExchangePosition]:
        return []


class _RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, tag: str, message: str) -> None:
        self.messages.append((tag, message))


def _manager(
    tmp_path: Path, executor: _FakeExecutor, price: float
) -> tuple[PositionLifecycleManager, PositionStore, TradeLog, CooldownManager, _RecordingNotifier, list[float]]:
    positions = PositionStore(MemoryStore())
    trade_log = TradeLog(tmp_path)
    cooldowns = CooldownManager(MemoryStore(), clock=lambda: 1_700_000_000.0)
    notifier = _RecordingNotifier()
    sleeps: list[float] = []
    manager = PositionLifecycleManager(
        positions=positions,
        executor=executor,
        price_source=lambda symbol: price,
        trade_log=trade_log,
        cooldowns=cooldowns,
        notifier=notifier,
        reward_risk_for=lambda regime: 1.6,
        sleep=sleeps.append,
    )
    return manager, positions, trade_log, cooldowns, notifier, sleeps


def test_tp_sl_levels() -> None:
    levels = compute_tp_sl(100.0, 100.0, 1.0, 1.6)
    assert levels is not None
    assert levels.sl == pytest.approx(0.6)
    assert levels.tp == pytest.approx(0.96)
    assert levels.trail_offset == pytest.approx(0.4)
    assert levels.final_tp == pytest.approx(6.0)
    assert levels.trail_start_fraction == 0.5


def test_tp_sl_rejects_invalid_inputs() -> None:
    assert compute_tp_sl(100.0, 0.0, 1.0, 1.6) is None
    assert compute_tp_sl(float("nan"), 50.0, 1.0, 1.6) is None
    assert compute_tp_sl(100.0, 50.0, 1.0, 0.0) is None


def test_zero_atr_disables_trailing_only() -> None:
    levels = compute_tp_sl(100.0, 50.0, 0.0, 1.6)
    assert levels is not None
    assert levels.sl == pytest.approx(1.2)
    assert not levels.trailing_enabled

    stopped = evaluate_position(99.3, _snapshot(atr=0.0), 100.0, 1.6)
    assert stopped is not None
    assert stopped.close_reason == "sl_hit"
    assert stopped.result == "loss"

    running = evaluate_position(100.7, _snapshot(atr=0.0), 100.0, 1.6)
    assert running is not None
    assert not running.trailing
    assert not running.should_close


def test_static_take_profit() -> None:
    evaluation = evaluate_position(101.0, _snapshot(), 100.0, 1.6)
    assert evaluation is not None
    assert evaluation.should_close
    assert evaluation.result == "win"
    assert evaluation.close_reason == "tp_hit"


def test_stop_loss_without_liquidation() -> None:
    evaluation = evaluate_position(99.006, _snapshot(), 100.0, 1.6)
    assert evaluation is not None
    assert evaluation.pnl_pct > -99.5
    assert not evaluation.liquidated
    assert evaluation.result == "loss"
    assert evaluation.close_reason == "sl_hit"


def test_liquidation_wins_classification() -> None:
    evaluation = evaluate_position(99.0, _snapshot(), 100.0, 1.6)
    assert evaluation is not None
    assert evaluation.pnl_pct <= -99.5
    assert evaluation.hit_sl
    assert evaluation.result == "liquidated"
    assert evaluation.close_reason == "liquidated_exit"


def test_trailing_activates_then_closes_on_retrace() -> None:
    first = evaluate_position(100.5, _snapshot(), 100.0, 1.6)
    assert first is not None
    assert first.trailing and not first.should_close
    assert first.dynamic_tp == pytest.approx(100.1)

    trailing = _snapshot(phase="trail", highest_fav=first.best_price)
    second = evaluate_position(100.05, trailing, 100.0, 1.6)
    assert second is not None
    assert second.hit_trailing
    assert second.result == "win"
    assert second.close_reason == "trailing_tp_hit"

    untouched = evaluate_position(100.05, _snapshot(), 100.0, 1.6)
    assert untouched is not None
    assert not untouched.should_close


def test_short_trailing_reads_lowest_favorable() -> None:
    snapshot = _snapshot("short", phase="trail", lowest_fav=99.5, highest_fav=200.0)
    evaluation = evaluate_position(99.95, snapshot, 100.0, 1.6)
    assert evaluation is not None
    assert evaluation.dynamic_tp == pytest.approx(99.9)
    assert evaluation.close_reason == "trailing_tp_hit"


def test_run_closes_and_records(tmp_path: Path) -> None:
    executor = _FakeExecutor()
    manager, positions, trade_log, cooldowns, notifier, _ = _manager(tmp_path, executor, 101.0)
    positions.put(_snapshot())

    outcomes = manager.run([ExchangePosition("BTCUSDT", "long", 0.1, 100.0)])

    assert outcomes[0]["action"] == "closed"
    assert outcomes[0]["closed_by"] == "tp_hit"
    assert executor.closed == ["BTCUSDT"]
    assert positions.get("BTCUSDT") is None
    trades = trade_log.load()
    assert len(trades) == 1
    assert trades.iloc[0]["result"] == "win"
    assert trades.iloc[0]["closed_by"] == "tp_hit"
    assert cooldowns.get_record("BTCUSDT").history == ["win"]
    assert notifier.messages[0][0] == "CLOSE"


def test_run_keeps_snapshot_when_close_fails(tmp_path: Path) -> None:
    executor = _FakeExecutor(fail_closes=2)
    manager, positions, trade_log, cooldowns, _, sleeps = _manager(tmp_path, executor, 101.0)
    positions.put(_snapshot())

    outcomes = manager.run([ExchangePosition("BTCUSDT", "long", 0.1, 100.0)])

    assert outcomes[0]["action"] == "close_failed"
    assert sleeps == [2.0]
    assert positions.get("BTCUSDT") is not None
    assert trade_log.load().empty
    assert cooldowns.get_record("BTCUSDT").history == []


def test_run_retries_close_once(tmp_path: Path) -> None:
    executor = _FakeExecutor(fail_closes=1)
    manager, positions, _, _, _, sleeps = _manager(tmp_path, executor, 101.0)
    positions.put(_snapshot())

    outcomes = manager.run([ExchangePosition("BTCUSDT", "long", 0.1, 100.0)])

    assert outcomes[0]["action"] == "closed"
    assert sleeps == [2.0]


def test_run_updates_trailing_state(tmp_path: Path) -> None:
    manager, positions, _, _, _, _ = _manager(tmp_path, _FakeExecutor(), 100.5)
    positions.put(_snapshot())

    outcomes = manager.run(
        [
            ExchangePosition("BTCUSDT", "long", 0.1, 100.0),
            ExchangePosition("DOGEUSDT", "long", 10.0, 0.1),
        ]
    )

    assert [o["symbol"] for o in outcomes] == ["BTCUSDT"]
    assert outcomes[0]["action"] == "held"
    stored = positions.get("BTCUSDT")
    assert stored is not None
    assert stored.phase == "trail"
    assert stored.highest_fav == pytest.approx(100.5)
    assert stored.sl == pytest.approx(0.6)


def test_close_all_logs_manual_close(tmp_path: Path) -> None:
    executor = _FakeExecutor()
    manager, positions, trade_log, _, _, _ = _manager(tmp_path, executor, 100.2)
    positions.put(_snapshot())

    outcomes = manager.close_all([ExchangePosition("BTCUSDT", "long", 0.1, 100.0)])

    assert outcomes[0]["action"] == "closed"
    trades = trade_log.load()
    assert trades.iloc[0]["closed_by"] == "manual_close"
    assert trades.iloc[0]["result"] == "win"


class _FailingPutStore(MemoryStore):
    def __init__(self, initial: dict[str, object], failing: set[str]) -> None:
        super().__init__(initial)
        self.failing = failing

    def put(self, key: str, value: object) -> None:
        if key in self.failing:
            raise PersistenceFailure(f"{key}: read-only file system")
        super().put(key, value)


class _BrokenTradeLog(TradeLog):
    def append(self, entry: TradeLogEntry) -> None:
        raise PersistenceFailure("disk full")


def test_run_isolates_store_failures_per_position(tmp_path: Path) -> None:
    held = _snapshot(symbol="AAAUSDT")
    at_target = _snapshot(symbol="BBBUSDT")
    store = _FailingPutStore(
        {"AAAUSDT": held.to_dict(), "BBBUSDT": at_target.to_dict()}, failing={"AAAUSDT"}
    )
    positions = PositionStore(store)
    executor = _FakeExecutor()
    trade_log = TradeLog(tmp_path)
    prices = {"AAAUSDT": 100.1, "BBBUSDT": 101.0}
    manager = PositionLifecycleManager(
        positions=positions,
        executor=executor,
        price_source=prices.get,
        trade_log=trade_log,
        cooldowns=CooldownManager(MemoryStore()),
        notifier=_RecordingNotifier(),
        reward_risk_for=lambda regime: 1.6,
        sleep=lambda _: None,
    )

    outcomes = manager.run(
        [
            ExchangePosition("AAAUSDT", "long", 0.1, 100.0),
            ExchangePosition("BBBUSDT", "long", 0.1, 100.0),
        ]
    )

    assert outcomes[0] == {"symbol": "AAAUSDT", "action": "skipped", "reason": "persistence_failure"}
    assert outcomes[1]["action"] == "closed"
    assert outcomes[1]["closed_by"] == "tp_hit"
    assert executor.closed == ["BBBUSDT"]
    assert list(trade_log.load()["symbol"]) == ["BBBUSDT"]
    assert positions.get("BBBUSDT") is None


def test_close_removes_snapshot_when_trade_log_fails(tmp_path: Path) -> None:
    positions = PositionStore(MemoryStore())
    positions.put(_snapshot())
    cooldowns = CooldownManager(MemoryStore(), clock=lambda: 1_700_000_000.0)
    notifier = _RecordingNotifier()
    manager = PositionLifecycleManager(
        positions=positions,
        executor=_FakeExecutor(),
        price_source=lambda symbol: 99.3,
        trade_log=_BrokenTradeLog(tmp_path),
        cooldowns=cooldowns,
        notifier=notifier,
        reward_risk_for=lambda regime: 1.6,
        sleep=lambda _: None,
    )

    [outcome] = manager.run([ExchangePosition("BTCUSDT", "long", 0.1, 100.0)])

    assert outcome["action"] == "closed"
    assert outcome["persistence_errors"] == ["trade_log: disk full"]
    assert positions.get("BTCUSDT") is None
    assert cooldowns.get_record("BTCUSDT").history == ["loss"]
    assert notifier.messages[-1][0] == "CLOSE"
