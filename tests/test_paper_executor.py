from __future__ import annotations

from pathlib import Path

import pytest

from regime_trader.errors import ExecutionFailure
from regime_trader.exec.paper import PaperExecutor
from regime_trader.types import OrderAmounts

_AMOUNTS = OrderAmounts(collateral=10_000_000, notional=500_000_000, decimals=6)


def test_open_close_realizes_pnl_and_persists(tmp_path: Path) -> None:
    executor = PaperExecutor(tmp_path, slippage_bps=0.0)
    ref = executor.open_position("BTCUSDT", "long", _AMOUNTS, 50.0, 100.0)
    assert ref.startswith("paper-")

    reloaded = PaperExecutor(tmp_path, slippage_bps=0.0)
    [position] = reloaded.get_open_positions()
    assert position.symbol == "BTCUSDT"
    assert position.size == pytest.approx(5.0)

    reloaded.close_position("BTCUSDT", 101.0)
    assert reloaded.realized_pnl == pytest.approx(5.0)
    assert reloaded.equity == pytest.approx(1_005.0)
    assert reloaded.get_open_positions() == []


def test_loss_is_capped_at_collateral(tmp_path: Path) -> None:
    executor = PaperExecutor(tmp_path, slippage_bps=0.0)
    executor.open_position("ETHUSDT", "short", _AMOUNTS, 50.0, 100.0)
    executor.close_position("ETHUSDT", 150.0)
    assert executor.realized_pnl == pytest.approx(-10.0)


def test_invalid_requests_raise_execution_failure(tmp_path: Path) -> None:
    executor = PaperExecutor(tmp_path)
    with pytest.raises(ExecutionFailure):
        executor.open_position("BTCUSDT", "long", _AMOUNTS, 50.0, 0.0)
    with pytest.raises(ExecutionFailure):
        executor.close_position("BTCUSDT")
    executor.open_position("BTCUSDT", "long", _AMOUNTS, 50.0, 100.0)
    with pytest.raises(ExecutionFailure, match="position_already_open"):
        executor.open_position("BTCUSDT", "long", _AMOUNTS, 50.0, 100.0)
