from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from regime_trader.journal.trades import TRADE_COLUMNS, TradeLog, trade_entry_from_snapshot
from regime_trader.types import PositionSnapshot


def _snapshot(symbol: str, **overrides: object) -> PositionSnapshot:
    base = PositionSnapshot(
        symbol=symbol,
        direction="long",
        entry_price=100.0,
        leverage=50.0,
        market_regime="bullish",
        tx_ref="paper-1",
        opened_at=0.0,
        signal_score=0.8,
        atr=1.0,
        atr_pct=0.01,
        divergence_score=0.1,
        note="rule_set=long",
    )
    return PositionSnapshot(**{**base.to_dict(), **overrides})


def test_entry_derives_provenance() -> None:
    entry = trade_entry_from_snapshot(
        _snapshot("BTCUSDT", trade_type="anticipation"),
        exit_price=101.0,
        pnl_pct=50.0,
        result="win",
        closed_by="tp_hit",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    assert entry.timestamp == "2024-01-01T00:00:00+00:00"
    assert entry.triggered_by == "early"
    assert entry.entry_reason == "Anticipation Entry: Early Signal or Divergence"
    assert entry.note == "rule_set=long"


def test_append_writes_jsonl_and_csv(tmp_path: Path) -> None:
    log = TradeLog(tmp_path)
    log.append(trade_entry_from_snapshot(
        _snapshot("BTCUSDT"), exit_price=101.0, pnl_pct=50.0, result="win", closed_by="tp_hit"
    ))
    log.append(trade_entry_from_snapshot(
        _snapshot("ETHUSDT"), exit_price=99.0, pnl_pct=-50.0, result="loss", closed_by="sl_hit"
    ))

    assert len(log.jsonl_path.read_text(encoding="utf-8").splitlines()) == 2
    csv_lines = log.csv_path.read_text(encoding="utf-8").splitlines()
    assert len(csv_lines) == 3
    assert csv_lines[0].split(",") == TRADE_COLUMNS

    frame = log.load()
    assert list(frame["symbol"]) == ["BTCUSDT", "ETHUSDT"]
    assert list(frame["closed_by"]) == ["tp_hit", "sl_hit"]


def test_stats_summarise_results(tmp_path: Path) -> None:
    log = TradeLog(tmp_path)
    assert log.stats()["trades"] == 0

    for pnl, result in ((40.0, "win"), (-60.0, "loss"), (-99.6, "liquidated"), (20.0, "win")):
        log.append(trade_entry_from_snapshot(
            _snapshot("BTCUSDT"), exit_price=100.0, pnl_pct=pnl, result=result, closed_by="tp_hit"
        ))

    stats = log.stats()
    assert stats["trades"] == 4
    assert stats["wins"] == 2
    assert stats["losses"] == 1
    assert stats["liquidated"] == 1
    assert stats["win_rate"] == 0.5
    assert stats["by_symbol"]["BTCUSDT"]["trades"] == 4
