"""Append-only audit trail of closed trades (JSONL + CSV)."""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd  # type: ignore[import-untyped]

from regime_trader.errors import PersistenceFailure
from regime_trader.risk.budget import derive_entry_reason, derive_triggered_by
from regime_trader.types import CloseReason, PositionSnapshot, TradeLogEntry, TradeResult

TRADE_COLUMNS = [f.name for f in fields(TradeLogEntry)]


def trade_entry_from_snapshot(
    snapshot: PositionSnapshot,
    *,
    exit_price: float,
    pnl_pct: float,
    result: TradeResult,
    closed_by: CloseReason,
    timestamp: datetime | None = None,
) -> TradeLogEntry:
    """Freeze a tracked position into its trade record."""
    triggered_by = derive_triggered_by(
        snapshot.trade_type, snapshot.divergence_score, snapshot.triggered_by
    )
    return TradeLogEntry(
        timestamp=(timestamp or datetime.now(timezone.utc)).isoformat(),
        symbol=snapshot.symbol,
        direction=snapshot.direction,
        entry_price=snapshot.entry_price,
        exit_price=exit_price,
        pnl_pct=pnl_pct,
        result=result,
        market_regime=snapshot.market_regime,
        signal_score=snapshot.signal_score,
        rsi=snapshot.rsi,
        macd_hist=snapshot.macd_hist,
        ema_slope=snapshot.ema_slope,
        atr_pct=snapshot.atr_pct,
        atr=snapshot.atr,
        adx=snapshot.adx,
        adx_slope=snapshot.adx_slope,
        volume_pct=snapshot.volume_pct,
        divergence_score=snapshot.divergence_score,
        leverage=snapshot.leverage,
        trade_type=snapshot.trade_type,
        closed_by=closed_by,
        triggered_by=triggered_by,
        entry_reason=derive_entry_reason(
            triggered_by, snapshot.signal_score, snapshot.entry_reason
        ),
        note=snapshot.note,
        tp=snapshot.tp,
        sl=snapshot.sl,
        rrr=snapshot.rrr,
        phase=snapshot.phase,
        highest_fav=snapshot.highest_fav,
        lowest_fav=snapshot.lowest_fav,
        per_position_budget=snapshot.per_position_budget,
    )


class TradeLog:
    """Writes every closed trade to ``trades.jsonl`` and ``trades.csv``."""

    def __init__(self, journal_dir: Path) -> None:
        self._jsonl_path = journal_dir / "trades.jsonl"
        self._csv_path = journal_dir / "trades.csv"
        self._lock = threading.Lock()

    @property
    def jsonl_path(self) -> Path:
        return self._jsonl_path

    @property
    def csv_path(self) -> Path:
        return self._csv_path

    def append(self, entry: TradeLogEntry) -> None:
        row = asdict(entry)
        with self._lock:
            try:
                self._jsonl_path.parent.mkdir(parents=True, exist_ok=True)
                with self._jsonl_path.open("a", encoding="utf-8") as f:
                    f.write(json.dumps(row, ensure_ascii=True) + "\n")
                pd.DataFrame([row], columns=TRADE_COLUMNS).to_csv(
                    self._csv_path,
                    mode="a",
                    header=not self._csv_path.exists(),
                    index=False,
                )
            except OSError as exc:
                raise PersistenceFailure(f"trade_log: {exc}") from exc

    def load(self) -> pd.DataFrame:
        if not self._jsonl_path.exists():
            return pd.DataFrame(columns=TRADE_COLUMNS)
        rows = [
            json.loads(line)
            for line in self._jsonl_path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        return pd.DataFrame(rows, columns=TRADE_COLUMNS)

    def stats(self) -> dict[str, Any]:
        """Win rate and average PnL, overall and per symbol."""
        df = self.load()
        if df.empty:
            return {"trades": 0, "wins": 0, "losses": 0, "liquidated": 0, "win_rate": 0.0,
                    "avg_pnl_pct": 0.0, "by_symbol": {}}

        def _summary(frame: pd.DataFrame) -> dict[str, Any]:
            wins = int((frame["result"] == "win").sum())
            return {
                "trades": int(len(frame)),
                "wins": wins,
                "losses": int((frame["result"] == "loss").sum()),
                "liquidated": int((frame["result"] == "liquidated").sum()),
                "win_rate": round(wins / len(frame), 4),
                "avg_pnl_pct": round(float(frame["pnl_pct"].astype(float).mean()), 4),
            }

        summary = _summary(df)
        summary["by_symbol"] = {
            str(symbol): _summary(group) for symbol, group in df.groupby("symbol")
        }
        return summary
