"""Dynamic TP/SL, trailing and close execution for tracked positions."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from regime_trader.errors import PersistenceFailure, TradingError
from regime_trader.exec.base import OrderExecutor
from regime_trader.exec.retry import Succeeded, submit_with_retry
from regime_trader.journal.trades import TradeLog, trade_entry_from_snapshot
from regime_trader.notify.telegram import Notifier
from regime_trader.positions.store import PositionStore
from regime_trader.risk.cooldown import CooldownManager
from regime_trader.types import CloseReason, ExchangePosition, PositionSnapshot, TradeResult
from regime_trader.utils.logging import get_logger, log_position_close

STOP_LOSS_PNL_PCT = 60.0
TRAIL_START_FRACTION = 0.5
TRAIL_OFFSET_ATR = 0.4
FINAL_TP_ATR = 6.0
LIQUIDATION_PNL_PCT = -99.5


@dataclass(slots=True, frozen=True)
class TpSl:
    """Price distances from entry."""

    tp: float
    sl: float
    rrr: float
    trail_start_fraction: float
    trail_offset: float
    final_tp: float

    @property
    def trailing_enabled(self) -> bool:
        return self.trail_offset > 0 and self.final_tp > 0


def compute_tp_sl(entry_price: float, leverage: float, atr: float, rrr: float) -> TpSl | None:
    """SL sits at a 60% loss of collateral; TP is ``rrr`` times that distance.

    Returns None when TP or SL is non-finite or non-positive. A missing or
    zero ATR only disables trailing.
    """
    if leverage <= 0:
        return None
    sl = entry_price * (STOP_LOSS_PNL_PCT / leverage / 100)
    tp = sl * rrr
    usable_atr = math.isfinite(atr) and atr > 0
    levels = TpSl(
        tp=tp,
        sl=sl,
        rrr=rrr,
        trail_start_fraction=TRAIL_START_FRACTION,
        trail_offset=atr * TRAIL_OFFSET_ATR if usable_atr else 0.0,
        final_tp=atr * FINAL_TP_ATR if usable_atr else 0.0,
    )
    if not all(math.isfinite(v) and v > 0 for v in (levels.tp, levels.sl)):
        return None
    return levels


@dataclass(slots=True, frozen=True)
class PositionEvaluation:
    levels: TpSl
    price: float
    tp_level: float
    sl_level: float
    pnl_pct: float
    best_price: float
    trailing: bool
    dynamic_tp: float
    hit_tp: bool
    hit_sl: bool
    hit_trailing: bool
    liquidated: bool

    @property
    def should_close(self) -> bool:
        return self.hit_tp or self.hit_sl or self.hit_trailing or self.liquidated

    @property
    def result(self) -> TradeResult | None:
        if self.liquidated:
            return "liquidated"
        if self.hit_tp or self.hit_trailing:
            return "win"
        if self.hit_sl:
            return "loss"
        return None

    @property
    def close_reason(self) -> CloseReason | None:
        if self.liquidated:
            return "liquidated_exit"
        if self.hit_tp:
            return "tp_hit"
        if self.hit_trailing:
            return "trailing_tp_hit"
        if self.hit_sl:
            return "sl_hit"
        return None


def evaluate_position(
    price: float,
    snapshot: PositionSnapshot,
    entry_price: float,
    rrr: float,
) -> PositionEvaluation | None:
    """Evaluate one position at ``price``.

    PnL is the return on collateral (price move times leverage). Trailing
    stays active once the snapshot's phase is ``trail``.
    """
    levels = compute_tp_sl(entry_price, snapshot.leverage, snapshot.atr, rrr)
    if levels is None:
        return None

    is_long = snapshot.direction == "long"
    sign = 1.0 if is_long else -1.0
    pnl_pct = (price - entry_price) / entry_price * sign * snapshot.leverage * 100

    if is_long:
        best = max(snapshot.highest_fav or entry_price, price)
        tp_level = entry_price + levels.tp
        sl_level = entry_price - levels.sl
        trail_start = entry_price + levels.tp * levels.trail_start_fraction
        dynamic_tp = min(best - levels.trail_offset, entry_price + levels.final_tp)
        trailing = levels.trailing_enabled and (snapshot.phase == "trail" or price >= trail_start)
        hit_tp = price >= tp_level
        hit_sl = price <= sl_level
        hit_trailing = trailing and price <= dynamic_tp
    else:
        best = min(snapshot.lowest_fav or entry_price, price)
        tp_level = entry_price - levels.tp
        sl_level = entry_price + levels.sl
        trail_start = entry_price - levels.tp * levels.trail_start_fraction
        dynamic_tp = max(best + levels.trail_offset, entry_price - levels.final_tp)
        trailing = levels.trailing_enabled and (snapshot.phase == "trail" or price <= trail_start)
        hit_tp = price <= tp_level
        hit_sl = price >= sl_level
        hit_trailing = trailing and price >= dynamic_tp

    return PositionEvaluation(
        levels=levels,
        price=price,
        tp_level=tp_level,
        sl_level=sl_level,
        pnl_pct=pnl_pct,
        best_price=best,
        trailing=trailing,
        dynamic_tp=dynamic_tp,
        hit_tp=hit_tp,
        hit_sl=hit_sl,
        hit_trailing=hit_trailing,
        liquidated=pnl_pct <= LIQUIDATION_PNL_PCT,
    )


class PositionLifecycleManager:
    """Runs TP/SL evaluation over open positions and closes them."""

    def __init__(
        self,
        *,
        positions: PositionStore,
        executor: OrderExecutor,
        price_source: Callable[[str], float | None],
        trade_log: TradeLog,
        cooldowns: CooldownManager,
        notifier: Notifier,
        reward_risk_for: Callable[[str], float],
        retry_attempts: int = 2,
        retry_backoff_s: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._positions = positions
        self._executor = executor
        self._price_source = price_source
        self._trade_log = trade_log
        self._cooldowns = cooldowns
        self._notifier = notifier
        self._reward_risk_for = reward_risk_for
        self._retry_attempts = retry_attempts
        self._retry_backoff_s = retry_backoff_s
        self._sleep = sleep
        self._logger = get_logger("regime_trader.positions.lifecycle")

    def run(
        self, exchange_positions: list[ExchangePosition], *, dry_run: bool = False
    ) -> list[dict[str, Any]]:
        """Evaluate every open position that has a stored snapshot.

        A failure on one position is reported as ``skipped`` and never stops
        the others.
        """
        outcomes: list[dict[str, Any]] = []
        for position in exchange_positions:
            try:
                snapshot = self._positions.get(position.symbol)
                if snapshot is None:
                    self._logger.debug("position_untracked", symbol=position.symbol)
                    continue
                outcomes.append(self._process(position, snapshot, dry_run=dry_run))
            except TradingError as exc:
                self._logger.error(
                    "position_processing_failed", symbol=position.symbol, reason=exc.reason,
                    error=str(exc),
                )
                outcomes.append(
                    {"symbol": position.symbol, "action": "skipped", "reason": exc.reason}
                )
            except Exception as exc:  # noqa: BLE001 - one position never aborts the rest.
                self._logger.exception(
                    "position_processing_failed", symbol=position.symbol, error=str(exc)
                )
                outcomes.append({"symbol": position.symbol, "action": "skipped", "reason": "error"})
        return outcomes

    def close_all(self, exchange_positions: list[ExchangePosition]) -> list[dict[str, Any]]:
        """Close every open position regardless of its levels."""
        outcomes: list[dict[str, Any]] = []
        for position in exchange_positions:
            try:
                outcomes.append(self._close_manually(position))
            except TradingError as exc:
                self._logger.error(
                    "manual_close_failed", symbol=position.symbol, reason=exc.reason, error=str(exc)
                )
                outcomes.append(
                    {"symbol": position.symbol, "action": "close_failed", "reason": exc.reason}
                )
        return outcomes

    def _close_manually(self, position: ExchangePosition) -> dict[str, Any]:
        price = self._price_source(position.symbol) or position.entry_price
        snapshot = self._positions.get(position.symbol)
        if snapshot is None:
            ok = self._submit_close(position.symbol, price)
            return {"symbol": position.symbol, "action": "closed" if ok else "close_failed",
                    "closed_by": "manual_close", "tracked": False}
        sign = 1.0 if snapshot.direction == "long" else -1.0
        pnl_pct = (price - snapshot.entry_price) / snapshot.entry_price * sign * snapshot.leverage * 100
        return self._close(
            snapshot,
            price=price,
            pnl_pct=pnl_pct,
            result="win" if pnl_pct > 0 else "loss",
            closed_by="manual_close",
        )

    def _process(
        self, position: ExchangePosition, snapshot: PositionSnapshot, *, dry_run: bool
    ) -> dict[str, Any]:
        symbol = position.symbol
        price = self._price_source(symbol)
        if price is None or price <= 0:
            self._logger.warning("mark_price_unavailable", symbol=symbol)
            return {"symbol": symbol, "action": "skipped", "reason": "no_mark_price"}

        entry_price = position.entry_price or snapshot.entry_price
        rrr = snapshot.rrr or self._reward_risk_for(snapshot.market_regime)
        evaluation = evaluate_position(price, snapshot, entry_price, rrr)
        if evaluation is None:
            self._logger.warning(
                "tp_sl_invalid", symbol=symbol, leverage=snapshot.leverage, atr=snapshot.atr
            )
            return {"symbol": symbol, "action": "skipped", "reason": "invalid_tp_sl"}

        if not evaluation.should_close:
            updated = self._with_trailing(snapshot, evaluation)
            if not dry_run:
                self._positions.put(updated)
            return {
                "symbol": symbol,
                "action": "held",
                "price": price,
                "pnl_pct": round(evaluation.pnl_pct, 4),
                "phase": updated.phase,
            }

        result = evaluation.result or "loss"
        reason = evaluation.close_reason or "sl_hit"
        if dry_run:
            return {"symbol": symbol, "action": "would_close", "closed_by": reason, "result": result}
        return self._close(
            self._with_trailing(snapshot, evaluation),
            price=price,
            pnl_pct=evaluation.pnl_pct,
            result=result,
            closed_by=reason,
        )

    def _close(
        self,
        snapshot: PositionSnapshot,
        *,
        price: float,
        pnl_pct: float,
        result: TradeResult,
        closed_by: CloseReason,
    ) -> dict[str, Any]:
        symbol = snapshot.symbol
        if not self._submit_close(symbol, price):
            return {"symbol": symbol, "action": "close_failed", "closed_by": closed_by}

        # Exchange side is closed from here on; each bookkeeping write fails alone.
        persistence_errors: list[str] = []
        entry = trade_entry_from_snapshot(
            snapshot, exit_price=price, pnl_pct=pnl_pct, result=result, closed_by=closed_by
        )
        for step, write in (
            ("trade_log", lambda: self._trade_log.append(entry)),
            ("cooldown", lambda: self._cooldowns.record_outcome(symbol, result)),
            ("snapshot", lambda: self._positions.remove(symbol)),
        ):
            try:
                write()
            except PersistenceFailure as exc:
                persistence_errors.append(f"{step}: {exc}")
                self._logger.error(
                    "close_bookkeeping_failed", symbol=symbol, step=step, error=str(exc)
                )
        log_position_close(
            self._logger, symbol=symbol, result=result, closed_by=closed_by, pnl_pct=pnl_pct
        )
        self._notifier.notify(
            "CLOSE", f"{symbol} {snapshot.direction} {closed_by} pnl={pnl_pct:.2f}% ({result})"
        )
        return {
            "symbol": symbol,
            "action": "closed",
            "closed_by": closed_by,
            "result": result,
            "price": price,
            "pnl_pct": round(pnl_pct, 4),
            "persistence_errors": persistence_errors,
        }

    def _submit_close(self, symbol: str, price: float) -> bool:
        outcome = submit_with_retry(
            lambda: self._executor.close_position(symbol, price),
            attempts=self._retry_attempts,
            backoff_s=self._retry_backoff_s,
            label=f"close:{symbol}",
            sleep=self._sleep,
        )
        if isinstance(outcome, Succeeded):
            return True
        self._logger.error("close_failed", symbol=symbol, error=outcome.error)
        return False

    @staticmethod
    def _with_trailing(snapshot: PositionSnapshot, evaluation: PositionEvaluation) -> PositionSnapshot:
        is_long = snapshot.direction == "long"
        return replace(
            snapshot,
            phase="trail" if evaluation.trailing else snapshot.phase,
            highest_fav=evaluation.best_price if is_long else snapshot.highest_fav,
            lowest_fav=evaluation.best_price if not is_long else snapshot.lowest_fav,
            tp=evaluation.levels.tp,
            sl=evaluation.levels.sl,
            rrr=evaluation.levels.rrr,
        )
