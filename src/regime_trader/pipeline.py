"""Trading cycle: manage open positions, then scan symbols for entries."""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from time import perf_counter

from regime_trader.errors import InvalidBudget, StaleCacheMismatch, TradingError
from regime_trader.exec.retry import Succeeded, submit_with_retry
from regime_trader.positions.lifecycle import compute_tp_sl
from regime_trader.regime.classifier import guess_market_regime
from regime_trader.risk.budget import (
    budget_and_leverage,
    classify_trade_type,
    compute_order_amounts,
    derive_entry_reason,
    derive_triggered_by,
)
from regime_trader.session import TradingSession
from regime_trader.types import CycleResult, PositionSnapshot, RegimeResult, SignalEvaluation
from regime_trader.utils.logging import get_logger, log_order_execution

LOW_SCORE_WARNING = 0.7

_Analysis = tuple[RegimeResult, SignalEvaluation]


def run_trading_cycle(session: TradingSession, dry_run: bool) -> CycleResult:
    """Run one full trading cycle."""
    logger = get_logger("regime_trader.pipeline")
    settings = session.settings
    journal = session.journal
    started = perf_counter()
    cycle_result = CycleResult(status="unknown")

    journal.append(
        "cycle_start",
        {
            "symbols": settings.symbols,
            "mode": settings.mode.value,
            "dry_run": dry_run,
            "started_at": datetime.now(timezone.utc).isoformat(),
        },
    )
    session.notifier.notify(
        "START",
        f"cycle started: {len(settings.symbols)} symbols, mode={settings.mode.value}"
        + (" (dry run)" if dry_run else ""),
    )

    try:
        exchange_positions = session.executor.get_open_positions()
        for outcome in session.lifecycle.run(exchange_positions, dry_run=dry_run):
            cycle_result.closes.append(outcome)
            event = "close" if outcome["action"] in ("closed", "would_close") else "position_update"
            journal.append(event, outcome)
            if outcome["action"] == "close_failed":
                cycle_result.warnings.append(f"close_failed:{outcome['symbol']}")
            if outcome.get("persistence_errors"):
                cycle_result.warnings.append(f"persistence_failure:{outcome['symbol']}")

        if not dry_run and any(c["action"] == "closed" for c in cycle_result.closes):
            exchange_positions = session.executor.get_open_positions()
        open_symbols = {p.symbol for p in exchange_positions}

        candidates: list[str] = []
        for symbol in settings.symbols:
            if symbol in open_symbols:
                _skip(session, cycle_result, symbol, "position_open")
            elif session.cooldowns.is_in_cooldown(symbol):
                _skip(session, cycle_result, symbol, "cooldown")
            else:
                candidates.append(symbol)

        if len(open_symbols) >= settings.max_open_positions:
            for symbol in candidates:
                _skip(session, cycle_result, symbol, "max_open_positions")
            return _finish_cycle(session, cycle_result, started, status="position_cap_reached")

        analyses = _analyze_symbols(session, candidates, cycle_result)

        opened = 0
        for symbol in candidates:
            analysis = analyses.get(symbol)
            if analysis is None:
                continue
            regime, evaluation = analysis
            cycle_result.decisions.append(
                {
                    "symbol": symbol,
                    "regime": regime.regime,
                    "regime_confidence": round(regime.confidence, 4),
                    "score": round(evaluation.score, 4),
                    "direction": evaluation.direction,
                    "triggered_by": evaluation.triggered_by,
                    "confidence": evaluation.confidence,
                }
            )
            journal.append(
                "signal",
                {"symbol": symbol, "regime": regime.regime, "reason": evaluation.reason,
                 "score": evaluation.score, "direction": evaluation.direction},
            )
            if not evaluation.should_open:
                _skip(session, cycle_result, symbol, evaluation.reason)
                continue
            if len(open_symbols) + opened >= settings.max_open_positions:
                _skip(session, cycle_result, symbol, "max_open_positions")
                continue
            if _open_position(session, evaluation, cycle_result, dry_run=dry_run):
                opened += 1

        if opened:
            status = "opened_dry_run" if dry_run else "opened"
        else:
            status = "no_signal"
        return _finish_cycle(session, cycle_result, started, status=status)

    except Exception as exc:  # noqa: BLE001 - top-level guard for loop resilience.
        logger.exception("pipeline_failed", error=str(exc))
        journal.append("error", {"error": str(exc)})
        session.notifier.notify("ERROR", f"cycle failed: {exc}")
        return _finish_cycle(session, cycle_result, started, status="failed")


def close_all_positions(session: TradingSession) -> CycleResult:
    """Close every open position at market and log the trades."""
    started = perf_counter()
    journal = session.journal
    cycle_result = CycleResult(status="unknown")
    journal.append("cycle_start", {"command": "close_all"})
    exchange_positions = session.executor.get_open_positions()
    session.notifier.notify("INFO", f"closing all positions: {len(exchange_positions)} open")
    for outcome in session.lifecycle.close_all(exchange_positions):
        cycle_result.closes.append(outcome)
        journal.append("close", outcome)
        if outcome["action"] != "closed":
            cycle_result.warnings.append(f"close_failed:{outcome['symbol']}")
    status = "closed_all" if not cycle_result.warnings else "partial_close"
    return _finish_cycle(session, cycle_result, started, status=status)


def _analyze_symbols(
    session: TradingSession, symbols: list[str], cycle_result: CycleResult
) -> dict[str, _Analysis]:
    """Regime + entry evaluation per symbol on a bounded worker pool.

    Each exchange request is bounded by the client request timeout
    (``symbol_timeout_s``); the whole fan-out by ``cycle_timeout_s``.
    """
    logger = get_logger("regime_trader.pipeline")
    settings = session.settings
    results: dict[str, _Analysis] = {}
    if not symbols:
        return results

    pool = ThreadPoolExecutor(max_workers=settings.max_workers, thread_name_prefix="analysis")
    future_map: dict[Future[_Analysis], str] = {
        pool.submit(_analyze_symbol, session, symbol): symbol for symbol in symbols
    }
    try:
        for future in as_completed(future_map, timeout=settings.cycle_timeout_s):
            symbol = future_map[future]
            try:
                results[symbol] = future.result()
            except TradingError as exc:
                _skip(session, cycle_result, symbol, f"{exc.reason}: {exc}")
            except Exception as exc:  # noqa: BLE001 - one symbol never aborts the cycle.
                logger.exception("symbol_analysis_failed", symbol=symbol, error=str(exc))
                _skip(session, cycle_result, symbol, f"error: {exc}")
    except FutureTimeout:
        for future, symbol in future_map.items():
            if symbol not in results and symbol not in cycle_result.skips:
                future.cancel()
                _skip(session, cycle_result, symbol, "analysis_timeout")
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return results


def _analyze_symbol(session: TradingSession, symbol: str) -> _Analysis:
    settings = session.settings
    primary = session.cache.get(symbol, settings.confirmation_interval, settings.candle_limit)
    confirmation = session.cache.get(symbol, settings.trigger_interval, settings.candle_limit)
    regime = guess_market_regime(
        primary,
        confirmation,
        primary_label=settings.confirmation_interval,
        confirmation_label=settings.trigger_interval,
    )
    return regime, session.entry.evaluate(symbol, regime.regime)


def _open_position(
    session: TradingSession,
    evaluation: SignalEvaluation,
    cycle_result: CycleResult,
    *,
    dry_run: bool,
) -> bool:
    logger = get_logger("regime_trader.pipeline")
    settings = session.settings
    journal = session.journal
    symbol = evaluation.symbol
    snapshot = evaluation.snapshot
    regime = evaluation.regime

    price = session.market.fetch_last_price(symbol) or snapshot.last_close
    if price <= 0:
        _skip(session, cycle_result, symbol, "no_price")
        return False

    if evaluation.score < LOW_SCORE_WARNING:
        cycle_result.warnings.append(f"low_score:{symbol}")
        session.notifier.notify("WARN", f"{symbol} low signal score {evaluation.score * 100:.1f}%")

    try:
        reconcile = session.positions.reconcile_before_entry(
            symbol, price, snapshot.atr_pct * 100, session.executor.get_open_positions
        )
    except StaleCacheMismatch as exc:
        _skip(session, cycle_result, symbol, exc.reason)
        return False
    if not reconcile.allowed:
        _skip(session, cycle_result, symbol, reconcile.reason)
        return False

    thresholds, threshold_status = session.thresholds.resolve(symbol, regime)
    budget, leverage = budget_and_leverage(settings, regime, thresholds, threshold_status)
    try:
        amounts = compute_order_amounts(budget, leverage, settings.collateral_decimals)
    except InvalidBudget as exc:
        _skip(session, cycle_result, symbol, f"{exc.reason}: {exc}")
        return False

    levels = compute_tp_sl(price, leverage, snapshot.atr, settings.reward_risk_for(regime))
    if levels is None:
        _skip(session, cycle_result, symbol, "invalid_tp_sl")
        return False

    side = "BUY" if evaluation.direction == "long" else "SELL"
    order: dict[str, object] = {
        "action": "open",
        "symbol": symbol,
        "direction": evaluation.direction,
        "side": side,
        "price": price,
        "leverage": leverage,
        "collateral": amounts.collateral,
        "notional": amounts.notional,
        "tp": levels.tp,
        "sl": levels.sl,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    notional_usd = amounts.notional / 10**amounts.decimals

    if dry_run:
        order["status"] = "dry_run"
        log_order_execution(
            logger, symbol=symbol, side=side, notional=notional_usd, price=price, status="dry_run"
        )
        cycle_result.orders.append(order)
        journal.append("order", order)
        return True

    direction = evaluation.direction
    if direction is None:
        return False
    outcome = submit_with_retry(
        lambda: session.executor.open_position(symbol, direction, amounts, leverage, price),
        attempts=settings.order_retry_attempts,
        backoff_s=settings.order_retry_backoff_s,
        label=f"open:{symbol}",
        sleep=time.sleep,
    )
    if not isinstance(outcome, Succeeded):
        log_order_execution(
            logger, symbol=symbol, side=side, notional=notional_usd, price=price,
            status="failed", error=outcome.error,
        )
        _skip(session, cycle_result, symbol, f"execution_failure: {outcome.error}")
        return False

    tx_ref = str(outcome.value)
    trade_type = classify_trade_type(evaluation.triggered_by, evaluation.trigger_position)
    triggered_by = derive_triggered_by(trade_type, snapshot.divergence_score)
    session.positions.put(
        PositionSnapshot(
            symbol=symbol,
            direction=direction,
            entry_price=price,
            leverage=leverage,
            market_regime=regime,
            tx_ref=tx_ref,
            opened_at=time.time(),
            signal_score=evaluation.score,
            rsi=snapshot.rsi,
            macd_hist=snapshot.macd_hist,
            ema_slope=snapshot.ema_slope,
            atr=snapshot.atr,
            atr_pct=snapshot.atr_pct,
            adx=snapshot.adx,
            adx_slope=snapshot.adx_slope,
            volume_pct=snapshot.volume_pct,
            divergence_score=snapshot.divergence_score,
            tp=levels.tp,
            sl=levels.sl,
            rrr=levels.rrr,
            per_position_budget=budget,
            trade_type=trade_type,
            triggered_by=triggered_by,
            entry_reason=derive_entry_reason(triggered_by, evaluation.score),
            note=f"rule_set={evaluation.triggered_by}",
        )
    )
    order["status"] = "filled"
    order["tx_ref"] = tx_ref
    log_order_execution(
        logger, symbol=symbol, side=side, notional=notional_usd, price=price,
        tx_ref=tx_ref, status="filled",
    )
    session.notifier.notify(
        "OPEN",
        f"{symbol} {direction} @ {price:.6g} x{leverage:g} ({evaluation.triggered_by}, "
        f"score {evaluation.score:.2f})",
    )
    cycle_result.orders.append(order)
    journal.append("order", order)
    return True


def _skip(session: TradingSession, cycle_result: CycleResult, symbol: str, reason: str) -> None:
    cycle_result.skips[symbol] = reason
    session.journal.append("skip", {"symbol": symbol, "reason": reason})
    session.notifier.notify("SKIP", f"{symbol}: {reason}")


def _finish_cycle(
    session: TradingSession,
    result: CycleResult,
    started: float,
    *,
    status: str,
) -> CycleResult:
    elapsed_ms = (perf_counter() - started) * 1000
    result.status = status
    result.elapsed_ms = elapsed_ms
    session.journal.append("cycle_end", {"status": status, "elapsed_ms": elapsed_ms})
    session.notifier.notify(
        "DONE",
        f"{status}: {len(result.orders)} opened, {len(result.closes)} managed, "
        f"{len(result.skips)} skipped ({elapsed_ms / 1000:.1f}s)",
    )
    return result
