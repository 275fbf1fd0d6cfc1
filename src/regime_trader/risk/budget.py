"""Per-regime budget/leverage lookup, fixed-point order sizing and entry provenance."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation

from regime_trader.config import Settings
from regime_trader.errors import InvalidBudget
from regime_trader.strategy.thresholds import ThresholdSet, ThresholdStatus
from regime_trader.types import OrderAmounts, TradeType

DIVERGENCE_ENTRY_MIN = 0.3
HIGH_CONFIDENCE_SCORE = 0.9


def budget_and_leverage(
    settings: Settings,
    regime: str,
    thresholds: ThresholdSet | None = None,
    status: ThresholdStatus = "missing",
) -> tuple[float, float]:
    """Collateral budget (USD) and leverage for a regime.

    A fresh threshold set carries its own tuned leverage; otherwise the
    per-regime configuration applies.
    """
    leverage = settings.leverage_for(regime)
    if thresholds is not None and status == "fresh":
        leverage = thresholds.leverage
    return settings.budget_for(regime), leverage


def compute_order_amounts(budget: float, leverage: float, decimals: int = 6) -> OrderAmounts:
    """Convert a USD budget to integer collateral/notional ledger units.

    Raises:
        InvalidBudget: when either amount is not strictly positive.
    """
    try:
        scale = Decimal(10) ** decimals
        collateral = (Decimal(str(budget)) * scale).to_integral_value(rounding=ROUND_DOWN)
        notional = (collateral * Decimal(str(leverage))).to_integral_value(rounding=ROUND_DOWN)
    except InvalidOperation as exc:
        raise InvalidBudget(f"invalid_amounts: budget={budget} leverage={leverage}") from exc
    if not (collateral.is_finite() and notional.is_finite()):
        raise InvalidBudget(f"invalid_amounts: budget={budget} leverage={leverage}")
    if collateral <= 0 or notional <= 0:
        raise InvalidBudget(f"non_positive_amounts: budget={budget} leverage={leverage}")
    return OrderAmounts(collateral=int(collateral), notional=int(notional), decimals=decimals)


def derive_triggered_by(trade_type: TradeType, divergence: float, override: str = "") -> str:
    if override:
        return override
    if trade_type == "anticipation":
        return "early"
    if trade_type == "override":
        return "fallback"
    if divergence >= DIVERGENCE_ENTRY_MIN:
        return "divergence"
    return "standard"


def derive_entry_reason(triggered_by: str, signal_score: float, override: str = "") -> str:
    if override:
        return override
    if triggered_by == "early":
        return "Anticipation Entry: Early Signal or Divergence"
    if triggered_by == "fallback":
        return "Fallback Entry: Signal Score Override"
    if triggered_by == "divergence":
        return "Divergence Entry"
    if signal_score >= HIGH_CONFIDENCE_SCORE:
        return "High Confidence Signal"
    return "Standard Signal Passed"


def classify_trade_type(rule_set: str, trigger_position: str = "") -> TradeType:
    """Override rule sets are fallbacks; entries on an anticipation candle are early."""
    if rule_set in ("bearishShort", "bullishLong"):
        return "override"
    if trigger_position.startswith("anticipation"):
        return "anticipation"
    return "standard"
