from __future__ import annotations

import pytest

from regime_trader.config import Settings
from regime_trader.errors import InvalidBudget
from regime_trader.risk.budget import (
    budget_and_leverage,
    classify_trade_type,
    compute_order_amounts,
    derive_entry_reason,
    derive_triggered_by,
)
from regime_trader.strategy.thresholds import ThresholdSet


def test_fixed_point_amounts() -> None:
    amounts = compute_order_amounts(10.0, 50.0)
    assert amounts.collateral == 10_000_000
    assert amounts.notional == 500_000_000
    assert amounts.decimals == 6


def test_non_positive_budget_is_rejected() -> None:
    with pytest.raises(InvalidBudget):
        compute_order_amounts(0.0, 50.0)
    with pytest.raises(InvalidBudget):
        compute_order_amounts(10.0, 0.0)
    with pytest.raises(InvalidBudget):
        compute_order_amounts(float("nan"), 50.0)


def test_budget_and_leverage_by_regime() -> None:
    settings = Settings(
        budget_by_regime={"bullish": 25.0},
        leverage_by_regime={"bullish": 20.0},
    )
    assert budget_and_leverage(settings, "bullish") == (25.0, 20.0)
    assert budget_and_leverage(settings, "bearish") == (10.0, 50.0)
    tuned = ThresholdSet(leverage=15.0)
    assert budget_and_leverage(settings, "bullish", tuned, "fresh") == (25.0, 15.0)
    assert budget_and_leverage(settings, "bullish", tuned, "stale") == (25.0, 20.0)


def test_provenance_derivation() -> None:
    assert derive_triggered_by("anticipation", 0.0) == "early"
    assert derive_triggered_by("override", 0.9) == "fallback"
    assert derive_triggered_by("standard", 0.3) == "divergence"
    assert derive_triggered_by("standard", 0.1) == "standard"
    assert derive_triggered_by("standard", 0.1, override="manual") == "manual"

    assert derive_entry_reason("early", 0.5) == "Anticipation Entry: Early Signal or Divergence"
    assert derive_entry_reason("fallback", 0.5) == "Fallback Entry: Signal Score Override"
    assert derive_entry_reason("divergence", 0.5) == "Divergence Entry"
    assert derive_entry_reason("standard", 0.95) == "High Confidence Signal"
    assert derive_entry_reason("standard", 0.6) == "Standard Signal Passed"


def test_trade_type_from_rule_set() -> None:
    assert classify_trade_type("bearishShort", "top") == "override"
    assert classify_trade_type("long", "anticipation_bottom") == "anticipation"
    assert classify_trade_type("short", "top") == "standard"
