"""Strategy package exports."""

from regime_trader.strategy.entry import (
    EntryDecisionEngine,
    build_rule_sets,
    candle_position,
    select_direction,
)
from regime_trader.strategy.scoring import check_signals, divergence_score, weighted_score
from regime_trader.strategy.thresholds import ThresholdSet, ThresholdStore

__all__ = [
    "EntryDecisionEngine",
    "ThresholdSet",
    "ThresholdStore",
    "build_rule_sets",
    "candle_position",
    "check_signals",
    "divergence_score",
    "select_direction",
    "weighted_score",
]
