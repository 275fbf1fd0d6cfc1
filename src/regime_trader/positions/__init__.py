"""Position lifecycle package exports."""

from regime_trader.positions.lifecycle import (
    PositionEvaluation,
    PositionLifecycleManager,
    TpSl,
    compute_tp_sl,
    evaluate_position,
)
from regime_trader.positions.store import PositionStore, ReconcileResult

__all__ = [
    "PositionEvaluation",
    "PositionLifecycleManager",
    "PositionStore",
    "ReconcileResult",
    "TpSl",
    "compute_tp_sl",
    "evaluate_position",
]
