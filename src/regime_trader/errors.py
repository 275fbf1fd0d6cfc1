"""Error taxonomy shared by the engine components."""

from __future__ import annotations


class TradingError(Exception):
    """Base error for the trading engine."""

    reason = "error"


class InsufficientData(TradingError):
    """Raised when a candle series is shorter than an operation's minimum."""

    reason = "insufficient_data"

    def __init__(self, required: int, actual: int, what: str = "candles") -> None:
        super().__init__(f"{what}: need {required}, got {actual}")
        self.required = required
        self.actual = actual


class MissingOrStaleConfig(TradingError):
    """Raised when a threshold set is absent or older than its max age."""

    reason = "missing_or_stale_config"


class InvalidBudget(TradingError):
    """Raised when computed collateral or notional is not positive."""

    reason = "invalid_budget"


class ExecutionFailure(TradingError):
    """Raised when an order submission fails transiently."""

    reason = "execution_failure"


class StaleCacheMismatch(TradingError):
    """Raised when a stored snapshot disagrees with the exchange."""

    reason = "entry_mismatch_existing"


class PersistenceFailure(TradingError):
    """Raised when a state store cannot be written."""

    reason = "persistence_failure"


class ConnectivityError(TradingError):
    """Raised when external clients cannot be initialized. Fatal."""

    reason = "connectivity_error"
