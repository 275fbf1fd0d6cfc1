"""Order execution contract."""

from __future__ import annotations

from typing import Protocol

from regime_trader.types import Direction, ExchangePosition, OrderAmounts


class OrderExecutor(Protocol):
    """Submits orders and reports open positions.

    Implementations raise ``ExecutionFailure`` for rejected or failed
    submissions so callers can retry.
    """

    def open_position(
        self,
        symbol: str,
        direction: Direction,
        amounts: OrderAmounts,
        leverage: float,
        price: float,
    ) -> str: ...

    def close_position(self, symbol: str, price: float | None = None) -> str: ...

    def get_open_positions(self) -> list[ExchangePosition]: ...
