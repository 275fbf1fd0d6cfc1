"""Binance USD-M futures order executor."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal

from binance.client import Client  # type: ignore[import-untyped]
from binance.exceptions import BinanceAPIException, BinanceRequestException  # type: ignore[import-untyped]

from regime_trader.errors import ExecutionFailure
from regime_trader.types import Direction, ExchangePosition, OrderAmounts
from regime_trader.utils.logging import get_logger

_BINANCE_ERRORS = (BinanceAPIException, BinanceRequestException)


class BinanceFuturesExecutor:
    """Market orders on Binance futures. Exchange errors become ``ExecutionFailure``."""

    def __init__(self, client: Client) -> None:
        self._client = client
        self._step_sizes: dict[str, Decimal] = {}
        self._logger = get_logger("regime_trader.exec.binance_futures")

    def open_position(
        self,
        symbol: str,
        direction: Direction,
        amounts: OrderAmounts,
        leverage: float,
        price: float,
    ) -> str:
        if price <= 0:
            raise ExecutionFailure(f"invalid_price: {price}")
        notional = Decimal(amounts.notional) / (Decimal(10) ** amounts.decimals)
        quantity = self._round_quantity(symbol, notional / Decimal(str(price)))
        if quantity <= 0:
            raise ExecutionFailure(f"quantity_below_step: {symbol}")
        try:
            self._client.futures_change_leverage(symbol=symbol, leverage=int(leverage))
            order = self._client.futures_create_order(
                symbol=symbol,
                side="BUY" if direction == "long" else "SELL",
                type="MARKET",
                quantity=str(quantity),
            )
        except _BINANCE_ERRORS as exc:
            raise ExecutionFailure(f"open_failed: {symbol}: {exc}") from exc
        return str(order.get("orderId", ""))

    def close_position(self, symbol: str, price: float | None = None) -> str:
        position = next((p for p in self.get_open_positions() if p.symbol == symbol), None)
        if position is None:
            raise ExecutionFailure(f"no_open_position: {symbol}")
        try:
            order = self._client.futures_create_order(
                symbol=symbol,
                side="SELL" if position.direction == "long" else "BUY",
                type="MARKET",
                quantity=str(Decimal(str(position.size))),
                reduceOnly="true",
            )
        except _BINANCE_ERRORS as exc:
            raise ExecutionFailure(f"close_failed: {symbol}: {exc}") from exc
        return str(order.get("orderId", ""))

    def get_open_positions(self) -> list[ExchangePosition]:
        try:
            rows = self._client.futures_position_information()
        except _BINANCE_ERRORS as exc:
            raise ExecutionFailure(f"positions_failed: {exc}") from exc
        positions = []
        for row in rows:
            amount = float(row.get("positionAmt", 0.0))
            if amount == 0:
                continue
            positions.append(
                ExchangePosition(
                    symbol=str(row["symbol"]),
                    direction="long" if amount > 0 else "short",
                    size=abs(amount),
                    entry_price=float(row.get("entryPrice", 0.0)),
                )
            )
        return positions

    def _round_quantity(self, symbol: str, quantity: Decimal) -> Decimal:
        step = self._step_size(symbol)
        return (quantity / step).to_integral_value(rounding=ROUND_DOWN) * step

    def _step_size(self, symbol: str) -> Decimal:
        if symbol not in self._step_sizes:
            try:
                info = self._client.futures_exchange_info()
            except _BINANCE_ERRORS as exc:
                raise ExecutionFailure(f"exchange_info_failed: {exc}") from exc
            for entry in info.get("symbols", []):
                for f in entry.get("filters", []):
                    if f.get("filterType") == "LOT_SIZE":
                        self._step_sizes[entry["symbol"]] = Decimal(str(f["stepSize"]))
            self._step_sizes.setdefault(symbol, Decimal("0.001"))
            self._logger.debug("step_sizes_loaded", symbols=len(self._step_sizes))
        return self._step_sizes[symbol]
