"""Paper trading executor with persistent local state."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from regime_trader.errors import ExecutionFailure
from regime_trader.types import Direction, ExchangePosition, OrderAmounts


@dataclass(slots=True)
class _PaperPosition:
    symbol: str
    direction: Direction
    size: float
    entry_price: float
    collateral: float
    leverage: float
    opened_at: str


@dataclass(slots=True)
class _PaperState:
    equity: float
    initial_equity: float
    realized_pnl: float = 0.0
    positions: dict[str, _PaperPosition] = field(default_factory=dict)


class PaperExecutor:
    """Simulated isolated-margin futures account, one position per symbol."""

    def __init__(
        self,
        state_dir: Path,
        *,
        slippage_bps: float = 2.0,
        initial_equity: float = 1_000.0,
    ) -> None:
        self._slippage_bps = slippage_bps
        self._state_file = state_dir / "paper_state.json"
        self._state = self._load_state(initial_equity)

    @property
    def equity(self) -> float:
        return self._state.equity

    @property
    def realized_pnl(self) -> float:
        return self._state.realized_pnl

    def open_position(
        self,
        symbol: str,
        direction: Direction,
        amounts: OrderAmounts,
        leverage: float,
        price: float,
    ) -> str:
        """Open at ``price`` plus adverse slippage."""
        if price <= 0:
            raise ExecutionFailure(f"invalid_price: {price}")
        if symbol in self._state.positions:
            raise ExecutionFailure(f"position_already_open: {symbol}")
        scale = 10**amounts.decimals
        notional = amounts.notional / scale
        fill_price = self._slip(price, direction, opening=True)
        self._state.positions[symbol] = _PaperPosition(
            symbol=symbol,
            direction=direction,
            size=notional / fill_price,
            entry_price=fill_price,
            collateral=amounts.collateral / scale,
            leverage=float(leverage),
            opened_at=datetime.now(timezone.utc).isoformat(),
        )
        self._persist()
        return f"paper-{uuid.uuid4().hex[:12]}"

    def close_position(self, symbol: str, price: float | None = None) -> str:
        """Close and realize PnL. Losses are capped at the posted collateral."""
        active = self._state.positions.get(symbol)
        if active is None:
            raise ExecutionFailure(f"no_open_position: {symbol}")
        raw_exit = active.entry_price if price is None else price
        fill_price = self._slip(raw_exit, active.direction, opening=False)
        sign = 1.0 if active.direction == "long" else -1.0
        pnl = max(sign * (fill_price - active.entry_price) * active.size, -active.collateral)
        self._state.equity += pnl
        self._state.realized_pnl += pnl
        del self._state.positions[symbol]
        self._persist()
        return f"paper-{uuid.uuid4().hex[:12]}"

    def get_open_positions(self) -> list[ExchangePosition]:
        return [
            ExchangePosition(
                symbol=p.symbol,
                direction=p.direction,
                size=p.size,
                entry_price=p.entry_price,
            )
            for p in self._state.positions.values()
        ]

    def _slip(self, price: float, direction: Direction, *, opening: bool) -> float:
        adverse = (direction == "long") == opening
        factor = self._slippage_bps / 10_000.0
        return price * (1.0 + factor) if adverse else price * (1.0 - factor)

    def _load_state(self, initial_equity: float) -> _PaperState:
        if not self._state_file.exists():
            return _PaperState(equity=initial_equity, initial_equity=initial_equity)

        raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        positions = {
            symbol: _PaperPosition(**payload)
            for symbol, payload in raw.get("positions", {}).items()
            if isinstance(payload, dict)
        }
        return _PaperState(
            equity=float(raw.get("equity", initial_equity)),
            initial_equity=float(raw.get("initial_equity", initial_equity)),
            realized_pnl=float(raw.get("realized_pnl", 0.0)),
            positions=positions,
        )

    def _persist(self) -> None:
        payload: dict[str, Any] = {
            "equity": self._state.equity,
            "initial_equity": self._state.initial_equity,
            "realized_pnl": self._state.realized_pnl,
            "positions": {s: asdict(p) for s, p in self._state.positions.items()},
        }
        serialized = json.dumps(payload, ensure_ascii=True, indent=2)
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        self._state_file.write_text(serialized, encoding="utf-8")
