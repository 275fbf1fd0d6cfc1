"""Shared domain types for the regime-aware trading engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Literal

Regime = Literal["bullish", "bearish", "neutral", "flat_or_choppy", "volatile_uncertain"]
Direction = Literal["long", "short"]
Confidence = Literal["low", "medium", "high"]
CandlePosition = Literal["top", "anticipation_top", "middle", "anticipation_bottom", "bottom"]
Phase = Literal["init", "trail"]
TradeResult = Literal["win", "loss", "liquidated"]
CloseReason = Literal["tp_hit", "sl_hit", "trailing_tp_hit", "liquidated_exit", "manual_close"]
TradeType = Literal["standard", "override", "anticipation"]

REGIMES: tuple[Regime, ...] = (
    "bullish",
    "bearish",
    "neutral",
    "flat_or_choppy",
    "volatile_uncertain",
)


@dataclass(slots=True, frozen=True)
class RegimeResult:
    """Regime label with its confidence and the timeframe(s) behind it."""

    regime: Regime
    confidence: float
    timeframe: str


@dataclass(slots=True)
class IndicatorSnapshot:
    """Normalized indicator values for one candle series."""

    ema_fast: float = 0.0
    ema_slow: float = 0.0
    ema_slope: float = 0.0
    atr: float = 0.0
    atr_pct: float = 0.0
    macd: float = 0.0
    macd_hist: float = 0.0
    macd_hist_prev: float = 0.0
    rsi: float = 0.0
    rsi_trend: list[float] = field(default_factory=list)
    adx: float = 0.0
    adx_prev: float = 0.0
    volume_pct: float = 0.0
    divergence_score: float = 0.0
    price_slope: float = 0.0
    last_close: float = 0.0
    score: float = 0.0

    @property
    def adx_slope(self) -> float:
        return self.adx - self.adx_prev

    @property
    def macd_accel(self) -> float:
        return self.macd_hist - self.macd_hist_prev


@dataclass(slots=True)
class SignalEvaluation:
    """Outcome of scoring + rule-set evaluation for one symbol."""

    symbol: str
    score: float
    direction: Direction | None
    reason: str
    confidence: Confidence
    passed: bool
    snapshot: IndicatorSnapshot = field(default_factory=IndicatorSnapshot)
    triggered_by: str = ""
    regime: Regime = "neutral"
    trigger_position: str = ""

    @property
    def should_open(self) -> bool:
        return self.passed and self.direction is not None


@dataclass(slots=True)
class PositionSnapshot:
    """Persisted state of one tracked position."""

    symbol: str
    direction: Direction
    entry_price: float
    leverage: float
    market_regime: Regime
    tx_ref: str
    opened_at: float
    signal_score: float = 0.0
    rsi: float = 0.0
    macd_hist: float = 0.0
    ema_slope: float = 0.0
    atr: float = 0.0
    atr_pct: float = 0.0
    adx: float = 0.0
    adx_slope: float = 0.0
    volume_pct: float = 0.0
    divergence_score: float = 0.0
    tp: float = 0.0
    sl: float = 0.0
    rrr: float = 0.0
    phase: Phase = "init"
    highest_fav: float | None = None
    lowest_fav: float | None = None
    per_position_budget: float = 0.0
    trade_type: TradeType = "standard"
    triggered_by: str = ""
    entry_reason: str = ""
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PositionSnapshot:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in payload.items() if k in known})


@dataclass(slots=True)
class CooldownRecord:
    """Rolling outcome history of one symbol."""

    history: list[Literal["win", "loss"]] = field(default_factory=list)
    cooldown_until: float = 0.0


@dataclass(slots=True, frozen=True)
class TradeLogEntry:
    """Immutable record of one closed trade."""

    timestamp: str
    symbol: str
    direction: Direction
    entry_price: float
    exit_price: float
    pnl_pct: float
    result: TradeResult
    market_regime: str
    signal_score: float
    rsi: float
    macd_hist: float
    ema_slope: float
    atr_pct: float
    atr: float
    adx: float
    adx_slope: float
    volume_pct: float
    divergence_score: float
    leverage: float
    trade_type: str
    closed_by: CloseReason
    triggered_by: str
    entry_reason: str
    note: str
    tp: float
    sl: float
    rrr: float
    phase: str
    highest_fav: float | None
    lowest_fav: float | None
    per_position_budget: float


@dataclass(slots=True, frozen=True)
class ExchangePosition:
    """A position as reported by the order executor."""

    symbol: str
    direction: Direction
    size: float
    entry_price: float


@dataclass(slots=True, frozen=True)
class OrderAmounts:
    """Fixed-point collateral and notional in ledger units."""

    collateral: int
    notional: int
    decimals: int


@dataclass(slots=True)
class CycleResult:
    """Outcome of one pipeline cycle run."""

    status: str
    decisions: list[dict[str, object]] = field(default_factory=list)
    orders: list[dict[str, object]] = field(default_factory=list)
    closes: list[dict[str, object]] = field(default_factory=list)
    skips: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
