"""Trading session: every collaborator a cycle needs, wired once."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pandas as pd  # type: ignore[import-untyped]
from binance.client import Client  # type: ignore[import-untyped]
from binance.exceptions import BinanceAPIException, BinanceRequestException  # type: ignore[import-untyped]
from requests.exceptions import RequestException  # type: ignore[import-untyped]

from regime_trader.config import Settings
from regime_trader.data.binance import BinanceDataClient
from regime_trader.data.cache import CandleCache
from regime_trader.errors import ConnectivityError
from regime_trader.exec.base import OrderExecutor
from regime_trader.exec.binance_futures import BinanceFuturesExecutor
from regime_trader.exec.paper import PaperExecutor
from regime_trader.journal.store import JournalStore
from regime_trader.journal.trades import TradeLog
from regime_trader.notify.telegram import LogNotifier, Notifier, TelegramNotifier
from regime_trader.positions.lifecycle import PositionLifecycleManager
from regime_trader.positions.store import PositionStore
from regime_trader.risk.cooldown import CooldownManager
from regime_trader.storage.kv import JsonFileStore
from regime_trader.strategy.entry import EntryDecisionEngine
from regime_trader.strategy.thresholds import ThresholdStore, command_regenerator
from regime_trader.utils.logging import get_logger


class MarketData(Protocol):
    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame: ...

    def fetch_last_price(self, symbol: str) -> float | None: ...


@dataclass(slots=True)
class TradingSession:
    """Explicit context passed to the pipeline instead of module globals."""

    settings: Settings
    market: MarketData
    cache: CandleCache
    thresholds: ThresholdStore
    entry: EntryDecisionEngine
    cooldowns: CooldownManager
    positions: PositionStore
    executor: OrderExecutor
    trade_log: TradeLog
    journal: JournalStore
    notifier: Notifier
    lifecycle: PositionLifecycleManager

    @classmethod
    def assemble(
        cls,
        settings: Settings,
        *,
        market: MarketData,
        executor: OrderExecutor,
        notifier: Notifier,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> TradingSession:
        """Wire stores and engines around the given external adapters."""
        settings.ensure_directories()
        state_dir = settings.state_dir

        regenerate = None
        if settings.threshold_regen_command:
            regenerate = command_regenerator(settings.threshold_regen_command, settings.leverage_for)
        thresholds = ThresholdStore(
            JsonFileStore(state_dir / "thresholds.json", backups=settings.threshold_backups),
            max_age_s=settings.threshold_max_age_hours * 3600,
            regenerate=regenerate,
            clock=clock,
        )
        cache = CandleCache(market, ttl_s=settings.candle_cache_ttl_s)
        entry = EntryDecisionEngine(
            cache,
            thresholds,
            confirmation_interval=settings.confirmation_interval,
            trigger_interval=settings.trigger_interval,
            limit=settings.candle_limit,
        )
        cooldowns = CooldownManager(JsonFileStore(state_dir / "cooldowns.json"), clock=clock)
        positions = PositionStore(JsonFileStore(state_dir / "positions.json"))
        trade_log = TradeLog(settings.journal_dir)
        lifecycle = PositionLifecycleManager(
            positions=positions,
            executor=executor,
            price_source=market.fetch_last_price,
            trade_log=trade_log,
            cooldowns=cooldowns,
            notifier=notifier,
            reward_risk_for=settings.reward_risk_for,
            retry_attempts=settings.order_retry_attempts,
            retry_backoff_s=settings.order_retry_backoff_s,
            sleep=sleep,
        )
        return cls(
            settings=settings,
            market=market,
            cache=cache,
            thresholds=thresholds,
            entry=entry,
            cooldowns=cooldowns,
            positions=positions,
            executor=executor,
            trade_log=trade_log,
            journal=JournalStore(settings.journal_dir / "events"),
            notifier=notifier,
            lifecycle=lifecycle,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> TradingSession:
        """Build the production session.

        Raises:
            ConnectivityError: the exchange client cannot be created.
        """
        logger = get_logger("regime_trader.session")
        try:
            client = Client(
                api_key=settings.binance_api_key or None,
                api_secret=settings.binance_api_secret or None,
                testnet=settings.binance_testnet,
                requests_params={"timeout": settings.symbol_timeout_s},
            )
        except (BinanceAPIException, BinanceRequestException, RequestException) as exc:
            raise ConnectivityError(f"binance_client_init_failed: {exc}") from exc

        market = BinanceDataClient(settings, client=client)
        executor: OrderExecutor
        if settings.is_live_mode:
            executor = BinanceFuturesExecutor(client)
        else:
            executor = PaperExecutor(settings.state_dir)

        notifier: Notifier
        if settings.telegram_enabled:
            notifier = TelegramNotifier(
                settings.telegram_bot_token,
                settings.telegram_chat_id,
                timeout_s=settings.notify_timeout_s,
            )
        else:
            notifier = LogNotifier()

        logger.info(
            "session_ready",
            mode=settings.mode.value,
            executor=type(executor).__name__,
            notifier=type(notifier).__name__,
            symbols=settings.symbols,
        )
        return cls.assemble(settings, market=market, executor=executor, notifier=notifier)

    def close(self) -> None:
        closer = getattr(self.notifier, "close", None)
        if callable(closer):
            closer()
