"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_REGIMES = ("bullish", "bearish", "neutral", "flat_or_choppy", "volatile_uncertain")


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 纸交易
    LIVE = "live"  # 实盘


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


def _per_regime(value: float) -> dict[str, float]:
    return {regime: value for regime in _REGIMES}


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")

    # ==================== Binance API ====================
    binance_api_key: str = Field(default="", description="Binance API Key")
    binance_api_secret: str = Field(default="", description="Binance API Secret")
    binance_testnet: bool = Field(default=True, description="是否使用 Binance 测试网")

    # ==================== 行情与周期 ====================
    symbols: list[str] = Field(
        default_factory=lambda: ["BTCUSDT", "ETHUSDT", "SOLUSDT", "XRPUSDT", "DOGEUSDT"],
        description="交易标的列表",
    )
    confirmation_interval: str = Field(default="30m", description="确认周期")
    trigger_interval: str = Field(default="1h", description="入场触发周期")
    candle_limit: int = Field(default=300, ge=30, le=1500, description="每次拉取K线数量")
    candle_cache_ttl_s: float = Field(default=60.0, gt=0, description="K线缓存有效期（秒）")
    cycle_interval_s: int = Field(default=10, ge=1, description="循环间隔（秒）")

    # ==================== 并发 ====================
    max_workers: int = Field(default=4, ge=1, le=32, description="单周期并发分析的最大线程数")
    symbol_timeout_s: float = Field(default=30.0, gt=0, description="单个标的分析超时（秒）")
    cycle_timeout_s: float = Field(default=120.0, gt=0, description="单周期分析总超时（秒）")

    # ==================== 仓位与风控 ====================
    max_open_positions: int = Field(default=10, ge=1, le=50, description="同时持仓上限")
    budget_by_regime: dict[str, float] = Field(
        default_factory=lambda: _per_regime(10.0),
        description="各市场状态下单笔保证金（USD）",
    )
    leverage_by_regime: dict[str, float] = Field(
        default_factory=lambda: _per_regime(50.0),
        description="各市场状态下杠杆倍数",
    )
    reward_risk_by_regime: dict[str, float] = Field(
        default_factory=lambda: _per_regime(1.6),
        description="各市场状态下止盈/止损比",
    )
    order_retry_attempts: int = Field(default=2, ge=1, le=5, description="下单最大尝试次数")
    order_retry_backoff_s: float = Field(default=2.0, ge=0.0, description="下单重试间隔（秒）")
    collateral_decimals: int = Field(default=6, ge=0, le=18, description="保证金定点精度")

    # ==================== 阈值配置 ====================
    threshold_max_age_hours: float = Field(default=12.0, gt=0, description="阈值配置过期时间（小时）")
    threshold_regen_command: str = Field(
        default="",
        description="阈值重新生成命令（支持 {symbol} {regime} {leverage} 占位符）",
    )
    threshold_backups: int = Field(default=5, ge=0, le=100, description="阈值文件保留备份数量")

    # ==================== 通知 ====================
    telegram_bot_token: str = Field(default="", description="Telegram Bot Token")
    telegram_chat_id: str = Field(default="", description="Telegram Chat ID")
    notify_timeout_s: float = Field(default=5.0, gt=0, description="通知请求超时（秒）")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    state_dir: Path = Field(
        default=Path("data/state"),
        description="持仓、冷却、阈值状态存储目录",
    )
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="交易日志存储目录",
    )

    @field_validator("state_dir", "journal_dir", mode="before")
    @classmethod
    def parse_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    @field_validator("symbols")
    @classmethod
    def normalize_symbols(cls, v: list[str]) -> list[str]:
        """统一为大写交易对名称。"""
        return [s.strip().upper() for s in v if s.strip()]

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.journal_dir.mkdir(parents=True, exist_ok=True)

    @property
    def is_paper_mode(self) -> bool:
        """是否为纸交易模式。"""
        return self.mode == RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """是否为实盘模式。"""
        return self.mode == RunMode.LIVE

    @property
    def telegram_enabled(self) -> bool:
        """是否配置了 Telegram 通知。"""
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def budget_for(self, regime: str) -> float:
        """获取市场状态对应的单笔保证金。"""
        return float(self.budget_by_regime.get(regime, 10.0))

    def leverage_for(self, regime: str) -> float:
        """获取市场状态对应的杠杆倍数。"""
        return float(self.leverage_by_regime.get(regime, 50.0))

    def reward_risk_for(self, regime: str) -> float:
        """获取市场状态对应的止盈/止损比。"""
        return float(self.reward_risk_by_regime.get(regime, 1.6))

    def validate_for_live(self) -> list[str]:
        """验证实盘模式的必要配置，返回缺失项列表。"""
        missing = []
        if not self.binance_api_key:
            missing.append("BINANCE_API_KEY")
        if not self.binance_api_secret:
            missing.append("BINANCE_API_SECRET")
        return missing


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
