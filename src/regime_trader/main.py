"""CLI 入口模块 - Regime Trader 命令行接口。"""

import sys
import time
from datetime import datetime
from pathlib import Path
from typing import NoReturn

import click

from regime_trader import __version__
from regime_trader.config import Settings, get_settings
from regime_trader.errors import ConnectivityError
from regime_trader.journal.trades import TradeLog
from regime_trader.pipeline import close_all_positions, run_trading_cycle
from regime_trader.session import TradingSession
from regime_trader.storage.kv import JsonFileStore
from regime_trader.types import PositionSnapshot
from regime_trader.utils.logging import get_logger, setup_logging


def _open_session(settings: Settings) -> TradingSession:
    """创建交易会话；实盘配置缺失或连接失败时退出进程。"""
    logger = get_logger("regime_trader.main")
    settings.ensure_directories()

    if settings.is_live_mode:
        missing = settings.validate_for_live()
        if missing:
            logger.error(
                "missing_required_config",
                missing_keys=missing,
                hint="请在 .env 文件中配置必要的 API 密钥",
            )
            sys.exit(1)

    try:
        return TradingSession.from_settings(settings)
    except ConnectivityError as e:
        logger.error("session_init_failed", error=str(e))
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Regime Trader - 基于市场状态的多周期信号与持仓生命周期引擎。"""
    if version:
        click.echo(f"regime-trader version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="试运行模式，只评估不下单",
)
def once(dry_run: bool) -> None:
    """执行单次交易循环。

    持仓管理 → 冷却检查 → 市场状态 → 信号评估 → 开仓
    """
    setup_logging()
    logger = get_logger("regime_trader.main")
    settings = get_settings()

    logger.info(
        "starting_single_run",
        mode=settings.mode.value,
        dry_run=dry_run,
        timestamp=datetime.now().isoformat(),
    )

    session = _open_session(settings)
    try:
        result = run_trading_cycle(session, dry_run=dry_run)
        logger.info(
            "run_completed",
            status=result.status,
            elapsed_ms=round(result.elapsed_ms, 2),
            decisions=len(result.decisions),
            orders=len(result.orders),
            closes=len(result.closes),
            skips=result.skips,
            warnings=result.warnings,
        )

    except KeyboardInterrupt:
        logger.info("run_interrupted", message="User interrupted")
        sys.exit(0)
    finally:
        session.close()


@cli.command()
@click.option(
    "--interval-s",
    "-i",
    type=int,
    default=None,
    help="循环间隔（秒），默认读取 CYCLE_INTERVAL_S",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="试运行模式，只评估不下单",
)
def loop(interval_s: int | None, dry_run: bool) -> NoReturn:
    """循环执行交易循环。

    每隔指定时间执行一次完整的交易循环。
    使用 Ctrl+C 停止。
    """
    setup_logging()
    logger = get_logger("regime_trader.main")
    settings = get_settings()
    interval_sec = interval_s or settings.cycle_interval_s

    logger.info(
        "starting_loop",
        mode=settings.mode.value,
        interval_s=interval_sec,
        dry_run=dry_run,
    )

    session = _open_session(settings)
    iteration = 0

    try:
        while True:
            iteration += 1
            logger.debug("loop_iteration_start", iteration=iteration)

            try:
                result = run_trading_cycle(session, dry_run=dry_run)
                logger.info(
                    "loop_iteration_completed",
                    iteration=iteration,
                    status=result.status,
                    elapsed_ms=round(result.elapsed_ms, 2),
                    orders=len(result.orders),
                    closes=len(result.closes),
                    warnings=result.warnings,
                )

            except Exception as e:
                logger.exception(
                    "loop_iteration_failed",
                    iteration=iteration,
                    error=str(e),
                )
                # 继续循环，不因单次失败而退出

            time.sleep(interval_sec)

    except KeyboardInterrupt:
        logger.info(
            "loop_stopped",
            message="User stopped loop",
            total_iterations=iteration,
        )
        sys.exit(0)
    finally:
        session.close()


@cli.command("close-all")
@click.option("--yes", "-y", is_flag=True, default=False, help="跳过确认")
def close_all(yes: bool) -> None:
    """平掉所有持仓并记录交易日志。"""
    setup_logging()
    logger = get_logger("regime_trader.main")
    settings = get_settings()

    if not yes and not click.confirm("Close ALL open positions?", default=False):
        click.echo("Aborted.")
        return

    session = _open_session(settings)
    try:
        result = close_all_positions(session)
    finally:
        session.close()

    for close in result.closes:
        click.echo(f"  {close['symbol']}: {close['action']}")
    logger.info("close_all_completed", status=result.status, closes=len(result.closes))
    if result.warnings:
        sys.exit(1)


@cli.command()
def status() -> None:
    """显示系统状态、持仓与交易统计。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("Regime Trader - Status")
    click.echo("=" * 50)
    click.echo()

    # 运行模式
    mode_marker = "[PAPER]" if settings.is_paper_mode else "[LIVE]"
    mode_text = "Paper Trading" if settings.is_paper_mode else "Live Trading"
    click.echo(f"{mode_marker} Mode: {mode_text}")
    click.echo(f"   Symbols: {', '.join(settings.symbols)}")
    click.echo(f"   Timeframes: {settings.confirmation_interval} / {settings.trigger_interval}")
    click.echo()

    # API 配置状态
    click.echo("[API Configuration]")
    binance_status = "[OK] Configured" if settings.binance_api_key else "[--] Not configured"
    telegram_status = "[OK] Configured" if settings.telegram_enabled else "[--] Not configured"
    click.echo(f"   Binance API: {binance_status}")
    click.echo(f"   Binance Testnet: {'Yes' if settings.binance_testnet else 'No'}")
    click.echo(f"   Telegram: {telegram_status}")
    click.echo()

    # 仓位参数
    click.echo("[Position Parameters]")
    click.echo(f"   Max open positions: {settings.max_open_positions}")
    for regime in sorted(settings.budget_by_regime):
        click.echo(
            f"   {regime}: budget ${settings.budget_for(regime):g}, "
            f"leverage {settings.leverage_for(regime):g}x, rrr {settings.reward_risk_for(regime):g}"
        )
    click.echo()

    # 当前持仓
    click.echo("[Tracked Positions]")
    raw_positions = JsonFileStore(settings.state_dir / "positions.json").load_all()
    if not raw_positions:
        click.echo("   (none)")
    for symbol, payload in sorted(raw_positions.items()):
        snap = PositionSnapshot.from_dict(payload)
        click.echo(
            f"   {symbol}: {snap.direction} @ {snap.entry_price:g} x{snap.leverage:g} "
            f"phase={snap.phase} regime={snap.market_regime}"
        )
    click.echo()

    # 交易统计
    stats = TradeLog(settings.journal_dir).stats()
    click.echo("[Trade Stats]")
    click.echo(f"   Trades: {stats['trades']}  Wins: {stats['wins']}  Losses: {stats['losses']}")
    click.echo(f"   Win rate: {stats['win_rate'] * 100:.1f}%  Avg PnL: {stats['avg_pnl_pct']:.2f}%")
    click.echo()

    # 验证状态
    if settings.is_live_mode:
        missing = settings.validate_for_live()
        if missing:
            click.echo("[ERROR] Live mode configuration incomplete, missing:")
            for key in missing:
                click.echo(f"   - {key}")
        else:
            click.echo("[OK] Live mode configuration complete")
    else:
        click.echo("[INFO] Paper mode does not require API keys")

    click.echo()
    click.echo("=" * 50)


@cli.command()
def check() -> None:
    """检查系统依赖和配置。"""
    setup_logging()
    logger = get_logger("regime_trader.main")

    click.echo("Checking system dependencies...")
    click.echo()

    all_ok = True

    # 检查必要的包
    packages = [
        ("pydantic", "Configuration validation"),
        ("pydantic_settings", "Settings loading"),
        ("httpx", "HTTP client"),
        ("pandas", "Data processing"),
        ("numpy", "Numerical computing"),
        ("structlog", "Structured logging"),
        ("click", "CLI framework"),
        ("tenacity", "Retry mechanism"),
        ("binance", "Exchange client"),
    ]

    for pkg_name, desc in packages:
        try:
            __import__(pkg_name)
            click.echo(f"  [OK] {pkg_name} - {desc}")
        except ImportError:
            click.echo(f"  [MISSING] {pkg_name} - {desc}")
            all_ok = False

    click.echo()

    # 检查配置文件
    env_file = Path(".env")
    if env_file.exists():
        click.echo("  [OK] .env configuration file exists")
    else:
        click.echo("  [WARN] .env file not found (using defaults)")

    click.echo()

    if all_ok:
        click.echo("[OK] All dependency checks passed")
    else:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")

    logger.info("dependency_check_completed", all_ok=all_ok)


# 支持 python -m regime_trader.main 调用
if __name__ == "__main__":
    cli()
