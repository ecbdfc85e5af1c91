"""
CLI entry point: prpos run | status | trades | positions | backtest | health.

Every command loads config from --config (default config.yaml). The trading
parameters come from the JSON trading config named in the YAML (or the
default one).
"""

import asyncio
import contextlib
import logging
import sys
from datetime import datetime, timezone

import click
from dotenv import load_dotenv

from config import load_config, load_trading_config

load_dotenv()

logger = logging.getLogger("prpos")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _load_trading(cfg, profile: str | None = None):
    return load_trading_config(
        config_path=cfg.trading_config_path,
        profile=profile if profile is not None else cfg.trading_profile,
    )


@click.group()
@click.option("--config", "config_path", default="config.yaml", help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """prpos: simulated perpetual trading bot (SMA crossover + mean reversion)."""
    _setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- prpos run ----------


async def _run_bot(bot, duration: float | None) -> None:
    await bot.start()
    try:
        if duration:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(bot.wait_halted(), timeout=duration)
        else:
            await bot.wait_halted()
    finally:
        await bot.stop()
        bot.notifier.close()


@cli.command()
@click.option("--duration", default=None, type=float, help="Stop after this many seconds (default: run until Ctrl+C).")
@click.pass_context
def run(ctx: click.Context, duration: float | None) -> None:
    """Start the bot: live simulated feed, strategies, risk checks, execution."""
    cfg = load_config(ctx.obj["config_path"])
    trading_cfg = _load_trading(cfg)
    from prpos_core.bot import build_bot

    bot = build_bot(cfg, trading_cfg)
    click.echo(
        f"Starting {cfg.bot_id}: feed={trading_cfg.feed.mode} every {trading_cfg.feed.interval_ms}ms, "
        f"strategies={', '.join(trading_cfg.strategies.priority)}, state={cfg.storage.state_path}"
    )
    try:
        asyncio.run(_run_bot(bot, duration))
    except KeyboardInterrupt:
        click.echo("Interrupted.")

    from cli.output import format_status

    portfolio = bot.portfolio
    click.echo(format_status(portfolio.summary(), portfolio.open_positions()))


# ---------- prpos status ----------


def _load_portfolio(cfg):
    from data.trade_store import TradeStore
    from prpos_core.contracts import Account
    from prpos_core.portfolio import Portfolio

    store = TradeStore(cfg.storage.state_path)
    account = store.load_account(cfg.account.id) or Account(id=cfg.account.id, balance=cfg.account.initial_balance)
    portfolio = Portfolio(account)
    portfolio.load(account, store.list_positions())
    return portfolio


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show account balance, open positions and performance metrics."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_status

    portfolio = _load_portfolio(cfg)
    click.echo(format_status(portfolio.summary(), portfolio.open_positions()))


# ---------- prpos trades / positions ----------


@cli.command()
@click.option("--status", "status_filter", default=None,
              type=click.Choice(["pending", "filled", "partial", "cancelled", "failed"]))
@click.option("--side", default=None, type=click.Choice(["long", "short"]))
@click.option("--strategy", default=None, help="Strategy name (SMA, MeanReversion).")
@click.option("--start", "start_str", default=None, help="Start date filter (ISO).")
@click.option("--end", "end_str", default=None, help="End date filter (ISO).")
@click.option("--limit", default=20, show_default=True, help="Most recent N trades.")
@click.pass_context
def trades(
    ctx: click.Context,
    status_filter: str | None,
    side: str | None,
    strategy: str | None,
    start_str: str | None,
    end_str: str | None,
    limit: int,
) -> None:
    """List recorded trades."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_trades
    from data.trade_store import TradeStore

    store = TradeStore(cfg.storage.state_path)
    rows = store.list_trades(
        status=status_filter,
        side=side,
        strategy=strategy,
        since=_parse_date(start_str),
        until=_parse_date(end_str),
        limit=limit,
    )
    click.echo(format_trades(rows))


@cli.command()
@click.option("--status", "status_filter", default=None, type=click.Choice(["open", "closed"]))
@click.option("--side", default=None, type=click.Choice(["long", "short"]))
@click.option("--strategy", default=None, help="Strategy name (SMA, MeanReversion).")
@click.pass_context
def positions(ctx: click.Context, status_filter: str | None, side: str | None, strategy: str | None) -> None:
    """List positions."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_positions
    from data.trade_store import TradeStore

    store = TradeStore(cfg.storage.state_path)
    click.echo(format_positions(store.list_positions(status=status_filter, side=side, strategy=strategy)))


# ---------- prpos backtest ----------


@cli.command()
@click.option("--csv", "csv_path", default=None, type=click.Path(), help="Tick CSV (timestamp,price,volume). Default: ticks in the store.")
@click.option("--start", "start_str", default=None, help="Start date filter (ISO).")
@click.option("--end", "end_str", default=None, help="End date filter (ISO).")
@click.option("--seed", default=None, type=int, help="Venue seed (default: backtest.seed).")
@click.option("--profile", default="backtest", show_default=True, help="Trading config profile to apply.")
@click.pass_context
def backtest(
    ctx: click.Context,
    csv_path: str | None,
    start_str: str | None,
    end_str: str | None,
    seed: int | None,
    profile: str,
) -> None:
    """Replay ticks through the strategies and simulated venue."""
    cfg = load_config(ctx.obj["config_path"])
    trading_cfg = _load_trading(cfg, profile=profile or None)
    from backtest import run_backtest
    from cli.output import format_backtest_summary

    since = _parse_date(start_str)
    until = _parse_date(end_str)
    if csv_path:
        from data.tick_loader import load_ticks_csv

        ticks = [
            t for t in load_ticks_csv(csv_path)
            if (since is None or t.timestamp >= since) and (until is None or t.timestamp <= until)
        ]
        source = csv_path
    else:
        from data.trade_store import TradeStore

        ticks = TradeStore(cfg.storage.state_path).list_ticks(since=since, until=until)
        source = cfg.storage.state_path

    if not ticks:
        click.echo(f"No ticks found in {source}. Run 'prpos run' first or pass --csv.")
        return

    click.echo(f"Running backtest on {len(ticks)} ticks from {source} ...")
    result = run_backtest(
        ticks,
        trading_cfg,
        initial_balance=cfg.backtest.initial_balance,
        seed=seed if seed is not None else cfg.backtest.seed,
        state_path=cfg.backtest.state_path,
        venue_timeout_seconds=cfg.execution.venue_timeout_seconds,
    )
    click.echo(format_backtest_summary(result))


# ---------- prpos health ----------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check system health: config, trading config, state store.

    Exit code 0 = healthy, 1 = unhealthy.
    """
    checks: list[tuple[str, bool, str]] = []

    try:
        cfg = load_config(ctx.obj["config_path"])
        checks.append(("config", True, f"loaded (bot {cfg.bot_id})"))
    except Exception as e:
        checks.append(("config", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    try:
        trading_cfg = _load_trading(cfg)
        checks.append((
            "trading_config",
            True,
            f"validated (v{trading_cfg.version}, feed={trading_cfg.feed.mode}, "
            f"max_leverage={trading_cfg.risk.max_leverage:g}x)",
        ))
    except Exception as e:
        checks.append(("trading_config", False, str(e)))

    try:
        from data.trade_store import TradeStore

        store = TradeStore(cfg.storage.state_path)
        open_count = len(store.list_positions(status="open"))
        checks.append(("store", True, f"{store.count_ticks()} ticks, {open_count} open positions"))
    except Exception as e:
        checks.append(("store", False, str(e)))

    _print_health(checks)
    healthy = all(ok for _, ok, _ in checks)
    raise SystemExit(0 if healthy else 1)


def _print_health(checks: list[tuple[str, bool, str]]) -> None:
    for name, ok, detail in checks:
        status = "OK" if ok else "FAIL"
        click.echo(f"  [{status}] {name}: {detail}")
    healthy = all(ok for _, ok, _ in checks)
    click.echo(f"\nHealth: {'HEALTHY' if healthy else 'UNHEALTHY'}")


if __name__ == "__main__":
    cli()
