"""
Tick-replay backtest: feed recorded ticks through the live pipeline.

The same Bot, strategies, risk manager and executor used live are wired to a
seeded SimulatedVenue and a scratch store. Ticks are processed strictly in
order with no lookahead; any position still open after the last tick is
closed at the last price.
"""

from __future__ import annotations

import asyncio
import random
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from config.loader import AccountConfig, AppConfig, ExecutionConfig, StorageConfig
from config.trading_config import TradingConfig, load_trading_config
from data.trade_store import TradeStore
from notify.event_logger import EventNotifier
from prpos_core.bot import build_bot
from prpos_core.contracts import Position, PriceTick, TradeRecord
from prpos_core.portfolio import PortfolioMetrics

END_OF_DATA_REASON = "Backtest end"


@dataclass
class BacktestResult:
    """Result of a backtest run."""

    start_time: datetime
    end_time: datetime
    ticks: int
    initial_balance: float
    final_balance: float
    trades: list[TradeRecord] = field(default_factory=list)
    positions: list[Position] = field(default_factory=list)
    metrics: PortfolioMetrics = field(default_factory=PortfolioMetrics)

    @property
    def total_return_pct(self) -> float:
        if self.initial_balance <= 0:
            return 0.0
        return (self.final_balance - self.initial_balance) / self.initial_balance * 100

    @property
    def total_fees(self) -> float:
        return sum(t.fees for t in self.trades)

    @property
    def win_count(self) -> int:
        return sum(1 for p in self.positions if (p.realized_pnl or 0) > 0)

    @property
    def loss_count(self) -> int:
        return sum(1 for p in self.positions if (p.realized_pnl or 0) < 0)


def run_backtest(
    ticks: Sequence[PriceTick],
    trading_config: TradingConfig | None = None,
    *,
    initial_balance: float = 10_000.0,
    seed: int = 42,
    state_path: str | Path | None = None,
    venue_timeout_seconds: float = 5.0,
) -> BacktestResult:
    """Replay *ticks* through a fresh Bot and return the outcome.

    Parameters
    ----------
    ticks:
        Chronological tick history.
    trading_config:
        Strategy/risk/venue parameters. Loaded from the default if None.
    initial_balance:
        Starting account balance.
    seed:
        Seed for the simulated venue so runs are reproducible.
    state_path:
        SQLite file for the run's trades and positions. Any existing file is
        replaced. A temporary file is used when None.
    """
    if trading_config is None:
        trading_config = load_trading_config()

    if state_path is None:
        with tempfile.TemporaryDirectory(prefix="prpos-backtest-") as tmp:
            return asyncio.run(
                _replay(ticks, trading_config, initial_balance, seed, Path(tmp) / "backtest.db", venue_timeout_seconds)
            )

    path = Path(state_path)
    path.unlink(missing_ok=True)
    return asyncio.run(_replay(ticks, trading_config, initial_balance, seed, path, venue_timeout_seconds))


async def _replay(
    ticks: Sequence[PriceTick],
    trading_config: TradingConfig,
    initial_balance: float,
    seed: int,
    state_path: Path,
    venue_timeout_seconds: float,
) -> BacktestResult:
    app_config = AppConfig(
        bot_id="backtest",
        storage=StorageConfig(state_path=str(state_path), persist_ticks=False),
        account=AccountConfig(id="backtest", initial_balance=initial_balance),
        execution=ExecutionConfig(venue_timeout_seconds=venue_timeout_seconds),
    )
    store = TradeStore(state_path)
    bot = build_bot(
        app_config,
        trading_config,
        store=store,
        notifier=EventNotifier("backtest", enabled=False),
        rng=random.Random(seed),
        with_feed=False,
    )
    await bot.load_state()

    for tick in ticks:
        await bot.handle_tick(tick)
    if ticks:
        await bot.close_all(END_OF_DATA_REASON)

    now = datetime.now(timezone.utc)
    portfolio = bot.portfolio
    return BacktestResult(
        start_time=ticks[0].timestamp if ticks else now,
        end_time=ticks[-1].timestamp if ticks else now,
        ticks=len(ticks),
        initial_balance=initial_balance,
        final_balance=portfolio.account().balance,
        trades=await asyncio.to_thread(store.list_trades),
        positions=portfolio.closed_positions(),
        metrics=portfolio.metrics(),
    )
