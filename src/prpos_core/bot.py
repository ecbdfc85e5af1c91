"""
Bot: composition root for feed -> strategies -> risk -> executor -> portfolio.

Ticks arrive through an asyncio.Queue and a single consumer task processes
each one to completion before taking the next:

    1. re-mark open positions
    2. evaluate every open position; close those that trip a trigger
    3. run strategies in priority order; execute the first signal only
    4. archive the tick and the new marks

A failure while processing one tick is logged and reported, and the loop
moves on to the next tick.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Sequence

from config.loader import AppConfig
from config.trading_config import TradingConfig
from data.trade_store import TradeStore
from execution.trade_executor import TradeExecutor
from execution.venue import SimulatedVenue, Venue
from notify.event_logger import EventNotifier
from prpos_core.contracts import Account, PriceTick, TradeRequest, TradingSignal
from prpos_core.portfolio import Portfolio
from prpos_core.price_feed import PriceFeed
from prpos_core.risk_manager import RiskManager
from prpos_core.strategies import Strategy, build_strategies

logger = logging.getLogger("prpos.bot")


class TickClock:
    """Current time as seen by the pipeline: the timestamp of the tick being
    processed, or wall-clock time before the first tick."""

    def __init__(self) -> None:
        self._current: datetime | None = None

    def advance(self, ts: datetime) -> None:
        self._current = ts

    def now(self) -> datetime:
        return self._current or datetime.now(timezone.utc)


class Bot:
    def __init__(
        self,
        *,
        strategies: Sequence[Strategy],
        risk_manager: RiskManager,
        portfolio: Portfolio,
        executor: TradeExecutor,
        store: TradeStore,
        notifier: EventNotifier,
        account: Account,
        feed: PriceFeed | None = None,
        clock: TickClock | None = None,
        persist_ticks: bool = True,
        close_on_shutdown: bool = False,
        bot_id: str = "prpos",
    ) -> None:
        self._strategies = list(strategies)
        self._risk = risk_manager
        self._portfolio = portfolio
        self._executor = executor
        self._store = store
        self._notifier = notifier
        self._initial_account = account
        self._feed = feed
        self._clock = clock or TickClock()
        self._persist_ticks = persist_ticks
        self._close_on_shutdown = close_on_shutdown
        self._bot_id = bot_id
        self._queue: asyncio.Queue | None = None
        self._consumer: asyncio.Task | None = None
        self._running = False
        self._halted: asyncio.Event | None = None
        self._ticks_processed = 0
        self._last_tick: PriceTick | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def portfolio(self) -> Portfolio:
        return self._portfolio

    @property
    def notifier(self) -> EventNotifier:
        return self._notifier

    @property
    def ticks_processed(self) -> int:
        return self._ticks_processed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load_state(self) -> None:
        """Load the account row and all positions from the store into the portfolio."""
        stored = await asyncio.to_thread(self._store.load_account, self._initial_account.id)
        account = stored or self._initial_account
        positions = await asyncio.to_thread(self._store.list_positions)
        self._portfolio.load(account, positions)
        if stored is None:
            await asyncio.to_thread(self._store.save_account, self._portfolio.account())

    async def start(self) -> None:
        if self._running:
            logger.warning("Bot is already running")
            return
        if self._feed is None:
            raise RuntimeError("Bot has no price feed; use process_tick() to drive it")
        await self.load_state()
        self._queue = asyncio.Queue()
        self._halted = asyncio.Event()
        self._consumer = asyncio.create_task(self._consume(self._queue), name="prpos-tick-consumer")
        await self._feed.start(self._queue, on_halt=self._on_feed_halted)
        self._running = True
        account = self._portfolio.account()
        logger.info("Bot %s started: balance=%.2f open=%d", self._bot_id, account.balance, account.open_positions_count)
        self._notifier.bot_started(account.balance, account.open_positions_count)

    async def stop(self) -> None:
        """Stop the feed, finish queued ticks, optionally flatten, save the account.

        Also completes the shutdown of a bot whose feed halted on its own.
        """
        if not self._running and self._consumer is None:
            logger.warning("Bot is not running")
            return
        self._running = False
        if self._feed is not None:
            await self._feed.stop()
        if self._queue is not None and self._consumer is not None:
            if not self._consumer.done():
                await self._queue.join()
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
        self._consumer = None
        self._queue = None

        if self._close_on_shutdown:
            closed = await self.close_all("Bot shutdown")
            logger.info("Closed %d position(s) on shutdown", closed)
        await asyncio.to_thread(self._store.save_account, self._portfolio.account())
        logger.info("Bot %s stopped after %d ticks", self._bot_id, self._ticks_processed)
        self._notifier.shutdown(self._ticks_processed)
        if self._halted is not None:
            self._halted.set()

    def _on_feed_halted(self, exc: BaseException) -> None:
        logger.error("Price feed halted, bot %s stopping: %s", self._bot_id, exc)
        self._notifier.error("Price feed halted")
        self._running = False
        if self._halted is not None:
            self._halted.set()

    async def wait_halted(self) -> None:
        """Block until the bot stops running, by stop() or by a feed halt."""
        if self._halted is None:
            return
        await self._halted.wait()

    async def _consume(self, queue: asyncio.Queue) -> None:
        while True:
            tick = await queue.get()
            try:
                await self.handle_tick(tick)
            finally:
                queue.task_done()

    async def close_all(self, reason: str) -> int:
        """Attempt to close every open position. Returns how many closed."""
        closed = 0
        for position in self._portfolio.open_positions():
            if await self._executor.close_position(position.id, reason):
                closed += 1
        return closed

    # ------------------------------------------------------------------
    # Tick pipeline
    # ------------------------------------------------------------------

    async def handle_tick(self, tick: PriceTick) -> None:
        """process_tick with failures logged and reported instead of raised."""
        try:
            await self.process_tick(tick)
        except Exception:
            logger.exception("Tick processing failed at %s", tick.timestamp.isoformat())
            self._notifier.error("Tick processing failed")

    async def process_tick(self, tick: PriceTick) -> None:
        self._clock.advance(tick.timestamp)
        self._last_tick = tick
        self._portfolio.update_mark_price(tick.price)

        for position in self._portfolio.open_positions():
            assessment = self._risk.evaluate_position(position, tick.price)
            if not assessment.should_close:
                continue
            reason = assessment.reason or "Risk trigger"
            logger.warning("Risk trigger on %s: %s", position.id, reason)
            self._notifier.risk_alert(
                position.id,
                reason,
                liquidation_price=assessment.liquidation_price,
                margin_call=assessment.margin_call,
            )
            await self._executor.close_position(position.id, reason)

        executed: TradingSignal | None = None
        for strategy in self._strategies:
            signal = strategy.on_tick(tick)
            if signal is None:
                continue
            if executed is not None:
                logger.info(
                    "%s %s signal superseded by %s on this tick",
                    signal.strategy, signal.side.value, executed.strategy,
                )
                self._notifier.signal_superseded(signal.strategy, signal.side.value, executed.strategy)
                continue
            executed = signal
            await self._executor.execute_trade(
                TradeRequest(side=signal.side, size=signal.size, price=tick.price, strategy=signal.strategy)
            )

        if self._persist_ticks:
            await asyncio.to_thread(self._store.insert_tick, tick)
        open_positions = self._portfolio.open_positions()
        if open_positions:
            await asyncio.to_thread(self._store.update_positions, open_positions)
        self._ticks_processed += 1

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def status(self) -> dict:
        summary = self._portfolio.summary()
        return {
            "bot_id": self._bot_id,
            "running": self._running,
            "ticks_processed": self._ticks_processed,
            "last_price": self._last_tick.price if self._last_tick else None,
            "account": asdict(summary.account),
            "equity": summary.equity,
            "unrealized_pnl": summary.unrealized_pnl,
            "metrics": asdict(summary.metrics),
            "strategies": [s.status() for s in self._strategies],
            "risk": self._risk.status(),
            "feed": self._feed.status() if self._feed is not None else None,
        }


def build_bot(
    app_config: AppConfig,
    trading_config: TradingConfig,
    *,
    store: TradeStore | None = None,
    notifier: EventNotifier | None = None,
    venue: Venue | None = None,
    rng: random.Random | None = None,
    with_feed: bool = True,
    initial_balance: float | None = None,
) -> Bot:
    """Wire a Bot from configuration. Collaborators may be injected for tests."""
    rng = rng or random.Random(trading_config.feed.seed)
    store = store or TradeStore(app_config.storage.state_path)
    notifier = notifier or EventNotifier(
        app_config.bot_id,
        enabled=app_config.alerting.structured_logs,
        webhook_url=app_config.alerting.webhook_url,
    )
    feed = PriceFeed(trading_config.feed, rng=rng) if with_feed else None
    clock = TickClock()

    if venue is None:
        def _reference_price() -> float | None:
            return feed.latest().price if feed is not None else None

        venue = SimulatedVenue(trading_config.venue, rng=rng, price_source=_reference_price)

    account = Account(
        id=app_config.account.id,
        balance=initial_balance if initial_balance is not None else app_config.account.initial_balance,
    )
    risk = RiskManager(trading_config.risk)
    portfolio = Portfolio(account)
    executor = TradeExecutor(
        risk,
        portfolio,
        venue,
        store,
        notifier,
        venue_timeout_seconds=app_config.execution.venue_timeout_seconds,
        clock=clock.now,
    )
    return Bot(
        strategies=build_strategies(trading_config.strategies),
        risk_manager=risk,
        portfolio=portfolio,
        executor=executor,
        store=store,
        notifier=notifier,
        account=account,
        feed=feed,
        clock=clock,
        persist_ticks=app_config.storage.persist_ticks,
        close_on_shutdown=app_config.execution.close_on_shutdown,
        bot_id=app_config.bot_id,
    )
