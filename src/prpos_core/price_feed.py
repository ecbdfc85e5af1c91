"""
Price feed: produces PriceTicks on a fixed cadence into an asyncio queue.

Two generation modes:
    random_walk  next = last x (1 + noise + pull), noise uniform in
                 [-volatility/2, +volatility/2], pull = (target - last) x k
    trend        adds a momentum term from two trailing 20-price windows and
                 scales noise by the realized volatility of recent returns;
                 volume grows with volatility. Momentum is clamped to
                 +/-MAX_MOMENTUM per tick and noise to MAX_TREND_VOLATILITY,
                 and the same pull toward target applies, so the walk stays
                 bounded instead of compounding its own trend

Price never drops below ``min_price``. A bounded FIFO history of recent
prices feeds the trend and volatility computations.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import random
import statistics
from collections import deque
from datetime import datetime, timezone
from typing import Callable

from config.trading_config import FeedConfig
from prpos_core.contracts import PriceTick

logger = logging.getLogger("prpos.feed")

MODES = ("random_walk", "trend")
TREND_WINDOW = 20
TREND_WEIGHT = 0.1
MAX_MOMENTUM = 0.005
MAX_TREND_VOLATILITY = 0.05


class FeedError(Exception):
    """Raised when the feed cannot be built or cannot form a valid price."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceFeed:
    """Simulated price source.

    Parameters
    ----------
    config:
        Feed parameters (mode, cadence, starting price, noise).
    rng:
        Random source. Defaults to ``random.Random(config.seed)`` so a seeded
        config reproduces the same price path.
    clock:
        Returns the timestamp stamped on each tick. Injected by replay/tests.
    """

    def __init__(
        self,
        config: FeedConfig,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if config.mode not in MODES:
            raise FeedError(f"Unknown feed mode {config.mode!r} (expected one of {MODES})")
        if config.interval_ms <= 0:
            raise FeedError(f"interval_ms must be positive, got {config.interval_ms}")
        if config.initial_price <= 0 or config.min_price <= 0:
            raise FeedError("initial_price and min_price must be positive")
        if config.history_size < 2 * TREND_WINDOW + 1:
            raise FeedError(f"history_size must be at least {2 * TREND_WINDOW + 1}, got {config.history_size}")

        self._config = config
        self._rng = rng or random.Random(config.seed)
        self._clock = clock or _utcnow
        self._history: deque[float] = deque(maxlen=config.history_size)
        self._last_price = config.initial_price
        self._latest: PriceTick | None = None
        self._task: asyncio.Task | None = None
        self._on_halt: Callable[[BaseException], None] | None = None
        self._running = False
        self._seed_history()

    def _seed_history(self) -> None:
        """Pre-fill history with a plain random walk (2% band) so the trend
        mode has data from the first tick."""
        price = self._config.initial_price
        self._history.append(price)
        for _ in range(1, min(self._config.warmup_ticks, self._config.history_size)):
            change = (self._rng.random() - 0.5) * 0.02
            price = max(price * (1 + change), self._config.min_price)
            self._history.append(price)
        self._last_price = price

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def next_tick(self) -> PriceTick:
        """Generate, record and return one tick. Raises FeedError if the
        computed price is not a finite number."""
        if self._config.mode == "trend":
            raw_price, volume = self._trend_step()
        else:
            raw_price, volume = self._random_walk_step()

        if not math.isfinite(raw_price) or not math.isfinite(volume):
            raise FeedError(f"Generated non-finite price/volume: {raw_price!r}/{volume!r}")

        price = max(raw_price, self._config.min_price)
        tick = PriceTick(timestamp=self._clock(), price=price, volume=volume)

        self._last_price = price
        self._history.append(price)
        self._latest = tick
        return tick

    def _random_walk_step(self) -> tuple[float, float]:
        cfg = self._config
        noise = (self._rng.random() - 0.5) * cfg.volatility
        pull = (cfg.target_price - self._last_price) * cfg.mean_reversion
        price = self._last_price * (1 + noise + pull)
        volume = self._rng.random() * 1000 + 100
        return price, volume

    def _trend_step(self) -> tuple[float, float]:
        cfg = self._config
        momentum = min(max(self.trend() * TREND_WEIGHT, -MAX_MOMENTUM), MAX_MOMENTUM)
        vol = min(self.volatility(), MAX_TREND_VOLATILITY)
        noise = (self._rng.random() - 0.5) * vol
        pull = (cfg.target_price - self._last_price) * cfg.mean_reversion
        price = self._last_price * (1 + noise + momentum + pull)
        volume = 500 * (1 + vol * 10) * (0.5 + self._rng.random())
        return price, volume

    def trend(self) -> float:
        """Relative change between the mean of the last 20 prices and the
        mean of the 20 before them. 0.0 until 40 prices are available."""
        if len(self._history) < 2 * TREND_WINDOW:
            return 0.0
        prices = list(self._history)
        recent = prices[-TREND_WINDOW:]
        older = prices[-2 * TREND_WINDOW:-TREND_WINDOW]
        older_avg = statistics.fmean(older)
        return (statistics.fmean(recent) - older_avg) / older_avg

    def volatility(self) -> float:
        """Population stdev of the last 20 returns, doubled. Falls back to
        the configured volatility until 20 prices are available."""
        if len(self._history) < TREND_WINDOW:
            return self._config.volatility
        recent = list(self._history)[-TREND_WINDOW:]
        returns = [(b - a) / a for a, b in zip(recent, recent[1:])]
        return statistics.pstdev(returns) * 2

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(
        self,
        tick_queue: asyncio.Queue,
        on_halt: Callable[[BaseException], None] | None = None,
    ) -> None:
        """Begin emitting ticks into *tick_queue* every interval_ms.

        *on_halt* is called with the exception if the producer task dies on
        its own; it is not called for a normal stop().
        """
        if self._running:
            logger.warning("Price feed is already running")
            return
        self._running = True
        self._on_halt = on_halt
        self._task = asyncio.create_task(self._run(tick_queue), name="prpos-price-feed")
        self._task.add_done_callback(self._task_done)
        logger.info("Price feed started (mode=%s, interval=%dms)", self._config.mode, self._config.interval_ms)

    async def _run(self, tick_queue: asyncio.Queue) -> None:
        interval = self._config.interval_ms / 1000
        try:
            while self._running:
                tick = self.next_tick()
                await tick_queue.put(tick)
                await asyncio.sleep(interval)
        except FeedError:
            logger.exception("Price feed halted")
            self._running = False
            raise

    def _task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self._running = False
        if self._on_halt is not None:
            self._on_halt(exc)

    async def stop(self) -> None:
        """Halt production. Once this returns no further tick is enqueued."""
        if self._task is None:
            logger.warning("Price feed is not running")
            return
        self._running = False
        task, self._task = self._task, None
        # a task that died on its own was already reported through _task_done
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Price feed stopped")

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def latest(self) -> PriceTick:
        """Most recent tick, or a zero-volume snapshot of the seed price."""
        if self._latest is not None:
            return self._latest
        return PriceTick(timestamp=self._clock(), price=self._last_price, volume=0.0)

    def history(self) -> list[float]:
        return list(self._history)

    def status(self) -> dict:
        return {
            "running": self._running,
            "mode": self._config.mode,
            "last_price": self._last_price,
            "history_length": len(self._history),
        }
