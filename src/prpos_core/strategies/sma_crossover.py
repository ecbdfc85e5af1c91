"""
SMA crossover: short vs long simple moving average of raw prices.

    diff% = (short_mean - long_mean) / long_mean x 100
    diff% > +threshold  -> LONG  (golden cross)
    diff% < -threshold  -> SHORT (death cross)

size       = base_size x min(|diff%| / 2, 2), floored at min_size
confidence = min((|diff%| + momentum) / 10, 1), clamped to [0, 1]
momentum   = % change of the mean of the last 5 short-window prices vs the
             mean of the (up to 5) prices before them
"""

from __future__ import annotations

import logging
import statistics
from collections import deque

from config.trading_config import SmaStrategyConfig
from prpos_core.contracts import PriceTick, Side, TradingSignal
from prpos_core.strategies.base import Strategy

logger = logging.getLogger("prpos.strategy.sma")

MOMENTUM_SPAN = 5


class SmaCrossoverStrategy(Strategy):
    name = "SMA"

    def __init__(self, config: SmaStrategyConfig) -> None:
        super().__init__(
            cooldown_seconds=config.cooldown_seconds,
            base_size=config.base_size,
            min_size=config.min_size,
        )
        self._threshold = config.threshold_pct
        self._short: deque[float] = deque(maxlen=config.short_window)
        self._long: deque[float] = deque(maxlen=config.long_window)

    def _evaluate(self, tick: PriceTick) -> TradingSignal | None:
        self._short.append(tick.price)
        self._long.append(tick.price)

        if len(self._short) < self._short.maxlen or len(self._long) < self._long.maxlen:
            return None
        if self.in_cooldown(tick.timestamp):
            return None

        short_avg = statistics.fmean(self._short)
        long_avg = statistics.fmean(self._long)
        diff_pct = (short_avg - long_avg) / long_avg * 100

        if diff_pct > self._threshold:
            side = Side.LONG
        elif diff_pct < -self._threshold:
            side = Side.SHORT
        else:
            return None

        strength = abs(diff_pct)
        confidence = min(max((strength + self.momentum()) / 10, 0.0), 1.0)
        signal = TradingSignal(
            side=side,
            size=self._size(min(strength / 2, 2)),
            confidence=confidence,
            strategy=self.name,
            timestamp=tick.timestamp,
        )
        logger.info(
            "SMA signal: %s at %.4f (short %.4f, long %.4f, diff %.3f%%)",
            side.value, tick.price, short_avg, long_avg, diff_pct,
        )
        return signal

    def momentum(self) -> float:
        if len(self._short) < MOMENTUM_SPAN:
            return 0.0
        prices = list(self._short)
        recent = prices[-MOMENTUM_SPAN:]
        older = prices[-2 * MOMENTUM_SPAN:-MOMENTUM_SPAN]
        if not older:
            return 0.0
        older_avg = statistics.fmean(older)
        return (statistics.fmean(recent) - older_avg) / older_avg * 100

    def _clear(self) -> None:
        self._short.clear()
        self._long.clear()

    def status(self) -> dict:
        return {
            **super().status(),
            "short_window": self._short.maxlen,
            "long_window": self._long.maxlen,
            "short_sma": statistics.fmean(self._short) if self._short else None,
            "long_sma": statistics.fmean(self._long) if self._long else None,
            "data_points": min(len(self._short), len(self._long)),
        }
