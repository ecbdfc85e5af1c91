"""
Mean reversion: z-score of the latest tick return against a rolling window.

    z < -threshold -> LONG  (oversold)
    z > +threshold -> SHORT (overbought)

Returns are measured against the last observed price; the first tick only
seeds that price.
"""

from __future__ import annotations

import logging
import statistics
from collections import deque

from config.trading_config import MeanReversionStrategyConfig
from prpos_core.contracts import PriceTick, Side, TradingSignal
from prpos_core.strategies.base import Strategy

logger = logging.getLogger("prpos.strategy.mean_reversion")


def z_score(returns: list[float]) -> float:
    """Z-score of the last element against the population mean/stdev.
    0.0 when there are fewer than 2 values or the stdev is 0."""
    if len(returns) < 2:
        return 0.0
    mean = statistics.fmean(returns)
    stdev = statistics.pstdev(returns, mu=mean)
    if stdev == 0:
        return 0.0
    return (returns[-1] - mean) / stdev


class MeanReversionStrategy(Strategy):
    name = "MeanReversion"

    def __init__(self, config: MeanReversionStrategyConfig) -> None:
        super().__init__(
            cooldown_seconds=config.cooldown_seconds,
            base_size=config.base_size,
            min_size=config.min_size,
        )
        self._threshold = config.threshold
        self._returns: deque[float] = deque(maxlen=config.window)
        self._last_price: float | None = None

    def _evaluate(self, tick: PriceTick) -> TradingSignal | None:
        previous, self._last_price = self._last_price, tick.price
        if previous is None:
            return None
        self._returns.append((tick.price - previous) / previous)

        if len(self._returns) < self._returns.maxlen:
            return None
        if self.in_cooldown(tick.timestamp):
            return None

        z = z_score(list(self._returns))
        if z < -self._threshold:
            side = Side.LONG
        elif z > self._threshold:
            side = Side.SHORT
        else:
            return None

        ratio = abs(z) / self._threshold
        confidence = min(min(ratio, 1.0) * self.volatility_factor() * self.momentum_factor(), 1.0)
        signal = TradingSignal(
            side=side,
            size=self._size(min(ratio, 2)),
            confidence=confidence,
            strategy=self.name,
            timestamp=tick.timestamp,
        )
        logger.info("Mean reversion signal: %s at %.4f (z=%.4f)", side.value, tick.price, z)
        return signal

    def volatility_factor(self) -> float:
        """1 + 10 x stdev of the last 5 returns, capped at 2."""
        if len(self._returns) < 5:
            return 1.0
        recent = list(self._returns)[-5:]
        return min(1 + statistics.pstdev(recent) * 10, 2.0)

    def momentum_factor(self) -> float:
        """1 + 5 x |sum of the last 3 returns|, capped at 1.5."""
        if len(self._returns) < 3:
            return 1.0
        recent = list(self._returns)[-3:]
        return min(1 + abs(sum(recent)) * 5, 1.5)

    def _clear(self) -> None:
        self._returns.clear()
        self._last_price = None

    def status(self) -> dict:
        returns = list(self._returns)
        return {
            **super().status(),
            "window": self._returns.maxlen,
            "threshold": self._threshold,
            "z_score": z_score(returns) if len(returns) == self._returns.maxlen else None,
            "mean": statistics.fmean(returns) if returns else None,
            "volatility": statistics.pstdev(returns) if len(returns) >= 2 else 0.0,
            "data_points": len(returns),
        }
