"""
Strategy base: one stateful signal generator per instance.

Each strategy observes every tick via ``on_tick`` and may return a
TradingSignal. No sizing against the account, no orders: the risk manager
and executor decide what happens to a signal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from prpos_core.contracts import PriceTick, TradingSignal


class Strategy(ABC):
    """Base class for tick-driven signal generators.

    Subclasses implement ``_evaluate`` and ``_clear``; the base class owns
    the cooldown timer so every strategy applies it the same way.
    """

    name: str = "strategy"

    def __init__(self, *, cooldown_seconds: float, base_size: float, min_size: float) -> None:
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._base_size = base_size
        self._min_size = min_size
        self._last_signal_at: datetime | None = None

    def in_cooldown(self, now: datetime) -> bool:
        if self._last_signal_at is None:
            return False
        return now - self._last_signal_at < self._cooldown

    def on_tick(self, tick: PriceTick) -> TradingSignal | None:
        """Feed one tick. Returns a signal or None."""
        signal = self._evaluate(tick)
        if signal is not None:
            self._last_signal_at = tick.timestamp
        return signal

    def _size(self, multiplier: float) -> float:
        """base_size x multiplier, floored at min_size."""
        return max(self._base_size * multiplier, self._min_size)

    def reset(self) -> None:
        """Clear rolling windows and the cooldown timer."""
        self._clear()
        self._last_signal_at = None

    @abstractmethod
    def _evaluate(self, tick: PriceTick) -> TradingSignal | None:
        """Update internal windows with *tick* and decide on a signal."""

    @abstractmethod
    def _clear(self) -> None:
        """Drop all rolling-window state."""

    def status(self) -> dict:
        return {
            "name": self.name,
            "last_signal_at": self._last_signal_at.isoformat() if self._last_signal_at else None,
        }
