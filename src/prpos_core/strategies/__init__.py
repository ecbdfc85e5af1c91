"""Signal generators. Each consumes ticks and may emit a TradingSignal."""

from __future__ import annotations

from config.trading_config import StrategiesConfig
from prpos_core.strategies.base import Strategy
from prpos_core.strategies.mean_reversion import MeanReversionStrategy
from prpos_core.strategies.sma_crossover import SmaCrossoverStrategy

__all__ = [
    "MeanReversionStrategy",
    "SmaCrossoverStrategy",
    "Strategy",
    "build_strategies",
]


def build_strategies(config: StrategiesConfig) -> list[Strategy]:
    """Instantiate enabled strategies in priority order."""
    factories = {
        "sma": (config.sma.enabled, lambda: SmaCrossoverStrategy(config.sma)),
        "mean_reversion": (config.mean_reversion.enabled, lambda: MeanReversionStrategy(config.mean_reversion)),
    }
    strategies: list[Strategy] = []
    for key in config.priority:
        enabled, factory = factories[key]
        if enabled:
            strategies.append(factory())
    return strategies
