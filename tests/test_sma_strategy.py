"""Tests for the SMA crossover strategy."""

from dataclasses import replace

from config.trading_config import SmaStrategyConfig
from prpos_core.contracts import Side
from prpos_core.strategies import SmaCrossoverStrategy

from conftest import make_ticks


def _strategy(**overrides) -> SmaCrossoverStrategy:
    return SmaCrossoverStrategy(replace(SmaStrategyConfig(), **overrides))


def _signals(strategy, ticks):
    return [(i, s) for i, s in ((i, strategy.on_tick(t)) for i, t in enumerate(ticks)) if s is not None]


def test_no_signal_until_windows_full() -> None:
    strategy = _strategy()
    ticks = make_ticks([100 + i for i in range(20)])
    assert _signals(strategy, ticks) == []


def test_rising_series_emits_long() -> None:
    strategy = _strategy()
    ticks = make_ticks([100 + i for i in range(25)])
    signals = _signals(strategy, ticks)
    assert signals
    first_index, signal = signals[0]
    assert first_index == 20  # first tick with both windows full
    assert signal.side is Side.LONG
    assert signal.strategy == "SMA"
    assert 0.0 <= signal.confidence <= 1.0
    assert signal.size >= 0.01


def test_falling_series_emits_short() -> None:
    strategy = _strategy()
    signals = _signals(strategy, make_ticks([200 - i for i in range(25)]))
    assert signals[0][1].side is Side.SHORT


def test_cooldown_blocks_repeat_signal() -> None:
    strategy = _strategy(cooldown_seconds=30)
    # one tick per second: after the first signal nothing for 30 s
    signals = _signals(strategy, make_ticks([100 + i for i in range(60)]))
    indices = [i for i, _ in signals]
    assert indices[0] == 20
    assert all(b - a >= 30 for a, b in zip(indices, indices[1:]))
    assert 50 in indices


def test_flat_series_no_signal() -> None:
    strategy = _strategy()
    assert _signals(strategy, make_ticks([100.0] * 40)) == []


def test_size_scales_with_spread_and_is_capped() -> None:
    strategy = _strategy(base_size=0.1)
    # steep ramp -> |diff%| well above 4 -> multiplier capped at 2
    signals = _signals(strategy, make_ticks([100 * 1.05 ** i for i in range(25)]))
    assert signals[0][1].size == 0.2


def test_reset_clears_windows_and_cooldown() -> None:
    strategy = _strategy()
    ticks = make_ticks([100 + i for i in range(21)])
    assert _signals(strategy, ticks)
    strategy.reset()
    status = strategy.status()
    assert status["data_points"] == 0
    assert status["last_signal_at"] is None
    assert _signals(strategy, ticks)


def test_momentum_positive_on_rising_prices() -> None:
    strategy = _strategy()
    for t in make_ticks([100 + i for i in range(10)]):
        strategy.on_tick(t)
    assert strategy.momentum() > 0
