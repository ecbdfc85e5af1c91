"""Tests for the tick-replay backtest."""

import math
from pathlib import Path

import pytest

from backtest import BacktestResult, run_backtest
from config.trading_config import load_trading_config

from conftest import make_ticks


def _wave(n: int = 240) -> list[float]:
    """Slow sine wave plus a ramp: enough structure for both strategies to fire."""
    return [100 + 8 * math.sin(i / 15) + i * 0.02 for i in range(n)]


@pytest.fixture
def trading_config():
    return load_trading_config(profile="backtest")


def test_empty_ticks(trading_config) -> None:
    result = run_backtest([], trading_config)
    assert isinstance(result, BacktestResult)
    assert result.ticks == 0
    assert result.trades == []
    assert result.final_balance == result.initial_balance
    assert result.total_return_pct == 0.0


def test_replay_trades_and_flattens(trading_config) -> None:
    result = run_backtest(make_ticks(_wave()), trading_config, initial_balance=10_000.0, seed=1)
    assert result.ticks == 240
    assert result.trades
    assert result.positions
    assert all(p.status.value == "closed" for p in result.positions)
    assert result.metrics.total_trades == len(result.positions)


def test_balance_identity(trading_config) -> None:
    result = run_backtest(make_ticks(_wave()), trading_config, seed=2)
    realized = sum(p.realized_pnl for p in result.positions)
    assert result.final_balance == pytest.approx(result.initial_balance + realized - result.total_fees)


def test_seeded_runs_reproducible(trading_config) -> None:
    ticks = make_ticks(_wave())
    a = run_backtest(ticks, trading_config, seed=5)
    b = run_backtest(ticks, trading_config, seed=5)
    assert a.final_balance == b.final_balance
    assert [(t.side, t.size, t.price) for t in a.trades] == [(t.side, t.size, t.price) for t in b.trades]


def test_state_path_replaced(trading_config, tmp_path: Path) -> None:
    state = tmp_path / "bt.db"
    ticks = make_ticks(_wave(120))
    first = run_backtest(ticks, trading_config, state_path=state)
    second = run_backtest(ticks, trading_config, state_path=state)
    assert state.exists()
    assert len(first.trades) == len(second.trades)


def test_period_from_ticks(trading_config) -> None:
    ticks = make_ticks(_wave(50))
    result = run_backtest(ticks, trading_config)
    assert result.start_time == ticks[0].timestamp
    assert result.end_time == ticks[-1].timestamp
