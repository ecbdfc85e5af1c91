"""
Backtest engine: replay ticks through the live pipeline with a seeded venue.
"""

from backtest.runner import BacktestResult, run_backtest

__all__ = ["BacktestResult", "run_backtest"]
