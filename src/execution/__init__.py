"""
Execution: venue contract, simulated venue, and the trade executor that
turns allowed requests into trade records and positions.
"""

from execution.models import OrderResult
from execution.trade_executor import TradeExecutor
from execution.venue import SimulatedVenue, Venue

__all__ = ["OrderResult", "SimulatedVenue", "TradeExecutor", "Venue"]
