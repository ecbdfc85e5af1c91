"""
Persistence: trades, positions, ticks and the account row in SQLite,
plus tick loading for replay.

Depends on prpos_core.contracts for the value types; no dependency from
prpos_core back to data.
"""

from data.tick_loader import load_ticks_csv
from data.trade_store import TradeStore

__all__ = ["TradeStore", "load_ticks_csv"]
