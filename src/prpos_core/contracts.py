"""
Data contracts for prpos-core: ticks, signals, account, positions, trades.

prpos-core consumes PriceTick and produces TradingSignal / TradeRequest.
No I/O; these are plain dataclasses. Value objects are frozen so a snapshot
handed out by the Portfolio can never be mutated behind its back.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Side(str, Enum):
    """Direction of a signal, order or position."""

    LONG = "long"
    SHORT = "short"

    @property
    def opposite(self) -> Side:
        return Side.SHORT if self is Side.LONG else Side.LONG

    @property
    def sign(self) -> int:
        """+1 for long, -1 for short. Multiplier for PnL."""
        return 1 if self is Side.LONG else -1


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class TradeStatus(str, Enum):
    """Lifecycle of a trade record: pending until the venue responds."""

    PENDING = "pending"
    FILLED = "filled"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    FAILED = "failed"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


@dataclass(frozen=True)
class PriceTick:
    """One timestamped price/volume observation. Timestamps in UTC."""

    timestamp: datetime
    price: float
    volume: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.price) or self.price <= 0:
            raise ValueError(f"Tick price must be a positive finite number, got {self.price!r}")
        if not math.isfinite(self.volume) or self.volume < 0:
            raise ValueError(f"Tick volume must be >= 0, got {self.volume!r}")


@dataclass(frozen=True)
class TradingSignal:
    """A strategy's recommendation to open a position."""

    side: Side
    size: float
    confidence: float
    strategy: str
    timestamp: datetime


@dataclass(frozen=True)
class Account:
    """Account snapshot. balance is free capital; margin is the aggregate
    unrealized exposure figure maintained by the Portfolio."""

    id: str
    balance: float
    margin: float = 0.0
    open_positions_count: int = 0


@dataclass(frozen=True)
class Position:
    id: str
    side: Side
    size: float
    entry_price: float
    mark_price: float
    leverage: float
    margin: float
    opened_at: datetime
    strategy: str
    status: PositionStatus = PositionStatus.OPEN
    unrealized_pnl: float | None = 0.0
    realized_pnl: float | None = None
    closed_at: datetime | None = None
    close_price: float | None = None
    close_reason: str | None = None

    @property
    def notional(self) -> float:
        """Entry notional: size x entry price."""
        return self.size * self.entry_price

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def return_pct(self) -> float:
        """Realized return on entry notional, in percent. 0.0 while open."""
        if self.realized_pnl is None or self.notional <= 0:
            return 0.0
        return self.realized_pnl / self.notional * 100


@dataclass(frozen=True)
class TradeRequest:
    """What the orchestrator asks the executor to do."""

    side: Side
    size: float
    price: float
    strategy: str
    order_type: OrderType = OrderType.MARKET


@dataclass(frozen=True)
class TradeRecord:
    id: str
    side: Side
    size: float
    price: float
    fees: float
    status: TradeStatus
    timestamp: datetime
    strategy: str
    venue_order_id: str | None = None


@dataclass(frozen=True)
class RiskAssessment:
    """Allow/deny decision for a proposed opening trade."""

    allowed: bool
    reason: str | None = None
    max_size: float | None = None
    suggested_leverage: float | None = None


@dataclass(frozen=True)
class PositionRiskAssessment:
    """Close-trigger evaluation for one open position at one mark price."""

    should_close: bool
    reason: str | None = None
    liquidation_price: float | None = None
    margin_call: bool = False
