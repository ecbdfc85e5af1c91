"""
prpos-core: contracts, price feed, strategies, risk manager and portfolio.

The Bot orchestrator lives in prpos_core.bot and is imported from there, so
importing the core does not pull in execution or persistence.
"""

from prpos_core.contracts import (
    Account,
    OrderType,
    Position,
    PositionRiskAssessment,
    PositionStatus,
    PriceTick,
    RiskAssessment,
    Side,
    TradeRecord,
    TradeRequest,
    TradeStatus,
    TradingSignal,
)
from prpos_core.portfolio import Portfolio, PortfolioError, PortfolioMetrics, PortfolioSummary
from prpos_core.price_feed import FeedError, PriceFeed
from prpos_core.risk_manager import RiskManager, liquidation_price, unrealized_pnl

__all__ = [
    "Account",
    "FeedError",
    "OrderType",
    "Portfolio",
    "PortfolioError",
    "PortfolioMetrics",
    "PortfolioSummary",
    "Position",
    "PositionRiskAssessment",
    "PositionStatus",
    "PriceFeed",
    "PriceTick",
    "RiskAssessment",
    "RiskManager",
    "Side",
    "TradeRecord",
    "TradeRequest",
    "TradeStatus",
    "TradingSignal",
    "liquidation_price",
    "unrealized_pnl",
]
