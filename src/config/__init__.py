"""
Configuration loaders.

App config:      reads config.yaml, resolves env vars for secrets.
Trading config:  reads trading.default.json (or override), validates against JSON Schema.
"""

from config.loader import (
    AccountConfig,
    AlertingConfig,
    AppConfig,
    BacktestConfig,
    ExecutionConfig,
    StorageConfig,
    load_config,
)
from config.trading_config import (
    FeedConfig,
    MeanReversionStrategyConfig,
    RiskConfig,
    SmaStrategyConfig,
    StrategiesConfig,
    TradingConfig,
    TradingConfigError,
    VenueConfig,
    load_trading_config,
)

__all__ = [
    # App config (YAML)
    "AccountConfig",
    "AlertingConfig",
    "AppConfig",
    "BacktestConfig",
    "ExecutionConfig",
    "StorageConfig",
    "load_config",
    # Trading config (JSON + schema)
    "FeedConfig",
    "MeanReversionStrategyConfig",
    "RiskConfig",
    "SmaStrategyConfig",
    "StrategiesConfig",
    "TradingConfig",
    "TradingConfigError",
    "VenueConfig",
    "load_trading_config",
]
