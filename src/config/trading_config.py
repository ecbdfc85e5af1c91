"""
Trading config loader: JSON file -> frozen dataclass tree, validated against JSON Schema.

Default values:      docs/config/trading.default.json
Schema:              docs/config/trading_config.schema.json

Profile overrides: place a partial JSON file named ``trading.{PROFILE}.json``
next to the default config (e.g. ``docs/config/trading.aggressive.json``).
Only the keys you want to override need to be present; they are deep-merged
on top of the base config before schema validation.

Usage:
    from config.trading_config import load_trading_config
    cfg = load_trading_config()                          # loads default
    cfg = load_trading_config(profile="aggressive")      # merges trading.aggressive.json
    cfg.risk.max_leverage  # -> 10.0
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jsonschema

logger = logging.getLogger("prpos.config")


def _find_project_root() -> Path:
    """Walk up from this file looking for pyproject.toml; fall back to CWD."""
    candidate = Path(__file__).resolve().parent
    for _ in range(10):
        if (candidate / "pyproject.toml").exists():
            return candidate
        parent = candidate.parent
        if parent == candidate:
            break
        candidate = parent
    return Path.cwd()


_PROJECT_ROOT = _find_project_root()

DEFAULT_CONFIG_PATH = _PROJECT_ROOT / "docs" / "config" / "trading.default.json"
DEFAULT_SCHEMA_PATH = _PROJECT_ROOT / "docs" / "config" / "trading_config.schema.json"


# ---------------------------------------------------------------------------
# Frozen dataclass tree (mirrors trading.default.json)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeedConfig:
    mode: str = "random_walk"     # "random_walk" | "trend"
    interval_ms: int = 1000
    initial_price: float = 100.0
    target_price: float = 100.0
    volatility: float = 0.01
    mean_reversion: float = 0.0001
    history_size: int = 1000
    warmup_ticks: int = 100
    min_price: float = 0.01
    seed: int | None = None


@dataclass(frozen=True)
class SmaStrategyConfig:
    enabled: bool = True
    short_window: int = 9
    long_window: int = 21
    cooldown_seconds: float = 30.0
    threshold_pct: float = 0.5
    base_size: float = 0.1
    min_size: float = 0.01


@dataclass(frozen=True)
class MeanReversionStrategyConfig:
    enabled: bool = True
    window: int = 20
    threshold: float = 2.0
    cooldown_seconds: float = 60.0
    base_size: float = 0.1
    min_size: float = 0.01


@dataclass(frozen=True)
class StrategiesConfig:
    priority: tuple[str, ...] = ("sma", "mean_reversion")
    sma: SmaStrategyConfig = SmaStrategyConfig()
    mean_reversion: MeanReversionStrategyConfig = MeanReversionStrategyConfig()


@dataclass(frozen=True)
class RiskConfig:
    max_leverage: float = 10.0
    risk_per_trade: float = 0.02
    max_positions: int = 5
    stop_loss_pct: float = 0.05
    take_profit_pct: float = 0.10
    maintenance_margin_ratio: float = 0.05
    margin_call_ratio: float = 0.10
    max_trade_risk_fraction: float = 0.10


@dataclass(frozen=True)
class VenueConfig:
    fee_rate: float = 0.001
    base_slippage: float = 0.001
    random_slippage: float = 0.002
    partial_fill_probability: float = 0.1
    failure_probability: float = 0.02
    cancel_success_probability: float = 0.95
    min_latency_ms: int = 100
    max_latency_ms: int = 300


@dataclass(frozen=True)
class TradingConfig:
    """Top-level trading configuration for the decision loop."""

    version: str
    feed: FeedConfig
    strategies: StrategiesConfig
    risk: RiskConfig
    venue: VenueConfig


# ---------------------------------------------------------------------------
# Deep merge for profile overrides
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *overrides* into a copy of *base*.

    - Dict values are merged recursively (override keys win).
    - Non-dict values in overrides replace the base value.
    - Keys in base that are absent from overrides are preserved.
    """
    merged = dict(base)
    for key, val in overrides.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(val, dict):
            merged[key] = _deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class TradingConfigError(Exception):
    """Raised when trading config loading or validation fails."""


def _validate_schema(data: dict[str, Any], schema_path: Path) -> None:
    """Validate *data* against the JSON Schema at *schema_path*."""
    if not schema_path.exists():
        raise TradingConfigError(f"Schema file not found: {schema_path}")
    with open(schema_path) as f:
        schema = json.load(f)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise TradingConfigError(f"Trading config validation failed: {exc.message}") from exc


def _build_config(data: dict[str, Any]) -> TradingConfig:
    """Convert a raw dict (already validated) into the frozen dataclass tree."""
    feed_raw = data["feed"]
    strat_raw = data["strategies"]
    sma_raw = strat_raw.get("sma", {})
    mr_raw = strat_raw.get("mean_reversion", {})
    risk_raw = data["risk"]
    venue_raw = data.get("venue", {})

    sma_cfg = SmaStrategyConfig(
        enabled=sma_raw.get("enabled", True),
        short_window=sma_raw.get("short_window", 9),
        long_window=sma_raw.get("long_window", 21),
        cooldown_seconds=float(sma_raw.get("cooldown_seconds", 30.0)),
        threshold_pct=float(sma_raw.get("threshold_pct", 0.5)),
        base_size=float(sma_raw.get("base_size", 0.1)),
        min_size=float(sma_raw.get("min_size", 0.01)),
    )
    if sma_cfg.short_window >= sma_cfg.long_window:
        raise TradingConfigError(
            f"strategies.sma.short_window ({sma_cfg.short_window}) must be "
            f"smaller than long_window ({sma_cfg.long_window})"
        )

    return TradingConfig(
        version=data["version"],
        feed=FeedConfig(
            mode=feed_raw["mode"],
            interval_ms=feed_raw["interval_ms"],
            initial_price=float(feed_raw.get("initial_price", 100.0)),
            target_price=float(feed_raw.get("target_price", 100.0)),
            volatility=float(feed_raw.get("volatility", 0.01)),
            mean_reversion=float(feed_raw.get("mean_reversion", 0.0001)),
            history_size=feed_raw.get("history_size", 1000),
            warmup_ticks=feed_raw.get("warmup_ticks", 100),
            min_price=float(feed_raw.get("min_price", 0.01)),
            seed=feed_raw.get("seed"),
        ),
        strategies=StrategiesConfig(
            priority=tuple(strat_raw.get("priority", ["sma", "mean_reversion"])),
            sma=sma_cfg,
            mean_reversion=MeanReversionStrategyConfig(
                enabled=mr_raw.get("enabled", True),
                window=mr_raw.get("window", 20),
                threshold=float(mr_raw.get("threshold", 2.0)),
                cooldown_seconds=float(mr_raw.get("cooldown_seconds", 60.0)),
                base_size=float(mr_raw.get("base_size", 0.1)),
                min_size=float(mr_raw.get("min_size", 0.01)),
            ),
        ),
        risk=RiskConfig(
            max_leverage=float(risk_raw["max_leverage"]),
            risk_per_trade=float(risk_raw["risk_per_trade"]),
            max_positions=risk_raw["max_positions"],
            stop_loss_pct=float(risk_raw["stop_loss_pct"]),
            take_profit_pct=float(risk_raw["take_profit_pct"]),
            maintenance_margin_ratio=float(risk_raw.get("maintenance_margin_ratio", 0.05)),
            margin_call_ratio=float(risk_raw.get("margin_call_ratio", 0.10)),
            max_trade_risk_fraction=float(risk_raw.get("max_trade_risk_fraction", 0.10)),
        ),
        venue=VenueConfig(
            fee_rate=float(venue_raw.get("fee_rate", 0.001)),
            base_slippage=float(venue_raw.get("base_slippage", 0.001)),
            random_slippage=float(venue_raw.get("random_slippage", 0.002)),
            partial_fill_probability=float(venue_raw.get("partial_fill_probability", 0.1)),
            failure_probability=float(venue_raw.get("failure_probability", 0.02)),
            cancel_success_probability=float(venue_raw.get("cancel_success_probability", 0.95)),
            min_latency_ms=venue_raw.get("min_latency_ms", 100),
            max_latency_ms=venue_raw.get("max_latency_ms", 300),
        ),
    )


def load_trading_config(
    config_path: str | Path | None = None,
    schema_path: str | Path | None = None,
    profile: str | None = None,
) -> TradingConfig:
    """Load and validate trading configuration.

    Parameters
    ----------
    config_path:
        Path to a trading JSON config file.  Defaults to
        ``docs/config/trading.default.json``.
    schema_path:
        Path to the JSON Schema file.  Defaults to
        ``docs/config/trading_config.schema.json``.
    profile:
        Optional profile name.  When provided, the loader looks for
        ``trading.{profile}.json`` in the same directory as the base config
        and deep-merges it on top before validation.  A missing profile file
        is an error: asking for a profile that does not exist is a typo.

    Raises
    ------
    TradingConfigError
        If the file is missing, unparseable, or fails schema validation.
    """
    cfg_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    sch_path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH

    if not cfg_path.exists():
        raise TradingConfigError(f"Trading config file not found: {cfg_path}")

    try:
        with open(cfg_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise TradingConfigError(f"Trading config is not valid JSON: {exc}") from exc

    if profile:
        override_path = cfg_path.parent / f"trading.{profile}.json"
        if not override_path.exists():
            raise TradingConfigError(f"Profile config not found: {override_path}")
        try:
            with open(override_path) as f:
                overrides = json.load(f)
        except json.JSONDecodeError as exc:
            raise TradingConfigError(
                f"Profile config {override_path.name} is not valid JSON: {exc}"
            ) from exc
        data = _deep_merge(data, overrides)
        logger.info("Loaded trading profile: %s", override_path.name)

    _validate_schema(data, sch_path)

    return _build_config(data)
