"""
Config loader: YAML file -> frozen dataclass tree.

The webhook URL may be supplied via the PRPOS_WEBHOOK_URL environment variable
so that it does not have to live in the config file.
"""

import os
from dataclasses import dataclass
from pathlib import Path

import yaml


@dataclass(frozen=True)
class StorageConfig:
    state_path: str = "data/prpos.db"
    persist_ticks: bool = True


@dataclass(frozen=True)
class AccountConfig:
    id: str = "default"
    initial_balance: float = 10_000.0


@dataclass(frozen=True)
class ExecutionConfig:
    venue: str = "simulated"
    venue_timeout_seconds: float = 5.0
    close_on_shutdown: bool = False


@dataclass(frozen=True)
class BacktestConfig:
    initial_balance: float = 10_000.0
    seed: int = 42
    state_path: str = "data/backtest.db"


@dataclass(frozen=True)
class AlertingConfig:
    structured_logs: bool = True
    webhook_url: str = ""


@dataclass(frozen=True)
class AppConfig:
    bot_id: str
    storage: StorageConfig
    account: AccountConfig
    execution: ExecutionConfig
    backtest: BacktestConfig = BacktestConfig()
    alerting: AlertingConfig = AlertingConfig()
    trading_config_path: str | None = None
    trading_profile: str | None = None


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file.

    PRPOS_WEBHOOK_URL, when set, overrides alerting.webhook_url.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    st_raw = raw.get("storage", {})
    st_cfg = StorageConfig(
        state_path=st_raw.get("state_path", "data/prpos.db"),
        persist_ticks=bool(st_raw.get("persist_ticks", True)),
    )

    acct_raw = raw.get("account", {})
    acct_cfg = AccountConfig(
        id=str(acct_raw.get("id", "default")),
        initial_balance=float(acct_raw.get("initial_balance", 10_000)),
    )
    if acct_cfg.initial_balance <= 0:
        raise ValueError(f"account.initial_balance must be positive, got {acct_cfg.initial_balance}")

    ex_raw = raw.get("execution", {})
    ex_cfg = ExecutionConfig(
        venue=ex_raw.get("venue", "simulated"),
        venue_timeout_seconds=float(ex_raw.get("venue_timeout_seconds", 5.0)),
        close_on_shutdown=bool(ex_raw.get("close_on_shutdown", False)),
    )
    if ex_cfg.venue != "simulated":
        raise ValueError(f"Unsupported venue {ex_cfg.venue!r} (only 'simulated' is available)")
    if ex_cfg.venue_timeout_seconds <= 0:
        raise ValueError("execution.venue_timeout_seconds must be positive")

    bt_raw = raw.get("backtest", {})
    bt_cfg = BacktestConfig(
        initial_balance=float(bt_raw.get("initial_balance", acct_cfg.initial_balance)),
        seed=int(bt_raw.get("seed", 42)),
        state_path=bt_raw.get("state_path", "data/backtest.db"),
    )

    a_raw = raw.get("alerting", {})
    a_cfg = AlertingConfig(
        structured_logs=bool(a_raw.get("structured_logs", True)),
        webhook_url=os.environ.get("PRPOS_WEBHOOK_URL", str(a_raw.get("webhook_url", ""))),
    )

    trading_raw = raw.get("trading", {})

    return AppConfig(
        bot_id=str(raw.get("bot_id", "prpos-bot")),
        storage=st_cfg,
        account=acct_cfg,
        execution=ex_cfg,
        backtest=bt_cfg,
        alerting=a_cfg,
        trading_config_path=trading_raw.get("config_path"),
        trading_profile=trading_raw.get("profile"),
    )
