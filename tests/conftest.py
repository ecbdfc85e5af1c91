"""Pytest fixtures: tick sequences, configs, a scripted venue, a temp store."""

import io
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from config.trading_config import RiskConfig, TradingConfig, load_trading_config
from data.trade_store import TradeStore
from execution.models import OrderResult
from notify.event_logger import EventNotifier
from prpos_core.contracts import Account, OrderType, PriceTick, Side, TradeStatus

T0 = datetime(2024, 1, 2, 9, 30, 0, tzinfo=timezone.utc)


def ts(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def make_ticks(prices: list[float], *, step_seconds: float = 1.0, volume: float = 500.0) -> list[PriceTick]:
    return [PriceTick(timestamp=ts(i * step_seconds), price=p, volume=volume) for i, p in enumerate(prices)]


class ScriptedVenue:
    """Venue double. Fills in full at the requested price unless a result is
    queued; queued entries may be an OrderResult, None, or an exception."""

    def __init__(self, fee_rate: float = 0.0) -> None:
        self.fee_rate = fee_rate
        self.script: list = []
        self.orders: list[tuple[Side, float, float, OrderType]] = []
        self.delay: float = 0.0

    async def place_order(self, side, size, price, order_type=OrderType.MARKET):
        self.orders.append((side, size, price, order_type))
        if self.delay:
            import asyncio

            await asyncio.sleep(self.delay)
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return OrderResult(
            venue_order_id=f"v-{uuid.uuid4().hex[:8]}",
            filled_size=size,
            avg_price=price,
            fees=size * price * self.fee_rate,
            status=TradeStatus.FILLED,
        )

    async def cancel_order(self, venue_order_id):
        return False

    async def get_market_price(self):
        return 100.0


@pytest.fixture
def trading_config() -> TradingConfig:
    return load_trading_config()


@pytest.fixture
def risk_config() -> RiskConfig:
    return RiskConfig()


@pytest.fixture
def account() -> Account:
    return Account(id="acct", balance=10_000.0)


@pytest.fixture
def store(tmp_path) -> TradeStore:
    return TradeStore(tmp_path / "state.db")


@pytest.fixture
def events() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def notifier(events: io.StringIO) -> EventNotifier:
    return EventNotifier("test-bot", stream=events)


@pytest.fixture
def venue() -> ScriptedVenue:
    return ScriptedVenue()
