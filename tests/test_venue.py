"""Tests for the simulated venue."""

import random
from dataclasses import replace

import pytest

from config.trading_config import VenueConfig
from execution.venue import SimulatedVenue
from prpos_core.contracts import OrderType, Side, TradeStatus

NO_LATENCY = VenueConfig(min_latency_ms=0, max_latency_ms=0)


def _venue(seed: int = 3, **overrides) -> SimulatedVenue:
    return SimulatedVenue(replace(NO_LATENCY, **overrides), rng=random.Random(seed))


async def test_full_fill_with_fees() -> None:
    venue = _venue(partial_fill_probability=0.0, failure_probability=0.0)
    result = await venue.place_order(Side.LONG, 1.0, 100.0)
    assert result.status is TradeStatus.FILLED
    assert result.filled_size == 1.0
    assert result.fees == pytest.approx(result.avg_price * 0.001)
    assert result.venue_order_id.startswith("sim-")
    assert result.succeeded


async def test_slippage_direction() -> None:
    # no random noise: long pays up, short sells down
    venue = _venue(partial_fill_probability=0.0, failure_probability=0.0, random_slippage=0.0)
    long_fill = await venue.place_order(Side.LONG, 10.0, 100.0)
    short_fill = await venue.place_order(Side.SHORT, 10.0, 100.0)
    assert long_fill.avg_price == pytest.approx(100.0 * (1 + 0.002))
    assert short_fill.avg_price == pytest.approx(100.0 * (1 - 0.002))


async def test_limit_orders_slip_less() -> None:
    venue = _venue(random_slippage=0.0)
    assert venue.slippage(10.0, OrderType.LIMIT) == pytest.approx(venue.slippage(10.0, OrderType.MARKET) / 2)


async def test_always_fails() -> None:
    venue = _venue(failure_probability=1.0)
    result = await venue.place_order(Side.LONG, 1.0, 100.0)
    assert result.status is TradeStatus.FAILED
    assert result.filled_size == 0.0
    assert not result.succeeded


async def test_partial_fill_range_and_cancel() -> None:
    venue = _venue(partial_fill_probability=1.0, failure_probability=0.0, cancel_success_probability=1.0)
    result = await venue.place_order(Side.SHORT, 2.0, 100.0)
    assert result.status is TradeStatus.PARTIAL
    assert 1.0 <= result.filled_size <= 1.8
    assert await venue.cancel_order(result.venue_order_id)
    assert not await venue.cancel_order(result.venue_order_id)
    assert not await venue.cancel_order("unknown")


async def test_market_price() -> None:
    assert 99.0 <= await _venue().get_market_price() <= 101.0
    venue = SimulatedVenue(NO_LATENCY, price_source=lambda: 123.4)
    assert await venue.get_market_price() == 123.4


async def test_seeded_runs_reproducible() -> None:
    a, b = _venue(seed=11), _venue(seed=11)
    for _ in range(20):
        ra = await a.place_order(Side.LONG, 1.0, 100.0)
        rb = await b.place_order(Side.LONG, 1.0, 100.0)
        assert (ra.status, ra.filled_size, ra.avg_price) == (rb.status, rb.filled_size, rb.avg_price)
