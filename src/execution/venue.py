"""
Venue contract and the simulated venue behind it.

The core only needs three calls from a venue: place an order, cancel an
order, report the current price. ``SimulatedVenue`` implements them with
random latency, slippage, partial fills and failures so the pipeline can be
exercised end to end without an exchange.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from typing import Callable, Protocol

from config.trading_config import VenueConfig
from execution.models import OrderResult
from prpos_core.contracts import OrderType, Side, TradeStatus

logger = logging.getLogger("prpos.venue")

MARKET_SLIPPAGE_MULTIPLIER = 2.0
SIZE_IMPACT_DIVISOR = 10.0
MAX_SIZE_IMPACT = 2.0


class Venue(Protocol):
    """What the executor needs from an exchange connector.

    ``place_order`` returns None or a failed OrderResult when nothing traded;
    callers treat both as "no effect occurred".
    """

    async def place_order(
        self,
        side: Side,
        size: float,
        price: float,
        order_type: OrderType = OrderType.MARKET,
    ) -> OrderResult | None: ...

    async def cancel_order(self, venue_order_id: str) -> bool: ...

    async def get_market_price(self) -> float: ...


class SimulatedVenue:
    """Randomized in-process venue.

    Parameters
    ----------
    config:
        Fee, slippage, fill and latency parameters.
    rng:
        Random source; pass a seeded ``random.Random`` for reproducible runs.
    price_source:
        Returns the reference price for ``get_market_price``. Without one the
        venue quotes 100 +/- 1.
    """

    def __init__(
        self,
        config: VenueConfig,
        *,
        rng: random.Random | None = None,
        price_source: Callable[[], float | None] | None = None,
    ) -> None:
        self._config = config
        self._rng = rng or random.Random()
        self._price_source = price_source
        self._open_orders: set[str] = set()

    async def _latency(self) -> None:
        cfg = self._config
        if cfg.max_latency_ms <= 0:
            return
        delay_ms = self._rng.uniform(cfg.min_latency_ms, cfg.max_latency_ms)
        await asyncio.sleep(delay_ms / 1000)

    def slippage(self, size: float, order_type: OrderType) -> float:
        """Fractional price slippage for an order of *size*."""
        cfg = self._config
        base = cfg.base_slippage
        if order_type is OrderType.MARKET:
            base *= MARKET_SLIPPAGE_MULTIPLIER
        impact = min(size / SIZE_IMPACT_DIVISOR, MAX_SIZE_IMPACT)
        noise = self._rng.uniform(-cfg.random_slippage / 2, cfg.random_slippage / 2)
        return base * impact + noise

    async def place_order(
        self,
        side: Side,
        size: float,
        price: float,
        order_type: OrderType = OrderType.MARKET,
    ) -> OrderResult | None:
        cfg = self._config
        await self._latency()
        order_id = f"sim-{uuid.uuid4().hex[:12]}"

        if self._rng.random() < cfg.failure_probability:
            logger.info("Simulated venue rejected order %s (%s %.4f @ %.4f)", order_id, side.value, size, price)
            return OrderResult(
                venue_order_id=order_id,
                filled_size=0.0,
                avg_price=0.0,
                fees=0.0,
                status=TradeStatus.FAILED,
            )

        slip = self.slippage(size, order_type)
        avg_price = price * (1 + slip) if side is Side.LONG else price * (1 - slip)
        avg_price = max(avg_price, 0.01)

        status = TradeStatus.FILLED
        filled = size
        if self._rng.random() < cfg.partial_fill_probability:
            filled = size * self._rng.uniform(0.5, 0.9)
            status = TradeStatus.PARTIAL
            self._open_orders.add(order_id)

        fees = filled * avg_price * cfg.fee_rate
        logger.debug(
            "Simulated fill %s: %s %.4f/%.4f @ %.4f fees %.4f",
            order_id, side.value, filled, size, avg_price, fees,
        )
        return OrderResult(
            venue_order_id=order_id,
            filled_size=filled,
            avg_price=avg_price,
            fees=fees,
            status=status,
        )

    async def cancel_order(self, venue_order_id: str) -> bool:
        await self._latency()
        if venue_order_id not in self._open_orders:
            return False
        if self._rng.random() >= self._config.cancel_success_probability:
            return False
        self._open_orders.discard(venue_order_id)
        return True

    async def get_market_price(self) -> float:
        if self._price_source is not None:
            price = self._price_source()
            if price is not None:
                return price
        return 100.0 + self._rng.uniform(-1.0, 1.0)
