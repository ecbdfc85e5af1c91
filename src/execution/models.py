"""Venue-facing order types. What a venue reports back for one order."""

from __future__ import annotations

from dataclasses import dataclass

from prpos_core.contracts import TradeStatus

VENUE_STATUSES = (TradeStatus.FILLED, TradeStatus.PARTIAL, TradeStatus.FAILED)


@dataclass(frozen=True)
class OrderResult:
    venue_order_id: str
    filled_size: float
    avg_price: float
    fees: float
    status: TradeStatus  # filled | partial | failed

    @property
    def succeeded(self) -> bool:
        """True when some quantity actually traded."""
        return self.status in (TradeStatus.FILLED, TradeStatus.PARTIAL) and self.filled_size > 0
