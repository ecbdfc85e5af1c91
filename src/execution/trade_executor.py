"""
Trade executor: risk gate -> venue -> trade record -> portfolio -> events.

Single writer per account: every open and close runs under one asyncio.Lock,
so two overlapping opens can never both pass the position-count and margin
checks against the same account snapshot.

Venue failures (None, failed status, transport error, timeout) drop the
attempt and return no result. Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from data.trade_store import TradeStore
from execution.models import OrderResult
from execution.venue import Venue
from notify.event_logger import EventNotifier
from prpos_core.contracts import (
    OrderType,
    Position,
    TradeRecord,
    TradeRequest,
    TradeStatus,
)
from prpos_core.portfolio import Portfolio
from prpos_core.risk_manager import RiskManager

logger = logging.getLogger("prpos.executor")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


class TradeExecutor:
    """Open and close positions through a venue.

    Parameters
    ----------
    risk_manager, portfolio, venue, store, notifier:
        Collaborators. The executor is the only component that mutates the
        portfolio in response to fills.
    venue_timeout_seconds:
        Upper bound on one venue call. A timeout counts as a venue failure.
    clock:
        Timestamp source for trade records and positions (tick time in replay).
    """

    def __init__(
        self,
        risk_manager: RiskManager,
        portfolio: Portfolio,
        venue: Venue,
        store: TradeStore,
        notifier: EventNotifier,
        *,
        venue_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._risk = risk_manager
        self._portfolio = portfolio
        self._venue = venue
        self._store = store
        self._notifier = notifier
        self._timeout = venue_timeout_seconds
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()

    async def execute_trade(self, request: TradeRequest) -> TradeRecord | None:
        """Open a position for *request* if risk allows and the venue fills.

        Returns the finalized TradeRecord, or None when the request was
        denied or the venue produced no fill. A position is created only for
        a fully filled order.
        """
        async with self._lock:
            account = self._portfolio.account()
            assessment = self._risk.can_open_position(account, request.size, request.price)
            if not assessment.allowed:
                logger.info(
                    "Trade denied (%s %s %.4f @ %.4f): %s",
                    request.strategy, request.side.value, request.size, request.price, assessment.reason,
                )
                self._notifier.order_rejected(assessment.reason or "", request.strategy)
                return None

            trade = await self._submit(request)
            if trade is None:
                return None

            if trade.status is TradeStatus.FILLED:
                notional = trade.size * trade.price
                position = Position(
                    id=_new_id("pos"),
                    side=trade.side,
                    size=trade.size,
                    entry_price=trade.price,
                    mark_price=trade.price,
                    leverage=notional / account.balance,
                    margin=notional / self._risk.max_leverage,
                    opened_at=trade.timestamp,
                    strategy=trade.strategy,
                )
                await asyncio.to_thread(self._store.insert_position, position)
                self._portfolio.add_position(position)
                logger.info(
                    "Opened %s %s %.4f @ %.4f (leverage %.4fx)",
                    position.id, position.side.value, position.size, position.entry_price, position.leverage,
                )
                self._notifier.position_opened(position)
            else:
                logger.warning("Trade %s only partially filled (%.4f of %.4f); no position opened",
                               trade.id, trade.size, request.size)

            await asyncio.to_thread(self._store.save_account, self._portfolio.account())
            return trade

    async def close_position(self, position_id: str, reason: str) -> bool:
        """Close an open position with an opposite-side market order.

        Any fill closes the position at the fill price, including a partial
        fill, so a retry never sends a second closing order for the same
        exposure. Returns False when the position is unknown or already
        closed, or when the venue produced no fill; the position then stays
        open and the caller decides whether to retry.

        The closed position and the resulting account are written to the
        store in one transaction before the in-memory ledger changes.
        """
        async with self._lock:
            position = self._portfolio.get_position(position_id)
            if position is None or not position.is_open:
                return False

            request = TradeRequest(
                side=position.side.opposite,
                size=position.size,
                price=position.mark_price,
                strategy=position.strategy,
                order_type=OrderType.MARKET,
            )
            trade = await self._submit(request)
            if trade is None:
                logger.warning("Close of %s failed at the venue; position stays open", position_id)
                return False
            if trade.status is not TradeStatus.FILLED:
                logger.warning(
                    "Close of %s partially filled (%.4f of %.4f); closing the position at the fill",
                    position_id, trade.size, position.size,
                )

            preview = self._portfolio.preview_close(position_id, trade.price, reason, closed_at=trade.timestamp)
            if preview is None:
                return False
            closed, account = preview
            await asyncio.to_thread(self._store.record_close, closed, account)
            self._portfolio.close_position(position_id, trade.price, reason, closed_at=trade.timestamp)
            self._notifier.position_closed(closed)
            return True

    async def _submit(self, request: TradeRequest) -> TradeRecord | None:
        """Persist a pending record, call the venue, finalize the record.

        Fees of any fill are debited here. Returns None if nothing traded.
        """
        pending = TradeRecord(
            id=_new_id("trd"),
            side=request.side,
            size=request.size,
            price=request.price,
            fees=0.0,
            status=TradeStatus.PENDING,
            timestamp=self._clock(),
            strategy=request.strategy,
        )
        await asyncio.to_thread(self._store.insert_trade, pending)

        result = await self._place(request)
        if result is None or not result.succeeded:
            failed = replace(
                pending,
                status=TradeStatus.FAILED,
                venue_order_id=result.venue_order_id if result else None,
            )
            await asyncio.to_thread(self._store.update_trade, failed)
            return None

        trade = replace(
            pending,
            size=result.filled_size,
            price=result.avg_price,
            fees=result.fees,
            status=result.status,
            venue_order_id=result.venue_order_id,
        )
        await asyncio.to_thread(self._store.update_trade, trade)
        self._portfolio.apply_fees(trade.fees)
        logger.info(
            "Trade %s %s: %s %.4f @ %.4f fees %.4f",
            trade.id, trade.status.value, trade.side.value, trade.size, trade.price, trade.fees,
        )
        self._notifier.trade_executed(trade)
        return trade

    async def _place(self, request: TradeRequest) -> OrderResult | None:
        try:
            return await asyncio.wait_for(
                self._venue.place_order(request.side, request.size, request.price, request.order_type),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Venue timed out after %.1fs for %s %.4f", self._timeout, request.side.value, request.size)
        except Exception:
            logger.exception("Venue error for %s %.4f @ %.4f", request.side.value, request.size, request.price)
        return None
