"""
Portfolio: the single owner of the Account and the Position ledger.

Positions live in a registry keyed by id. Every mutation replaces the frozen
Position/Account value rather than editing it, so snapshots handed to
callers stay valid. Account.open_positions_count is always derived from the
ledger.
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable

from prpos_core.contracts import Account, Position, PositionStatus
from prpos_core.risk_manager import unrealized_pnl

logger = logging.getLogger("prpos.portfolio")


class PortfolioError(Exception):
    """Ledger misuse: duplicate ids, adding a closed position, and the like."""


@dataclass(frozen=True)
class PortfolioMetrics:
    """Aggregates over closed positions. Percentages are in percent units."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_realized_pnl: float = 0.0
    win_rate: float = 0.0
    average_return_pct: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0


@dataclass(frozen=True)
class PortfolioSummary:
    account: Account
    open_positions: int
    unrealized_pnl: float
    equity: float
    metrics: PortfolioMetrics


def compute_metrics(closed: Iterable[Position]) -> PortfolioMetrics:
    """Realized PnL, win rate, average return, max drawdown, Sharpe-like ratio.

    Drawdown is the largest peak-to-trough fall of cumulative realized PnL
    (starting from 0) in close order. The Sharpe-like ratio is
    mean / population stdev of per-trade return percentages; 0 with fewer
    than two trades or no dispersion.
    """
    ordered = sorted(
        (p for p in closed if p.realized_pnl is not None),
        key=lambda p: p.closed_at or p.opened_at,
    )
    if not ordered:
        return PortfolioMetrics()

    pnls = [p.realized_pnl for p in ordered]
    returns = [p.return_pct for p in ordered]
    wins = sum(1 for x in pnls if x > 0)
    losses = sum(1 for x in pnls if x < 0)

    cumulative = peak = max_drawdown = 0.0
    for pnl in pnls:
        cumulative += pnl
        peak = max(peak, cumulative)
        max_drawdown = max(max_drawdown, peak - cumulative)

    sharpe = 0.0
    if len(returns) >= 2:
        stdev = statistics.pstdev(returns)
        if stdev > 0:
            sharpe = statistics.fmean(returns) / stdev

    return PortfolioMetrics(
        total_trades=len(ordered),
        winning_trades=wins,
        losing_trades=losses,
        total_realized_pnl=sum(pnls),
        win_rate=wins / len(ordered) * 100,
        average_return_pct=statistics.fmean(returns),
        max_drawdown=max_drawdown,
        sharpe_ratio=sharpe,
    )


class Portfolio:
    """In-memory ledger for one account."""

    def __init__(self, account: Account) -> None:
        self._account_id = account.id
        self._balance = account.balance
        self._margin = account.margin
        self._positions: dict[str, Position] = {}
        self._metrics = PortfolioMetrics()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def account(self) -> Account:
        return Account(
            id=self._account_id,
            balance=self._balance,
            margin=self._margin,
            open_positions_count=sum(1 for p in self._positions.values() if p.is_open),
        )

    def get_position(self, position_id: str) -> Position | None:
        return self._positions.get(position_id)

    def open_positions(self) -> list[Position]:
        return [p for p in self._positions.values() if p.is_open]

    def closed_positions(self) -> list[Position]:
        closed = [p for p in self._positions.values() if not p.is_open]
        return sorted(closed, key=lambda p: p.closed_at or p.opened_at)

    def metrics(self) -> PortfolioMetrics:
        return self._metrics

    def summary(self) -> PortfolioSummary:
        account = self.account()
        unrealized = sum(p.unrealized_pnl or 0.0 for p in self.open_positions())
        return PortfolioSummary(
            account=account,
            open_positions=account.open_positions_count,
            unrealized_pnl=unrealized,
            equity=account.balance + unrealized,
            metrics=self._metrics,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def load(self, account: Account, positions: Iterable[Position]) -> None:
        """Replace the whole ledger (start-up from the store) and recompute metrics."""
        self._account_id = account.id
        self._balance = account.balance
        self._positions = {}
        for position in positions:
            if position.id in self._positions:
                raise PortfolioError(f"Duplicate position id {position.id!r} in loaded state")
            self._positions[position.id] = position
        self._margin = sum(p.unrealized_pnl or 0.0 for p in self.open_positions())
        self._metrics = compute_metrics(self.closed_positions())
        logger.info(
            "Portfolio loaded: balance=%.2f open=%d closed=%d",
            self._balance, len(self.open_positions()), self._metrics.total_trades,
        )

    def add_position(self, position: Position) -> None:
        if position.id in self._positions:
            raise PortfolioError(f"Position {position.id!r} already exists")
        if not position.is_open:
            raise PortfolioError(f"Position {position.id!r} is not open")
        self._positions[position.id] = position

    def apply_fees(self, fees: float) -> None:
        """Debit trading fees from free balance."""
        if fees < 0:
            raise PortfolioError(f"Fees must be >= 0, got {fees}")
        self._balance -= fees

    def update_mark_price(self, mark_price: float) -> list[Position]:
        """Re-mark every open position; Account.margin becomes the summed unrealized PnL."""
        updated: list[Position] = []
        total = 0.0
        for position in self.open_positions():
            pnl = unrealized_pnl(position.side, position.size, position.entry_price, mark_price)
            marked = replace(position, mark_price=mark_price, unrealized_pnl=pnl)
            self._positions[position.id] = marked
            updated.append(marked)
            total += pnl
        self._margin = total
        return updated

    def close_position(
        self,
        position_id: str,
        close_price: float,
        reason: str,
        closed_at: datetime | None = None,
    ) -> Position | None:
        """Close an open position at *close_price*. Returns the closed snapshot,
        or None when the id is unknown or already closed."""
        preview = self.preview_close(position_id, close_price, reason, closed_at)
        if preview is None:
            return None
        closed, account = preview
        self._positions[position_id] = closed
        self._balance = account.balance
        self._margin = account.margin
        self._metrics = compute_metrics(self.closed_positions())
        logger.info(
            "Position %s closed at %.4f (%s): realized %.4f",
            position_id, close_price, reason, closed.realized_pnl,
        )
        return closed

    def preview_close(
        self,
        position_id: str,
        close_price: float,
        reason: str,
        closed_at: datetime | None = None,
    ) -> tuple[Position, Account] | None:
        """The closed snapshot and the resulting account for a close, without
        touching the ledger. Lets callers persist before committing."""
        position = self._positions.get(position_id)
        if position is None or not position.is_open:
            return None

        realized = unrealized_pnl(position.side, position.size, position.entry_price, close_price)
        closed = replace(
            position,
            status=PositionStatus.CLOSED,
            mark_price=close_price,
            unrealized_pnl=None,
            realized_pnl=realized,
            closed_at=closed_at or datetime.now(timezone.utc),
            close_price=close_price,
            close_reason=reason,
        )
        remaining = [p for p in self.open_positions() if p.id != position_id]
        account = Account(
            id=self._account_id,
            balance=self._balance + realized,
            margin=sum(p.unrealized_pnl or 0.0 for p in remaining),
            open_positions_count=len(remaining),
        )
        return closed, account
