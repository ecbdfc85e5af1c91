"""
Human-readable terminal output for the prpos CLI.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from prpos_core.contracts import Position, TradeRecord
from prpos_core.portfolio import PortfolioMetrics, PortfolioSummary

if TYPE_CHECKING:
    from backtest.runner import BacktestResult


def _money(value: float | None) -> str:
    if value is None:
        return "-"
    return f"${value:,.2f}"


def _signed(value: float | None) -> str:
    if value is None:
        return "-"
    return f"{value:+,.4f}"


def format_metrics(metrics: PortfolioMetrics) -> list[str]:
    return [
        f"Closed trades: {metrics.total_trades} ({metrics.winning_trades} won / {metrics.losing_trades} lost)",
        f"Realized PnL : {_signed(metrics.total_realized_pnl)}",
        f"Win rate     : {metrics.win_rate:.1f}%",
        f"Avg return   : {metrics.average_return_pct:+.3f}%",
        f"Max drawdown : {metrics.max_drawdown:,.4f}",
        f"Sharpe-like  : {metrics.sharpe_ratio:.3f}",
    ]


def format_position_line(p: Position) -> str:
    line = (
        f"  {p.id}  {p.side.value:5s} {p.size:.4f} @ {p.entry_price:.4f}  "
        f"mark {p.mark_price:.4f}  lev {p.leverage:.4f}x  [{p.strategy}]"
    )
    if p.is_open:
        return f"{line}  uPnL {_signed(p.unrealized_pnl)}"
    return f"{line}  closed @ {p.close_price:.4f}  PnL {_signed(p.realized_pnl)}  ({p.close_reason})"


def format_status(summary: PortfolioSummary, open_positions: Sequence[Position]) -> str:
    """Account, open positions and aggregate metrics."""
    account = summary.account
    lines = [
        f"=== Account {account.id} ===",
        f"Balance      : {_money(account.balance)}",
        f"Unrealized   : {_signed(summary.unrealized_pnl)}",
        f"Equity       : {_money(summary.equity)}",
        f"Open         : {summary.open_positions}",
    ]
    for p in open_positions:
        lines.append(format_position_line(p))
    lines.append("")
    lines.extend(format_metrics(summary.metrics))
    lines.append("===")
    return "\n".join(lines)


def format_trades(trades: Sequence[TradeRecord]) -> str:
    if not trades:
        return "No trades."
    lines = [f"{len(trades)} trade(s):"]
    for t in trades:
        lines.append(
            f"  {t.timestamp.isoformat()}  {t.id}  {t.status.value:9s} {t.side.value:5s} "
            f"{t.size:.4f} @ {t.price:.4f}  fees {t.fees:.4f}  [{t.strategy}]"
        )
    return "\n".join(lines)


def format_positions(positions: Sequence[Position]) -> str:
    if not positions:
        return "No positions."
    lines = [f"{len(positions)} position(s):"]
    lines.extend(format_position_line(p) for p in positions)
    return "\n".join(lines)


def format_backtest_summary(result: BacktestResult) -> str:
    """Format backtest result summary."""
    lines = [
        "=== Backtest ===",
        f"Period       : {result.start_time.isoformat()} -> {result.end_time.isoformat()}",
        f"Ticks        : {result.ticks}",
        f"Initial      : {_money(result.initial_balance)}",
        f"Final        : {_money(result.final_balance)}",
        f"Return       : {result.total_return_pct:+.3f}%",
        f"Trades       : {len(result.trades)} venue order(s), fees {_money(result.total_fees)}",
    ]
    lines.extend(format_metrics(result.metrics))
    if result.positions:
        lines.append("")
        lines.append("Closed positions:")
        lines.extend(format_position_line(p) for p in result.positions)
    lines.append("===")
    return "\n".join(lines)
