"""
Risk Manager: account + proposed trade -> RiskAssessment, position + mark -> close decision.

This is the gate in front of every opening trade and the watchdog over every
open position. Pure: no I/O, no mutation of the account or ledger.

Opening checks (first failure wins, reasons are never aggregated):
    1. Margin:    balance >= size x price / max_leverage
    2. Leverage:  size x price / balance <= max_leverage
    3. Capacity:  open positions < max_positions
    4. Risk cap:  size x price x risk_per_trade <= 10% of balance

Position checks (first trigger wins):
    1. Liquidation  2. Margin call  3. Stop loss  4. Take profit
"""

from __future__ import annotations

import logging
import math

from config.trading_config import RiskConfig
from prpos_core.contracts import (
    Account,
    Position,
    PositionRiskAssessment,
    RiskAssessment,
    Side,
)

logger = logging.getLogger("prpos.risk")


def unrealized_pnl(side: Side, size: float, entry_price: float, mark_price: float) -> float:
    """size x (mark - entry), sign-flipped for shorts."""
    return size * (mark_price - entry_price) * side.sign


def liquidation_price(
    side: Side,
    entry_price: float,
    size: float,
    leverage: float,
    maintenance_ratio: float = 0.05,
) -> float:
    """Price at which the committed collateral is eroded down to maintenance margin.

    collateral   = notional / leverage
    maintenance  = notional x maintenance_ratio
    LONG:  entry - (collateral - maintenance) / size
    SHORT: entry + (collateral - maintenance) / size

    For 10x at 100 with a 5% maintenance ratio the long liquidates at 95.
    """
    if size <= 0 or leverage <= 0:
        raise ValueError(f"size and leverage must be positive (size={size}, leverage={leverage})")
    notional = size * entry_price
    collateral = notional / leverage
    maintenance = notional * maintenance_ratio
    buffer = (collateral - maintenance) / size
    if side is Side.LONG:
        return entry_price - buffer
    return entry_price + buffer


def _effective_leverage(position: Position) -> float:
    """Leverage implied by the collateral actually posted; falls back to the
    recorded leverage when no margin was recorded."""
    if position.margin > 0:
        return position.notional / position.margin
    return position.leverage


class RiskManager:
    """Stateless risk checks parameterised by RiskConfig."""

    def __init__(self, config: RiskConfig) -> None:
        self._config = config

    @property
    def max_leverage(self) -> float:
        return self._config.max_leverage

    def required_margin(self, size: float, price: float) -> float:
        return size * price / self._config.max_leverage

    def max_affordable_size(self, balance: float, price: float) -> float:
        """Largest size whose required margin at max leverage fits *balance*."""
        return max(balance, 0.0) * self._config.max_leverage / price

    # ------------------------------------------------------------------
    # Opening trades
    # ------------------------------------------------------------------

    def can_open_position(self, account: Account, size: float, price: float) -> RiskAssessment:
        """Evaluate a proposed opening trade against the account.

        Returns RiskAssessment with allowed=True, or allowed=False with the
        reason of the first failing check.
        """
        cfg = self._config
        if not (math.isfinite(size) and size > 0) or not (math.isfinite(price) and price > 0):
            return _deny(f"Invalid order: size={size!r}, price={price!r}")

        notional = size * price
        required = self.required_margin(size, price)
        if account.balance < required:
            implied = notional / account.balance if account.balance > 0 else math.inf
            return _deny(
                f"Insufficient balance for required margin: {required:.2f} needed at "
                f"max leverage {cfg.max_leverage:g}x, balance {account.balance:.2f} "
                f"(implied leverage {implied:.2f}x)",
                max_size=self.max_affordable_size(account.balance, price),
            )

        leverage = notional / account.balance
        if leverage > cfg.max_leverage:
            return _deny(
                f"Leverage {leverage:.2f}x exceeds maximum {cfg.max_leverage:g}x",
                suggested_leverage=cfg.max_leverage,
            )

        if account.open_positions_count >= cfg.max_positions:
            return _deny(f"Maximum positions ({cfg.max_positions}) already open")

        risk_budget = account.balance * cfg.max_trade_risk_fraction
        risk_amount = notional * cfg.risk_per_trade
        if risk_amount > risk_budget:
            return _deny(
                f"Trade risk {risk_amount:.2f} exceeds {cfg.max_trade_risk_fraction:.0%} "
                f"of balance ({risk_budget:.2f})",
                max_size=risk_budget / (price * cfg.risk_per_trade),
            )

        return RiskAssessment(allowed=True)

    # ------------------------------------------------------------------
    # Open positions
    # ------------------------------------------------------------------

    def evaluate_position(self, position: Position, mark_price: float) -> PositionRiskAssessment:
        """Decide whether *position* must be closed at *mark_price*.

        Any failure while evaluating closes the position: an unknown risk
        state is treated as an unacceptable one.
        """
        try:
            return self._evaluate(position, mark_price)
        except Exception:
            logger.exception("Risk evaluation failed for position %s; forcing close", position.id)
            return PositionRiskAssessment(should_close=True, reason="Risk evaluation error")

    def _evaluate(self, position: Position, mark_price: float) -> PositionRiskAssessment:
        cfg = self._config
        if not (math.isfinite(mark_price) and mark_price > 0):
            raise ValueError(f"Invalid mark price {mark_price!r}")

        side = position.side
        liq = liquidation_price(
            side,
            position.entry_price,
            position.size,
            _effective_leverage(position),
            cfg.maintenance_margin_ratio,
        )
        if (side is Side.LONG and mark_price <= liq) or (side is Side.SHORT and mark_price >= liq):
            return PositionRiskAssessment(
                should_close=True,
                reason=f"Position liquidated (mark {mark_price:.4f} crossed liquidation price {liq:.4f})",
                liquidation_price=liq,
            )

        pnl = unrealized_pnl(side, position.size, position.entry_price, mark_price)
        margin_ratio = (position.margin + pnl) / (position.size * mark_price)
        if margin_ratio < cfg.margin_call_ratio:
            return PositionRiskAssessment(
                should_close=True,
                reason=f"Margin call: margin ratio {margin_ratio:.2%} below {cfg.margin_call_ratio:.0%}",
                liquidation_price=liq,
                margin_call=True,
            )

        entry = position.entry_price
        if side is Side.LONG:
            stop_hit = mark_price <= entry * (1 - cfg.stop_loss_pct)
            target_hit = mark_price >= entry * (1 + cfg.take_profit_pct)
        else:
            stop_hit = mark_price >= entry * (1 + cfg.stop_loss_pct)
            target_hit = mark_price <= entry * (1 - cfg.take_profit_pct)

        if stop_hit:
            return PositionRiskAssessment(
                should_close=True,
                reason=f"Stop loss triggered ({cfg.stop_loss_pct:.1%} against entry {entry:.4f})",
                liquidation_price=liq,
            )
        if target_hit:
            return PositionRiskAssessment(
                should_close=True,
                reason=f"Take profit triggered ({cfg.take_profit_pct:.1%} from entry {entry:.4f})",
                liquidation_price=liq,
            )

        return PositionRiskAssessment(should_close=False, liquidation_price=liq)

    def status(self) -> dict:
        cfg = self._config
        return {
            "max_leverage": cfg.max_leverage,
            "risk_per_trade": cfg.risk_per_trade,
            "max_positions": cfg.max_positions,
            "stop_loss_pct": cfg.stop_loss_pct,
            "take_profit_pct": cfg.take_profit_pct,
        }


def _deny(
    reason: str,
    *,
    max_size: float | None = None,
    suggested_leverage: float | None = None,
) -> RiskAssessment:
    """Build a denied RiskAssessment."""
    return RiskAssessment(
        allowed=False,
        reason=reason,
        max_size=max_size,
        suggested_leverage=suggested_leverage,
    )
