"""Tests for the risk manager: opening checks, liquidation, close triggers."""

from dataclasses import replace

import pytest

from config.trading_config import RiskConfig
from prpos_core.contracts import Account, Position, Side
from prpos_core.risk_manager import RiskManager, liquidation_price, unrealized_pnl

from conftest import ts


def _position(side: Side = Side.LONG, *, size: float = 1.0, entry: float = 100.0,
              leverage: float = 10.0, margin: float = 10.0) -> Position:
    return Position(
        id="p1",
        side=side,
        size=size,
        entry_price=entry,
        mark_price=entry,
        leverage=leverage,
        margin=margin,
        opened_at=ts(0),
        strategy="SMA",
    )


@pytest.fixture
def rm(risk_config: RiskConfig) -> RiskManager:
    return RiskManager(risk_config)


# ---------------------------------------------------------------------------
# can_open_position
# ---------------------------------------------------------------------------


class TestCanOpenPosition:

    def test_small_trade_allowed(self, rm: RiskManager, account: Account) -> None:
        result = rm.can_open_position(account, 0.1, 100.0)
        assert result.allowed
        assert result.reason is None

    def test_oversized_trade_denied_with_leverage_reason(self, rm: RiskManager, account: Account) -> None:
        result = rm.can_open_position(account, 2000, 100.0)
        assert not result.allowed
        assert "leverage" in result.reason.lower()

    @pytest.mark.parametrize("balance,size,price", [
        (10_000, 2000, 100),
        (10_000, 1001, 100),
        (500, 60, 100),
        (1, 1, 50),
    ])
    def test_margin_denial_bounds_max_size(self, rm: RiskManager, balance, size, price) -> None:
        account = Account(id="a", balance=balance)
        required = size * price / rm.max_leverage
        assert required > balance
        result = rm.can_open_position(account, size, price)
        assert not result.allowed
        assert "insufficient balance" in result.reason.lower()
        exact = balance * rm.max_leverage / price
        assert result.max_size is not None
        assert result.max_size <= exact + 1e-9
        # the suggested size itself passes the margin check
        assert rm.required_margin(result.max_size, price) <= balance + 1e-9

    def test_position_count_cap(self, rm: RiskManager) -> None:
        account = Account(id="a", balance=10_000, open_positions_count=5)
        result = rm.can_open_position(account, 0.1, 100.0)
        assert not result.allowed
        assert "maximum positions" in result.reason.lower()

    def test_risk_cap_returns_recomputed_size(self) -> None:
        rm = RiskManager(RiskConfig(max_leverage=100, risk_per_trade=0.5))
        account = Account(id="a", balance=10_000)
        # notional 5000 x 0.5 = 2500 risk > 1000 budget; margin and leverage fine
        result = rm.can_open_position(account, 50, 100.0)
        assert not result.allowed
        assert "risk" in result.reason.lower()
        assert result.max_size == pytest.approx(1000 / (100 * 0.5))
        assert rm.can_open_position(account, result.max_size, 100.0).allowed

    def test_first_failing_check_wins(self, rm: RiskManager) -> None:
        account = Account(id="a", balance=100, open_positions_count=5)
        result = rm.can_open_position(account, 100, 100.0)
        assert "insufficient balance" in result.reason.lower()
        assert "maximum positions" not in result.reason.lower()

    @pytest.mark.parametrize("size,price", [(0, 100), (-1, 100), (1, 0), (float("nan"), 100), (1, float("inf"))])
    def test_invalid_inputs_denied(self, rm: RiskManager, account: Account, size, price) -> None:
        assert not rm.can_open_position(account, size, price).allowed

    def test_zero_balance_denied(self, rm: RiskManager) -> None:
        result = rm.can_open_position(Account(id="a", balance=0.0), 0.1, 100.0)
        assert not result.allowed
        assert result.max_size == 0.0


# ---------------------------------------------------------------------------
# PnL and liquidation price
# ---------------------------------------------------------------------------


class TestPnl:

    @pytest.mark.parametrize("entry,mark", [(100, 110), (100, 90), (50, 50.5), (200, 150)])
    def test_sign_matches_direction(self, entry, mark) -> None:
        long_pnl = unrealized_pnl(Side.LONG, 2.0, entry, mark)
        short_pnl = unrealized_pnl(Side.SHORT, 2.0, entry, mark)
        if mark > entry:
            assert long_pnl > 0 > short_pnl
        else:
            assert long_pnl < 0 < short_pnl
        assert long_pnl == pytest.approx(-short_pnl)

    def test_liquidation_price_10x(self) -> None:
        assert liquidation_price(Side.LONG, 100.0, 1.0, 10.0, 0.05) == pytest.approx(95.0)
        assert liquidation_price(Side.SHORT, 100.0, 1.0, 10.0, 0.05) == pytest.approx(105.0)

    def test_liquidation_independent_of_size(self) -> None:
        assert liquidation_price(Side.LONG, 100.0, 7.0, 10.0) == pytest.approx(95.0)

    def test_invalid_leverage(self) -> None:
        with pytest.raises(ValueError):
            liquidation_price(Side.LONG, 100.0, 1.0, 0.0)


# ---------------------------------------------------------------------------
# evaluate_position
# ---------------------------------------------------------------------------


class TestEvaluatePosition:

    def test_liquidation_at_half_price(self, rm: RiskManager) -> None:
        result = rm.evaluate_position(_position(), 50.0)
        assert result.should_close
        assert "liquidat" in result.reason.lower()
        assert result.liquidation_price == pytest.approx(95.0)

    def test_liquidation_exactly_at_price(self, rm: RiskManager) -> None:
        result = rm.evaluate_position(_position(), 95.0)
        assert result.should_close
        assert "liquidat" in result.reason.lower()

    def test_short_liquidation(self, rm: RiskManager) -> None:
        result = rm.evaluate_position(_position(Side.SHORT), 105.0)
        assert result.should_close
        assert "liquidat" in result.reason.lower()

    def test_margin_call_before_liquidation(self, rm: RiskManager) -> None:
        # (10 - 4) / 96 = 6.25% < 10%
        result = rm.evaluate_position(_position(), 96.0)
        assert result.should_close
        assert result.margin_call
        assert "margin call" in result.reason.lower()

    def test_stop_loss(self, rm: RiskManager) -> None:
        # fully collateralised: no liquidation or margin call short of zero
        pos = _position(leverage=1.0, margin=100.0)
        result = rm.evaluate_position(pos, 94.0)
        assert result.should_close
        assert "stop loss" in result.reason.lower()

    def test_take_profit(self, rm: RiskManager) -> None:
        pos = _position(leverage=1.0, margin=100.0)
        result = rm.evaluate_position(pos, 111.0)
        assert result.should_close
        assert "take profit" in result.reason.lower()

    def test_short_take_profit(self, rm: RiskManager) -> None:
        pos = _position(Side.SHORT, leverage=1.0, margin=100.0)
        assert "take profit" in rm.evaluate_position(pos, 89.0).reason.lower()

    def test_hold_inside_band(self, rm: RiskManager) -> None:
        pos = _position(leverage=1.0, margin=100.0)
        result = rm.evaluate_position(pos, 101.0)
        assert not result.should_close
        assert result.reason is None
        assert result.liquidation_price is not None

    def test_liquidation_iff_crossed(self, rm: RiskManager) -> None:
        pos = _position(leverage=1.0, margin=100.0)
        liq = liquidation_price(Side.LONG, 100.0, 1.0, 1.0, 0.05)
        below = rm.evaluate_position(pos, liq - 0.01)
        above = rm.evaluate_position(pos, liq + 0.01)
        assert "liquidat" in below.reason.lower()
        assert above.reason is None or "liquidat" not in above.reason.lower()

    def test_evaluation_error_forces_close(self, rm: RiskManager) -> None:
        broken = replace(_position(), size=0.0, margin=0.0)
        result = rm.evaluate_position(broken, 100.0)
        assert result.should_close
        assert result.reason == "Risk evaluation error"

    def test_invalid_mark_forces_close(self, rm: RiskManager) -> None:
        result = rm.evaluate_position(_position(), float("nan"))
        assert result.should_close
