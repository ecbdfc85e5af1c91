"""Tests for the Bot orchestrator: per-tick pipeline, lifecycle, persistence."""

import asyncio
import json
from dataclasses import replace
from pathlib import Path

import pytest

from config.loader import AccountConfig, AppConfig, ExecutionConfig, StorageConfig
from config.trading_config import FeedConfig, RiskConfig, load_trading_config
from execution.trade_executor import TradeExecutor
from prpos_core.bot import Bot, TickClock, build_bot
from prpos_core.contracts import Account, Position, PositionStatus, Side, TradingSignal
from prpos_core.portfolio import Portfolio
from prpos_core.price_feed import FeedError, PriceFeed
from prpos_core.risk_manager import RiskManager
from prpos_core.strategies import SmaCrossoverStrategy, Strategy

from conftest import ScriptedVenue, make_ticks, ts


class AlwaysSignal(Strategy):
    """Signals on every tick, no cooldown."""

    def __init__(self, name: str, side: Side) -> None:
        super().__init__(cooldown_seconds=0, base_size=0.1, min_size=0.01)
        self.name = name
        self._side = side
        self.seen = 0

    def _evaluate(self, tick):
        self.seen += 1
        return TradingSignal(self._side, 0.1, 0.5, self.name, tick.timestamp)

    def _clear(self) -> None:
        self.seen = 0


class BrokenFeed(PriceFeed):
    def next_tick(self):
        raise FeedError("Generated non-finite price/volume: inf/inf")


class Exploding(Strategy):
    name = "Exploding"

    def __init__(self) -> None:
        super().__init__(cooldown_seconds=0, base_size=0.1, min_size=0.01)

    def _evaluate(self, tick):
        raise RuntimeError("strategy bug")

    def _clear(self) -> None:
        pass


def _bot(strategies, store, notifier, *, account=None, risk=None, venue=None, **kwargs) -> Bot:
    account = account or Account(id="acct", balance=10_000.0)
    risk_manager = RiskManager(risk or RiskConfig())
    portfolio = Portfolio(account)
    clock = TickClock()
    executor = TradeExecutor(risk_manager, portfolio, venue or ScriptedVenue(), store, notifier, clock=clock.now)
    return Bot(
        strategies=strategies,
        risk_manager=risk_manager,
        portfolio=portfolio,
        executor=executor,
        store=store,
        notifier=notifier,
        account=account,
        clock=clock,
        **kwargs,
    )


def _events(buf) -> list[dict]:
    return [json.loads(line) for line in buf.getvalue().splitlines()]


class TestProcessTick:

    async def test_rising_prices_open_long(self, store, notifier, trading_config) -> None:
        bot = _bot([SmaCrossoverStrategy(trading_config.strategies.sma)], store, notifier)
        await bot.load_state()
        for tick in make_ticks([100 + i * 0.5 for i in range(25)]):
            await bot.process_tick(tick)
        [position] = bot.portfolio.open_positions()
        assert position.side is Side.LONG
        assert position.opened_at == ts(20)
        assert store.count_ticks() == 25
        assert bot.ticks_processed == 25
        # marks persisted for open positions
        assert store.get_position(position.id).mark_price == 112.0

    async def test_liquidation_closes_position(self, store, notifier, events) -> None:
        bot = _bot([], store, notifier)
        position = Position(
            id="p1", side=Side.LONG, size=1.0, entry_price=100.0, mark_price=100.0,
            leverage=10.0, margin=10.0, opened_at=ts(0), strategy="SMA",
        )
        store.insert_position(position)
        await bot.load_state()
        await bot.process_tick(make_ticks([50.0])[0])
        closed = bot.portfolio.get_position("p1")
        assert closed.status is PositionStatus.CLOSED
        assert "liquidat" in closed.close_reason.lower()
        assert closed.realized_pnl == pytest.approx(-50.0)
        names = [e["event"] for e in _events(events)]
        assert names.index("risk_alert") < names.index("position_closed")

    async def test_first_signal_wins(self, store, notifier, events) -> None:
        first = AlwaysSignal("First", Side.LONG)
        second = AlwaysSignal("Second", Side.SHORT)
        venue = ScriptedVenue()
        bot = _bot([first, second], store, notifier, venue=venue)
        await bot.load_state()
        await bot.process_tick(make_ticks([100.0])[0])
        assert len(venue.orders) == 1
        assert venue.orders[0][0] is Side.LONG
        # both strategies still observed the tick
        assert first.seen == second.seen == 1
        superseded = [e for e in _events(events) if e["event"] == "signal_superseded"]
        assert superseded[0]["strategy"] == "Second"
        assert superseded[0]["superseded_by"] == "First"

    async def test_failure_is_isolated_to_one_tick(self, store, notifier, events) -> None:
        bot = _bot([Exploding()], store, notifier)
        await bot.load_state()
        for tick in make_ticks([100.0, 101.0]):
            await bot.handle_tick(tick)
        errors = [e for e in _events(events) if e["event"] == "error"]
        assert len(errors) == 2
        # exception text stays in the logs, not in the event payload
        assert errors[0]["message"] == "Tick processing failed"
        assert "strategy bug" not in json.dumps(errors)

    async def test_persist_ticks_off(self, store, notifier) -> None:
        bot = _bot([], store, notifier, persist_ticks=False)
        await bot.load_state()
        await bot.process_tick(make_ticks([100.0])[0])
        assert store.count_ticks() == 0


class TestLifecycle:

    async def test_load_state_restores_account_and_positions(self, store, notifier) -> None:
        store.save_account(Account(id="acct", balance=7_500.0))
        store.insert_position(Position(
            id="p1", side=Side.SHORT, size=0.2, entry_price=100.0, mark_price=100.0,
            leverage=0.002, margin=2.0, opened_at=ts(0), strategy="MeanReversion",
        ))
        bot = _bot([], store, notifier)
        await bot.load_state()
        account = bot.portfolio.account()
        assert account.balance == 7_500.0
        assert account.open_positions_count == 1

    async def test_load_state_seeds_new_account(self, store, notifier) -> None:
        bot = _bot([], store, notifier)
        await bot.load_state()
        assert store.load_account("acct").balance == 10_000.0

    async def test_start_without_feed_raises(self, store, notifier) -> None:
        with pytest.raises(RuntimeError):
            await _bot([], store, notifier).start()

    async def test_run_with_feed_then_stop(self, tmp_path: Path, notifier, events) -> None:
        trading = load_trading_config(profile="backtest")
        trading = replace(trading, feed=replace(trading.feed, interval_ms=5, seed=1))
        app = AppConfig(
            bot_id="t",
            storage=StorageConfig(state_path=str(tmp_path / "bot.db")),
            account=AccountConfig(id="acct", initial_balance=10_000.0),
            execution=ExecutionConfig(close_on_shutdown=True),
        )
        bot = build_bot(app, trading, notifier=notifier, venue=ScriptedVenue())
        await bot.start()
        assert bot.is_running
        await asyncio.sleep(0.1)
        await bot.stop()
        assert not bot.is_running
        assert bot.ticks_processed > 0
        assert bot.portfolio.open_positions() == []
        status = bot.status()
        assert status["running"] is False
        assert status["feed"]["running"] is False
        assert {s["name"] for s in status["strategies"]} == {"SMA", "MeanReversion"}
        names = [e["event"] for e in _events(events)]
        assert names[0] == "bot_started"
        assert names[-1] == "shutdown"

    async def test_feed_halt_stops_bot(self, store, notifier, events) -> None:
        bot = _bot([], store, notifier, feed=BrokenFeed(FeedConfig(seed=1, interval_ms=5)))
        await bot.start()
        await asyncio.wait_for(bot.wait_halted(), timeout=1.0)
        assert not bot.is_running
        assert bot.status()["running"] is False
        errors = [e for e in _events(events) if e["event"] == "error"]
        assert [e["message"] for e in errors] == ["Price feed halted"]
        assert "inf" not in json.dumps(errors)
        # stop() still completes the shutdown
        await bot.stop()
        assert _events(events)[-1]["event"] == "shutdown"
        assert store.load_account("acct") is not None

    async def test_stop_flattens_open_positions(self, store, notifier) -> None:
        bot = _bot([AlwaysSignal("First", Side.LONG)], store, notifier, close_on_shutdown=True)
        await bot.load_state()
        await bot.process_tick(make_ticks([100.0])[0])
        assert len(bot.portfolio.open_positions()) == 1
        bot._running = True  # driven by process_tick, not start()
        await bot.stop()
        assert bot.portfolio.open_positions() == []
        assert store.list_positions(status="open") == []
