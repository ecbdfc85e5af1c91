"""
Persist and load trades, positions, ticks and the account row (SQLite).
Timestamps stored as UTC ISO strings.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from prpos_core.contracts import (
    Account,
    Position,
    PositionStatus,
    PriceTick,
    Side,
    TradeRecord,
    TradeStatus,
)

logger = logging.getLogger("prpos.store")


def _utc_ts(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _iso(ts: datetime | None) -> str | None:
    return _utc_ts(ts).isoformat() if ts is not None else None


def _parse(ts_utc: str | None) -> datetime | None:
    if ts_utc is None:
        return None
    ts = datetime.fromisoformat(ts_utc.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


_TRADE_COLUMNS = "id, side, size, price, fees, status, ts_utc, strategy, venue_order_id"
_POSITION_COLUMNS = (
    "id, side, size, entry_price, mark_price, leverage, margin, opened_at, strategy, "
    "status, unrealized_pnl, realized_pnl, closed_at, close_price, close_reason"
)
_UPDATE_POSITION = """
    UPDATE positions SET mark_price = ?, status = ?, unrealized_pnl = ?,
        realized_pnl = ?, closed_at = ?, close_price = ?, close_reason = ?
    WHERE id = ?
"""
_UPSERT_ACCOUNT = "INSERT OR REPLACE INTO account (id, balance, margin, updated_at) VALUES (?, ?, ?, ?)"


class TradeStore:
    """SQLite-backed store for the trading ledger. One file per path."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._path

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path), timeout=10.0)

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS trades (
                    id TEXT PRIMARY KEY,
                    side TEXT NOT NULL,
                    size REAL NOT NULL,
                    price REAL NOT NULL,
                    fees REAL NOT NULL,
                    status TEXT NOT NULL,
                    ts_utc TEXT NOT NULL,
                    strategy TEXT NOT NULL,
                    venue_order_id TEXT
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS positions (
                    id TEXT PRIMARY KEY,
                    side TEXT NOT NULL,
                    size REAL NOT NULL,
                    entry_price REAL NOT NULL,
                    mark_price REAL NOT NULL,
                    leverage REAL NOT NULL,
                    margin REAL NOT NULL,
                    opened_at TEXT NOT NULL,
                    strategy TEXT NOT NULL,
                    status TEXT NOT NULL,
                    unrealized_pnl REAL,
                    realized_pnl REAL,
                    closed_at TEXT,
                    close_price REAL,
                    close_reason TEXT
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS ticks (
                    ts_utc TEXT NOT NULL,
                    price REAL NOT NULL,
                    volume REAL NOT NULL
                )
                """
            )
            c.execute("CREATE INDEX IF NOT EXISTS idx_ticks_ts ON ticks (ts_utc)")
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS account (
                    id TEXT PRIMARY KEY,
                    balance REAL NOT NULL,
                    margin REAL NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def insert_trade(self, trade: TradeRecord) -> None:
        with self._conn() as c:
            c.execute(
                f"INSERT INTO trades ({_TRADE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    trade.id,
                    trade.side.value,
                    trade.size,
                    trade.price,
                    trade.fees,
                    trade.status.value,
                    _iso(trade.timestamp),
                    trade.strategy,
                    trade.venue_order_id,
                ),
            )

    def update_trade(self, trade: TradeRecord) -> bool:
        """Overwrite the mutable fields of an existing trade. False if the id is unknown."""
        with self._conn() as c:
            cur = c.execute(
                """
                UPDATE trades SET size = ?, price = ?, fees = ?, status = ?, venue_order_id = ?
                WHERE id = ?
                """,
                (trade.size, trade.price, trade.fees, trade.status.value, trade.venue_order_id, trade.id),
            )
            return cur.rowcount > 0

    def get_trade(self, trade_id: str) -> TradeRecord | None:
        with self._conn() as c:
            row = c.execute(f"SELECT {_TRADE_COLUMNS} FROM trades WHERE id = ?", (trade_id,)).fetchone()
        return self._row_to_trade(row) if row else None

    def list_trades(
        self,
        *,
        status: TradeStatus | str | None = None,
        side: Side | str | None = None,
        strategy: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[TradeRecord]:
        """Return trades in ascending time order, filtered by any combination of fields.
        With *limit*, the most recent ``limit`` trades are returned."""
        q = f"SELECT {_TRADE_COLUMNS} FROM trades WHERE 1 = 1"
        params: list = []
        q, params = _filters(q, params, status=status, side=side, strategy=strategy)
        q, params = _date_range(q, params, "ts_utc", since, until)
        q += " ORDER BY ts_utc DESC, rowid DESC"
        if limit is not None:
            q += " LIMIT ?"
            params.append(limit)
        with self._conn() as c:
            rows = c.execute(q, params).fetchall()
        rows.reverse()  # back to ascending
        return [self._row_to_trade(r) for r in rows]

    @staticmethod
    def _row_to_trade(row: tuple) -> TradeRecord:
        tid, side, size, price, fees, status, ts_utc, strategy, venue_order_id = row
        return TradeRecord(
            id=tid,
            side=Side(side),
            size=size,
            price=price,
            fees=fees,
            status=TradeStatus(status),
            timestamp=_parse(ts_utc),
            strategy=strategy,
            venue_order_id=venue_order_id,
        )

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def insert_position(self, position: Position) -> None:
        with self._conn() as c:
            c.execute(
                f"INSERT INTO positions ({_POSITION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._position_params(position),
            )

    def update_position(self, position: Position) -> bool:
        """Persist mark/PnL/close fields. Entry fields are never rewritten."""
        with self._conn() as c:
            cur = c.execute(_UPDATE_POSITION, self._position_update_params(position))
            return cur.rowcount > 0

    def update_positions(self, positions: Iterable[Position]) -> int:
        """Update several positions; returns how many rows matched."""
        updated = 0
        for position in positions:
            if self.update_position(position):
                updated += 1
            else:
                logger.warning("Position %s not in store; update skipped", position.id)
        return updated

    def record_close(self, position: Position, account: Account) -> None:
        """Write a closed position and the resulting account row in one transaction.
        Raises KeyError (nothing written) if the position row is missing."""
        with self._conn() as c:
            cur = c.execute(_UPDATE_POSITION, self._position_update_params(position))
            if cur.rowcount == 0:
                raise KeyError(f"Position {position.id!r} not in store")
            c.execute(_UPSERT_ACCOUNT, self._account_params(account))

    @staticmethod
    def _position_update_params(position: Position) -> tuple:
        return (
            position.mark_price,
            position.status.value,
            position.unrealized_pnl,
            position.realized_pnl,
            _iso(position.closed_at),
            position.close_price,
            position.close_reason,
            position.id,
        )

    def get_position(self, position_id: str) -> Position | None:
        with self._conn() as c:
            row = c.execute(
                f"SELECT {_POSITION_COLUMNS} FROM positions WHERE id = ?", (position_id,)
            ).fetchone()
        return self._row_to_position(row) if row else None

    def list_positions(
        self,
        *,
        status: PositionStatus | str | None = None,
        side: Side | str | None = None,
        strategy: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[Position]:
        """Return positions ordered by open time. Date range applies to opened_at."""
        q = f"SELECT {_POSITION_COLUMNS} FROM positions WHERE 1 = 1"
        params: list = []
        q, params = _filters(q, params, status=status, side=side, strategy=strategy)
        q, params = _date_range(q, params, "opened_at", since, until)
        q += " ORDER BY opened_at ASC"
        if limit is not None:
            q += " LIMIT ?"
            params.append(limit)
        with self._conn() as c:
            rows = c.execute(q, params).fetchall()
        return [self._row_to_position(r) for r in rows]

    @staticmethod
    def _position_params(p: Position) -> tuple:
        return (
            p.id,
            p.side.value,
            p.size,
            p.entry_price,
            p.mark_price,
            p.leverage,
            p.margin,
            _iso(p.opened_at),
            p.strategy,
            p.status.value,
            p.unrealized_pnl,
            p.realized_pnl,
            _iso(p.closed_at),
            p.close_price,
            p.close_reason,
        )

    @staticmethod
    def _row_to_position(row: tuple) -> Position:
        (
            pid, side, size, entry_price, mark_price, leverage, margin, opened_at, strategy,
            status, unrealized, realized, closed_at, close_price, close_reason,
        ) = row
        return Position(
            id=pid,
            side=Side(side),
            size=size,
            entry_price=entry_price,
            mark_price=mark_price,
            leverage=leverage,
            margin=margin,
            opened_at=_parse(opened_at),
            strategy=strategy,
            status=PositionStatus(status),
            unrealized_pnl=unrealized,
            realized_pnl=realized,
            closed_at=_parse(closed_at),
            close_price=close_price,
            close_reason=close_reason,
        )

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def insert_tick(self, tick: PriceTick) -> None:
        self.insert_ticks([tick])

    def insert_ticks(self, ticks: Iterable[PriceTick]) -> None:
        with self._conn() as c:
            c.executemany(
                "INSERT INTO ticks (ts_utc, price, volume) VALUES (?, ?, ?)",
                [(_iso(t.timestamp), t.price, t.volume) for t in ticks],
            )

    def list_ticks(
        self,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[PriceTick]:
        """Return ticks in ascending time order."""
        q = "SELECT ts_utc, price, volume FROM ticks WHERE 1 = 1"
        params: list = []
        q, params = _date_range(q, params, "ts_utc", since, until)
        q += " ORDER BY ts_utc ASC, rowid ASC"
        if limit is not None:
            q += " LIMIT ?"
            params.append(limit)
        with self._conn() as c:
            rows = c.execute(q, params).fetchall()
        return [PriceTick(timestamp=_parse(ts), price=price, volume=volume) for ts, price, volume in rows]

    def count_ticks(self) -> int:
        with self._conn() as c:
            row = c.execute("SELECT COUNT(*) FROM ticks").fetchone()
        return row[0] if row else 0

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def save_account(self, account: Account) -> None:
        """Upsert the account row. open_positions_count is derived, not stored."""
        with self._conn() as c:
            c.execute(_UPSERT_ACCOUNT, self._account_params(account))

    @staticmethod
    def _account_params(account: Account) -> tuple:
        return (account.id, account.balance, account.margin, _iso(datetime.now(timezone.utc)))

    def load_account(self, account_id: str) -> Account | None:
        with self._conn() as c:
            row = c.execute(
                "SELECT id, balance, margin FROM account WHERE id = ?", (account_id,)
            ).fetchone()
            if row is None:
                return None
            open_count = c.execute(
                "SELECT COUNT(*) FROM positions WHERE status = ?", (PositionStatus.OPEN.value,)
            ).fetchone()[0]
        return Account(id=row[0], balance=row[1], margin=row[2], open_positions_count=open_count)


def _enum_value(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _filters(q: str, params: list, **fields) -> tuple[str, list]:
    for column, value in fields.items():
        if value is not None:
            q += f" AND {column} = ?"
            params.append(_enum_value(value))
    return q, params


def _date_range(
    q: str,
    params: list,
    column: str,
    since: datetime | None,
    until: datetime | None,
) -> tuple[str, list]:
    if since is not None:
        q += f" AND {column} >= ?"
        params.append(_iso(since))
    if until is not None:
        q += f" AND {column} <= ?"
        params.append(_iso(until))
    return q, params
