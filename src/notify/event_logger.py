"""
Structured JSON event notifier.

Emits one JSON object per line to a stream (stderr by default) so events can
be parsed by log aggregators.

Optional webhook: when configured, alert events (trade_executed,
position_opened, position_closed, risk_alert, error) are POSTed to the URL
from a single background worker thread, so a slow endpoint never stalls
tick processing. Notification failures are logged and never raised.
"""

from __future__ import annotations

import json
import logging
import sys
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from prpos_core.contracts import Position, TradeRecord

logger = logging.getLogger("prpos.events")

ALERT_EVENTS = frozenset(
    {
        "trade_executed",
        "position_opened",
        "position_closed",
        "risk_alert",
        "error",
    }
)


class EventNotifier:
    """Fire-and-forget sink for trading events."""

    def __init__(
        self,
        bot_id: str,
        *,
        enabled: bool = True,
        webhook_url: str = "",
        stream: Any = None,
        webhook_timeout: float = 5.0,
    ) -> None:
        self._bot_id = bot_id
        self._enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr
        self._webhook_timeout = webhook_timeout
        self._pool: ThreadPoolExecutor | None = None
        if self._webhook_url:
            self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="prpos-webhook")

    def _emit(self, event_type: str, **fields: Any) -> dict:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "bot_id": self._bot_id,
            **fields,
        }
        if self._enabled:
            try:
                self._stream.write(json.dumps(record, default=str) + "\n")
                self._stream.flush()
            except (OSError, ValueError) as exc:
                logger.warning("Event write failed (%s): %s", event_type, exc)

        if self._pool is not None and event_type in ALERT_EVENTS:
            try:
                self._pool.submit(self._post_webhook, record)
            except RuntimeError as exc:  # pool already shut down
                logger.warning("Webhook dropped for %s: %s", event_type, exc)

        return record

    def _post_webhook(self, record: dict) -> None:
        try:
            data = json.dumps(record, default=str).encode("utf-8")
            req = urllib.request.Request(
                self._webhook_url,
                data=data,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            urllib.request.urlopen(req, timeout=self._webhook_timeout)
        except Exception as exc:
            logger.warning("Webhook POST failed: %s", exc)

    def close(self) -> None:
        """Wait for queued webhook posts to finish."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)

    def bot_started(self, balance: float, open_positions: int) -> dict:
        return self._emit("bot_started", balance=round(balance, 2), open_positions=open_positions)

    def trade_executed(self, trade: TradeRecord) -> dict:
        return self._emit(
            "trade_executed",
            trade_id=trade.id,
            side=trade.side.value,
            size=trade.size,
            price=trade.price,
            fees=trade.fees,
            status=trade.status.value,
            strategy=trade.strategy,
        )

    def position_opened(self, position: Position) -> dict:
        return self._emit(
            "position_opened",
            position_id=position.id,
            side=position.side.value,
            size=position.size,
            entry_price=position.entry_price,
            leverage=round(position.leverage, 6),
            strategy=position.strategy,
        )

    def position_closed(self, position: Position) -> dict:
        return self._emit(
            "position_closed",
            position_id=position.id,
            side=position.side.value,
            size=position.size,
            entry_price=position.entry_price,
            close_price=position.close_price,
            realized_pnl=position.realized_pnl,
            reason=position.close_reason,
        )

    def risk_alert(
        self,
        position_id: str,
        reason: str,
        *,
        liquidation_price: float | None = None,
        margin_call: bool = False,
    ) -> dict:
        return self._emit(
            "risk_alert",
            position_id=position_id,
            reason=reason,
            liquidation_price=liquidation_price,
            margin_call=margin_call,
        )

    def order_rejected(self, reason: str, strategy: str = "") -> dict:
        return self._emit("order_rejected", reason=reason, strategy=strategy)

    def signal_superseded(self, strategy: str, side: str, by: str) -> dict:
        return self._emit("signal_superseded", strategy=strategy, side=side, superseded_by=by)

    def error(self, message: str) -> dict:
        """Generic failure notice. Exception details belong in the logs only."""
        return self._emit("error", message=message)

    def shutdown(self, ticks_processed: int) -> dict:
        return self._emit("shutdown", ticks=ticks_processed)
