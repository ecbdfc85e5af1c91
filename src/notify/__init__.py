"""Notification sink: structured JSON events plus optional webhook."""

from notify.event_logger import ALERT_EVENTS, EventNotifier

__all__ = ["ALERT_EVENTS", "EventNotifier"]
