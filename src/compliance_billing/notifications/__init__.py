"""Notification and broadcast dispatch."""

from compliance_billing.notifications.dispatcher import (
    DRAIN_TIMEOUT_SECONDS,
    DispatcherHandler,
    LoggingDispatcher,
    NotificationDispatcher,
    RecordingDispatcher,
)

__all__ = [
    "DRAIN_TIMEOUT_SECONDS",
    "DispatcherHandler",
    "LoggingDispatcher",
    "NotificationDispatcher",
    "RecordingDispatcher",
]
