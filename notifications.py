"""
Notification sink.

Components publish lifecycle events here; delivery (chat, presence, email) is
someone else's job. The default sink only logs.
"""

import logging
from typing import Any, Dict, List, Protocol, Tuple

logger = logging.getLogger("marketplace.events")


class NotificationSink(Protocol):
    def publish(self, event: str, payload: Dict[str, Any]) -> None: ...


class LoggingNotificationSink:
    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info("event=%s %s", event, " ".join(f"{k}={v}" for k, v in sorted(payload.items())))


class RecordingNotificationSink:
    """Keeps published events in memory; handy for tests and local runs."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, dict(payload)))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


_default_sink = LoggingNotificationSink()


def get_notifier() -> NotificationSink:
    return _default_sink
