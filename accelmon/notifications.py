from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

from .core.alarms import alarm_severity, describe_alarm
from .core.models import Alarm


logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def show_notification(self, alarm: Alarm) -> None: ...


class LogNotifier:
    """Report alarm onsets through the ``accelmon.alarms`` logger."""

    def __init__(self, logger_name: str = "accelmon.alarms") -> None:
        self._log = logging.getLogger(logger_name)

    def show_notification(self, alarm: Alarm) -> None:
        self._log.warning(
            describe_alarm(alarm),
            extra={"alarm_id": alarm.id, "axis": alarm.axis, "severity": alarm_severity(alarm)},
        )


class CallbackNotifier:
    """Forward the formatted message to an arbitrary sink (e.g. ``typer.echo``)."""

    def __init__(self, sink: Callable[[str], None], enabled: bool = True) -> None:
        self._sink = sink
        self.enabled = enabled

    def show_notification(self, alarm: Alarm) -> None:
        if not self.enabled:
            return
        self._sink(f"[{alarm_severity(alarm).upper()}] {describe_alarm(alarm)}")


def notify_safely(notifier: Optional[Notifier], alarm: Alarm) -> None:
    """Fire-and-forget delivery; failures are logged and otherwise ignored."""
    if notifier is None:
        return
    try:
        notifier.show_notification(alarm)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to deliver alarm notification", extra={"alarm_id": alarm.id})
