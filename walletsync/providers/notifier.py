import logging
from typing import Callable, List, Optional, Tuple

from ..core.models import NotificationKind
from .base import Notifier


_LEVELS = {
    NotificationKind.SUCCESS: logging.INFO,
    NotificationKind.INFO: logging.INFO,
    NotificationKind.WARNING: logging.WARNING,
    NotificationKind.ERROR: logging.ERROR,
}


class LoggingNotifier(Notifier):
    """Default sink: notifications become log lines on ``walletsync.notifications``.

    An optional ``forward`` callable receives every notification as well, for a
    presentation layer that wants to render them.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        forward: Optional[Callable[[str, NotificationKind], None]] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("walletsync.notifications")
        self._forward = forward

    def notify(self, message: str, kind: NotificationKind = NotificationKind.INFO) -> None:
        kind = NotificationKind(kind)
        self.logger.log(_LEVELS[kind], message, extra={"notification_kind": kind.value})
        if self._forward is None:
            return
        try:
            self._forward(message, kind)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Notification forward failed: %s", exc)


class RecordingNotifier(Notifier):
    """Keeps every notification in memory; handy for tests and CLIs."""

    def __init__(self) -> None:
        self.messages: List[Tuple[str, NotificationKind]] = []

    def notify(self, message: str, kind: NotificationKind = NotificationKind.INFO) -> None:
        self.messages.append((message, NotificationKind(kind)))

    def of_kind(self, kind: NotificationKind) -> List[str]:
        return [message for message, k in self.messages if k == kind]
