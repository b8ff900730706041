"""
Notification Module

User-facing outcome messages. The engine only calls a notifier with
`(kind, title, detail)`; how the message is shown is up to the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class NotificationKind(Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    title: str
    detail: Optional[str] = None
    created_at: datetime = None


class Notifier:
    """Base notifier: callable as notify(kind, title, detail=None)"""

    def __call__(self, kind: NotificationKind, title: str, detail: Optional[str] = None) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Writes notifications to the application log"""

    _levels = {
        NotificationKind.SUCCESS: logging.INFO,
        NotificationKind.INFO: logging.INFO,
        NotificationKind.WARNING: logging.WARNING,
        NotificationKind.ERROR: logging.ERROR,
    }

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("coop_ledger.notifications")

    def __call__(self, kind: NotificationKind, title: str, detail: Optional[str] = None) -> None:
        message = f"{title}: {detail}" if detail else title
        self.logger.log(self._levels[kind], message, extra={'action': f"notify_{kind.value}"})


class RecordingNotifier(Notifier):
    """Keeps every notification in memory, newest last"""

    def __init__(self):
        self.notifications: List[Notification] = []

    def __call__(self, kind: NotificationKind, title: str, detail: Optional[str] = None) -> None:
        self.notifications.append(
            Notification(kind=kind, title=title, detail=detail, created_at=datetime.now(timezone.utc))
        )

    @property
    def last(self) -> Optional[Notification]:
        return self.notifications[-1] if self.notifications else None

    def titles(self) -> List[str]:
        return [n.title for n in self.notifications]

    def clear(self) -> None:
        self.notifications = []
