"""User-visible notifications.

The client never renders anything itself; it posts Notification objects to a
Notifier supplied by the presentation layer (the CLI prints them, tests keep
them in a list).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional

logger = logging.getLogger(__name__)

Level = Literal["success", "info", "warning", "error"]

_LOG_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.WARNING,
}


@dataclass
class Notification:
    level: Level
    title: str
    description: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        if self.description:
            return f"{self.title}: {self.description}"
        return self.title


class Notifier:
    """Collects notifications; subclasses decide how to surface them."""

    def __init__(self) -> None:
        self.history: List[Notification] = []

    def notify(self, level: Level, title: str, description: Optional[str] = None) -> Notification:
        notification = Notification(level=level, title=title, description=description)
        self.history.append(notification)
        logger.log(_LOG_LEVELS[level], "[Notify] %s", notification)
        self.deliver(notification)
        return notification

    def deliver(self, notification: Notification) -> None:
        """Hook for presentation layers."""

    def success(self, title: str, description: Optional[str] = None) -> Notification:
        return self.notify("success", title, description)

    def info(self, title: str, description: Optional[str] = None) -> Notification:
        return self.notify("info", title, description)

    def warning(self, title: str, description: Optional[str] = None) -> Notification:
        return self.notify("warning", title, description)

    def error(self, title: str, description: Optional[str] = None) -> Notification:
        return self.notify("error", title, description)

    def of_level(self, level: Level) -> List[Notification]:
        return [n for n in self.history if n.level == level]

    def clear(self) -> None:
        self.history.clear()
