"""
Transient user-facing notices (toasts) for the staging queue
"""

from enum import Enum
from typing import Optional, Protocol, Set
import asyncio
import structlog

from staging_service.services.websocket_manager import ConnectionManager

logger = structlog.get_logger()


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notifier(Protocol):
    def notify(self, title: str, message: str = "", severity: Severity = Severity.INFO) -> None:
        ...


class BroadcastNotifier:
    """Logs each notice and pushes it to connected dashboard clients"""

    def __init__(self, manager: Optional[ConnectionManager] = None):
        self.manager = manager
        self._pending: Set[asyncio.Task] = set()

    def notify(self, title: str, message: str = "", severity: Severity = Severity.INFO) -> None:
        severity = Severity(severity)
        log = logger.error if severity == Severity.ERROR else logger.info
        log("Notification", title=title, message=message, severity=severity.value)

        if self.manager is None or not self.manager.active_connections:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        task = loop.create_task(self.manager.broadcast({
            "type": "notification",
            "title": title,
            "message": message,
            "severity": severity.value,
        }))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
