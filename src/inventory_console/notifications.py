"""User-facing notifications for failed and successful operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

_FAILURE_TITLES = {
    "create": "Create failed",
    "update": "Update failed",
    "delete": "Delete failed",
    "fetch": "Fetch failed",
}

_SUCCESS_TITLES = {
    "create": "Created successfully",
    "update": "Updated successfully",
    "delete": "Deleted successfully",
}


@dataclass(frozen=True, slots=True)
class Notification:
    level: str
    title: str
    description: str = ""


Handler = Callable[[Notification], None]


def _log_handler(notification: Notification) -> None:
    if notification.level == "error":
        logger.warning("%s: %s", notification.title, notification.description)
    else:
        logger.info("%s", notification.title)


class Notifier:
    """Fan notifications out to handlers without interrupting the caller."""

    def __init__(self, handlers: Optional[list[Handler]] = None) -> None:
        self._handlers: list[Handler] = list(handlers) if handlers is not None else [_log_handler]

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def failure(self, error: BaseException, operation: Optional[str] = None) -> Notification:
        op = operation or getattr(error, "operation", None)
        notification = Notification(
            level="error",
            title=_FAILURE_TITLES.get(op or "", "Operation failed"),
            description=str(error) or "An error occurred",
        )
        self._dispatch(notification)
        return notification

    def success(self, operation: Optional[str] = None) -> Notification:
        notification = Notification(level="success", title=_SUCCESS_TITLES.get(operation or "", "Success"))
        self._dispatch(notification)
        return notification

    def _dispatch(self, notification: Notification) -> None:
        for handler in self._handlers:
            handler(notification)
