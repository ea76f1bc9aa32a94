"""
Notification collection for request-scoped user messages.

The UI renders these as toasts; the service only collects them and returns
them alongside the response that produced them.
"""
from typing import List

from diagnostic_kb.schemas.responses import Notification


class NotificationCollector:
    """Fire-and-forget sink for info and error messages."""

    def __init__(self):
        self._items: List[Notification] = []

    def info(self, message: str) -> None:
        self._items.append(Notification(level="info", message=message))

    def error(self, message: str) -> None:
        self._items.append(Notification(level="error", message=message))

    def drain(self) -> List[Notification]:
        """Return collected notifications and forget them."""
        items, self._items = self._items, []
        return items

    def __len__(self) -> int:
        return len(self._items)
