"""
Notification Dispatch

Delivery (in-app list, push, browser notification) belongs to the host.
The budget core only calls send() after the Alert Deduplicator has
confirmed the threshold is new.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class DispatchedNotification(BaseModel):
    """A notification as handed to the dispatcher."""

    title: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationDispatcher(ABC):
    """Delivers a user-facing notification."""

    @abstractmethod
    async def send(self, title: str, message: str, metadata: dict[str, Any]) -> None:
        """
        Deliver one notification.

        Raises:
            Any exception on delivery failure; the caller does not
            record the alert as sent in that case.
        """
        pass


class InMemoryNotificationDispatcher(NotificationDispatcher):
    """Keeps every notification it was asked to send."""

    def __init__(self):
        self.sent: list[DispatchedNotification] = []

    async def send(self, title: str, message: str, metadata: dict[str, Any]) -> None:
        self.sent.append(DispatchedNotification(
            title=title,
            message=message,
            metadata=dict(metadata),
        ))
