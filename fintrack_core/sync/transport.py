"""
Cross-Tab Transports

Two in-process stand-ins for the browser primitives the sync layer is
built on:

- LocalBroadcastHub / BroadcastChannel: named channels. A message posted
  on one channel reaches every other open channel with the same name,
  never the sender.
- StorageArea: a key/value area shared by all tabs. Writes and removals
  raise a StorageEvent on every other connection, never the writer.

Delivery is synchronous and in-process. Hosts embedding the core in a
real multi-process environment provide their own hub with the same
interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel

from fintrack_core.exceptions import FinTrackError


logger = structlog.get_logger(__name__)

MessageListener = Callable[[dict[str, Any]], None]


class ChannelClosedError(FinTrackError):
    """Posting on a channel that was already closed."""
    pass


class BroadcastChannel(ABC):
    """A named channel shared by every tab."""

    name: str

    @abstractmethod
    def post_message(self, message: dict[str, Any]) -> None:
        """
        Send to every other channel with the same name.

        Raises:
            ChannelClosedError: If this channel was closed
        """
        pass

    @abstractmethod
    def add_listener(self, listener: MessageListener) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class LocalBroadcastChannel(BroadcastChannel):
    """A channel opened on a LocalBroadcastHub."""

    def __init__(self, hub: "LocalBroadcastHub", name: str):
        self.name = name
        self._hub = hub
        self._listeners: list[MessageListener] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def post_message(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise ChannelClosedError(f"Channel {self.name} is closed")
        self._hub.deliver(self, message)

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def receive(self, message: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            listener(dict(message))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        self._hub.detach(self)


class LocalBroadcastHub:
    """Routes messages between the channels of one process."""

    def __init__(self):
        self._channels: dict[str, list[LocalBroadcastChannel]] = {}

    def open(self, name: str) -> LocalBroadcastChannel:
        channel = LocalBroadcastChannel(self, name)
        self._channels.setdefault(name, []).append(channel)
        return channel

    def deliver(self, sender: LocalBroadcastChannel, message: dict[str, Any]) -> None:
        for channel in list(self._channels.get(sender.name, [])):
            if channel is sender or channel.closed:
                continue
            channel.receive(message)

    def detach(self, channel: LocalBroadcastChannel) -> None:
        channels = self._channels.get(channel.name, [])
        if channel in channels:
            channels.remove(channel)

    def channel_count(self, name: str) -> int:
        return len(self._channels.get(name, []))


class StorageEvent(BaseModel):
    """A change to a StorageArea as seen by the other tabs."""

    key: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None


StorageListener = Callable[[StorageEvent], None]


class StorageConnection:
    """One tab's handle on a StorageArea."""

    def __init__(self, area: "StorageArea", listener: Optional[StorageListener] = None):
        self._area = area
        self._listener = listener

    def get_item(self, key: str) -> Optional[str]:
        return self._area.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._area.write(self, key, value)

    def remove_item(self, key: str) -> None:
        self._area.write(self, key, None)

    def notify(self, event: StorageEvent) -> None:
        if self._listener is not None:
            self._listener(event)

    def close(self) -> None:
        self._listener = None
        self._area.disconnect(self)


class StorageArea:
    """Key/value storage shared by all tabs of one origin."""

    def __init__(self):
        self._items: dict[str, str] = {}
        self._connections: list[StorageConnection] = []

    def connect(self, listener: Optional[StorageListener] = None) -> StorageConnection:
        connection = StorageConnection(self, listener)
        self._connections.append(connection)
        return connection

    def disconnect(self, connection: StorageConnection) -> None:
        if connection in self._connections:
            self._connections.remove(connection)

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def keys(self) -> list[str]:
        return list(self._items)

    def write(self, writer: StorageConnection, key: str, value: Optional[str]) -> None:
        old_value = self._items.get(key)
        if value is None:
            if key not in self._items:
                return
            del self._items[key]
        else:
            self._items[key] = value

        event = StorageEvent(key=key, old_value=old_value, new_value=value)
        for connection in list(self._connections):
            if connection is not writer:
                connection.notify(event)
