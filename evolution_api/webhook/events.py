"""Domain events emitted by the webhook processor, and an in-process bus."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Literal, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from evolution_api.models import InstanceStatus, MessageStatus, MessageType, WebhookEvent

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    instance_name: str | None = None
    timestamp: int = Field(default_factory=lambda: int(time.time()))


class WebhookReceived(DomainEvent):
    """Emitted for every webhook while event dispatching is enabled."""

    event: str
    webhook_event: WebhookEvent
    payload: dict[str, Any] = Field(default_factory=dict)


class MessageReceived(DomainEvent):
    message: dict[str, Any] = Field(default_factory=dict)
    sender: dict[str, Any] = Field(default_factory=dict)
    message_type: MessageType | None = None
    is_group: bool = False
    group_id: str | None = None


class MessageUpdated(DomainEvent):
    message_id: str
    remote_jid: str
    status: MessageStatus = MessageStatus.UNKNOWN


class MessageDelivered(DomainEvent):
    message_id: str
    remote_jid: str
    data: dict[str, Any] = Field(default_factory=dict)


class MessageRead(DomainEvent):
    message_id: str
    remote_jid: str
    data: dict[str, Any] = Field(default_factory=dict)


class MessageSent(DomainEvent):
    message_id: str | None = None
    remote_jid: str | None = None
    message_type: str = MessageType.UNKNOWN.value
    message: dict[str, Any] = Field(default_factory=dict)
    response: dict[str, Any] = Field(default_factory=dict)


class MessageDeleted(DomainEvent):
    message_id: str
    remote_jid: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class ConnectionUpdated(DomainEvent):
    status: InstanceStatus
    previous_status: InstanceStatus | None = None
    state: str
    data: dict[str, Any] = Field(default_factory=dict)

    def is_connected(self) -> bool:
        return self.status.is_connected()


class InstanceStatusChanged(DomainEvent):
    status: InstanceStatus
    previous_status: InstanceStatus | None = None
    phone_number: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class QrCodeReceived(DomainEvent):
    qr_code: str
    pairing_code: str | None = None
    attempt: int = 1
    data: dict[str, Any] = Field(default_factory=dict)

    def data_uri(self) -> str:
        """The QR code as an ``<img src>``-ready data URI."""
        if self.qr_code.startswith("data:"):
            return self.qr_code
        return f"data:image/png;base64,{self.qr_code}"


class PresenceUpdated(DomainEvent):
    remote_jid: str
    presences: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)


class GroupEvent(DomainEvent):
    action: Literal["created", "updated", "participants_updated"]
    group_id: str | None = None
    data: Any = None


class ContactEvent(DomainEvent):
    action: Literal["set", "upserted", "updated"]
    data: Any = None


class ChatEvent(DomainEvent):
    action: Literal["set", "upserted", "updated", "deleted"]
    data: Any = None


class CallReceived(DomainEvent):
    call_id: str | None = None
    caller: str | None = None
    status: str | None = None
    data: Any = None


class LabelEvent(DomainEvent):
    action: Literal["edited", "associated"]
    data: Any = None


class EventDispatcher(Protocol):
    def dispatch(self, event: DomainEvent) -> None: ...


E = TypeVar("E", bound=DomainEvent)


class EventBus:
    """Synchronous in-process dispatcher.

    Listeners run in subscription order for every event that is an instance
    of the type they subscribed to, so subscribing to ``DomainEvent`` sees
    everything. Listener exceptions propagate to the caller.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[tuple[type[DomainEvent], Callable[[Any], None]]] = []

    def subscribe(self, event_type: type[E], listener: Callable[[E], None]) -> Callable[[E], None]:
        with self._lock:
            self._listeners.append((event_type, listener))
        return listener

    def unsubscribe(self, event_type: type[DomainEvent], listener: Callable[[Any], None]) -> None:
        with self._lock:
            self._listeners = [
                entry for entry in self._listeners if entry != (event_type, listener)
            ]

    def listeners_for(self, event: DomainEvent) -> list[Callable[[Any], None]]:
        with self._lock:
            return [listener for event_type, listener in self._listeners
                    if isinstance(event, event_type)]

    def dispatch(self, event: DomainEvent) -> None:
        listeners = self.listeners_for(event)
        logger.debug("Dispatching %s to %d listener(s)", type(event).__name__, len(listeners))
        for listener in listeners:
            listener(event)
