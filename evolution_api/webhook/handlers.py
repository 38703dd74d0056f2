"""User-facing webhook handler base classes."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

from evolution_api.models import WebhookEvent
from evolution_api.webhook.payload import WebhookEnvelope

_MESSAGE_EVENTS = (
    WebhookEvent.MESSAGES_SET,
    WebhookEvent.MESSAGES_UPSERT,
    WebhookEvent.MESSAGES_UPDATE,
    WebhookEvent.MESSAGES_DELETE,
    WebhookEvent.SEND_MESSAGE,
)
_CONNECTION_EVENTS = (WebhookEvent.CONNECTION_UPDATE, WebhookEvent.QRCODE_UPDATED)
_GROUP_EVENTS = (
    WebhookEvent.GROUPS_UPSERT,
    WebhookEvent.GROUP_UPDATE,
    WebhookEvent.GROUP_PARTICIPANTS_UPDATE,
)


@runtime_checkable
class WebhookHandler(Protocol):
    def should_handle(self, envelope: WebhookEnvelope) -> bool: ...

    def handle(self, envelope: WebhookEnvelope) -> None: ...


class BaseWebhookHandler:
    """Routes each envelope to an ``on_*`` hook; subclasses override what they need.

    Optional allow-lists narrow what the handler accepts. An instance filter
    rejects envelopes without an instance name. ``on_webhook_received`` runs
    after the specific hook for every accepted envelope.
    """

    def __init__(self) -> None:
        self._allowed_instances: set[str] = set()
        self._allowed_events: set[WebhookEvent] = set()

    def for_instances(self, instances: Iterable[str]) -> BaseWebhookHandler:
        self._allowed_instances = set(instances)
        return self

    def for_events(self, events: Iterable[WebhookEvent | str]) -> BaseWebhookHandler:
        self._allowed_events = {
            event if isinstance(event, WebhookEvent) else WebhookEvent.from_string(event)
            for event in events
        }
        return self

    def only_message_events(self) -> BaseWebhookHandler:
        return self.for_events(_MESSAGE_EVENTS)

    def only_connection_events(self) -> BaseWebhookHandler:
        return self.for_events(_CONNECTION_EVENTS)

    def only_group_events(self) -> BaseWebhookHandler:
        return self.for_events(_GROUP_EVENTS)

    def should_handle(self, envelope: WebhookEnvelope) -> bool:
        if self._allowed_instances and envelope.instance_name not in self._allowed_instances:
            return False
        if self._allowed_events and envelope.event_kind not in self._allowed_events:
            return False
        return True

    def handle(self, envelope: WebhookEnvelope) -> None:
        if not self.should_handle(envelope):
            return
        hook = self._hooks().get(envelope.event_kind, self.on_unknown_event)
        hook(envelope)
        self.on_webhook_received(envelope)

    def _hooks(self) -> dict[WebhookEvent, Callable[[WebhookEnvelope], None]]:
        return {
            WebhookEvent.MESSAGES_UPSERT: self.on_message_received,
            WebhookEvent.MESSAGES_UPDATE: self.on_message_updated,
            WebhookEvent.SEND_MESSAGE: self.on_message_sent,
            WebhookEvent.MESSAGES_DELETE: self.on_message_deleted,
            WebhookEvent.CONNECTION_UPDATE: self.on_connection_updated,
            WebhookEvent.QRCODE_UPDATED: self.on_qr_code_received,
            WebhookEvent.PRESENCE_UPDATE: self.on_presence_updated,
            WebhookEvent.GROUPS_UPSERT: self.on_group_created,
            WebhookEvent.GROUP_UPDATE: self.on_group_updated,
            WebhookEvent.GROUP_PARTICIPANTS_UPDATE: self.on_group_participants_updated,
            WebhookEvent.CONTACTS_UPSERT: self.on_contact_created,
            WebhookEvent.CONTACTS_UPDATE: self.on_contact_updated,
            WebhookEvent.CHATS_UPSERT: self.on_chat_created,
            WebhookEvent.CHATS_UPDATE: self.on_chat_updated,
            WebhookEvent.CHATS_DELETE: self.on_chat_deleted,
            WebhookEvent.CALL: self.on_call_received,
            WebhookEvent.LABELS_EDIT: self.on_labels_edited,
            WebhookEvent.LABELS_ASSOCIATION: self.on_labels_associated,
        }

    def on_webhook_received(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_message_received(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_message_updated(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_message_sent(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_message_deleted(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_connection_updated(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_qr_code_received(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_presence_updated(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_group_created(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_group_updated(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_group_participants_updated(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_contact_created(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_contact_updated(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_chat_created(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_chat_updated(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_chat_deleted(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_call_received(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_labels_edited(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_labels_associated(self, envelope: WebhookEnvelope) -> None:
        pass

    def on_unknown_event(self, envelope: WebhookEnvelope) -> None:
        pass


class CallbackHandler(BaseWebhookHandler):
    """Adapts a plain ``fn(envelope)`` callable into a handler."""

    def __init__(self, callback: Callable[[WebhookEnvelope], object]) -> None:
        super().__init__()
        self._callback = callback

    @property
    def callback(self) -> Callable[[WebhookEnvelope], object]:
        return self._callback

    def handle(self, envelope: WebhookEnvelope) -> None:
        if self.should_handle(envelope):
            self._callback(envelope)
