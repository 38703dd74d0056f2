"""Routes normalized webhooks to domain events and registered handlers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from evolution_api.config import EvolutionSettings
from evolution_api.errors import WebhookProcessingError
from evolution_api.models import InstanceStatus, MessageStatus, MessageType, WebhookEvent
from evolution_api.redaction import mask_phone_number
from evolution_api.webhook.events import (
    CallReceived,
    ChatEvent,
    ConnectionUpdated,
    ContactEvent,
    DomainEvent,
    EventBus,
    EventDispatcher,
    GroupEvent,
    InstanceStatusChanged,
    LabelEvent,
    MessageDeleted,
    MessageDelivered,
    MessageRead,
    MessageReceived,
    MessageSent,
    MessageUpdated,
    PresenceUpdated,
    QrCodeReceived,
    WebhookReceived,
)
from evolution_api.webhook.handlers import CallbackHandler, WebhookHandler
from evolution_api.webhook.payload import WebhookEnvelope, first_present, lookup, normalize

logger = logging.getLogger(__name__)

WILDCARD = "*"

# First match wins.
_MESSAGE_SHAPES: tuple[tuple[tuple[str, ...], MessageType], ...] = (
    (("conversation", "extendedTextMessage"), MessageType.TEXT),
    (("imageMessage",), MessageType.IMAGE),
    (("videoMessage",), MessageType.VIDEO),
    (("audioMessage",), MessageType.AUDIO),
    (("documentMessage",), MessageType.DOCUMENT),
    (("stickerMessage",), MessageType.STICKER),
    (("locationMessage",), MessageType.LOCATION),
    (("contactMessage", "contactsArrayMessage"), MessageType.CONTACT),
    (("reactionMessage",), MessageType.REACTION),
    (("pollCreationMessage",), MessageType.POLL),
    (("listMessage", "listResponseMessage"), MessageType.LIST),
    (("buttonsMessage", "buttonsResponseMessage"), MessageType.BUTTON),
    (("templateMessage",), MessageType.TEMPLATE),
)

_GROUP_ACTIONS = {
    WebhookEvent.GROUPS_UPSERT: "created",
    WebhookEvent.GROUP_UPDATE: "updated",
    WebhookEvent.GROUP_PARTICIPANTS_UPDATE: "participants_updated",
}
_CONTACT_ACTIONS = {
    WebhookEvent.CONTACTS_SET: "set",
    WebhookEvent.CONTACTS_UPSERT: "upserted",
    WebhookEvent.CONTACTS_UPDATE: "updated",
}
_CHAT_ACTIONS = {
    WebhookEvent.CHATS_SET: "set",
    WebhookEvent.CHATS_UPSERT: "upserted",
    WebhookEvent.CHATS_UPDATE: "updated",
    WebhookEvent.CHATS_DELETE: "deleted",
}
_LABEL_ACTIONS = {
    WebhookEvent.LABELS_EDIT: "edited",
    WebhookEvent.LABELS_ASSOCIATION: "associated",
}


def classify_message(message_data: dict[str, Any] | None) -> MessageType | None:
    """Message type from the shape keys present in a message body."""
    if not message_data:
        return None
    message = message_data.get("message")
    if not isinstance(message, dict):
        message = message_data
    for keys, message_type in _MESSAGE_SHAPES:
        if any(message.get(key) is not None for key in keys):
            return message_type
    return None


def _handler_key(event: WebhookEvent | str) -> str:
    if isinstance(event, WebhookEvent):
        return event.value
    if event == WILDCARD:
        return WILDCARD
    return WebhookEvent.normalize_name(event)


class WebhookProcessor:
    """Turns raw webhook bodies into domain events and handler calls.

    Per call: normalize, dispatch ``WebhookReceived`` and the event-specific
    domain events (when events are enabled), then run the handlers
    registered for the event followed by the wildcard handlers, each in
    registration order. Any failure after normalization is re-raised as
    WebhookProcessingError with the original exception as its cause.
    """

    def __init__(
        self,
        dispatcher: EventDispatcher | None = None,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,  # type: ignore[type-arg]
        dispatch_events: bool = True,
        log_webhooks: bool = True,
    ) -> None:
        self._dispatcher: EventDispatcher = dispatcher if dispatcher is not None else EventBus()
        self._logger = logger or logging.getLogger(__name__)
        self._dispatch_events = dispatch_events
        self._log_webhooks = log_webhooks
        self._handlers: dict[str, list[WebhookHandler]] = {}

    @classmethod
    def from_settings(
        cls, settings: EvolutionSettings, dispatcher: EventDispatcher | None = None,
    ) -> WebhookProcessor:
        return cls(
            dispatcher,
            dispatch_events=settings.webhook.dispatch_events,
            log_webhooks=settings.logging.enabled and settings.logging.log_webhooks,
        )

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    # --- handler management ---

    def register_handler(
        self,
        event: WebhookEvent | str,
        handler: WebhookHandler | Callable[[WebhookEnvelope], object],
    ) -> WebhookProcessor:
        if not isinstance(handler, WebhookHandler):
            if not callable(handler):
                raise TypeError(f"Handler for {event} must be callable or a WebhookHandler")
            handler = CallbackHandler(handler)
        self._handlers.setdefault(_handler_key(event), []).append(handler)
        return self

    def register_wildcard_handler(
        self, handler: WebhookHandler | Callable[[WebhookEnvelope], object],
    ) -> WebhookProcessor:
        return self.register_handler(WILDCARD, handler)

    def remove_handler(self, event: WebhookEvent | str) -> WebhookProcessor:
        """Drop every handler registered under ``event`` (``"*"`` for wildcard)."""
        self._handlers.pop(_handler_key(event), None)
        return self

    def handlers_for(self, event: WebhookEvent | str) -> list[WebhookHandler]:
        return list(self._handlers.get(_handler_key(event), []))

    def enable_events(self) -> WebhookProcessor:
        self._dispatch_events = True
        return self

    def disable_events(self) -> WebhookProcessor:
        self._dispatch_events = False
        return self

    def events_enabled(self) -> bool:
        return self._dispatch_events

    # --- processing ---

    def process(self, raw_body: Any) -> WebhookEnvelope:
        envelope = normalize(raw_body)
        if self._log_webhooks:
            self._logger.info(
                "Processing webhook %s instance=%s remote=%s",
                envelope.event, envelope.instance_name, mask_phone_number(envelope.remote_jid()),
            )

        try:
            if self._dispatch_events:
                self._emit(WebhookReceived(
                    instance_name=envelope.instance_name,
                    event=envelope.event,
                    webhook_event=envelope.event_kind,
                    payload=envelope.raw_data,
                ))
                self._emit_specific(envelope)
            self._call_handlers(envelope)
        except Exception as exc:
            self._logger.error(
                "Webhook processing failed event=%s instance=%s error=%s",
                envelope.event, envelope.instance_name, exc,
            )
            raise WebhookProcessingError.processing_failed(
                envelope.event, envelope.instance_name, exc, payload=envelope.raw_data,
            ) from exc
        return envelope

    def _emit(self, event: DomainEvent) -> None:
        self._dispatcher.dispatch(event)

    def _call_handlers(self, envelope: WebhookEnvelope) -> None:
        handlers = [
            *self._handlers.get(_handler_key(envelope.event), []),
            *self._handlers.get(WILDCARD, []),
        ]
        for handler in handlers:
            if handler.should_handle(envelope):
                handler.handle(envelope)

    def _emit_specific(self, envelope: WebhookEnvelope) -> None:
        kind = envelope.event_kind
        if kind is WebhookEvent.MESSAGES_UPSERT:
            self._message_received(envelope)
        elif kind is WebhookEvent.MESSAGES_UPDATE:
            self._message_updated(envelope)
        elif kind is WebhookEvent.SEND_MESSAGE:
            self._message_sent(envelope)
        elif kind is WebhookEvent.MESSAGES_DELETE:
            self._message_deleted(envelope)
        elif kind is WebhookEvent.CONNECTION_UPDATE:
            self._connection_updated(envelope)
        elif kind is WebhookEvent.QRCODE_UPDATED:
            self._qr_code_updated(envelope)
        elif kind is WebhookEvent.PRESENCE_UPDATE:
            self._presence_updated(envelope)
        elif kind is WebhookEvent.CALL:
            self._call_received(envelope)
        elif kind in _GROUP_ACTIONS:
            data = envelope.get("data")
            if data is not None:
                self._emit(GroupEvent(
                    instance_name=envelope.instance_name,
                    action=_GROUP_ACTIONS[kind],
                    group_id=first_present(envelope.raw_data, ("data.id", "data.groupJid"), expect=str),
                    data=data,
                ))
        elif kind in _CONTACT_ACTIONS:
            data = envelope.get("data")
            if data is not None:
                self._emit(ContactEvent(
                    instance_name=envelope.instance_name, action=_CONTACT_ACTIONS[kind], data=data,
                ))
        elif kind in _CHAT_ACTIONS:
            data = envelope.get("data")
            if data is not None:
                self._emit(ChatEvent(
                    instance_name=envelope.instance_name, action=_CHAT_ACTIONS[kind], data=data,
                ))
        elif kind in _LABEL_ACTIONS:
            data = envelope.get("data")
            if data is not None:
                self._emit(LabelEvent(
                    instance_name=envelope.instance_name, action=_LABEL_ACTIONS[kind], data=data,
                ))

    def _message_received(self, envelope: WebhookEnvelope) -> None:
        message_data = envelope.message_data() or {}
        self._emit(MessageReceived(
            instance_name=envelope.instance_name,
            message=message_data,
            sender=envelope.sender_data() or {},
            message_type=classify_message(message_data),
            is_group=envelope.is_from_group(),
            group_id=envelope.group_id(),
        ))

    def _message_updated(self, envelope: WebhookEnvelope) -> None:
        message_id = envelope.message_id()
        remote_jid = envelope.remote_jid()
        if message_id is None or remote_jid is None:
            return
        status = MessageStatus.from_api(envelope.message_status())
        self._emit(MessageUpdated(
            instance_name=envelope.instance_name,
            message_id=message_id,
            remote_jid=remote_jid,
            status=status,
        ))
        if status is MessageStatus.DELIVERED:
            self._emit(MessageDelivered(
                instance_name=envelope.instance_name,
                message_id=message_id,
                remote_jid=remote_jid,
                data=envelope.raw_data,
            ))
        elif status.is_read():
            self._emit(MessageRead(
                instance_name=envelope.instance_name,
                message_id=message_id,
                remote_jid=remote_jid,
                data=envelope.raw_data,
            ))

    def _message_sent(self, envelope: WebhookEnvelope) -> None:
        message_data = envelope.message_data() or {}
        message_type = classify_message(message_data)
        self._emit(MessageSent(
            instance_name=envelope.instance_name,
            message_id=envelope.message_id(),
            remote_jid=envelope.remote_jid(),
            message_type=message_type.value if message_type else MessageType.UNKNOWN.value,
            message=message_data,
            response=envelope.raw_data,
        ))

    def _message_deleted(self, envelope: WebhookEnvelope) -> None:
        message_id = envelope.message_id()
        if message_id is None:
            return
        self._emit(MessageDeleted(
            instance_name=envelope.instance_name,
            message_id=message_id,
            remote_jid=envelope.remote_jid(),
            data=envelope.raw_data,
        ))

    def _connection_updated(self, envelope: WebhookEnvelope) -> None:
        state = envelope.connection_status()
        if state is None:
            return
        status = InstanceStatus.from_api(state)
        self._emit(ConnectionUpdated(
            instance_name=envelope.instance_name,
            status=status,
            state=state,
            data=envelope.raw_data,
        ))
        self._emit(InstanceStatusChanged(
            instance_name=envelope.instance_name,
            status=status,
            phone_number=first_present(
                envelope.raw_data, ("data.phoneNumber", "phoneNumber"), expect=str,
            ),
            data=envelope.raw_data,
        ))

    def _qr_code_updated(self, envelope: WebhookEnvelope) -> None:
        qr_code = envelope.qr_code()
        if qr_code is None:
            return
        self._emit(QrCodeReceived(
            instance_name=envelope.instance_name,
            qr_code=qr_code,
            pairing_code=envelope.pairing_code(),
            attempt=_as_int(first_present(envelope.raw_data, ("data.count", "count")), 1),
            data=envelope.raw_data,
        ))

    def _presence_updated(self, envelope: WebhookEnvelope) -> None:
        remote_jid = first_present(envelope.raw_data, ("data.id",), expect=str) or envelope.remote_jid()
        if remote_jid is None:
            return
        presences = envelope.get("data.presences")
        self._emit(PresenceUpdated(
            instance_name=envelope.instance_name,
            remote_jid=remote_jid,
            presences=presences if isinstance(presences, dict) else {},
            data=envelope.raw_data,
        ))

    def _call_received(self, envelope: WebhookEnvelope) -> None:
        call = envelope.get("data")
        if isinstance(call, list):
            call = call[0] if call else None
        call_id = lookup(call, "id")
        caller = lookup(call, "from")
        if call_id is None and caller is None:
            return
        status = lookup(call, "status")
        self._emit(CallReceived(
            instance_name=envelope.instance_name,
            call_id=str(call_id) if call_id is not None else None,
            caller=str(caller) if caller is not None else None,
            status=str(status) if status is not None else None,
            data=call,
        ))


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
