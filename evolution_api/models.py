"""Shared Pydantic data models and enums for evolution-api-client."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from evolution_api.errors import error_from_result

# --- Enums ---


class WebhookEvent(str, Enum):
    APPLICATION_STARTUP = "APPLICATION_STARTUP"
    QRCODE_UPDATED = "QRCODE_UPDATED"
    MESSAGES_SET = "MESSAGES_SET"
    MESSAGES_UPSERT = "MESSAGES_UPSERT"
    MESSAGES_UPDATE = "MESSAGES_UPDATE"
    MESSAGES_DELETE = "MESSAGES_DELETE"
    SEND_MESSAGE = "SEND_MESSAGE"
    CONTACTS_SET = "CONTACTS_SET"
    CONTACTS_UPSERT = "CONTACTS_UPSERT"
    CONTACTS_UPDATE = "CONTACTS_UPDATE"
    PRESENCE_UPDATE = "PRESENCE_UPDATE"
    CHATS_SET = "CHATS_SET"
    CHATS_UPSERT = "CHATS_UPSERT"
    CHATS_UPDATE = "CHATS_UPDATE"
    CHATS_DELETE = "CHATS_DELETE"
    GROUPS_UPSERT = "GROUPS_UPSERT"
    GROUP_UPDATE = "GROUP_UPDATE"
    GROUP_PARTICIPANTS_UPDATE = "GROUP_PARTICIPANTS_UPDATE"
    CONNECTION_UPDATE = "CONNECTION_UPDATE"
    LABELS_EDIT = "LABELS_EDIT"
    LABELS_ASSOCIATION = "LABELS_ASSOCIATION"
    CALL = "CALL"
    TYPEBOT_START = "TYPEBOT_START"
    TYPEBOT_CHANGE_STATUS = "TYPEBOT_CHANGE_STATUS"
    UNKNOWN = "UNKNOWN"

    @staticmethod
    def normalize_name(value: str) -> str:
        """Canonical spelling of an event name.

        The gateway sends both ``MESSAGES_UPSERT`` and ``messages.upsert``
        depending on its version.
        """
        return value.strip().upper().replace(".", "_").replace("-", "_")

    @classmethod
    def from_string(cls, value: str | None) -> WebhookEvent:
        if not value:
            return cls.UNKNOWN
        try:
            return cls(cls.normalize_name(value))
        except ValueError:
            return cls.UNKNOWN

    @property
    def category(self) -> str:
        return _EVENT_CATEGORIES.get(self, "unknown")

    def is_message_event(self) -> bool:
        return self.category == "messages"

    def is_connection_event(self) -> bool:
        return self.category == "connection"

    def is_group_event(self) -> bool:
        return self.category == "groups"

    def is_contact_event(self) -> bool:
        return self.category == "contacts"

    def is_chat_event(self) -> bool:
        return self.category == "chats"

    @property
    def label(self) -> str:
        return _EVENT_LABELS.get(self, self.value.replace("_", " ").title())


_EVENT_CATEGORIES: dict[WebhookEvent, str] = {
    WebhookEvent.APPLICATION_STARTUP: "connection",
    WebhookEvent.QRCODE_UPDATED: "connection",
    WebhookEvent.CONNECTION_UPDATE: "connection",
    WebhookEvent.MESSAGES_SET: "messages",
    WebhookEvent.MESSAGES_UPSERT: "messages",
    WebhookEvent.MESSAGES_UPDATE: "messages",
    WebhookEvent.MESSAGES_DELETE: "messages",
    WebhookEvent.SEND_MESSAGE: "messages",
    WebhookEvent.CONTACTS_SET: "contacts",
    WebhookEvent.CONTACTS_UPSERT: "contacts",
    WebhookEvent.CONTACTS_UPDATE: "contacts",
    WebhookEvent.PRESENCE_UPDATE: "presence",
    WebhookEvent.CHATS_SET: "chats",
    WebhookEvent.CHATS_UPSERT: "chats",
    WebhookEvent.CHATS_UPDATE: "chats",
    WebhookEvent.CHATS_DELETE: "chats",
    WebhookEvent.GROUPS_UPSERT: "groups",
    WebhookEvent.GROUP_UPDATE: "groups",
    WebhookEvent.GROUP_PARTICIPANTS_UPDATE: "groups",
    WebhookEvent.LABELS_EDIT: "labels",
    WebhookEvent.LABELS_ASSOCIATION: "labels",
    WebhookEvent.CALL: "calls",
    WebhookEvent.TYPEBOT_START: "typebot",
    WebhookEvent.TYPEBOT_CHANGE_STATUS: "typebot",
}

_EVENT_LABELS: dict[WebhookEvent, str] = {
    WebhookEvent.QRCODE_UPDATED: "QR Code Updated",
    WebhookEvent.MESSAGES_UPSERT: "Message Received",
    WebhookEvent.MESSAGES_UPDATE: "Message Updated",
    WebhookEvent.MESSAGES_DELETE: "Message Deleted",
    WebhookEvent.SEND_MESSAGE: "Message Sent",
    WebhookEvent.CONTACTS_UPSERT: "Contact Added",
    WebhookEvent.CHATS_UPSERT: "Chat Added",
    WebhookEvent.GROUPS_UPSERT: "Group Added",
    WebhookEvent.LABELS_EDIT: "Labels Edited",
    WebhookEvent.LABELS_ASSOCIATION: "Labels Associated",
    WebhookEvent.CALL: "Call Received",
    WebhookEvent.TYPEBOT_START: "Typebot Started",
    WebhookEvent.TYPEBOT_CHANGE_STATUS: "Typebot Status Changed",
    WebhookEvent.UNKNOWN: "Unknown Event",
}


class InstanceStatus(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    QRCODE = "qrcode"
    UNKNOWN = "unknown"

    @classmethod
    def from_api(cls, value: str) -> InstanceStatus:
        """Map a gateway connection state onto the closed status vocabulary."""
        state = value.strip().lower()
        if state in ("open", "connected"):
            return cls.CONNECTED
        if state in ("close", "closed", "disconnected"):
            return cls.DISCONNECTED
        if state == "connecting":
            return cls.CONNECTING
        if state in ("qrcode", "qr"):
            return cls.QRCODE
        return cls.UNKNOWN

    def is_connected(self) -> bool:
        return self in (InstanceStatus.OPEN, InstanceStatus.CONNECTED)

    def is_disconnected(self) -> bool:
        return self in (InstanceStatus.CLOSE, InstanceStatus.DISCONNECTED)

    def requires_qr_code(self) -> bool:
        return self is InstanceStatus.QRCODE


class MessageStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    PLAYED = "played"
    FAILED = "failed"
    DELETED = "deleted"
    UNKNOWN = "unknown"

    @classmethod
    def from_api(cls, value: int | str | None) -> MessageStatus:
        """Normalize numeric ack codes and their string synonyms."""
        if value is None or isinstance(value, bool):
            return cls.UNKNOWN
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        if isinstance(value, int):
            return _NUMERIC_STATUSES.get(value, cls.UNKNOWN)
        return _STRING_STATUSES.get(value.strip().lower(), cls.UNKNOWN)

    def is_delivered(self) -> bool:
        return self in (MessageStatus.DELIVERED, MessageStatus.READ, MessageStatus.PLAYED)

    def is_read(self) -> bool:
        return self in (MessageStatus.READ, MessageStatus.PLAYED)


_NUMERIC_STATUSES: dict[int, MessageStatus] = {
    0: MessageStatus.FAILED,
    1: MessageStatus.PENDING,
    2: MessageStatus.SENT,
    3: MessageStatus.DELIVERED,
    4: MessageStatus.READ,
    5: MessageStatus.PLAYED,
}

_STRING_STATUSES: dict[str, MessageStatus] = {
    "pending": MessageStatus.PENDING,
    "server_ack": MessageStatus.SENT,
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "delivery_ack": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "read_ack": MessageStatus.READ,
    "played": MessageStatus.PLAYED,
    "play_ack": MessageStatus.PLAYED,
    "failed": MessageStatus.FAILED,
    "error": MessageStatus.FAILED,
    "deleted": MessageStatus.DELETED,
}


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"
    REACTION = "reaction"
    POLL = "poll"
    LIST = "list"
    BUTTON = "button"
    TEMPLATE = "template"
    UNKNOWN = "unknown"

    def is_media(self) -> bool:
        return self in (
            MessageType.IMAGE,
            MessageType.VIDEO,
            MessageType.AUDIO,
            MessageType.DOCUMENT,
            MessageType.STICKER,
        )

    def is_interactive(self) -> bool:
        return self in (MessageType.POLL, MessageType.LIST, MessageType.BUTTON)


class LimitPolicy(str, Enum):
    """What the rate limiter does once a window is exhausted."""

    WAIT = "wait"
    THROW = "throw"
    SKIP = "skip"


class BackoffStrategy(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


# --- Connection Models ---

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class HttpOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout_ms: int = Field(default=30_000, gt=0)
    connect_timeout_ms: int = Field(default=10_000, gt=0)
    verify_ssl: bool = True


class RetryOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30_000, ge=0)
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    retryable_status_codes: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES

    @property
    def total_attempts(self) -> int:
        return self.max_attempts if self.enabled else 1

    def delay_for(self, attempt: int) -> float:
        """Seconds to sleep after the given (1-based) failed attempt."""
        if self.backoff is BackoffStrategy.FIXED:
            delay_ms = self.base_delay_ms
        elif self.backoff is BackoffStrategy.LINEAR:
            delay_ms = self.base_delay_ms * attempt
        else:
            delay_ms = self.base_delay_ms * 2 ** (attempt - 1)
        return min(delay_ms, self.max_delay_ms) / 1000


class ConnectionProfile(BaseModel):
    """A resolved, validated gateway connection."""

    model_config = ConfigDict(frozen=True)

    name: str
    server_url: str
    api_key: str
    http: HttpOptions = Field(default_factory=HttpOptions)
    retry: RetryOptions = Field(default_factory=RetryOptions)


class RateLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(ge=0)
    decay_seconds: int = Field(gt=0)


# --- Response Models ---


class ApiResult(BaseModel):
    """Outcome of one HTTP exchange with the gateway."""

    model_config = ConfigDict(frozen=True)

    success: bool
    status_code: int
    data: dict[str, Any] = Field(default_factory=dict)
    message: str | None = None
    headers: dict[str, list[str]] = Field(default_factory=dict)
    response_time_ms: float | None = None

    @classmethod
    def ok(
        cls,
        data: dict[str, Any] | None = None,
        status_code: int = 200,
        message: str | None = None,
        **kwargs: Any,
    ) -> ApiResult:
        return cls(
            success=True, status_code=status_code, data=data or {}, message=message, **kwargs,
        )

    @classmethod
    def failure(
        cls,
        message: str,
        status_code: int = 400,
        data: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> ApiResult:
        return cls(
            success=False, status_code=status_code, data=data or {}, message=message, **kwargs,
        )

    def is_successful(self) -> bool:
        return self.success

    def is_failed(self) -> bool:
        return not self.success

    def get(self, key: str, default: Any = None) -> Any:
        value = self.data.get(key)
        return default if value is None else value

    def header(self, name: str) -> str | None:
        """First value of a response header, case-insensitive."""
        wanted = name.lower()
        for key, values in self.headers.items():
            if key.lower() == wanted and values:
                return values[0]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status_code": self.status_code,
            "data": self.data,
            "message": self.message,
            "response_time_ms": self.response_time_ms,
        }

    def raise_for_error(self, instance_name: str | None = None) -> ApiResult:
        """Raise the typed error for a failed result; return self otherwise."""
        if self.success:
            return self
        raise error_from_result(self, instance_name)


def stringify_message(value: Any) -> str | None:
    """Gateway ``message`` fields are sometimes lists or objects."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value)
