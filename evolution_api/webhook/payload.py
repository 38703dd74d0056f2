"""Normalization of inbound gateway webhook bodies."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from evolution_api.errors import InvalidWebhookPayloadError
from evolution_api.models import WebhookEvent

_MISSING = object()

# Candidate paths, most specific first. The gateway nests the payload under
# ``data`` in recent versions and flattens it in older ones.
MESSAGE_ID_PATHS = ("data.key.id", "key.id", "data.keyId", "data.messageId", "messageId")
REMOTE_JID_PATHS = ("data.key.remoteJid", "key.remoteJid", "data.remoteJid", "remoteJid")
CONNECTION_STATE_PATHS = ("data.state", "state", "status")
QR_CODE_PATHS = (
    "data.qrcode.base64", "qrcode.base64", "data.qrcode", "qrcode", "data.base64", "base64",
)
PAIRING_CODE_PATHS = ("data.pairingCode", "data.qrcode.pairingCode", "pairingCode")
MESSAGE_STATUS_PATHS = ("data.status", "status")

GROUP_SUFFIX = "@g.us"


def lookup(data: Any, path: str, default: Any = None) -> Any:
    """Follow a dotted path through nested mappings.

    Returns ``default`` when a segment is missing or the walk reaches a
    value that is not a mapping.
    """
    value = data
    for segment in path.split("."):
        if not isinstance(value, Mapping) or segment not in value:
            return default
        value = value[segment]
    return value


def first_present(
    data: Any,
    paths: Sequence[str],
    default: Any = None,
    *,
    expect: type | tuple[type, ...] | None = None,
) -> Any:
    """Value at the first path that holds a non-null value of type ``expect``."""
    for path in paths:
        value = lookup(data, path, _MISSING)
        if value is _MISSING or value is None:
            continue
        if expect is not None and not isinstance(value, expect):
            continue
        return value
    return default


class WebhookEnvelope(BaseModel):
    """A normalized webhook body.

    ``raw_data`` is the body minus ``event``, ``instance`` and
    ``instanceName``; every accessor reads from it and falls back to a
    default instead of raising.
    """

    model_config = ConfigDict(frozen=True)

    event: str
    event_kind: WebhookEvent
    instance_name: str | None = None
    raw_data: dict[str, Any] = Field(default_factory=dict)
    api_key: str | None = None
    received_at: int

    def get(self, path: str, default: Any = None) -> Any:
        return lookup(self.raw_data, path, default)

    def has(self, path: str) -> bool:
        return self.get(path) is not None

    def message_id(self) -> str | None:
        return first_present(self.raw_data, MESSAGE_ID_PATHS, expect=str)

    def remote_jid(self) -> str | None:
        return first_present(self.raw_data, REMOTE_JID_PATHS, expect=str)

    def connection_status(self) -> str | None:
        return first_present(self.raw_data, CONNECTION_STATE_PATHS, expect=str)

    def qr_code(self) -> str | None:
        return first_present(self.raw_data, QR_CODE_PATHS, expect=str)

    def pairing_code(self) -> str | None:
        return first_present(self.raw_data, PAIRING_CODE_PATHS, expect=str)

    def message_status(self) -> int | str | None:
        status = first_present(self.raw_data, MESSAGE_STATUS_PATHS, expect=(int, str))
        return None if isinstance(status, bool) else status

    def is_from_group(self) -> bool:
        jid = self.remote_jid()
        return jid is not None and jid.endswith(GROUP_SUFFIX)

    def group_id(self) -> str | None:
        return self.remote_jid() if self.is_from_group() else None

    def message_data(self) -> dict[str, Any] | None:
        return first_present(self.raw_data, ("data", "message"), expect=dict)

    def sender_data(self) -> dict[str, Any] | None:
        return first_present(self.raw_data, ("sender",), expect=dict)

    def is_known_event(self) -> bool:
        return self.event_kind is not WebhookEvent.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "instance_name": self.instance_name,
            "webhook_event": self.event_kind.value,
            "is_known_event": self.is_known_event(),
            "data": self.raw_data,
            "received_at": self.received_at,
        }


def normalize(raw_body: Any, *, clock: Callable[[], float] = time.time) -> WebhookEnvelope:
    """Build an envelope from a decoded webhook body.

    Raises InvalidWebhookPayloadError when the body is not a JSON object.
    """
    if not isinstance(raw_body, Mapping):
        raise InvalidWebhookPayloadError(raw_body)

    event = raw_body.get("event")
    if not isinstance(event, str) or not event:
        event = WebhookEvent.UNKNOWN.value

    instance_name = first_present(raw_body, ("instance", "instanceName"))
    if instance_name is not None:
        instance_name = str(instance_name)

    api_key = raw_body.get("apiKey")
    raw_data = {
        key: value
        for key, value in raw_body.items()
        if key not in ("event", "instance", "instanceName")
    }
    return WebhookEnvelope(
        event=event,
        event_kind=WebhookEvent.from_string(event),
        instance_name=instance_name,
        raw_data=raw_data,
        api_key=api_key if isinstance(api_key, str) else None,
        received_at=int(clock()),
    )
