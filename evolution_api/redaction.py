"""Scrubbing helpers applied before payloads reach the logs."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "[REDACTED]"

DEFAULT_SENSITIVE_FIELDS: tuple[str, ...] = ("apikey", "api_key", "token", "password", "secret")


def redact(data: Any, sensitive_fields: Iterable[str] = DEFAULT_SENSITIVE_FIELDS) -> Any:
    """Return a copy of ``data`` with sensitive keys replaced, at any depth.

    Key matching is case-insensitive, so ``apiKey`` and ``APIKEY`` are both
    caught by ``apikey``. Non-container values are returned unchanged.
    """
    fields = {field.lower() for field in sensitive_fields}
    return _redact(data, fields)


def _redact(value: Any, fields: set[str]) -> Any:
    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in fields else _redact(item, fields)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item, fields) for item in value]
    return value


def mask_phone_number(jid: str | None) -> str | None:
    """Mask the middle digits of a phone number or WhatsApp JID.

    ``5511999998888@s.whatsapp.net`` becomes ``5511*******88@s.whatsapp.net``.
    """
    if not jid:
        return jid
    local, sep, domain = jid.partition("@")
    if len(local) <= 6:
        return "*" * len(local) + sep + domain
    return local[:4] + "*" * (len(local) - 6) + local[-2:] + sep + domain
