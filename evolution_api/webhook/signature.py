"""HMAC-SHA256 signatures on inbound webhook bodies."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping

SIGNATURE_HEADERS = ("X-Webhook-Signature", "X-Evolution-Signature", "X-Signature")
_PREFIX = "sha256="


def sign(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of ``body``."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Constant-time check of ``signature`` against the body's HMAC.

    Accepts the bare hex digest or one prefixed with ``sha256=``.
    """
    if not signature:
        return False
    if signature.startswith(_PREFIX):
        signature = signature[len(_PREFIX):]
    return hmac.compare_digest(signature.encode(), sign(secret, body).encode())


def extract_signature(headers: Mapping[str, str]) -> str | None:
    """First non-empty signature header, matched case-insensitively."""
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in SIGNATURE_HEADERS:
        value = lowered.get(name.lower())
        if value:
            return value
    return None
