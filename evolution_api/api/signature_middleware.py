"""ASGI middleware that checks webhook HMAC signatures before routing."""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from evolution_api.webhook.signature import extract_signature, verify_signature

logger = logging.getLogger(__name__)


class SignatureMiddleware:
    """Rejects webhook POSTs whose signature header is missing or wrong.

    Only paths under ``path_prefix`` are checked. The body is read once and
    replayed to the wrapped app.
    """

    def __init__(self, app: ASGIApp, secret: str, path_prefix: str) -> None:
        self.app = app
        self._secret = secret
        self._prefix = path_prefix.rstrip("/")

    def _protects(self, path: str) -> bool:
        return path == self._prefix or path.startswith(self._prefix + "/")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] != "POST" or not self._protects(scope["path"]):
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        body = await request.body()
        signature = extract_signature(request.headers)

        if signature is None:
            logger.warning("Webhook rejected: missing signature header (%s)", scope["path"])
            response = JSONResponse(
                {"status": "error", "message": "Missing signature header"}, status_code=401,
            )
            await response(scope, receive, send)
            return

        if not verify_signature(self._secret, body, signature):
            logger.warning("Webhook rejected: invalid signature (%s)", scope["path"])
            response = JSONResponse(
                {"status": "error", "message": "Invalid signature"}, status_code=401,
            )
            await response(scope, receive, send)
            return

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)
