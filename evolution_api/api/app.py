"""FastAPI application that receives gateway webhooks."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Path, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from evolution_api.api.signature_middleware import SignatureMiddleware
from evolution_api.config import EvolutionSettings, load_settings_file, settings_from_env
from evolution_api.errors import WebhookProcessingError
from evolution_api.webhook.processor import WebhookProcessor

logger = logging.getLogger(__name__)

Enqueue = Callable[[dict[str, Any], str], object]


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from the environment.

    ``EVOLUTION_CONFIG_PATH`` points at a JSON settings file; without it the
    ``EVOLUTION_*`` variables are used.
    """
    config_path = os.environ.get("EVOLUTION_CONFIG_PATH")
    settings = load_settings_file(config_path) if config_path else settings_from_env()
    return create_app(WebhookProcessor.from_settings(settings), settings)


def create_app(
    processor: WebhookProcessor,
    settings: EvolutionSettings | None = None,
    *,
    enqueue: Enqueue | None = None,
) -> FastAPI:
    """Create the webhook receiver.

    With ``enqueue`` the payload is handed to an external queue instead of
    being processed in-request; if enqueueing fails it is processed
    synchronously.
    """
    hook = (settings or EvolutionSettings()).webhook
    prefix = "/" + hook.route_prefix.strip("/")
    app = FastAPI(docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {
            "status": "ok",
            "service": "evolution-api-webhook",
            "timestamp": datetime.now(UTC).isoformat(),
        }

    async def receive(request: Request, instance: str | None) -> JSONResponse:
        body = await request.body()
        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or not payload.get("event"):
            logger.warning("Invalid webhook payload received on %s", request.url.path)
            return _reply("error", "Invalid payload", 400)

        if instance and "instance" not in payload and "instanceName" not in payload:
            payload["instance"] = instance
        instance_name = str(payload.get("instance") or payload.get("instanceName") or "default")
        logger.info("Webhook received event=%s instance=%s", payload["event"], instance_name)

        if enqueue is not None:
            try:
                enqueue(payload, instance_name)
                return _reply("success", "Webhook queued")
            except Exception as exc:  # fall back to in-request processing
                logger.error("Failed to queue webhook, processing synchronously: %s", exc)

        try:
            await run_in_threadpool(processor.process, payload)
        except WebhookProcessingError as exc:
            logger.error("Webhook processing failed: %s", exc)
            return _reply("error", "Processing failed", 500)
        return _reply("success", "Webhook processed")

    @app.post(prefix)
    async def webhook(request: Request) -> JSONResponse:
        return await receive(request, None)

    @app.post(prefix + "/{instance}")
    async def webhook_for_instance(
        request: Request,
        instance: str = Path(pattern=r"^[A-Za-z0-9_-]+$"),
    ) -> JSONResponse:
        return await receive(request, instance)

    if hook.verify_signature and hook.secret:
        app.add_middleware(SignatureMiddleware, secret=hook.secret, path_prefix=prefix)

    return app


def _reply(status: str, message: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse({"status": status, "message": message}, status_code=status_code)
