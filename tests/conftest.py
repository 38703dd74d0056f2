"""Shared test fixtures for evolution-api-client."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from evolution_api.client.connections import ConnectionRegistry
from evolution_api.config import EvolutionSettings, load_settings
from evolution_api.webhook.events import DomainEvent

SERVER_URL = "http://gateway.test"
API_KEY = "test-api-key"


class FakeClock:
    """Manually advanced clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class RecordingDispatcher:
    """EventDispatcher that keeps every dispatched event."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def dispatch(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[DomainEvent]) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


# --- Factory functions for test data ---


def make_settings(**overrides: Any) -> EvolutionSettings:
    """Settings with a legacy default connection and retries disabled."""
    data: dict[str, Any] = {
        "server_url": f"{SERVER_URL}/",
        "api_key": API_KEY,
        "retry": {"enabled": False},
    }
    data.update(overrides)
    return load_settings(data)


def make_registry(**overrides: Any) -> ConnectionRegistry:
    return ConnectionRegistry(make_settings(**overrides))


def make_webhook_body(
    event: str = "MESSAGES_UPSERT",
    instance: str | None = "test-instance",
    data: dict[str, Any] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    body: dict[str, Any] = {"event": event, "data": data if data is not None else {}}
    if instance is not None:
        body["instance"] = instance
    body.update(extra)
    return body


def make_message_data(
    message_id: str = "MSG-1",
    remote_jid: str = "5511999998888@s.whatsapp.net",
    message: dict[str, Any] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "key": {"id": message_id, "remoteJid": remote_jid, "fromMe": False},
        "message": message if message is not None else {"conversation": "hello"},
    }
    data.update(extra)
    return data


def json_response(
    status_code: int = 200,
    body: Any = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps({} if body is None else body).encode(),
        headers={"content-type": "application/json", **(headers or {})},
    )


def make_transport(
    *responses: httpx.Response | Exception,
) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    """MockTransport replaying ``responses`` in order; the last one repeats."""
    seen: list[httpx.Request] = []
    queue = list(responses) or [json_response()]

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    return httpx.MockTransport(handler), seen


def make_routing_transport(
    handler: Callable[[httpx.Request], httpx.Response],
) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(record), seen
