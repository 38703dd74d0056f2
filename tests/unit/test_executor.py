"""Tests for EvolutionClient request execution."""

from __future__ import annotations

import logging

import httpx
import pytest

from evolution_api.client.executor import EvolutionClient, build_result, rate_limit_category
from evolution_api.client.rate_limiter import RateLimiter
from evolution_api.config import LoggingSettings
from evolution_api.errors import (
    ApiConnectionError,
    ApiError,
    AuthenticationError,
    InstanceNotFoundError,
    InstanceRequiredError,
    RateLimitExceededError,
)
from evolution_api.models import RateLimit
from evolution_api.redaction import REDACTED
from tests.conftest import (
    API_KEY,
    SERVER_URL,
    json_response,
    make_registry,
    make_settings,
    make_transport,
)


def _make_client(*responses: httpx.Response | Exception, **kwargs):
    """Client over a MockTransport replaying ``responses``; returns (client, seen, sleeps)."""
    transport, seen = make_transport(*responses)
    sleeps: list[float] = []
    registry = kwargs.pop("registry", None) or make_registry(**kwargs.pop("settings", {}))
    client = EvolutionClient(registry, transport=transport, sleep=sleeps.append, **kwargs)
    return client, seen, sleeps


class TestRateLimitCategory:
    @pytest.mark.parametrize(
        ("endpoint", "category"),
        [
            ("message/sendMedia/{instance}", "media"),
            ("/message/sendWhatsAppAudio/shop", "media"),
            ("message/sendText/{instance}", "messages"),
            ("message/markMessageAsRead/{instance}", "messages"),
            ("chat/findMessages/{instance}", "default"),
            ("instance/fetchInstances", "default"),
            ("", "default"),
        ],
    )
    def test_categories(self, endpoint: str, category: str) -> None:
        assert rate_limit_category(endpoint) == category


class TestBuildResult:
    def test_json_object(self) -> None:
        result = build_result(json_response(201, {"key": {"id": "A"}}), 5.0)
        assert result.is_successful()
        assert result.status_code == 201
        assert result.data == {"key": {"id": "A"}}
        assert result.response_time_ms == 5.0

    def test_non_object_json_is_wrapped(self) -> None:
        assert build_result(json_response(200, [1, 2])).data == {"raw": [1, 2]}

    def test_non_json_body_is_kept_as_text(self) -> None:
        result = build_result(httpx.Response(200, content=b"OK"))
        assert result.data == {"raw": "OK"}
        assert result.is_successful()

    def test_empty_body(self) -> None:
        result = build_result(httpx.Response(204))
        assert result.data == {}
        assert result.is_successful()

    def test_success_status_with_error_field_fails(self) -> None:
        result = build_result(json_response(200, {"error": "Instance disconnected"}))
        assert result.is_failed()
        assert result.message == "OK"

    def test_failure_message_from_body(self) -> None:
        result = build_result(json_response(400, {"message": ["number invalid"]}))
        assert result.message == '["number invalid"]'

    def test_headers_keep_every_value(self) -> None:
        response = httpx.Response(200, headers=[("X-Tag", "a"), ("X-Tag", "b")], content=b"{}")
        assert build_result(response).headers["x-tag"] == ["a", "b"]


class TestRequests:
    def test_post_sends_json_with_api_key(self) -> None:
        client, seen, _ = _make_client(json_response(201, {"key": {"id": "MSG"}}))
        result = client.instance("shop").post(
            "message/sendText/{instance}", {"number": "5511999998888", "text": "hi"},
        )
        assert result.get("key") == {"id": "MSG"}
        request = seen[0]
        assert str(request.url) == f"{SERVER_URL}/message/sendText/shop"
        assert request.method == "POST"
        assert request.headers["apikey"] == API_KEY
        assert request.headers["content-type"] == "application/json"
        assert request.headers["accept"] == "application/json"
        assert b'"text": "hi"' in request.content or b'"text":"hi"' in request.content

    def test_get_uses_query_string(self) -> None:
        client, seen, _ = _make_client(json_response(200, {"ok": True}))
        client.get("/instance/fetchInstances", {"instanceName": "shop"})
        assert seen[0].url.params["instanceName"] == "shop"
        assert seen[0].url.path == "/instance/fetchInstances"

    @pytest.mark.parametrize("method", ["put", "patch", "delete"])
    def test_other_verbs(self, method: str) -> None:
        client, seen, _ = _make_client(json_response(200))
        getattr(client, method)("chat/archive", {"archive": True})
        assert seen[0].method == method.upper()

    def test_unsupported_method(self) -> None:
        client, _, _ = _make_client()
        with pytest.raises(ValueError, match="TRACE"):
            client.execute("trace", "/")

    def test_rejected_method_drops_one_shot_headers(self) -> None:
        client, seen, _ = _make_client(json_response(200))
        with pytest.raises(ValueError):
            client.with_headers({"X-One-Shot": "1"}).execute("trace", "/")
        client.get("/")
        assert "x-one-shot" not in seen[0].headers

    def test_failed_upload_drops_one_shot_headers(self) -> None:
        client, seen, _ = _make_client(json_response(201))
        with pytest.raises(KeyError):
            client.with_headers({"X-One-Shot": "1"}).upload("message/sendMedia/shop", {}, [{}])
        client.get("/")
        assert "x-one-shot" not in seen[0].headers

    def test_missing_instance(self) -> None:
        client, seen, _ = _make_client()
        with pytest.raises(InstanceRequiredError):
            client.post("message/sendText/{instance}", {"text": "hi"})
        assert seen == []

    def test_one_shot_headers(self) -> None:
        client, seen, _ = _make_client(json_response(200))
        client.with_headers({"X-Trace": "abc"}).get("/")
        client.get("/")
        assert seen[0].headers["x-trace"] == "abc"
        assert "x-trace" not in seen[1].headers

    def test_upload_is_multipart(self) -> None:
        client, seen, _ = _make_client(json_response(201))
        client.instance("shop").upload(
            "message/sendMedia/{instance}",
            {"number": "5511999998888", "mediatype": "image"},
            [{"name": "file", "contents": b"\x89PNG", "filename": "photo.png",
              "content_type": "image/png"}],
        )
        request = seen[0]
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b'filename="photo.png"' in request.content
        assert b"mediatype" in request.content

    def test_switching_connection(self) -> None:
        client, seen, _ = _make_client(
            json_response(200),
            settings={"connections": {"tenant_a": {"server_url": "https://a.test", "api_key": "key-a"}}},
        )
        client.connection("tenant_a").get("/")
        assert client.connection_name == "tenant_a"
        assert client.base_url == "https://a.test"
        assert seen[0].headers["apikey"] == "key-a"
        assert client.connections.active_name == "default"

    def test_registry_switch_does_not_move_existing_client(self) -> None:
        client, seen, _ = _make_client(
            json_response(200),
            settings={"connections": {"tenant_a": {"server_url": "https://a.test", "api_key": "key-a"}}},
        )
        client.connections.set_active("tenant_a")
        client.get("/")
        assert client.connection_name == "default"
        assert str(seen[0].url) == f"{SERVER_URL}/"
        assert seen[0].headers["apikey"] == API_KEY


class TestErrorHandling:
    def test_success_status_with_error_body_raises(self) -> None:
        client, _, _ = _make_client(json_response(200, {"error": "Instance disconnected"}))
        with pytest.raises(ApiError) as exc_info:
            client.get("/")
        assert exc_info.value.message == "Instance disconnected"
        assert exc_info.value.status_code == 200

    def test_unauthorized(self) -> None:
        client, _, _ = _make_client(json_response(401, {"message": "Unauthorized"}))
        with pytest.raises(AuthenticationError):
            client.get("/")

    def test_not_found_carries_instance(self) -> None:
        client, _, _ = _make_client(json_response(404, {"message": "not found"}))
        with pytest.raises(InstanceNotFoundError) as exc_info:
            client.instance("shop").get("instance/connectionState/{instance}")
        assert exc_info.value.instance_name == "shop"

    def test_server_rate_limit(self) -> None:
        client, _, _ = _make_client(
            json_response(429, {"message": "Too many"}, headers={"Retry-After": "12"}),
        )
        with pytest.raises(RateLimitExceededError) as exc_info:
            client.get("/")
        assert exc_info.value.retry_after == 12
        assert exc_info.value.category == "api"

    def test_without_throwing_returns_failed_result(self) -> None:
        client, _, _ = _make_client(json_response(404, {"message": "not found"}))
        result = client.without_throwing().get("/")
        assert result.is_failed()
        assert result.status_code == 404
        assert result.message == "not found"

    @pytest.mark.parametrize("status", [401, 404, 429])
    def test_without_throwing_skips_typed_errors(self, status: int) -> None:
        client, _, _ = _make_client(
            json_response(status, {"message": "refused"}, headers={"Retry-After": "5"}),
        )
        result = client.without_throwing().get("/")
        assert result.is_failed()
        assert result.status_code == status
        assert result.message == "refused"
        assert result.header("Retry-After") == "5"

    def test_html_error_page_is_kept(self) -> None:
        page = b"<html><body>502 Bad Gateway</body></html>"
        client, _, _ = _make_client(
            httpx.Response(502, content=page, headers={"Content-Type": "text/html"}),
        )
        with pytest.raises(ApiError) as exc_info:
            client.get("/")
        assert exc_info.value.status_code == 502
        assert "502 Bad Gateway" in exc_info.value.response_data["raw"]

    def test_transport_failure(self) -> None:
        client, _, _ = _make_client(httpx.ConnectError("connection refused"))
        with pytest.raises(ApiConnectionError) as exc_info:
            client.get("/")
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert exc_info.value.connection_name == "default"
        assert exc_info.value.url == f"{SERVER_URL}/"


class TestRetries:
    def test_retryable_status_backs_off(self) -> None:
        client, seen, sleeps = _make_client(
            json_response(503),
            json_response(503),
            json_response(200, {"ok": True}),
            settings={"retry": {"max_attempts": 3, "base_delay": 100}},
        )
        assert client.get("/").is_successful()
        assert len(seen) == 3
        assert sleeps == [0.1, 0.2]

    def test_transport_error_is_retried(self) -> None:
        client, seen, sleeps = _make_client(
            httpx.ConnectError("reset"),
            json_response(200),
            settings={"retry": {"max_attempts": 2, "base_delay": 50}},
        )
        assert client.get("/").is_successful()
        assert len(seen) == 2
        assert sleeps == [0.05]

    def test_last_retryable_response_is_returned(self) -> None:
        client, seen, _ = _make_client(
            json_response(503, {"message": "busy"}),
            settings={"retry": {"max_attempts": 2, "base_delay": 0}},
        )
        result = client.without_throwing().get("/")
        assert result.status_code == 503
        assert len(seen) == 2

    def test_client_errors_are_not_retried(self) -> None:
        client, seen, sleeps = _make_client(
            json_response(400, {"message": "bad"}),
            settings={"retry": {"max_attempts": 3}},
        )
        client.without_throwing().get("/")
        assert len(seen) == 1
        assert sleeps == []


class TestRateLimiting:
    def _limiter(self, policy: str) -> RateLimiter:
        return RateLimiter(
            limits={
                "default": RateLimit(max_attempts=10, decay_seconds=60),
                "media": RateLimit(max_attempts=1, decay_seconds=60),
            },
            policy=policy,
        )

    def test_refused_call_never_reaches_the_gateway(self) -> None:
        client, seen, _ = _make_client(json_response(201), rate_limiter=self._limiter("skip"))
        client.instance("shop").post("message/sendMedia/{instance}", {})
        result = client.without_throwing().post("message/sendMedia/{instance}", {})
        assert len(seen) == 1
        assert result.status_code == 429
        assert result.get("category") == "media"
        assert result.get("retry_after") == 60

    def test_refusal_raises_in_throwing_mode(self) -> None:
        client, _, _ = _make_client(json_response(201), rate_limiter=self._limiter("throw"))
        client.instance("shop").post("message/sendMedia/{instance}", {})
        with pytest.raises(RateLimitExceededError) as exc_info:
            client.post("message/sendMedia/{instance}", {})
        assert exc_info.value.instance_name == "shop"
        assert exc_info.value.category == "media"

    def test_skip_refusal_raises_in_throwing_mode(self) -> None:
        client, _, _ = _make_client(json_response(201), rate_limiter=self._limiter("skip"))
        client.post("message/sendMedia/shop", {})
        with pytest.raises(RateLimitExceededError):
            client.post("message/sendMedia/shop", {})

    def test_instances_have_separate_windows(self) -> None:
        client, seen, _ = _make_client(json_response(201), rate_limiter=self._limiter("skip"))
        client.instance("shop").post("message/sendMedia/{instance}", {})
        client.instance("store").post("message/sendMedia/{instance}", {})
        assert len(seen) == 2

    def test_missing_instance_consumes_no_slot(self) -> None:
        limiter = self._limiter("skip")
        client, _, _ = _make_client(json_response(201), rate_limiter=limiter)
        with pytest.raises(InstanceRequiredError):
            client.post("message/sendMedia/{instance}", {})
        assert limiter.remaining("default", "media") == 1


class TestLogging:
    def test_request_log_is_redacted(self, caplog: pytest.LogCaptureFixture) -> None:
        client, _, _ = _make_client(
            json_response(200),
            logging_settings=LoggingSettings(log_requests=True, log_responses=True),
        )
        with caplog.at_level(logging.INFO, logger="evolution_api.client.executor"):
            client.post("settings/set", {"number": "1", "apikey": "leaked-key"})
        assert "leaked-key" not in caplog.text
        assert REDACTED in caplog.text
        assert "Evolution API response POST" in caplog.text

    def test_failed_response_logged_as_error(self, caplog: pytest.LogCaptureFixture) -> None:
        client, _, _ = _make_client(
            json_response(500),
            logging_settings=LoggingSettings(log_responses=True),
        )
        with caplog.at_level(logging.INFO, logger="evolution_api.client.executor"):
            client.without_throwing().get("/")
        assert any(record.levelno == logging.ERROR for record in caplog.records)

    def test_logging_disabled(self, caplog: pytest.LogCaptureFixture) -> None:
        client, _, _ = _make_client(
            json_response(200),
            logging_settings=LoggingSettings(enabled=False, log_requests=True),
        )
        with caplog.at_level(logging.DEBUG, logger="evolution_api.client.executor"):
            client.get("/")
        assert "Evolution API request" not in caplog.text


class TestConvenience:
    def test_ping(self) -> None:
        assert _make_client(json_response(200))[0].ping() is True
        assert _make_client(json_response(500))[0].ping() is False
        assert _make_client(httpx.ConnectError("down"))[0].ping() is False

    def test_info(self) -> None:
        client, _, _ = _make_client(json_response(200, {"version": "2.1.0"}))
        assert client.info() == {"version": "2.1.0"}

    def test_from_settings_selects_default_instance(self) -> None:
        transport, seen = make_transport(json_response(200))
        client = EvolutionClient.from_settings(
            make_settings(default_instance="shop"), transport=transport,
        )
        client.get("instance/connectionState/{instance}")
        assert client.instance_name == "shop"
        assert seen[0].url.path == "/instance/connectionState/shop"
        assert client.rate_limiter is not None

    def test_context_manager(self) -> None:
        client, _, _ = _make_client()
        with client as entered:
            assert entered is client
