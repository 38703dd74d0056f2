"""HTTP client for the Evolution API gateway.

Wraps every call in the same pipeline: connection lookup, endpoint templating,
rate-limit admission, retry with backoff, result building and typed error
translation.

An ``EvolutionClient`` keeps fluent state (connection, instance, one-shot
headers) between calls, so a single client must not be shared by concurrent
workflows that target different tenants. Give each workflow its own client.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import httpx

from evolution_api.client.connections import ConnectionRegistry
from evolution_api.client.rate_limiter import RateLimiter
from evolution_api.config import EvolutionSettings, LoggingSettings
from evolution_api.errors import (
    ApiConnectionError,
    EvolutionApiError,
    InstanceRequiredError,
    RateLimitExceededError,
    error_from_result,
)
from evolution_api.models import ApiResult, ConnectionProfile, stringify_message
from evolution_api.redaction import redact

logger = logging.getLogger(__name__)

_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})
_INSTANCE_PLACEHOLDER = "{instance}"

_MEDIA_ENDPOINT = re.compile(
    r"/(sendMedia|sendImage|sendVideo|sendAudio|sendWhatsAppAudio|sendDocument|sendSticker)",
    re.IGNORECASE,
)
_MESSAGE_ENDPOINT = re.compile(r"/(send|message)", re.IGNORECASE)


def rate_limit_category(endpoint: str) -> str:
    """Rate-limit bucket for an endpoint: ``media``, ``messages`` or ``default``."""
    path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
    if _MEDIA_ENDPOINT.search(path):
        return "media"
    if _MESSAGE_ENDPOINT.search(path):
        return "messages"
    return "default"


def build_result(response: httpx.Response, response_time_ms: float | None = None) -> ApiResult:
    """Convert one HTTP response into an ApiResult.

    The gateway sometimes answers 2xx with an ``error`` field in the body;
    such responses count as failures. Bodies that are not JSON are kept as
    text under ``raw``.
    """
    try:
        body = response.json()
    except ValueError:
        body = response.text or None
    if body is None:
        body = {}
    data = body if isinstance(body, dict) else {"raw": body}

    success = response.is_success
    if success and data.get("error") is not None:
        success = False

    message = stringify_message(data.get("message"))
    if message is None and not success:
        message = response.reason_phrase or None

    headers: dict[str, list[str]] = {}
    for name, value in response.headers.multi_items():
        headers.setdefault(name, []).append(value)

    return ApiResult(
        success=success,
        status_code=response.status_code,
        data=data,
        message=message,
        headers=headers,
        response_time_ms=response_time_ms,
    )


class EvolutionClient:
    """Issues requests against one connection of a registry.

    The registry's active connection is captured at construction, so a later
    ``set_active`` on the registry does not move existing clients. Use
    ``connection(name)`` to switch a client.
    """

    def __init__(
        self,
        connections: ConnectionRegistry,
        rate_limiter: RateLimiter | None = None,
        *,
        logging_settings: LoggingSettings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,  # type: ignore[type-arg]
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._connections = connections
        self._rate_limiter = rate_limiter
        self._logging = logging_settings or LoggingSettings()
        self._logger = logger or logging.getLogger(__name__)
        self._transport = transport
        self._sleep = sleep
        self._connection_name = connections.active_name
        self._instance_name: str | None = None
        self._pending_headers: dict[str, str] = {}
        self._throw_on_error = True

    @classmethod
    def from_settings(cls, settings: EvolutionSettings, **kwargs: Any) -> EvolutionClient:
        kwargs.setdefault("rate_limiter", RateLimiter.from_settings(settings.rate_limiting))
        kwargs.setdefault("logging_settings", settings.logging)
        client = cls(ConnectionRegistry(settings), **kwargs)
        if settings.default_instance:
            client.instance(settings.default_instance)
        return client

    # --- fluent state ---

    def connection(self, name: str) -> EvolutionClient:
        """Switch this client to another named connection."""
        self._connections.resolve(name)
        self._connection_name = name
        return self

    def instance(self, name: str) -> EvolutionClient:
        self._instance_name = name
        return self

    def clear_instance(self) -> EvolutionClient:
        self._instance_name = None
        return self

    def with_headers(self, headers: Mapping[str, str]) -> EvolutionClient:
        """Add headers to the next request only."""
        self._pending_headers.update(headers)
        return self

    def throw_on_error(self, throw: bool = True) -> EvolutionClient:
        self._throw_on_error = throw
        return self

    def without_throwing(self) -> EvolutionClient:
        return self.throw_on_error(False)

    @property
    def connection_name(self) -> str:
        return self._connection_name

    @property
    def instance_name(self) -> str | None:
        return self._instance_name

    @property
    def base_url(self) -> str:
        return self._connections.resolve(self._connection_name).server_url

    @property
    def connections(self) -> ConnectionRegistry:
        return self._connections

    @property
    def rate_limiter(self) -> RateLimiter | None:
        return self._rate_limiter

    # --- requests ---

    def get(self, endpoint: str, query: Mapping[str, Any] | None = None) -> ApiResult:
        return self.execute("GET", endpoint, query)

    def post(self, endpoint: str, data: Mapping[str, Any] | None = None) -> ApiResult:
        return self.execute("POST", endpoint, data)

    def put(self, endpoint: str, data: Mapping[str, Any] | None = None) -> ApiResult:
        return self.execute("PUT", endpoint, data)

    def patch(self, endpoint: str, data: Mapping[str, Any] | None = None) -> ApiResult:
        return self.execute("PATCH", endpoint, data)

    def delete(self, endpoint: str, data: Mapping[str, Any] | None = None) -> ApiResult:
        return self.execute("DELETE", endpoint, data)

    def execute(
        self, method: str, endpoint: str, payload: Mapping[str, Any] | None = None,
    ) -> ApiResult:
        """Send one request. GET payloads become the query string."""
        method = method.upper()
        options: dict[str, Any]
        try:
            if method not in _METHODS:
                raise ValueError(f"Unsupported HTTP method: {method}")
            if method == "GET":
                options = {"params": dict(payload or {})}
            else:
                options = {"json": dict(payload or {})}
            return self._send(method, endpoint, options, log_options=options)
        finally:
            self._pending_headers = {}

    def upload(
        self,
        endpoint: str,
        fields: Mapping[str, Any] | None = None,
        files: Sequence[Mapping[str, Any]] | None = None,
    ) -> ApiResult:
        """POST a multipart form.

        Each file is a mapping with ``name`` and ``contents`` and optionally
        ``filename`` and ``content_type``.
        """
        files = files or []
        try:
            multipart = [
                (
                    file["name"],
                    (
                        file.get("filename") or file["name"],
                        file["contents"],
                        file.get("content_type") or "application/octet-stream",
                    ),
                )
                for file in files
            ]
            options = {
                "data": {key: str(value) for key, value in (fields or {}).items()},
                "files": multipart,
            }
            log_options = {"fields": dict(fields or {}), "files": f"{len(files)} files"}
            return self._send("POST", endpoint, options, log_options=log_options, multipart=True)
        finally:
            self._pending_headers = {}

    def ping(self) -> bool:
        """True when the gateway answers its root endpoint successfully."""
        try:
            return self.get("/").is_successful()
        except EvolutionApiError as exc:
            logger.debug("Ping to connection %s failed: %s", self._connection_name, exc)
            return False

    def info(self) -> dict[str, Any]:
        return self.get("/").data

    def close(self) -> None:
        # Each request opens and closes its own httpx.Client.
        self._pending_headers = {}

    def __enter__(self) -> EvolutionClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # --- pipeline ---

    def _send(
        self,
        method: str,
        endpoint: str,
        options: dict[str, Any],
        *,
        log_options: Mapping[str, Any],
        multipart: bool = False,
    ) -> ApiResult:
        profile = self._connections.resolve(self._connection_name)
        path = self._build_path(endpoint)

        refused = self._admit(rate_limit_category(endpoint))
        if refused is not None:
            return refused

        url = f"{profile.server_url}/{path}"
        headers = {"apikey": profile.api_key, "Accept": "application/json"}
        if not multipart:
            headers["Content-Type"] = "application/json"
        headers.update(self._pending_headers)

        self._log_request(method, url, log_options)
        result = self._dispatch(profile, method, url, headers, options)
        self._log_response(method, url, result)

        if result.is_failed() and self._throw_on_error:
            raise error_from_result(result, self._instance_name)
        return result

    def _build_path(self, endpoint: str) -> str:
        path = endpoint.lstrip("/")
        if _INSTANCE_PLACEHOLDER in path:
            if self._instance_name is None:
                raise InstanceRequiredError(endpoint)
            path = path.replace(_INSTANCE_PLACEHOLDER, self._instance_name)
        return path

    def _rate_limit_key(self) -> str:
        if self._instance_name is None:
            return self._connection_name
        return f"{self._connection_name}:{self._instance_name}"

    def _admit(self, category: str) -> ApiResult | None:
        """Ask the rate limiter for a slot. Returns a failed result when refused."""
        if self._rate_limiter is None:
            return None
        key = self._rate_limit_key()
        try:
            if self._rate_limiter.attempt(key, category):
                return None
            exc = RateLimitExceededError(
                f"Rate limit exceeded for category '{category}'",
                retry_after=self._rate_limiter.available_in(key, category),
                category=category,
            )
        except RateLimitExceededError as raised:
            exc = raised
        exc.instance_name = self._instance_name

        if self._throw_on_error:
            raise exc
        return ApiResult.failure(
            exc.message,
            status_code=429,
            data={"category": exc.category, "retry_after": exc.retry_after},
        )

    def _dispatch(
        self,
        profile: ConnectionProfile,
        method: str,
        url: str,
        headers: dict[str, str],
        options: dict[str, Any],
    ) -> ApiResult:
        retry = profile.retry
        attempts = retry.total_attempts
        timeout = httpx.Timeout(
            profile.http.timeout_ms / 1000, connect=profile.http.connect_timeout_ms / 1000,
        )
        started = time.perf_counter()

        with httpx.Client(
            timeout=timeout, verify=profile.http.verify_ssl, transport=self._transport,
        ) as client:
            for attempt in range(1, attempts + 1):
                try:
                    response = client.request(method, url, headers=headers, **options)
                except httpx.RequestError as exc:
                    if isinstance(exc, httpx.TransportError) and attempt < attempts:
                        delay = retry.delay_for(attempt)
                        logger.warning(
                            "%s %s failed (%s), retry %d/%d in %.2fs",
                            method, url, exc, attempt, attempts - 1, delay,
                        )
                        self._sleep(delay)
                        continue
                    raise ApiConnectionError(
                        f"Failed to connect to Evolution API: {exc}",
                        connection_name=profile.name,
                        url=url,
                        instance_name=self._instance_name,
                    ) from exc

                if response.status_code in retry.retryable_status_codes and attempt < attempts:
                    delay = retry.delay_for(attempt)
                    logger.warning(
                        "%s %s returned %d, retry %d/%d in %.2fs",
                        method, url, response.status_code, attempt, attempts - 1, delay,
                    )
                    self._sleep(delay)
                    continue
                break

        elapsed_ms = (time.perf_counter() - started) * 1000
        return build_result(response, elapsed_ms)

    # --- logging ---

    def _log_request(self, method: str, url: str, options: Mapping[str, Any]) -> None:
        if not (self._logging.enabled and self._logging.log_requests):
            return
        if self._logging.redact_sensitive:
            options = redact(options, self._logging.sensitive_fields)
        self._logger.info(
            "Evolution API request %s %s connection=%s instance=%s options=%s",
            method, url, self._connection_name, self._instance_name, options,
        )

    def _log_response(self, method: str, url: str, result: ApiResult) -> None:
        if not (self._logging.enabled and self._logging.log_responses):
            return
        log = self._logger.info if result.success else self._logger.error
        log(
            "Evolution API response %s %s status=%d success=%s time=%.1fms",
            method, url, result.status_code, result.success, result.response_time_ms or 0.0,
        )
