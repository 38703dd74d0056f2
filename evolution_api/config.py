"""Settings for the gateway client and the webhook endpoint.

Settings are built once by the host (from a mapping, a JSON file or the
environment) and handed to each component's constructor. Nothing here is
global.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from evolution_api.errors import ConfigurationError
from evolution_api.models import HttpOptions, LimitPolicy, RateLimit, RetryOptions
from evolution_api.redaction import DEFAULT_SENSITIVE_FIELDS

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def default_limits() -> dict[str, RateLimit]:
    return {
        "default": RateLimit(max_attempts=60, decay_seconds=60),
        "messages": RateLimit(max_attempts=30, decay_seconds=60),
        "media": RateLimit(max_attempts=10, decay_seconds=60),
    }


class RateLimitSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    driver: str = Field(default="memory", pattern="^(memory|sqlite)$")
    path: str = "data/rate_limits.db"
    max_wait: int = Field(default=0, ge=0)
    on_limit_reached: LimitPolicy = LimitPolicy.WAIT
    limits: dict[str, RateLimit] = Field(default_factory=default_limits)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    log_requests: bool = False
    log_responses: bool = False
    log_webhooks: bool = True
    redact_sensitive: bool = True
    sensitive_fields: tuple[str, ...] = DEFAULT_SENSITIVE_FIELDS


class WebhookSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    verify_signature: bool = False
    secret: str | None = None
    dispatch_events: bool = True
    route_prefix: str = "evolution/webhook"


class EvolutionSettings(BaseModel):
    """Everything the client and webhook components read from configuration.

    ``connections`` entries are kept as raw mappings so the connection
    registry can report exactly which field is missing or malformed.
    """

    model_config = ConfigDict(frozen=True)

    server_url: str | None = None
    api_key: str | None = None
    default_instance: str | None = None
    connections: dict[str, dict[str, Any]] = Field(default_factory=dict)
    http: HttpOptions = Field(default_factory=HttpOptions)
    retry: RetryOptions = Field(default_factory=RetryOptions)
    rate_limiting: RateLimitSettings = Field(default_factory=RateLimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)


def load_settings(data: Mapping[str, Any] | None = None) -> EvolutionSettings:
    """Build settings from a configuration mapping.

    Timeouts under ``http`` are in seconds; delays under ``retry`` are in
    milliseconds. Unknown keys are ignored.
    """
    data = data or {}
    connections = data.get("connections") or {}
    if not isinstance(connections, Mapping):
        raise ConfigurationError("'connections' must be a mapping", code="INVALID_OPTION")
    for name, entry in connections.items():
        if not isinstance(entry, Mapping):
            raise ConfigurationError(
                f"Connection [{name}] must be a mapping",
                code="INVALID_OPTION",
                connection_name=str(name),
            )

    return _build(
        EvolutionSettings,
        {
            "server_url": data.get("server_url"),
            "api_key": data.get("api_key"),
            "default_instance": data.get("default_instance"),
            "connections": {str(name): dict(entry) for name, entry in connections.items()},
            "http": http_options_from(data.get("http")),
            "retry": retry_options_from(data.get("retry")),
            "rate_limiting": _rate_limit_settings(data.get("rate_limiting")),
            "logging": _build(LoggingSettings, _section(data, "logging")),
            "webhook": _build(WebhookSettings, _section(data, "webhook")),
        },
    )


def load_settings_file(path: str | Path) -> EvolutionSettings:
    """Load settings from a JSON file. A missing file raises FileNotFoundError."""
    text = Path(path).read_text()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            f"Configuration file {path} is not valid JSON: {exc}", code="INVALID_OPTION",
        ) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file {path} must contain a JSON object", code="INVALID_OPTION",
        )
    return load_settings(data)


def settings_from_env(environ: Mapping[str, str] | None = None) -> EvolutionSettings:
    """Build settings from ``EVOLUTION_*`` environment variables."""
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {
        "server_url": env.get("EVOLUTION_API_URL"),
        "api_key": env.get("EVOLUTION_API_KEY"),
        "default_instance": env.get("EVOLUTION_DEFAULT_INSTANCE"),
    }

    http: dict[str, Any] = {}
    if "EVOLUTION_HTTP_TIMEOUT" in env:
        http["timeout"] = env["EVOLUTION_HTTP_TIMEOUT"]
    if "EVOLUTION_HTTP_CONNECT_TIMEOUT" in env:
        http["connect_timeout"] = env["EVOLUTION_HTTP_CONNECT_TIMEOUT"]
    if "EVOLUTION_VERIFY_SSL" in env:
        http["verify_ssl"] = _env_bool(env["EVOLUTION_VERIFY_SSL"])
    data["http"] = http

    retry: dict[str, Any] = {}
    if "EVOLUTION_RETRY_ENABLED" in env:
        retry["enabled"] = _env_bool(env["EVOLUTION_RETRY_ENABLED"])
    if "EVOLUTION_RETRY_MAX_ATTEMPTS" in env:
        retry["max_attempts"] = env["EVOLUTION_RETRY_MAX_ATTEMPTS"]
    data["retry"] = retry

    rate: dict[str, Any] = {}
    if "EVOLUTION_RATE_LIMIT_ENABLED" in env:
        rate["enabled"] = _env_bool(env["EVOLUTION_RATE_LIMIT_ENABLED"])
    if "EVOLUTION_RATE_LIMIT_DRIVER" in env:
        rate["driver"] = env["EVOLUTION_RATE_LIMIT_DRIVER"]
    if "EVOLUTION_RATE_LIMIT_PATH" in env:
        rate["path"] = env["EVOLUTION_RATE_LIMIT_PATH"]
    if "EVOLUTION_RATE_LIMIT_POLICY" in env:
        rate["on_limit_reached"] = env["EVOLUTION_RATE_LIMIT_POLICY"]
    data["rate_limiting"] = rate

    log: dict[str, Any] = {}
    if "EVOLUTION_LOGGING_ENABLED" in env:
        log["enabled"] = _env_bool(env["EVOLUTION_LOGGING_ENABLED"])
    if "EVOLUTION_LOG_REQUESTS" in env:
        log["log_requests"] = _env_bool(env["EVOLUTION_LOG_REQUESTS"])
    if "EVOLUTION_LOG_RESPONSES" in env:
        log["log_responses"] = _env_bool(env["EVOLUTION_LOG_RESPONSES"])
    data["logging"] = log

    hook: dict[str, Any] = {}
    if env.get("EVOLUTION_WEBHOOK_SECRET"):
        hook["secret"] = env["EVOLUTION_WEBHOOK_SECRET"]
    if "EVOLUTION_VERIFY_WEBHOOK" in env:
        hook["verify_signature"] = _env_bool(env["EVOLUTION_VERIFY_WEBHOOK"])
    data["webhook"] = hook

    return load_settings(data)


def http_options_from(raw: Any, base: HttpOptions | None = None) -> HttpOptions:
    """Overlay an ``http`` config block (seconds) onto ``base``."""
    base = base or HttpOptions()
    if not raw:
        return base
    if not isinstance(raw, Mapping):
        raise ConfigurationError("'http' must be a mapping", code="INVALID_OPTION")
    values = base.model_dump()
    if "timeout" in raw:
        values["timeout_ms"] = _seconds_to_ms(raw["timeout"], "http.timeout")
    if "connect_timeout" in raw:
        values["connect_timeout_ms"] = _seconds_to_ms(raw["connect_timeout"], "http.connect_timeout")
    if "verify_ssl" in raw:
        values["verify_ssl"] = raw["verify_ssl"]
    return _build(HttpOptions, values)


def retry_options_from(raw: Any, base: RetryOptions | None = None) -> RetryOptions:
    """Overlay a ``retry`` config block (milliseconds) onto ``base``."""
    base = base or RetryOptions()
    if not raw:
        return base
    if not isinstance(raw, Mapping):
        raise ConfigurationError("'retry' must be a mapping", code="INVALID_OPTION")
    values = base.model_dump()
    for source, target in (
        ("enabled", "enabled"),
        ("max_attempts", "max_attempts"),
        ("base_delay", "base_delay_ms"),
        ("max_delay", "max_delay_ms"),
        ("backoff_strategy", "backoff"),
        ("retryable_status_codes", "retryable_status_codes"),
    ):
        if source in raw:
            values[target] = raw[source]
    return _build(RetryOptions, values)


def _rate_limit_settings(raw: Any) -> RateLimitSettings:
    if not raw:
        return RateLimitSettings()
    if not isinstance(raw, Mapping):
        raise ConfigurationError("'rate_limiting' must be a mapping", code="INVALID_OPTION")
    values = dict(raw)
    limits: dict[str, Any] = dict(default_limits())
    configured = values.pop("limits", None) or {}
    if not isinstance(configured, Mapping):
        raise ConfigurationError("'rate_limiting.limits' must be a mapping", code="INVALID_OPTION")
    limits.update(configured)
    values["limits"] = limits
    return _build(RateLimitSettings, values)


def _section(data: Mapping[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"'{name}' must be a mapping", code="INVALID_OPTION")
    return dict(section)


def _build(model: type[BaseModel], values: Mapping[str, Any]) -> Any:
    try:
        return model.model_validate(values)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid {model.__name__} option: {exc}", code="INVALID_OPTION",
        ) from exc


def _seconds_to_ms(value: Any, option: str) -> int:
    try:
        return int(float(value) * 1000)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Option '{option}' must be a number of seconds, got {value!r}",
            code="INVALID_OPTION",
        ) from exc


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUTHY
