"""Named gateway connections for multi-tenant hosts."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any

import httpx

from evolution_api.config import EvolutionSettings, http_options_from, retry_options_from
from evolution_api.errors import ConfigurationError, ConnectionNotFoundError
from evolution_api.models import ConnectionProfile

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION = "default"


class ConnectionRegistry:
    """Resolves, validates and caches connection profiles.

    Lookup order is: resolved cache, runtime registrations, the legacy flat
    ``server_url``/``api_key`` pair (``default`` only), then
    ``connections[name]``. A name that has been resolved once keeps its
    profile until ``purge()``, even if a runtime profile with the same name
    is added later.
    """

    def __init__(self, settings: EvolutionSettings | None = None) -> None:
        self._settings = settings or EvolutionSettings()
        self._lock = threading.RLock()
        self._resolved: dict[str, ConnectionProfile] = {}
        self._runtime: dict[str, ConnectionProfile] = {}
        self._active = DEFAULT_CONNECTION
        self._warm_default()

    @property
    def settings(self) -> EvolutionSettings:
        return self._settings

    @property
    def active_name(self) -> str:
        return self._active

    def resolve(self, name: str = DEFAULT_CONNECTION) -> ConnectionProfile:
        with self._lock:
            cached = self._resolved.get(name)
            if cached is not None:
                return cached
            runtime = self._runtime.get(name)
            if runtime is not None:
                return runtime

            raw = self._configured(name)
            if raw is None:
                raise ConnectionNotFoundError(name)
            profile = self._build_profile(name, raw)
            self._resolved[name] = profile
            logger.debug("Resolved connection %s -> %s", name, profile.server_url)
            return profile

    def set_active(self, name: str) -> ConnectionRegistry:
        self.resolve(name)
        with self._lock:
            self._active = name
        return self

    def active_profile(self) -> ConnectionProfile:
        return self.resolve(self._active)

    def add_runtime(self, name: str, fields: Mapping[str, Any]) -> ConnectionRegistry:
        """Register or replace a connection outside of static configuration."""
        profile = self._build_profile(name, fields)
        with self._lock:
            self._runtime[name] = profile
        return self

    def remove(self, name: str) -> ConnectionRegistry:
        with self._lock:
            self._runtime.pop(name, None)
            if self._active == name:
                self._active = DEFAULT_CONNECTION
        return self

    def has(self, name: str) -> bool:
        with self._lock:
            if name in self._resolved or name in self._runtime:
                return True
        return self._configured(name) is not None

    def list_available(self) -> set[str]:
        with self._lock:
            names = set(self._settings.connections) | set(self._runtime) | set(self._resolved)
        if self._legacy() is not None:
            names.add(DEFAULT_CONNECTION)
        return names

    def purge(self) -> None:
        """Drop every cached and runtime profile, then re-resolve ``default``."""
        with self._lock:
            self._resolved.clear()
            self._runtime.clear()
            self._active = DEFAULT_CONNECTION
            self._warm_default()

    def _warm_default(self) -> None:
        try:
            self.resolve(DEFAULT_CONNECTION)
        except ConnectionNotFoundError:
            logger.debug("No default connection configured")
        except ConfigurationError as exc:
            logger.warning("Default connection is misconfigured: %s", exc)

    def _legacy(self) -> dict[str, Any] | None:
        settings = self._settings
        if settings.server_url is None and settings.api_key is None:
            return None
        return {"server_url": settings.server_url, "api_key": settings.api_key}

    def _configured(self, name: str) -> Mapping[str, Any] | None:
        if name == DEFAULT_CONNECTION:
            legacy = self._legacy()
            if legacy is not None:
                return legacy
        return self._settings.connections.get(name)

    def _build_profile(self, name: str, raw: Mapping[str, Any]) -> ConnectionProfile:
        server_url = raw.get("server_url")
        api_key = raw.get("api_key")
        if not server_url:
            raise ConfigurationError(
                f"Evolution API connection [{name}] is missing 'server_url'.",
                code="MISSING_SERVER_URL",
                connection_name=name,
            )
        if not api_key:
            raise ConfigurationError(
                f"Evolution API connection [{name}] is missing 'api_key'.",
                code="MISSING_API_KEY",
                connection_name=name,
            )
        if not isinstance(server_url, str) or not _is_absolute_url(server_url):
            raise ConfigurationError(
                f"Evolution API connection [{name}] has an invalid 'server_url'.",
                code="INVALID_SERVER_URL",
                connection_name=name,
            )
        return ConnectionProfile(
            name=name,
            server_url=server_url.rstrip("/"),
            api_key=str(api_key),
            http=http_options_from(raw.get("http"), self._settings.http),
            retry=retry_options_from(raw.get("retry"), self._settings.retry),
        )


def _is_absolute_url(value: str) -> bool:
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL:
        return False
    return url.scheme in ("http", "https") and bool(url.host)
