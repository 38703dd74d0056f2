"""Tests for the named connection registry."""

from __future__ import annotations

import pytest

from evolution_api.client.connections import DEFAULT_CONNECTION, ConnectionRegistry
from evolution_api.config import load_settings
from evolution_api.errors import ConfigurationError, ConnectionNotFoundError
from tests.conftest import API_KEY, SERVER_URL, make_registry


class TestResolve:
    def test_legacy_flat_config_is_default(self) -> None:
        profile = make_registry().resolve()
        assert profile.name == DEFAULT_CONNECTION
        assert profile.server_url == SERVER_URL
        assert profile.api_key == API_KEY

    def test_named_connection(self) -> None:
        registry = make_registry(connections={
            "tenant_a": {"server_url": "https://a.example.com/", "api_key": "key-a"},
        })
        profile = registry.resolve("tenant_a")
        assert profile.server_url == "https://a.example.com"
        assert profile.api_key == "key-a"

    def test_unknown_connection(self) -> None:
        with pytest.raises(ConnectionNotFoundError) as exc_info:
            make_registry().resolve("nope")
        assert exc_info.value.connection_name == "nope"

    def test_resolution_is_cached(self) -> None:
        registry = make_registry()
        assert registry.resolve() is registry.resolve()

    def test_per_connection_overlays(self) -> None:
        registry = make_registry(
            http={"timeout": 20},
            connections={
                "slow": {
                    "server_url": "http://slow.test",
                    "api_key": "k",
                    "http": {"connect_timeout": 4},
                    "retry": {"max_attempts": 7},
                },
            },
        )
        profile = registry.resolve("slow")
        assert profile.http.timeout_ms == 20_000
        assert profile.http.connect_timeout_ms == 4000
        assert profile.retry.max_attempts == 7


class TestValidation:
    @pytest.mark.parametrize(
        ("fields", "code"),
        [
            ({"api_key": "k"}, "MISSING_SERVER_URL"),
            ({"server_url": "http://x.test"}, "MISSING_API_KEY"),
            ({"server_url": "", "api_key": "k"}, "MISSING_SERVER_URL"),
            ({"server_url": "not a url", "api_key": "k"}, "INVALID_SERVER_URL"),
            ({"server_url": "ftp://x.test", "api_key": "k"}, "INVALID_SERVER_URL"),
        ],
    )
    def test_invalid_profiles(self, fields: dict[str, str], code: str) -> None:
        registry = ConnectionRegistry(load_settings({"connections": {"bad": fields}}))
        with pytest.raises(ConfigurationError) as exc_info:
            registry.resolve("bad")
        assert exc_info.value.code == code
        assert exc_info.value.connection_name == "bad"

    def test_partial_legacy_config_reports_missing_field(self) -> None:
        registry = ConnectionRegistry(load_settings({"server_url": "http://gw.test"}))
        with pytest.raises(ConfigurationError) as exc_info:
            registry.resolve()
        assert exc_info.value.code == "MISSING_API_KEY"

    def test_misconfigured_default_does_not_break_construction(self) -> None:
        registry = ConnectionRegistry(load_settings({"api_key": "k"}))
        assert registry.active_name == DEFAULT_CONNECTION

    def test_empty_settings_have_no_default(self) -> None:
        registry = ConnectionRegistry()
        assert registry.has(DEFAULT_CONNECTION) is False
        with pytest.raises(ConnectionNotFoundError):
            registry.resolve()


class TestRuntimeConnections:
    def test_add_and_resolve(self) -> None:
        registry = make_registry().add_runtime(
            "tenant_b", {"server_url": "https://b.test", "api_key": "key-b"},
        )
        assert registry.resolve("tenant_b").api_key == "key-b"
        assert registry.has("tenant_b")
        assert "tenant_b" in registry.list_available()

    def test_add_validates_fields(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            make_registry().add_runtime("tenant_b", {"server_url": "https://b.test"})
        assert exc_info.value.code == "MISSING_API_KEY"

    def test_resolved_profile_wins_over_later_runtime(self) -> None:
        registry = make_registry()
        registry.add_runtime("default", {"server_url": "https://other.test", "api_key": "x"})
        assert registry.resolve().server_url == SERVER_URL

    def test_remove_resets_active(self) -> None:
        registry = make_registry().add_runtime(
            "tenant_b", {"server_url": "https://b.test", "api_key": "key-b"},
        )
        registry.set_active("tenant_b")
        assert registry.active_profile().name == "tenant_b"
        registry.remove("tenant_b")
        assert registry.active_name == DEFAULT_CONNECTION
        assert registry.has("tenant_b") is False

    def test_purge_drops_runtime_and_rewarms_default(self) -> None:
        registry = make_registry().add_runtime(
            "tenant_b", {"server_url": "https://b.test", "api_key": "key-b"},
        )
        registry.purge()
        assert registry.list_available() == {DEFAULT_CONNECTION}
        assert registry.resolve().server_url == SERVER_URL


class TestActiveConnection:
    def test_set_active_requires_known_connection(self) -> None:
        registry = make_registry()
        with pytest.raises(ConnectionNotFoundError):
            registry.set_active("ghost")
        assert registry.active_name == DEFAULT_CONNECTION

    def test_list_available_includes_configured(self) -> None:
        registry = make_registry(connections={"t1": {"server_url": "http://t1", "api_key": "k"}})
        assert registry.list_available() == {DEFAULT_CONNECTION, "t1"}
