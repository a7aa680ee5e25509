from __future__ import annotations

import pytest

from billing_core.config import ClientConfig, ConfigError, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "BILLING_ENV",
        "BILLING_API_BASE_URL",
        "BILLING_API_BASE_URL_DEV",
        "BILLING_API_BASE_URL_STAGING",
        "BILLING_API_KEY",
        "BILLING_DATA_DIR",
        "BILLING_VERIFY_SSL",
        "BILLING_ROLE_FAIL_CLOSED",
        "BILLING_REQUIRE_PARENT_OWNER",
        "BILLING_TELEMETRY_ENABLED",
    ):
        monkeypatch.delenv(key, raising=False)


def test_load_config_requires_base_url() -> None:
    with pytest.raises(ConfigError):
        load_config()


def test_load_config_profile(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BILLING_ENV", "staging")
    monkeypatch.setenv("BILLING_API_BASE_URL_STAGING", "https://staging.example.com/")
    cfg = load_config()
    assert cfg.api_base_url == "https://staging.example.com"
    assert cfg.env_name == "staging"


def test_load_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BILLING_API_BASE_URL", "https://api.example.com")
    cfg = load_config()
    assert cfg.env_name == "dev"
    assert cfg.api_key is None
    assert cfg.verify_ssl is True
    assert cfg.role_fail_closed is False
    assert cfg.require_parent_owner is False
    assert cfg.telemetry_enabled is False


def test_load_config_policy_flags(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("BILLING_API_BASE_URL", "https://api.example.com")
    monkeypatch.setenv("BILLING_API_KEY", "anon-key")
    monkeypatch.setenv("BILLING_ROLE_FAIL_CLOSED", "true")
    monkeypatch.setenv("BILLING_REQUIRE_PARENT_OWNER", "1")
    monkeypatch.setenv("BILLING_TELEMETRY_ENABLED", "yes")
    monkeypatch.setenv("BILLING_DATA_DIR", str(tmp_path))
    cfg = load_config()
    assert cfg.api_key == "anon-key"
    assert cfg.role_fail_closed is True
    assert cfg.require_parent_owner is True
    assert cfg.telemetry_enabled is True
    assert cfg.resolved_data_dir() == tmp_path / "dev"


@pytest.mark.parametrize(
    ("key", "value", "snippet"),
    [
        ("BILLING_TIMEOUT_SECONDS", "0", "BILLING_TIMEOUT_SECONDS"),
        ("BILLING_CONNECT_TIMEOUT_SECONDS", "0", "BILLING_CONNECT_TIMEOUT_SECONDS"),
        ("BILLING_READ_TIMEOUT_SECONDS", "0", "BILLING_READ_TIMEOUT_SECONDS"),
        ("BILLING_RETRIES", "-1", "BILLING_RETRIES"),
        ("BILLING_RETRY_BACKOFF_SECONDS", "-0.1", "BILLING_RETRY_BACKOFF_SECONDS"),
        ("BILLING_MAX_CONNECTIONS", "0", "BILLING_MAX_CONNECTIONS"),
        ("BILLING_SYNC_INTERVAL_SECONDS", "0", "BILLING_SYNC_INTERVAL_SECONDS"),
    ],
)
def test_load_config_rejects_invalid_ranges(
    monkeypatch: pytest.MonkeyPatch,
    key: str,
    value: str,
    snippet: str,
) -> None:
    monkeypatch.setenv("BILLING_API_BASE_URL", "https://api.example.com")
    monkeypatch.setenv(key, value)

    with pytest.raises(ConfigError, match=snippet):
        load_config()


@pytest.mark.parametrize(
    "key",
    [
        "BILLING_TIMEOUT_SECONDS",
        "BILLING_CONNECT_TIMEOUT_SECONDS",
        "BILLING_READ_TIMEOUT_SECONDS",
        "BILLING_RETRIES",
        "BILLING_RETRY_BACKOFF_SECONDS",
        "BILLING_MAX_CONNECTIONS",
        "BILLING_SYNC_INTERVAL_SECONDS",
    ],
)
def test_load_config_rejects_invalid_types(monkeypatch: pytest.MonkeyPatch, key: str) -> None:
    monkeypatch.setenv("BILLING_API_BASE_URL", "https://api.example.com")
    monkeypatch.setenv(key, "abc")

    with pytest.raises(ConfigError, match=key):
        load_config()


def test_cache_path_is_scoped_per_tenant(tmp_path) -> None:
    cfg = ClientConfig(env_name="Prod", api_base_url="https://api.example.com", data_dir=str(tmp_path))

    first = cfg.cache_path("owner-1")
    second = cfg.cache_path("owner/../2")

    assert first != second
    assert first.parent == tmp_path / "prod"
    assert second.parent == first.parent
    assert second.name == "cache-owner_.._2.sqlite3"
