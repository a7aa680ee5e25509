from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv
from platformdirs import user_data_dir

APP_NAME = "billing-core"
APP_AUTHOR = "billing"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ClientConfig:
    env_name: str
    api_base_url: str
    api_key: str | None = None
    connect_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 15.0
    retries: int = 3
    retry_backoff_seconds: float = 0.3
    max_connections: int = 20
    verify_ssl: bool = True
    data_dir: str | None = None
    sync_interval_seconds: float = 30.0
    role_fail_closed: bool = False
    require_parent_owner: bool = False
    telemetry_enabled: bool = False

    @property
    def normalized_env(self) -> str:
        return self.env_name.lower().strip()

    def resolved_data_dir(self) -> Path:
        base = Path(self.data_dir) if self.data_dir else Path(user_data_dir(APP_NAME, APP_AUTHOR))
        return base / self.normalized_env

    def cache_path(self, tenant_id: str) -> Path:
        """One SQLite file per tenant keeps cached rows scoped to the active tenant."""
        safe_tenant = re.sub(r"[^A-Za-z0-9_.-]", "_", tenant_id)
        return self.resolved_data_dir() / f"cache-{safe_tenant}.sqlite3"


def _require(values: dict[str, str | None], required: Iterable[str]) -> None:
    missing = [key for key in required if not values.get(key)]
    if missing:
        raise ConfigError(f"Missing required config values: {', '.join(missing)}")


def _coerce_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _read_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: expected a number, got {raw!r}") from exc


def _read_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: expected an integer, got {raw!r}") from exc


def _validate(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def load_config(env_file: str | None = None) -> ClientConfig:
    """Load config from environment with optional .env override."""
    load_dotenv(env_file)

    env_name = (os.getenv("BILLING_ENV") or "dev").strip()
    env_key = env_name.upper()

    api_base_url = (
        (os.getenv(f"BILLING_API_BASE_URL_{env_key}") or "").strip()
        or (os.getenv("BILLING_API_BASE_URL") or "").strip()
    )
    api_key = (os.getenv("BILLING_API_KEY") or "").strip() or None

    timeout_seconds = _read_float("BILLING_TIMEOUT_SECONDS", "10")
    _validate(
        timeout_seconds > 0,
        f"Invalid BILLING_TIMEOUT_SECONDS: expected > 0, got {timeout_seconds}",
    )

    connect_timeout_seconds = _read_float(
        "BILLING_CONNECT_TIMEOUT_SECONDS", str(min(timeout_seconds, 5.0))
    )
    _validate(
        connect_timeout_seconds > 0,
        (
            "Invalid BILLING_CONNECT_TIMEOUT_SECONDS: "
            f"expected > 0, got {connect_timeout_seconds}"
        ),
    )

    read_timeout_seconds = _read_float(
        "BILLING_READ_TIMEOUT_SECONDS",
        str(max(timeout_seconds, connect_timeout_seconds)),
    )
    _validate(
        read_timeout_seconds > 0,
        f"Invalid BILLING_READ_TIMEOUT_SECONDS: expected > 0, got {read_timeout_seconds}",
    )

    retries = _read_int("BILLING_RETRIES", "3")
    _validate(retries >= 0, f"Invalid BILLING_RETRIES: expected >= 0, got {retries}")

    retry_backoff_seconds = _read_float("BILLING_RETRY_BACKOFF_SECONDS", "0.3")
    _validate(
        retry_backoff_seconds >= 0,
        (
            "Invalid BILLING_RETRY_BACKOFF_SECONDS: "
            f"expected >= 0, got {retry_backoff_seconds}"
        ),
    )

    max_connections = _read_int("BILLING_MAX_CONNECTIONS", "20")
    _validate(
        max_connections >= 1,
        f"Invalid BILLING_MAX_CONNECTIONS: expected >= 1, got {max_connections}",
    )

    sync_interval_seconds = _read_float("BILLING_SYNC_INTERVAL_SECONDS", "30")
    _validate(
        sync_interval_seconds > 0,
        f"Invalid BILLING_SYNC_INTERVAL_SECONDS: expected > 0, got {sync_interval_seconds}",
    )

    values = {"BILLING_API_BASE_URL": api_base_url}
    _require(values, ["BILLING_API_BASE_URL"])

    return ClientConfig(
        env_name=env_name,
        api_base_url=api_base_url.rstrip("/"),
        api_key=api_key,
        connect_timeout_seconds=connect_timeout_seconds,
        read_timeout_seconds=read_timeout_seconds,
        retries=retries,
        retry_backoff_seconds=retry_backoff_seconds,
        max_connections=max_connections,
        verify_ssl=_coerce_bool(os.getenv("BILLING_VERIFY_SSL"), True),
        data_dir=(os.getenv("BILLING_DATA_DIR") or "").strip() or None,
        sync_interval_seconds=sync_interval_seconds,
        role_fail_closed=_coerce_bool(os.getenv("BILLING_ROLE_FAIL_CLOSED"), False),
        require_parent_owner=_coerce_bool(os.getenv("BILLING_REQUIRE_PARENT_OWNER"), False),
        telemetry_enabled=_coerce_bool(os.getenv("BILLING_TELEMETRY_ENABLED"), False),
    )
