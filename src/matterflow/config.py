"""Calendar sync configuration loading and validation.

Reads ``calendar_sync.toml``, resolves ``${VAR}`` references against the
environment, validates every section, and returns a ``SyncServiceConfig``.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from matterflow.db import normalize_schema_name

CONFIG_PATH_ENV = "MATTERFLOW_SYNC_CONFIG"
DEFAULT_CONFIG_FILENAME = "calendar_sync.toml"

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class DatabaseConfig:
    name: str = "matterflow"
    schema: str | None = None


@dataclass
class GoogleConfig:
    """OAuth client registration used to exchange stored refresh tokens."""

    client_id: str = ""
    client_secret: str = ""
    default_calendar_id: str = "primary"


@dataclass
class SyncConfig:
    """Reconciliation tuning from the [sync] section.

    ``push_batch_size`` bounds how many outstanding local rows one run pushes;
    the rest wait for the next scheduled run.
    """

    account_id: str = "practice"
    push_batch_size: int = 50
    full_sync_window_days: int = 30
    request_timeout_seconds: float = 30.0
    delete_orphaned_remote_events: bool = False


@dataclass
class TriggerConfig:
    cron_secret: str | None = None


@dataclass
class SyncServiceConfig:
    """Parsed and validated service configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    trigger: TriggerConfig = field(default_factory=TriggerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _positive_int(section: dict[str, Any], key: str, default: int, label: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise ConfigError(f"Invalid {label}.{key}: {raw!r}. Must be a positive integer.")
    return raw


def _parse_database(section: dict[str, Any]) -> DatabaseConfig:
    name = str(section.get("name", "matterflow")).strip()
    if not name:
        raise ConfigError("database.name must be a non-empty string")
    schema_raw = section.get("schema")
    if schema_raw is not None and not isinstance(schema_raw, str):
        raise ConfigError("database.schema must be a string when set")
    try:
        schema = normalize_schema_name(schema_raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid database.schema: {exc}") from exc
    return DatabaseConfig(name=name, schema=schema)


def _parse_google(section: dict[str, Any]) -> GoogleConfig:
    calendar_id = str(section.get("default_calendar_id", "primary")).strip()
    if not calendar_id:
        raise ConfigError("google.default_calendar_id must be a non-empty string")
    return GoogleConfig(
        client_id=str(section.get("client_id", "")).strip(),
        client_secret=str(section.get("client_secret", "")).strip(),
        default_calendar_id=calendar_id,
    )


def _parse_sync(section: dict[str, Any]) -> SyncConfig:
    account_id = str(section.get("account_id", "practice")).strip()
    if not account_id:
        raise ConfigError("sync.account_id must be a non-empty string")

    raw_timeout = section.get("request_timeout_seconds", 30.0)
    if isinstance(raw_timeout, bool) or not isinstance(raw_timeout, int | float):
        raise ConfigError(f"Invalid sync.request_timeout_seconds: {raw_timeout!r}")
    if raw_timeout <= 0:
        raise ConfigError(
            f"Invalid sync.request_timeout_seconds: {raw_timeout!r}. Must be positive."
        )

    delete_orphans = section.get("delete_orphaned_remote_events", False)
    if not isinstance(delete_orphans, bool):
        raise ConfigError("sync.delete_orphaned_remote_events must be a boolean")

    return SyncConfig(
        account_id=account_id,
        push_batch_size=_positive_int(section, "push_batch_size", 50, "sync"),
        full_sync_window_days=_positive_int(section, "full_sync_window_days", 30, "sync"),
        request_timeout_seconds=float(raw_timeout),
        delete_orphaned_remote_events=delete_orphans,
    )


def _parse_trigger(section: dict[str, Any]) -> TriggerConfig:
    secret = section.get("cron_secret")
    if secret is not None:
        secret = str(secret).strip() or None
    return TriggerConfig(cron_secret=secret)


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    return LoggingConfig(level=log_level, format=log_format, log_root=section.get("log_root"))


def parse_config(data: dict[str, Any]) -> SyncServiceConfig:
    """Validate an already-decoded TOML document."""
    data = resolve_env_vars(data)
    return SyncServiceConfig(
        database=_parse_database(_section(data, "database")),
        google=_parse_google(_section(data, "google")),
        sync=_parse_sync(_section(data, "sync")),
        trigger=_parse_trigger(_section(data, "trigger")),
        logging=_parse_logging(_section(data, "logging")),
    )


def load_config(path: Path) -> SyncServiceConfig:
    """Load and validate the TOML file at *path*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or fails validation.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    return parse_config(data)


def config_path_from_env() -> Path:
    """Resolve the config file location from ``MATTERFLOW_SYNC_CONFIG``."""
    return Path(os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_FILENAME))
