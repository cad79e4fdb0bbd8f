"""Configuration loading for rolodex.

Settings come from an optional ``rolodex.toml`` file and fall back to
environment variables.  String values in the TOML file may reference the
environment with ``${VAR_NAME}``; unresolved references are an error.

Example::

    [rolodex]
    database_url = "${DATABASE_URL}"
    app_url = "https://crm.example.com"
    http_timeout_seconds = 20
    oauth_state_secret = "${OAUTH_STATE_SECRET}"

    [rolodex.google]
    client_id = "${GOOGLE_CLIENT_ID}"
    client_secret = "${GOOGLE_CLIENT_SECRET}"

    [rolodex.microsoft]
    client_id = "${MICROSOFT_CLIENT_ID}"
    client_secret = "${MICROSOFT_CLIENT_SECRET}"
    tenant_id = "common"

    [rolodex.indexing]
    url = "http://indexer:8080/api/entities/touched"

    [rolodex.scheduler]
    cron = "*/5 * * * *"

    [rolodex.logging]
    level = "INFO"
    format = "json"
"""

from __future__ import annotations

import os
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from croniter import croniter

from rolodex.errors import RolodexError

# Pattern matching ${VAR_NAME}
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_TIME_OF_DAY_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")
_LOG_FORMATS = ("text", "json")

DEFAULT_SCHEDULER_CRON = "*/5 * * * *"
DEFAULT_SYNC_TIME_LOCAL = "02:00"
DEFAULT_MICROSOFT_TENANT = "common"


class ConfigError(RolodexError):
    """Raised when rolodex configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [rolodex.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class GoogleConfig:
    """OAuth client for the Google connectors."""

    client_id: str | None = None
    client_secret: str | None = None


@dataclass
class MicrosoftConfig:
    """OAuth client for the Microsoft Graph connectors."""

    client_id: str | None = None
    client_secret: str | None = None
    tenant_id: str = DEFAULT_MICROSOFT_TENANT


@dataclass
class IndexingConfig:
    """Where entity-touched batches are delivered.  ``url=None`` disables delivery."""

    url: str | None = None
    timeout_seconds: float = 10.0


@dataclass
class SchedulerConfig:
    """Auto-sync scheduler cadence from [rolodex.scheduler] section."""

    cron: str = DEFAULT_SCHEDULER_CRON
    default_time_local: str = DEFAULT_SYNC_TIME_LOCAL


@dataclass
class RolodexConfig:
    """Parsed and validated rolodex configuration."""

    database_url: str | None = None
    app_url: str = "http://localhost:3000"
    http_timeout_seconds: float = 20.0
    encryption_key_env: str = "INTEGRATION_ENCRYPTION_KEY"
    oauth_state_secret: str | None = None
    google: GoogleConfig = field(default_factory=GoogleConfig)
    microsoft: MicrosoftConfig = field(default_factory=MicrosoftConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def redirect_uri(self, provider_family: str) -> str:
        """OAuth callback URL for ``google`` or ``microsoft``."""
        return f"{self.app_url.rstrip('/')}/api/integrations/{provider_family}/callback"


def resolve_env_vars(value: Any, environ: Mapping[str, str] | None = None) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    env = os.environ if environ is None else environ
    if isinstance(value, dict):
        return {k: resolve_env_vars(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item, env) for item in value]
    if isinstance(value, str):
        return _resolve_string(value, env)
    return value


def _resolve_string(s: str, environ: Mapping[str, str]) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = environ.get(var_name)
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


def _section(parent: dict[str, Any], key: str, path: str) -> dict[str, Any]:
    value = parent.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"{path} must be a TOML table")
    return value


def _optional_str(section: dict[str, Any], key: str, path: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{path}.{key} must be a string when set")
    return value.strip() or None


def _positive_number(section: dict[str, Any], key: str, path: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"{path}.{key} must be a number")
    if value <= 0:
        raise ConfigError(f"{path}.{key} must be positive, got {value}")
    return float(value)


def is_valid_time_of_day(value: str) -> bool:
    """Return True for ``HH:MM`` or ``HH:MM:SS`` wall-clock strings."""
    return bool(_TIME_OF_DAY_PATTERN.match(value))


def load_config(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> RolodexConfig:
    """Load configuration from *path* (optional) and the environment.

    Parameters
    ----------
    path:
        Path to a ``rolodex.toml`` file.  When ``None`` only environment
        variables are consulted.
    environ:
        Environment mapping; defaults to ``os.environ``.

    Raises
    ------
    ConfigError
        If the file is missing or not valid TOML, or a value is invalid.
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
        data = resolve_env_vars(data, env)

    root = _section(data, "rolodex", "rolodex")
    google = _section(root, "google", "rolodex.google")
    microsoft = _section(root, "microsoft", "rolodex.microsoft")
    indexing = _section(root, "indexing", "rolodex.indexing")
    scheduler = _section(root, "scheduler", "rolodex.scheduler")
    logging_section = _section(root, "logging", "rolodex.logging")

    log_format = str(logging_section.get("format", "text")).strip().lower()
    if log_format not in _LOG_FORMATS:
        raise ConfigError(
            f"rolodex.logging.format must be one of {', '.join(_LOG_FORMATS)}, got {log_format!r}"
        )

    cron = str(scheduler.get("cron", DEFAULT_SCHEDULER_CRON)).strip()
    if not croniter.is_valid(cron):
        raise ConfigError(f"rolodex.scheduler.cron is not a valid cron expression: {cron!r}")

    default_time = str(scheduler.get("default_time_local", DEFAULT_SYNC_TIME_LOCAL)).strip()
    if not is_valid_time_of_day(default_time):
        raise ConfigError(
            f"rolodex.scheduler.default_time_local must be HH:MM, got {default_time!r}"
        )

    return RolodexConfig(
        database_url=_optional_str(root, "database_url", "rolodex") or env.get("DATABASE_URL"),
        app_url=(
            _optional_str(root, "app_url", "rolodex")
            or env.get("APP_URL")
            or "http://localhost:3000"
        ),
        http_timeout_seconds=_positive_number(root, "http_timeout_seconds", "rolodex", 20.0),
        encryption_key_env=(
            _optional_str(root, "encryption_key_env", "rolodex") or "INTEGRATION_ENCRYPTION_KEY"
        ),
        oauth_state_secret=(
            _optional_str(root, "oauth_state_secret", "rolodex") or env.get("OAUTH_STATE_SECRET")
        ),
        google=GoogleConfig(
            client_id=(
                _optional_str(google, "client_id", "rolodex.google")
                or env.get("GOOGLE_CLIENT_ID")
            ),
            client_secret=(
                _optional_str(google, "client_secret", "rolodex.google")
                or env.get("GOOGLE_CLIENT_SECRET")
            ),
        ),
        microsoft=MicrosoftConfig(
            client_id=(
                _optional_str(microsoft, "client_id", "rolodex.microsoft")
                or env.get("MICROSOFT_CLIENT_ID")
            ),
            client_secret=(
                _optional_str(microsoft, "client_secret", "rolodex.microsoft")
                or env.get("MICROSOFT_CLIENT_SECRET")
            ),
            tenant_id=(
                _optional_str(microsoft, "tenant_id", "rolodex.microsoft")
                or env.get("MICROSOFT_TENANT_ID")
                or DEFAULT_MICROSOFT_TENANT
            ),
        ),
        indexing=IndexingConfig(
            url=_optional_str(indexing, "url", "rolodex.indexing") or env.get("INDEXING_URL"),
            timeout_seconds=_positive_number(indexing, "timeout_seconds", "rolodex.indexing", 10.0),
        ),
        scheduler=SchedulerConfig(cron=cron, default_time_local=default_time),
        logging=LoggingConfig(
            level=str(logging_section.get("level", "INFO")).upper(),
            format=log_format,
            log_root=_optional_str(logging_section, "log_root", "rolodex.logging"),
        ),
    )
