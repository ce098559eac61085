"""
Configuration for the offline mutation queue and sync engine.

Values come from `.streamlit/secrets.toml` (the same file the Supabase
client reads) and can be overridden from the environment:

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [offline]
    db_path = "local_data/sitecore_offline.db"
    retry_backoff_base = 2.0
"""

from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import toml

from site_core.errors import ConfigurationError
from site_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"
DEFAULT_DB_PATH = Path("local_data") / "sitecore_offline.db"
DEFAULT_STORAGE_KEY = "offline_operations"

ENV_OVERRIDES = {
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_KEY": "supabase_key",
    "SITECORE_OFFLINE_DB": "db_path",
}


@dataclass(frozen=True)
class OfflineSyncConfig:
    """Settings for local persistence, connectivity checks and replay."""

    # ==================== LOCAL STORAGE ====================
    db_path: Path = DEFAULT_DB_PATH
    storage_key: str = DEFAULT_STORAGE_KEY

    # ==================== REMOTE STORE ====================
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    remote_timeout: float = 10.0  # Seconds per PostgREST request

    # ==================== CONNECTIVITY ====================
    monitor_connection: bool = True
    check_interval_online: float = 30.0
    check_interval_offline: float = 10.0
    connection_timeout: float = 5.0

    # ==================== RETRY ====================
    # 0 keeps retry-on-every-pass; > 0 enables exponential backoff per entry
    retry_backoff_base: float = 0.0
    retry_backoff_max: float = 300.0

    @property
    def has_remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def validate(self) -> OfflineSyncConfig:
        if not self.storage_key:
            raise ConfigurationError("storage_key must not be empty", config_key="storage_key")
        for name in ("remote_timeout", "check_interval_online", "check_interval_offline", "connection_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", config_key=name, expected_type="float > 0")
        if self.retry_backoff_base < 0:
            raise ConfigurationError(
                "retry_backoff_base must not be negative",
                config_key="retry_backoff_base",
                expected_type="float >= 0",
            )
        if self.retry_backoff_max < 0:
            raise ConfigurationError(
                "retry_backoff_max must not be negative",
                config_key="retry_backoff_max",
                expected_type="float >= 0",
            )
        return self


def _coerce(name: str, value: Any) -> Any:
    """Convert raw TOML/env values to the dataclass field types."""
    if name == "db_path":
        return Path(value)
    if name in ("storage_key", "supabase_url", "supabase_key"):
        return str(value)
    if name == "monitor_connection":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid value for {name}: {value!r}", config_key=name, expected_type="float")


def _read_secrets(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return toml.load(path)
    except (toml.TomlDecodeError, OSError) as e:
        raise ConfigurationError(f"Could not read {path}: {e}", config_key="secrets_path")


def load_config(
    secrets_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> OfflineSyncConfig:
    """
    Build the offline sync configuration.

    Precedence (lowest to highest): dataclass defaults, secrets.toml,
    environment variables, keyword overrides.
    """
    secrets = _read_secrets(Path(secrets_path) if secrets_path else DEFAULT_SECRETS_PATH)
    environ = os.environ if env is None else env
    known = {f.name for f in fields(OfflineSyncConfig)}

    values: Dict[str, Any] = {}

    supabase = secrets.get("supabase", {})
    if supabase.get("url"):
        values["supabase_url"] = supabase["url"]
    if supabase.get("key"):
        values["supabase_key"] = supabase["key"]

    for name, value in secrets.get("offline", {}).items():
        if name not in known:
            logger.warning(f"Ignoring unknown [offline] setting: {name}")
            continue
        values[name] = value

    for env_name, name in ENV_OVERRIDES.items():
        if environ.get(env_name):
            values[name] = environ[env_name]

    for name, value in overrides.items():
        if name not in known:
            raise ConfigurationError(f"Unknown setting: {name}", config_key=name)
        if value is not None:
            values[name] = value

    config = replace(OfflineSyncConfig(), **{k: _coerce(k, v) for k, v in values.items()})
    return config.validate()
