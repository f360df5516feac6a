"""
Warranty Tracker configuration.

Settings are layered, later layers winning:
  1. hardcoded defaults (the service starts without any file)
  2. config/settings.toml
  3. WT_* environment variables
  4. explicit overrides passed by the caller (tests, the launcher)

Usage:
    from core.config import get_config

    config = get_config()
    port = config.server.port               # dot-access
    days = config.status.threshold_days
"""

import copy
import logging
import os
import threading
import tomllib
from pathlib import Path
from typing import Any

logger = logging.getLogger("tracker.config")

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "settings.toml"

_DEFAULTS: dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 5000,
        "log_level": "info",
    },
    "database": {
        "db_path": "data/warranty_tracker.db",
    },
    "status": {
        "threshold_days": 30,
    },
    "api": {
        "api_key": "",
        "default_page_size": 10,
        "max_page_size": 100,
    },
    "export": {
        "date_format": "%m/%d/%Y",
    },
    "sweep": {
        "enabled": True,
        "run_at_time": "08:00",
        "lookahead_days": 7,
        "check_interval": 60,
    },
    "email": {
        "enabled": False,
        "smtp_host": "smtp.gmail.com",
        "smtp_port": 587,
        "smtp_user": "",
        "smtp_password": "",
        "from_address": "noreply@warrantytracker.com",
        "use_tls": True,
        "app_url": "http://localhost:5173",
    },
}


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes", "on")


# env var → (section, key, cast)
_ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "WT_SERVER_HOST":      ("server", "host", str),
    "WT_SERVER_PORT":      ("server", "port", int),
    "WT_SERVER_LOG_LEVEL": ("server", "log_level", str),
    "WT_DB_PATH":          ("database", "db_path", str),
    "WT_STATUS_THRESHOLD": ("status", "threshold_days", int),
    "WT_API_KEY":          ("api", "api_key", str),
    "WT_SWEEP_ENABLED":    ("sweep", "enabled", _as_bool),
    "WT_SWEEP_RUN_AT":     ("sweep", "run_at_time", str),
    "WT_EMAIL_ENABLED":    ("email", "enabled", _as_bool),
    "WT_SMTP_HOST":        ("email", "smtp_host", str),
    "WT_SMTP_PORT":        ("email", "smtp_port", int),
    "WT_SMTP_USER":        ("email", "smtp_user", str),
    "WT_SMTP_PASSWORD":    ("email", "smtp_password", str),
    "WT_APP_URL":          ("email", "app_url", str),
}


class ConfigSection:
    """Read-only attribute view over a settings dict.

        section = ConfigSection({"port": 5000, "nested": {"key": "val"}})
        section.port        # 5000
        section.nested.key  # "val"
    """

    def __init__(self, data: dict[str, Any]):
        self._data = data

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            value = self._data[name]
        except KeyError:
            raise AttributeError(
                f"Config has no key '{name}'. Available: {sorted(self._data)}"
            ) from None
        return ConfigSection(value) if isinstance(value, dict) else value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class TrackerConfig(ConfigSection):
    """The full, layered settings tree.

    Args:
        config_path: settings.toml to read, defaults to config/settings.toml
                     in the project root. A missing or unreadable file only
                     logs a warning.
        overrides:   Nested dict merged last.
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        overrides: dict[str, Any] | None = None,
    ):
        self.config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
        data = copy.deepcopy(_DEFAULTS)
        _merge(data, _read_toml(self.config_path))
        _apply_env(data)
        _merge(data, copy.deepcopy(overrides or {}))
        super().__init__(data)


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found at %s, using fallback defaults", path)
        return {}
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Failed to read %s: %s, using fallback defaults", path, e)
        return {}
    logger.info("Configuration loaded from %s", path)
    return data


def _apply_env(data: dict[str, Any]):
    for env_var, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if raw is None:
            continue
        try:
            data.setdefault(section, {})[key] = cast(raw)
        except (ValueError, TypeError) as e:
            logger.warning("Invalid env override %s=%s: %s", env_var, raw, e)
            continue
        logger.info("Env override: %s", env_var)


def _merge(base: dict, override: dict):
    """Recursive in-place merge; nested tables merge key by key."""
    for key, value in override.items():
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            _merge(base[key], value)
        else:
            base[key] = value


_instance: TrackerConfig | None = None
_instance_lock = threading.Lock()


def get_config(config_path: str | Path | None = None) -> TrackerConfig:
    """Process-wide config. config_path only matters on the first call."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = TrackerConfig(config_path=config_path)
        return _instance
