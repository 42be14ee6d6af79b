"""Manager YAML config loader and validator.

Every field has a default, so the file is optional.  It is looked up at
``$OPENCLAW_DESKTOP_CONFIG`` or ``<data_dir>/manager.yaml``.

Config shape::

    manager:
      data_dir: ~/.openclaw-desktop       # optional, overrides env resolution
      gateway_command: ["openclaw", "gateway"]
      gateway_timeout: 60
      oauth_pending_ttl: 600
      gmail_scope: https://www.googleapis.com/auth/gmail.readonly
      audit_tail_max_bytes: 262144
      quarantine_invalid_state: true
      log_level: WARNING

Environment overrides (applied after the file):
``OPENCLAW_GATEWAY_TIMEOUT``, ``OPENCLAW_DESKTOP_LOG_LEVEL``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .paths import MANAGER_CONFIG_FILE, resolve_data_dir
from .utils.safe_yaml import safe_yaml_load

logger = logging.getLogger("openclaw_desktop.config")

CONFIG_PATH_ENV = "OPENCLAW_DESKTOP_CONFIG"
GATEWAY_TIMEOUT_ENV = "OPENCLAW_GATEWAY_TIMEOUT"
LOG_LEVEL_ENV = "OPENCLAW_DESKTOP_LOG_LEVEL"

DEFAULT_GMAIL_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"

_VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class ManagerConfigError(Exception):
    """Raised when the manager config is invalid."""


@dataclass
class ManagerConfig:
    """Top-level manager configuration."""
    data_dir: Path = field(default_factory=resolve_data_dir)
    gateway_command: list[str] = field(
        default_factory=lambda: ["openclaw", "gateway"],
    )
    gateway_timeout: float = 60.0
    oauth_pending_ttl: float = 600.0
    gmail_scope: str = DEFAULT_GMAIL_SCOPE
    audit_tail_max_bytes: int = 256 * 1024
    quarantine_invalid_state: bool = True
    log_level: str = "WARNING"


def _positive_float(raw: Any, name: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise ManagerConfigError(
            f"{name} must be a number (got {raw!r})"
        ) from e
    if value <= 0:
        raise ManagerConfigError(f"{name} must be positive (got {value})")
    return value


def _log_level(raw: Any, name: str) -> str:
    level = str(raw).upper()
    if level not in _VALID_LOG_LEVELS:
        raise ManagerConfigError(
            f"Invalid {name}: '{raw}'. "
            f"Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    return level


def _find_config_file(env: Mapping[str, str]) -> Path | None:
    explicit = env.get(CONFIG_PATH_ENV)
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ManagerConfigError(f"Config file not found: {explicit}")
        return path
    candidate = resolve_data_dir(env) / MANAGER_CONFIG_FILE
    return candidate if candidate.is_file() else None


def load_manager_config(
    config_path: str | os.PathLike | None = None,
    environ: Mapping[str, str] | None = None,
) -> ManagerConfig:
    """Load the manager config, falling back to defaults.

    Args:
        config_path: Explicit YAML file.  When ``None`` the file is looked
            up via ``OPENCLAW_DESKTOP_CONFIG`` or the data directory, and a
            missing file means "all defaults".
        environ: Environment mapping (defaults to ``os.environ``).

    Raises:
        ManagerConfigError: If the file is not valid YAML, is not a
            mapping, or holds invalid values.
    """
    env = os.environ if environ is None else environ

    if config_path is not None:
        path: Path | None = Path(config_path).expanduser()
        if not path.is_file():
            raise ManagerConfigError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file(env)

    mgr_raw: dict[str, Any] = {}
    if path is not None:
        try:
            raw = safe_yaml_load(path.read_bytes())
        except (yaml.YAMLError, ValueError) as e:
            raise ManagerConfigError(
                f"Invalid YAML in config file: {e}"
            ) from e
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ManagerConfigError(
                "Config file must contain a YAML mapping (got "
                f"{type(raw).__name__})"
            )
        section = raw.get("manager", {})
        if section is None:
            section = {}
        if not isinstance(section, dict):
            raise ManagerConfigError("'manager' must be a mapping")
        mgr_raw = section
        logger.debug("Loaded manager config from %s", path)

    config = ManagerConfig(data_dir=resolve_data_dir(env))

    if mgr_raw.get("data_dir"):
        config.data_dir = Path(str(mgr_raw["data_dir"])).expanduser()

    command_raw = mgr_raw.get("gateway_command")
    if command_raw is not None:
        if isinstance(command_raw, str):
            command = command_raw.split()
        elif isinstance(command_raw, list):
            command = [str(part) for part in command_raw]
        else:
            raise ManagerConfigError(
                "gateway_command must be a string or a list of strings"
            )
        if not command:
            raise ManagerConfigError("gateway_command must not be empty")
        config.gateway_command = command

    if "gateway_timeout" in mgr_raw:
        config.gateway_timeout = _positive_float(
            mgr_raw["gateway_timeout"], "gateway_timeout",
        )
    if "oauth_pending_ttl" in mgr_raw:
        config.oauth_pending_ttl = _positive_float(
            mgr_raw["oauth_pending_ttl"], "oauth_pending_ttl",
        )
    if mgr_raw.get("gmail_scope"):
        config.gmail_scope = str(mgr_raw["gmail_scope"])
    if "audit_tail_max_bytes" in mgr_raw:
        config.audit_tail_max_bytes = int(_positive_float(
            mgr_raw["audit_tail_max_bytes"], "audit_tail_max_bytes",
        ))
    if "quarantine_invalid_state" in mgr_raw:
        value = mgr_raw["quarantine_invalid_state"]
        if not isinstance(value, bool):
            raise ManagerConfigError(
                f"quarantine_invalid_state must be true or false (got {value!r})"
            )
        config.quarantine_invalid_state = value
    if "log_level" in mgr_raw:
        config.log_level = _log_level(mgr_raw["log_level"], "log_level")

    # -- environment overrides --
    if env.get(GATEWAY_TIMEOUT_ENV):
        config.gateway_timeout = _positive_float(
            env[GATEWAY_TIMEOUT_ENV], GATEWAY_TIMEOUT_ENV,
        )
    if env.get(LOG_LEVEL_ENV):
        config.log_level = _log_level(env[LOG_LEVEL_ENV], LOG_LEVEL_ENV)

    return config
