"""Data-directory resolution and the file names kept inside it."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

DATA_DIR_ENV = "OPENCLAW_DESKTOP_DATA_DIR"
APP_DIR_NAME = "openclaw-desktop"

STATE_FILE = "state.json"
GENERATED_CONFIG_FILE = "openclaw.generated.json"
AUDIT_FILE = "audit.jsonl"
MANAGER_CONFIG_FILE = "manager.yaml"


def resolve_data_dir(environ: Mapping[str, str] | None = None) -> Path:
    """Return the directory holding state, audit and generated config.

    Priority: ``OPENCLAW_DESKTOP_DATA_DIR`` > ``%LOCALAPPDATA%\\openclaw-desktop``
    (Windows app-data convention) > ``~/.openclaw-desktop``.
    """
    env = os.environ if environ is None else environ
    override = env.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()
    local_app_data = env.get("LOCALAPPDATA")
    if local_app_data:
        return Path(local_app_data) / APP_DIR_NAME
    return Path.home() / f".{APP_DIR_NAME}"
