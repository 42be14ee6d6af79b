"""Shared fixtures for the openclaw-desktop test suite.

Every test gets its own data directory through ``OPENCLAW_DESKTOP_DATA_DIR``
so nothing ever touches the real ``~/.openclaw-desktop``.
"""

import pytest

from openclaw_desktop.audit import AuditLog
from openclaw_desktop.state.store import StateStore

_ENV_VARS = (
    "OPENCLAW_DESKTOP_DATA_DIR",
    "OPENCLAW_DESKTOP_CONFIG",
    "OPENCLAW_GATEWAY_TIMEOUT",
    "OPENCLAW_DESKTOP_LOG_LEVEL",
    "LOCALAPPDATA",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENCLAW_DESKTOP_DATA_DIR", str(tmp_path / "default-data"))


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def store(data_dir):
    return StateStore(data_dir)


@pytest.fixture
def audit(data_dir):
    return AuditLog(data_dir)
