"""Tests for manager config loading and data-directory resolution."""

import textwrap
from pathlib import Path

import pytest

from openclaw_desktop.config import (
    DEFAULT_GMAIL_SCOPE,
    ManagerConfigError,
    load_manager_config,
)
from openclaw_desktop.paths import resolve_data_dir


def _write_config(tmp_path, content, name="manager.yaml"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(content))
    return path


# =============================================================================
# Data directory
# =============================================================================

class TestResolveDataDir:

    def test_env_override_wins(self, tmp_path):
        env = {
            "OPENCLAW_DESKTOP_DATA_DIR": str(tmp_path / "custom"),
            "LOCALAPPDATA": str(tmp_path / "appdata"),
        }
        assert resolve_data_dir(env) == tmp_path / "custom"

    def test_local_app_data(self, tmp_path):
        env = {"LOCALAPPDATA": str(tmp_path / "appdata")}
        assert resolve_data_dir(env) == tmp_path / "appdata" / "openclaw-desktop"

    def test_home_fallback(self):
        assert resolve_data_dir({}) == Path.home() / ".openclaw-desktop"


# =============================================================================
# load_manager_config
# =============================================================================

class TestLoadManagerConfig:

    def test_defaults_without_file(self, tmp_path):
        env = {"OPENCLAW_DESKTOP_DATA_DIR": str(tmp_path)}
        config = load_manager_config(environ=env)
        assert config.data_dir == tmp_path
        assert config.gateway_command == ["openclaw", "gateway"]
        assert config.gateway_timeout == 60.0
        assert config.oauth_pending_ttl == 600.0
        assert config.gmail_scope == DEFAULT_GMAIL_SCOPE
        assert config.quarantine_invalid_state is True
        assert config.log_level == "WARNING"

    def test_full_file(self, tmp_path):
        path = _write_config(tmp_path, f"""\
            manager:
              data_dir: {tmp_path / "elsewhere"}
              gateway_command: ["/opt/openclaw/bin/openclaw", "gateway"]
              gateway_timeout: 15
              oauth_pending_ttl: 120
              audit_tail_max_bytes: 4096
              quarantine_invalid_state: false
              log_level: debug
        """)
        config = load_manager_config(path, environ={})
        assert config.data_dir == tmp_path / "elsewhere"
        assert config.gateway_command == ["/opt/openclaw/bin/openclaw", "gateway"]
        assert config.gateway_timeout == 15.0
        assert config.oauth_pending_ttl == 120.0
        assert config.audit_tail_max_bytes == 4096
        assert config.quarantine_invalid_state is False
        assert config.log_level == "DEBUG"

    def test_string_gateway_command_is_split(self, tmp_path):
        path = _write_config(tmp_path, """\
            manager:
              gateway_command: openclaw gateway --profile work
        """)
        config = load_manager_config(path, environ={})
        assert config.gateway_command == ["openclaw", "gateway", "--profile", "work"]

    def test_found_in_data_dir(self, tmp_path):
        _write_config(tmp_path, """\
            manager:
              gateway_timeout: 7
        """)
        env = {"OPENCLAW_DESKTOP_DATA_DIR": str(tmp_path)}
        assert load_manager_config(environ=env).gateway_timeout == 7.0

    def test_config_path_env(self, tmp_path):
        path = _write_config(tmp_path, """\
            manager:
              oauth_pending_ttl: 30
        """, name="custom.yaml")
        env = {"OPENCLAW_DESKTOP_CONFIG": str(path)}
        assert load_manager_config(environ=env).oauth_pending_ttl == 30.0

    def test_env_overrides_file(self, tmp_path):
        path = _write_config(tmp_path, """\
            manager:
              gateway_timeout: 15
              log_level: INFO
        """)
        env = {
            "OPENCLAW_GATEWAY_TIMEOUT": "3",
            "OPENCLAW_DESKTOP_LOG_LEVEL": "error",
        }
        config = load_manager_config(path, environ=env)
        assert config.gateway_timeout == 3.0
        assert config.log_level == "ERROR"

    def test_empty_file_is_defaults(self, tmp_path):
        path = _write_config(tmp_path, "")
        assert load_manager_config(path, environ={}).gateway_timeout == 60.0


class TestManagerConfigErrors:

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ManagerConfigError, match="not found"):
            load_manager_config(tmp_path / "nope.yaml", environ={})

    def test_missing_env_file(self, tmp_path):
        env = {"OPENCLAW_DESKTOP_CONFIG": str(tmp_path / "nope.yaml")}
        with pytest.raises(ManagerConfigError, match="not found"):
            load_manager_config(environ=env)

    def test_invalid_yaml(self, tmp_path):
        path = _write_config(tmp_path, "manager: [unclosed\n")
        with pytest.raises(ManagerConfigError, match="Invalid YAML"):
            load_manager_config(path, environ={})

    def test_duplicate_keys(self, tmp_path):
        path = _write_config(tmp_path, """\
            manager:
              gateway_timeout: 5
              gateway_timeout: 500
        """)
        with pytest.raises(ManagerConfigError, match="Duplicate YAML key"):
            load_manager_config(path, environ={})

    def test_not_a_mapping(self, tmp_path):
        path = _write_config(tmp_path, "- a\n- b\n")
        with pytest.raises(ManagerConfigError, match="mapping"):
            load_manager_config(path, environ={})

    def test_manager_section_not_a_mapping(self, tmp_path):
        path = _write_config(tmp_path, "manager: 5\n")
        with pytest.raises(ManagerConfigError, match="'manager' must be a mapping"):
            load_manager_config(path, environ={})

    @pytest.mark.parametrize("value", ["0", "-1", "soon"])
    def test_bad_timeout(self, tmp_path, value):
        path = _write_config(tmp_path, f"manager:\n  gateway_timeout: {value}\n")
        with pytest.raises(ManagerConfigError, match="gateway_timeout"):
            load_manager_config(path, environ={})

    def test_bad_timeout_env(self, tmp_path):
        with pytest.raises(ManagerConfigError, match="OPENCLAW_GATEWAY_TIMEOUT"):
            load_manager_config(
                environ={
                    "OPENCLAW_DESKTOP_DATA_DIR": str(tmp_path),
                    "OPENCLAW_GATEWAY_TIMEOUT": "-5",
                },
            )

    def test_bad_log_level(self, tmp_path):
        path = _write_config(tmp_path, "manager:\n  log_level: LOUD\n")
        with pytest.raises(ManagerConfigError, match="Invalid log_level"):
            load_manager_config(path, environ={})

    def test_empty_gateway_command(self, tmp_path):
        path = _write_config(tmp_path, "manager:\n  gateway_command: []\n")
        with pytest.raises(ManagerConfigError, match="must not be empty"):
            load_manager_config(path, environ={})

    def test_gateway_command_wrong_type(self, tmp_path):
        path = _write_config(tmp_path, "manager:\n  gateway_command: 5\n")
        with pytest.raises(ManagerConfigError, match="string or a list"):
            load_manager_config(path, environ={})

    @pytest.mark.parametrize("value", ['"false"', "'no'", "0", "null"])
    def test_quarantine_flag_must_be_boolean(self, tmp_path, value):
        path = _write_config(
            tmp_path, f"manager:\n  quarantine_invalid_state: {value}\n",
        )
        with pytest.raises(ManagerConfigError, match="quarantine_invalid_state"):
            load_manager_config(path, environ={})

    def test_non_utf8_file(self, tmp_path):
        path = tmp_path / "manager.yaml"
        path.write_bytes(b"manager:\n  log_level: \xff\n")
        with pytest.raises(ManagerConfigError, match="Invalid YAML"):
            load_manager_config(path, environ={})
