"""Tests for the append-only audit journal."""

import json
from unittest.mock import patch

import pytest

from openclaw_desktop.audit import AUDIT_ACTORS, AUDIT_EVENT_TYPES, AuditLog


class TestAppend:

    @pytest.mark.asyncio
    async def test_append_writes_one_json_line(self, audit):
        event = await audit.append(
            "permissions.set", "desktop-ui", {"id": "telegram.send", "enabled": True},
        )

        lines = audit.file_path.read_text().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0]) == event
        assert event["type"] == "permissions.set"
        assert event["actor"] == "desktop-ui"
        assert event["ts"]

    @pytest.mark.asyncio
    async def test_explicit_timestamp(self, audit):
        event = await audit.append("gateway.start", "cli", ts="2026-01-01T00:00:00Z")
        assert event["ts"] == "2026-01-01T00:00:00Z"
        assert "details" not in event

    @pytest.mark.asyncio
    async def test_appends_accumulate(self, audit):
        for _ in range(3):
            await audit.append("gateway.start", "cli")
        assert len(audit.file_path.read_text().splitlines()) == 3

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, audit):
        with pytest.raises(ValueError, match="Unknown audit event type"):
            await audit.append("gateway.explode", "cli")
        assert not audit.file_path.exists()

    @pytest.mark.asyncio
    async def test_unknown_actor_rejected(self, audit):
        with pytest.raises(ValueError, match="Unknown audit actor"):
            await audit.append("gateway.start", "root")

    def test_closed_sets(self):
        assert "integrations.gmail.oauth.callback_failed" in AUDIT_EVENT_TYPES
        assert AUDIT_ACTORS == {"desktop-ui", "browser", "cli", "unknown"}


class TestSafeAppend:

    @pytest.mark.asyncio
    async def test_success(self, audit):
        assert await audit.safe_append("diagnostics.run", "desktop-ui") is True

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        audit = AuditLog(blocker)
        assert await audit.safe_append("diagnostics.run", "desktop-ui") is False

    @pytest.mark.asyncio
    async def test_invalid_type_is_swallowed(self, audit):
        assert await audit.safe_append("nope", "desktop-ui") is False


class TestReadRecent:

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, audit):
        recent = await audit.read_recent(10)
        assert recent.events == []
        assert recent.lines == []
        assert recent.truncated is False

    @pytest.mark.asyncio
    async def test_zero_limit_does_not_read(self, audit):
        await audit.append("gateway.start", "cli")
        with patch("openclaw_desktop.audit.tail_file_lines") as tail:
            recent = await audit.read_recent(0)
        tail.assert_not_called()
        assert recent.events == []

    @pytest.mark.asyncio
    async def test_returns_newest_events_in_order(self, audit):
        for i in range(5):
            await audit.append("permissions.set", "cli", {"n": i})

        recent = await audit.read_recent(2)

        assert [e["details"]["n"] for e in recent.events] == [3, 4]
        assert recent.truncated is True

    @pytest.mark.asyncio
    async def test_malformed_lines_are_skipped(self, audit, data_dir):
        await audit.append("gateway.start", "cli")
        with open(audit.file_path, "a", encoding="utf-8") as fh:
            fh.write("not json\n")
            fh.write('{"ts": 1, "type": "gateway.stop"}\n')
            fh.write('["a list"]\n')
            fh.write('{"ts": "x", "type": "t", "ts": "y"}\n')
        await audit.append("gateway.stop", "cli")

        recent = await audit.read_recent(100)

        assert [e["type"] for e in recent.events] == ["gateway.start", "gateway.stop"]
        assert len(recent.lines) == 6

    @pytest.mark.asyncio
    async def test_byte_window_limits_read(self, data_dir):
        audit = AuditLog(data_dir, tail_max_bytes=200)
        for i in range(20):
            await audit.append("permissions.set", "cli", {"n": i})

        recent = await audit.read_recent(1000)

        assert recent.truncated is True
        assert 0 < len(recent.events) < 20
        assert recent.events[-1]["details"]["n"] == 19
