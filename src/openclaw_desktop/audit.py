"""Append-only audit journal (``audit.jsonl``).

One JSON object per line::

    {"ts": "...", "type": "permissions.set", "actor": "desktop-ui",
     "details": {"id": "telegram.send", "enabled": true}}

Appends are open + write + fsync + close.  The journal is observability,
not a ledger: callers go through :meth:`AuditLog.safe_append`, which never
lets an audit failure abort the operation being audited.  Details must
never carry secrets.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from .logs import DEFAULT_TAIL_MAX_BYTES, tail_file_lines
from .paths import AUDIT_FILE, resolve_data_dir
from .utils.safe_io import ensure_secure_dir
from .utils.safe_json import safe_json_loads

logger = logging.getLogger("openclaw_desktop.audit")

AUDIT_EVENT_TYPES = frozenset({
    "gateway.start",
    "gateway.stop",
    "gateway.restart",
    "integrations.telegram.connect",
    "integrations.telegram.connect_failed",
    "integrations.telegram.disconnect",
    "integrations.gmail.oauthCreds.set",
    "integrations.gmail.oauthCreds.set_failed",
    "integrations.gmail.oauthCreds.clear",
    "integrations.gmail.oauth.start",
    "integrations.gmail.oauth.start_failed",
    "integrations.gmail.oauth.clear",
    "integrations.gmail.oauth.callback_failed",
    "integrations.gmail.oauth.authorized",
    "permissions.set",
    "permissions.reset",
    "policies.confirmBeforeSend.set",
    "diagnostics.run",
})

AUDIT_ACTORS = frozenset({"desktop-ui", "browser", "cli", "unknown"})


@dataclass
class AuditTail:
    """Result of :meth:`AuditLog.read_recent`."""
    lines: list[str] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    truncated: bool = False


class AuditLog:
    """JSON Lines audit journal in the data directory."""

    def __init__(
        self,
        data_dir: Union[str, Path, None] = None,
        tail_max_bytes: int = DEFAULT_TAIL_MAX_BYTES,
    ) -> None:
        self._data_dir = Path(data_dir) if data_dir is not None else resolve_data_dir()
        self._path = self._data_dir / AUDIT_FILE
        self._tail_max_bytes = tail_max_bytes

    @property
    def file_path(self) -> Path:
        return self._path

    def _append_sync(self, line: str) -> None:
        ensure_secure_dir(self._data_dir)
        with open(self._path, "a", encoding="utf-8") as fh:
            fh.write(line)
            fh.flush()
            os.fsync(fh.fileno())

    async def append(
        self,
        type: str,
        actor: str,
        details: Optional[dict[str, Any]] = None,
        ts: Optional[str] = None,
    ) -> dict[str, Any]:
        """Append one event and return it as written.

        Raises:
            ValueError: For an event type or actor outside the closed sets.
            OSError: If the journal cannot be written.
        """
        if type not in AUDIT_EVENT_TYPES:
            raise ValueError(f"Unknown audit event type: {type!r}")
        if actor not in AUDIT_ACTORS:
            raise ValueError(f"Unknown audit actor: {actor!r}")

        event: dict[str, Any] = {
            "ts": ts or datetime.now(timezone.utc).isoformat(),
            "type": type,
            "actor": actor,
        }
        if details is not None:
            event["details"] = details

        line = json.dumps(event, default=str) + "\n"
        await asyncio.to_thread(self._append_sync, line)
        return event

    async def safe_append(
        self,
        type: str,
        actor: str,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Best-effort :meth:`append`.  Returns whether the event was written."""
        try:
            await self.append(type, actor, details)
            return True
        except Exception as e:
            logger.warning("Audit append failed for %s: %s", type, e)
            return False

    def _read_recent_sync(self, limit: int) -> AuditTail:
        try:
            tailed = tail_file_lines(self._path, limit, self._tail_max_bytes)
        except FileNotFoundError:
            return AuditTail()

        events: list[dict[str, Any]] = []
        for line in tailed.lines:
            try:
                parsed = safe_json_loads(line)
            except ValueError:
                # partially written or foreign line
                continue
            if (
                isinstance(parsed, dict)
                and isinstance(parsed.get("ts"), str)
                and isinstance(parsed.get("type"), str)
            ):
                events.append(parsed)
        return AuditTail(lines=tailed.lines, events=events, truncated=tailed.truncated)

    async def read_recent(self, limit: int) -> AuditTail:
        """Parse the last *limit* journal lines.

        ``limit <= 0`` returns an empty result without touching the file.
        A missing journal is an empty result, not an error.
        """
        if limit <= 0:
            return AuditTail()
        return await asyncio.to_thread(self._read_recent_sync, limit)
