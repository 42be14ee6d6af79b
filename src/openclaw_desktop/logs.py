"""Gateway log discovery and bounded tail reads.

:func:`tail_file_lines` is shared by the gateway log view and
:class:`~openclaw_desktop.audit.AuditLog`: it only ever reads the last
``max_bytes`` of a file, however large the file has grown.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger("openclaw_desktop.logs")

DEFAULT_TAIL_MAX_BYTES = 256 * 1024
MAX_TAIL_LINES = 2000
DEFAULT_TAIL_LINES = 200


@dataclass
class TailResult:
    lines: list[str]
    truncated: bool


def tail_file_lines(
    file_path: Union[str, Path],
    line_count: int = DEFAULT_TAIL_LINES,
    max_bytes: int = DEFAULT_TAIL_MAX_BYTES,
) -> TailResult:
    """Return up to *line_count* trailing non-empty lines of *file_path*.

    *line_count* is clamped to ``1..2000``.  When the read window starts
    mid-file, the first line of the window may be the end of a longer
    line and is dropped.  ``truncated`` is set when the file holds more
    than was returned.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    lines_wanted = max(1, min(MAX_TAIL_LINES, int(line_count)))

    with open(file_path, "rb") as fh:
        size = os.fstat(fh.fileno()).st_size
        start = max(0, size - max_bytes)
        fh.seek(start)
        data = fh.read(size - start)

    text = data.decode("utf-8", errors="replace")
    all_lines = [line for line in text.splitlines() if line]

    # Reading from mid-file: the first line is only complete if the byte
    # just before the window was a newline, which we cannot see.  Drop it.
    if start > 0 and all_lines and not text.startswith(("\n", "\r")):
        all_lines = all_lines[1:]

    truncated = start > 0 or len(all_lines) > lines_wanted
    return TailResult(lines=all_lines[-lines_wanted:], truncated=truncated)


def _openclaw_config_path(home: Path) -> Path:
    return home / ".openclaw" / "openclaw.json"


def resolve_gateway_log_file_path(
    home: Optional[Path] = None,
    today: Optional[date] = None,
) -> Optional[Path]:
    """Locate today's gateway log file.

    1. ``logging.file`` from ``~/.openclaw/openclaw.json`` (``YYYY-MM-DD``
       is replaced with today's date).
    2. ``<tmpdir>/openclaw/openclaw-YYYY-MM-DD.log``.

    A missing or unreadable OpenClaw config falls through to the default.
    """
    home = home if home is not None else Path.home()
    stamp = (today or date.today()).isoformat()

    cfg_path = _openclaw_config_path(home)
    try:
        if cfg_path.is_file():
            cfg = json.loads(cfg_path.read_text(encoding="utf-8"))
            file_value = (cfg.get("logging") or {}).get("file") if isinstance(cfg, dict) else None
            if isinstance(file_value, str) and file_value.strip():
                return Path(file_value.strip().replace("YYYY-MM-DD", stamp))
    except (OSError, ValueError, AttributeError) as e:
        logger.debug("Ignoring unreadable OpenClaw config %s: %s", cfg_path, e)

    return Path(tempfile.gettempdir()) / "openclaw" / f"openclaw-{stamp}.log"
