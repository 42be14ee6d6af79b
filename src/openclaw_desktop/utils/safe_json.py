"""Strict JSON parsing for documents the manager reads back from disk.

``state.json`` and ``audit.jsonl`` may be edited by hand or truncated by a
crash, so everything read back goes through :func:`safe_json_loads`.  Every
way a document can be unusable surfaces as one exception type,
``ValueError``:

* bytes that are not UTF-8 (``UnicodeDecodeError`` is a ``ValueError``),
* malformed JSON (``json.JSONDecodeError`` is a ``ValueError``),
* duplicate object keys, which ``json.loads()`` would silently collapse to
  the last value,
* ``NaN``/``Infinity``, which are not JSON and which other readers of the
  file would reject.

Callers treat that one exception as "shape mismatch".
"""

from __future__ import annotations

import json
from typing import Any, Union


class _StrictDecoder(json.JSONDecoder):
    def __init__(self) -> None:
        super().__init__(
            object_pairs_hook=self._object_without_duplicates,
            parse_constant=self._reject_constant,
        )

    @staticmethod
    def _object_without_duplicates(pairs: list[tuple[str, Any]]) -> dict:
        obj: dict = {}
        for key, value in pairs:
            if key in obj:
                raise ValueError(f"Duplicate JSON key: {key!r}")
            obj[key] = value
        return obj

    @staticmethod
    def _reject_constant(constant: str) -> Any:
        raise ValueError(f"Non-standard JSON constant not allowed: {constant!r}")


_DECODER = _StrictDecoder()


def safe_json_loads(data: Union[str, bytes]) -> Any:
    """Parse one JSON document strictly.

    *data* may be raw file bytes; they must be UTF-8 (a leading BOM is
    not accepted, matching what ``json.dumps`` writes).

    Raises:
        ValueError: For every kind of unusable input listed above.
    """
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    return _DECODER.decode(data)
