"""PersistedState schema (v1): defaults, shape validation, policy defaults.

The state document is plain JSON-compatible dicts with camelCase keys,
because the file format is shared with tooling outside this package::

    {
      "schemaVersion": 1,
      "integrations": {
        "telegram": {"token", "accountLabel", "connectedAt",
                     "lastValidatedAt", "lastError"},
        "gmail": {"oauth": {...}, "tokens": {...}}
      },
      "permissions": {"<permission id>": bool},
      "policies": {"confirmBeforeSend": {"<integration id>": bool}}
    }

There is no migration path: a document that does not match this shape
is treated as absent.
"""

from __future__ import annotations

import copy
from typing import Any, Mapping

SCHEMA_VERSION = 1

# Integrations that carry a confirm-before-send policy.
KNOWN_INTEGRATIONS: tuple[str, ...] = ("telegram", "gmail")

_DEFAULT_STATE: dict[str, Any] = {
    "schemaVersion": SCHEMA_VERSION,
    "integrations": {
        "telegram": {},
        "gmail": {},
    },
    "permissions": {},
    "policies": {
        "confirmBeforeSend": {},
    },
}


def default_state() -> dict[str, Any]:
    """A fresh default document (safe to mutate)."""
    return copy.deepcopy(_DEFAULT_STATE)


def _mapping_or_absent(container: Mapping[str, Any], key: str) -> bool:
    return key not in container or isinstance(container[key], dict)


def is_valid_state(value: Any) -> bool:
    """Width check: can this document be navigated as PersistedState v1?

    Requires the schema version and ``integrations.telegram`` to be
    present.  Optional sub-trees must be mappings when they are present.
    This is a duck-typed check, not deep validation of every field.
    """
    if not isinstance(value, dict):
        return False
    # bool is an int subclass; True must not pass as version 1
    version = value.get("schemaVersion")
    if type(version) is not int or version != SCHEMA_VERSION:
        return False
    integrations = value.get("integrations")
    if not isinstance(integrations, dict):
        return False
    if not isinstance(integrations.get("telegram"), dict):
        return False
    if not _mapping_or_absent(integrations, "gmail"):
        return False
    gmail = integrations.get("gmail", {})
    if not (_mapping_or_absent(gmail, "oauth") and _mapping_or_absent(gmail, "tokens")):
        return False
    if not _mapping_or_absent(value, "permissions"):
        return False
    if not _mapping_or_absent(value, "policies"):
        return False
    policies = value.get("policies", {})
    return _mapping_or_absent(policies, "confirmBeforeSend")


def normalize_state(value: dict[str, Any]) -> dict[str, Any]:
    """Fill absent optional sub-trees of a valid document with defaults.

    Fields that are present are returned unchanged, so a fully populated
    document round-trips field-for-field.
    """
    state = copy.deepcopy(value)
    integrations = state["integrations"]
    integrations.setdefault("gmail", {})
    state.setdefault("permissions", {})
    policies = state.setdefault("policies", {})
    policies.setdefault("confirmBeforeSend", {})
    return state


def materialize_confirm_before_send(
    overrides: Mapping[str, object],
) -> dict[str, bool]:
    """Every known integration mapped to its effective policy.

    Absent entries default to ``True``; unknown keys and non-boolean
    values are ignored.
    """
    enabled = {integration_id: True for integration_id in KNOWN_INTEGRATIONS}
    for integration_id, value in overrides.items():
        if integration_id in enabled and isinstance(value, bool):
            enabled[integration_id] = value
    return enabled
