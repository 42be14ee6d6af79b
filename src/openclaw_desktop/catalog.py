"""Permission catalog for openclaw-desktop (v1).

Ids are stable and machine-readable: an id is never reused for a
different meaning.  New permissions are appended; none are renamed.
Keep the list small and add entries when a feature needs them.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

RISK_LEVELS = frozenset({"low", "medium", "high"})

PERMISSION_GROUPS = frozenset({
    "gateway",
    "integrations",
    "messaging",
    "email",
    "calendar",
    "diagnostics",
    "support",
})


@dataclass(frozen=True)
class PermissionDef:
    """One catalog entry.

    Attributes:
        id: Stable permission id, e.g. ``"telegram.send"``.
        title: Human readable name for the UI.
        description: Help text for the UI.
        group: UI / log grouping, one of :data:`PERMISSION_GROUPS`.
        risk: ``"low"``, ``"medium"`` or ``"high"``; high-risk entries get
            extra confirmation in the UI.
        default_enabled: Effective value when the user never touched it.
            Should almost always be ``False``.
    """
    id: str
    title: str
    description: str
    group: str
    risk: str
    default_enabled: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "group": self.group,
            "risk": self.risk,
            "defaultEnabled": self.default_enabled,
        }


PERMISSION_CATALOG_V1: tuple[PermissionDef, ...] = (
    # Gateway lifecycle
    PermissionDef(
        id="gateway.control",
        title="Control OpenClaw Gateway",
        description="Start, stop, or restart the local OpenClaw gateway process.",
        group="gateway",
        risk="medium",
        default_enabled=True,
    ),
    # Integrations: connect/disconnect (token/OAuth flows)
    PermissionDef(
        id="integrations.telegram.manage",
        title="Connect Telegram",
        description="Add or remove a Telegram bot token for OpenClaw to use.",
        group="integrations",
        risk="medium",
        default_enabled=False,
    ),
    PermissionDef(
        id="telegram.send",
        title="Send Telegram messages",
        description="Allow OpenClaw to send messages to Telegram chats.",
        group="messaging",
        risk="high",
        default_enabled=False,
    ),
    PermissionDef(
        id="integrations.gmail.manage",
        title="Connect Gmail",
        description="Connect Gmail via OAuth and manage stored credentials.",
        group="integrations",
        risk="medium",
        default_enabled=False,
    ),
    PermissionDef(
        id="gmail.read",
        title="Read Gmail",
        description=(
            "Allow OpenClaw to read your email (metadata and/or content "
            "based on configuration)."
        ),
        group="email",
        risk="medium",
        default_enabled=False,
    ),
    PermissionDef(
        id="gmail.send",
        title="Send email via Gmail",
        description="Allow OpenClaw to send email from your Gmail account.",
        group="email",
        risk="high",
        default_enabled=False,
    ),
    PermissionDef(
        id="integrations.calendar.manage",
        title="Connect Calendar",
        description="Connect a calendar account and manage stored credentials.",
        group="integrations",
        risk="medium",
        default_enabled=False,
    ),
    PermissionDef(
        id="calendar.read",
        title="Read calendar",
        description="Allow OpenClaw to read calendar events.",
        group="calendar",
        risk="medium",
        default_enabled=False,
    ),
    PermissionDef(
        id="calendar.write",
        title="Create or edit calendar events",
        description="Allow OpenClaw to create or modify calendar events.",
        group="calendar",
        risk="high",
        default_enabled=False,
    ),
    # Local tooling
    PermissionDef(
        id="diagnostics.run",
        title="Run diagnostics",
        description="Allow the app to run local diagnostics (no secrets included).",
        group="diagnostics",
        risk="low",
        default_enabled=True,
    ),
    PermissionDef(
        id="support.export",
        title="Export support bundle",
        description=(
            "Allow exporting a local support bundle (redacted) for "
            "troubleshooting."
        ),
        group="support",
        risk="medium",
        default_enabled=False,
    ),
)

PERMISSION_CATALOG_BY_ID: Mapping[str, PermissionDef] = MappingProxyType(
    {p.id: p for p in PERMISSION_CATALOG_V1}
)


def is_known_permission(permission_id: str) -> bool:
    return permission_id in PERMISSION_CATALOG_BY_ID


def get_permission_def(permission_id: str) -> PermissionDef:
    """Look up a catalog entry.  Raises ``KeyError`` for unknown ids."""
    try:
        return PERMISSION_CATALOG_BY_ID[permission_id]
    except KeyError:
        raise KeyError(f"Unknown permission id: {permission_id}") from None


def default_enabled_map() -> dict[str, bool]:
    """Every catalog id mapped to its default."""
    return {p.id: p.default_enabled for p in PERMISSION_CATALOG_V1}


def materialize_permissions(overrides: Mapping[str, object]) -> dict[str, bool]:
    """Combine catalog defaults with stored overrides.

    Every catalog id is present in the result.  Overrides win when they
    are booleans; unknown ids and non-boolean values are ignored.
    """
    enabled = default_enabled_map()
    for perm_id, value in overrides.items():
        if perm_id in enabled and isinstance(value, bool):
            enabled[perm_id] = value
    return enabled
