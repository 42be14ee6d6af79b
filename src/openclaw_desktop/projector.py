"""Projection of PersistedState into the gateway's generated config.

``openclaw.generated.json`` is handed to the OpenClaw gateway, a lower
trust consumer.  It carries enable flags, permission and policy maps, and
opaque references to *where* secrets live; it never carries a secret.
The projection is pure and has no timestamps, so projecting the same state
twice yields byte-identical files and the artifact can be regenerated at
any time.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Union

from .catalog import materialize_permissions
from .paths import GENERATED_CONFIG_FILE, STATE_FILE
from .state.schema import materialize_confirm_before_send
from .utils.safe_io import durable_write_sync
from .version import GENERATOR_NAME, __version__

logger = logging.getLogger("openclaw_desktop.projector")

TELEGRAM_TOKEN_REF = f"{STATE_FILE}#integrations.telegram.token"
GMAIL_TOKEN_REF = f"{STATE_FILE}#integrations.gmail.tokens"


def project(state: dict[str, Any]) -> dict[str, Any]:
    """Derive the gateway config from a valid state document."""
    integrations = state.get("integrations", {})
    telegram = integrations.get("telegram", {})
    gmail_tokens = integrations.get("gmail", {}).get("tokens") or {}

    permissions = materialize_permissions(state.get("permissions", {}))
    confirm_before_send = materialize_confirm_before_send(
        state.get("policies", {}).get("confirmBeforeSend", {}),
    )

    telegram_enabled = bool(telegram.get("token"))
    telegram_channel: dict[str, Any] = {"enabled": telegram_enabled}
    if telegram_enabled:
        telegram_channel["tokenRef"] = TELEGRAM_TOKEN_REF
    telegram_channel["allowSend"] = permissions["telegram.send"]

    gmail_enabled = bool(gmail_tokens.get("accessToken"))
    gmail_integration: dict[str, Any] = {"enabled": gmail_enabled}
    if gmail_enabled:
        gmail_integration["tokenRef"] = GMAIL_TOKEN_REF
        account_email = gmail_tokens.get("accountEmail")
        if account_email:
            gmail_integration["accountEmail"] = account_email
    gmail_integration["allowRead"] = permissions["gmail.read"]

    return {
        "meta": {
            "generatedBy": GENERATOR_NAME,
            "generatorVersion": __version__,
        },
        "channels": {
            "telegram": telegram_channel,
        },
        "integrations": {
            "gmail": gmail_integration,
        },
        "permissions": permissions,
        "policy": {
            "confirmBeforeSend": confirm_before_send,
        },
    }


def render(derived: dict[str, Any]) -> str:
    return json.dumps(derived, indent=2) + "\n"


def generated_config_path(data_dir: Union[str, Path]) -> Path:
    return Path(data_dir) / GENERATED_CONFIG_FILE


def write_generated_config_sync(
    data_dir: Union[str, Path],
    state: dict[str, Any],
) -> Path:
    """Project *state* and durably write it to the data directory."""
    target = generated_config_path(data_dir)
    durable_write_sync(target, render(project(state)))
    logger.debug("Wrote generated gateway config to %s", target)
    return target


def collect_secrets(state: dict[str, Any]) -> list[str]:
    """Return every secret value held by a state document.

    Used to check that a rendered artifact is free of secret material.
    """
    integrations = state.get("integrations", {})
    gmail = integrations.get("gmail", {})
    candidates = [
        integrations.get("telegram", {}).get("token"),
        (gmail.get("oauth") or {}).get("clientSecret"),
        (gmail.get("tokens") or {}).get("accessToken"),
        (gmail.get("tokens") or {}).get("refreshToken"),
    ]
    return [s for s in candidates if isinstance(s, str) and s]
