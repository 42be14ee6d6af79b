"""Local diagnostics checklist.

Each check is isolated: a failing check is reported, never raised, so one
broken component does not hide the state of the others.  Nothing secret is
included in check details.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from .gateway import GatewayState, GatewayStatusController
from .projector import collect_secrets
from .state.store import StateStore

logger = logging.getLogger("openclaw_desktop.diagnostics")

LogFileResolver = Callable[[], Awaitable[Optional[Path]]]


@dataclass
class DiagnosticCheck:
    id: str
    level: str  # "ok" | "warn" | "error"
    summary: str
    details: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"id": self.id, "level": self.level, "summary": self.summary}
        if self.details is not None:
            result["details"] = self.details
        return result


@dataclass
class DiagnosticsResult:
    ran_at: str
    checks: list[DiagnosticCheck] = field(default_factory=list)

    def count(self, level: str) -> int:
        return sum(1 for c in self.checks if c.level == level)

    @property
    def overall(self) -> str:
        if self.count("error"):
            return "error"
        if self.count("warn"):
            return "warn"
        return "ok"

    def to_dict(self) -> dict:
        return {
            "ranAt": self.ran_at,
            "summary": {
                "overall": self.overall,
                "okCount": self.count("ok"),
                "warnCount": self.count("warn"),
                "errorCount": self.count("error"),
            },
            "checks": [c.to_dict() for c in self.checks],
        }


def _gateway_check(state: GatewayState) -> DiagnosticCheck:
    if state.status == "error":
        return DiagnosticCheck(
            id="gateway.status",
            level="error",
            summary=state.last_error or "Gateway status returned error",
            details={"status": state.status},
        )
    return DiagnosticCheck(
        id="gateway.status",
        level="ok",
        summary=f"Gateway is {state.status}",
        details={"status": state.status},
    )


async def _check_gateway(gateway: GatewayStatusController) -> DiagnosticCheck:
    return _gateway_check(await gateway.status())


async def _check_state(store: StateStore) -> DiagnosticCheck:
    try:
        state = await store.get_state()
    except Exception as e:
        return DiagnosticCheck(
            id="manager.state",
            level="error",
            summary="Failed to read state store",
            details={"error": str(e) or "state_read_failed"},
        )
    return DiagnosticCheck(
        id="manager.state",
        level="ok",
        summary="State store readable",
        details={"schemaVersion": state["schemaVersion"]},
    )


async def _check_logs(resolver: LogFileResolver) -> DiagnosticCheck:
    try:
        file = await resolver()
    except Exception as e:
        return DiagnosticCheck(
            id="gateway.logs",
            level="warn",
            summary="Failed to resolve gateway log file path",
            details={"error": str(e) or "log_path_failed"},
        )
    if file:
        return DiagnosticCheck(
            id="gateway.logs",
            level="ok",
            summary="Gateway log file detected",
            details={"file": str(file)},
        )
    return DiagnosticCheck(
        id="gateway.logs", level="warn", summary="No gateway log file detected yet",
    )


async def _check_telegram(store: StateStore) -> DiagnosticCheck:
    try:
        tg = await store.get_telegram_connection()
    except Exception as e:
        return DiagnosticCheck(
            id="integrations.telegram",
            level="warn",
            summary="Failed to read Telegram connection state",
            details={"error": str(e) or "telegram_state_failed"},
        )
    if tg.connected:
        return DiagnosticCheck(
            id="integrations.telegram",
            level="ok",
            summary="Telegram connected",
            details={"accountLabel": tg.account_label},
        )
    if tg.last_error:
        return DiagnosticCheck(
            id="integrations.telegram",
            level="warn",
            summary="Telegram needs attention",
            details={"lastError": tg.last_error},
        )
    return DiagnosticCheck(
        id="integrations.telegram", level="warn", summary="Telegram not connected",
    )


async def _check_gmail(store: StateStore) -> DiagnosticCheck:
    try:
        gmail = await store.get_gmail_connection()
    except Exception as e:
        return DiagnosticCheck(
            id="integrations.gmail",
            level="warn",
            summary="Failed to read Gmail connection state",
            details={"error": str(e) or "gmail_state_failed"},
        )
    if gmail.needs_attention:
        return DiagnosticCheck(
            id="integrations.gmail",
            level="warn",
            summary="Gmail needs attention",
            details={"lastError": gmail.last_error},
        )
    if gmail.connected:
        return DiagnosticCheck(
            id="integrations.gmail",
            level="ok",
            summary="Gmail authorized",
            details={"accountEmail": gmail.account_label},
        )
    # Gmail is optional; not connecting it is not a problem.
    return DiagnosticCheck(id="integrations.gmail", level="ok", summary="Gmail not connected")


async def _check_redaction(store: StateStore) -> DiagnosticCheck:
    """The generated config on disk must not contain any stored secret."""
    path = store.generated_config_path
    try:
        state = await store.get_state()
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return DiagnosticCheck(
            id="config.redaction",
            level="warn",
            summary="Generated gateway config not written yet",
            details={"file": str(path)},
        )
    except Exception as e:
        return DiagnosticCheck(
            id="config.redaction",
            level="warn",
            summary="Failed to read generated gateway config",
            details={"error": str(e) or "generated_config_read_failed"},
        )
    if any(secret in text for secret in collect_secrets(state)):
        return DiagnosticCheck(
            id="config.redaction",
            level="error",
            summary="Generated gateway config contains secret material",
            details={"file": str(path)},
        )
    return DiagnosticCheck(
        id="config.redaction",
        level="ok",
        summary="Generated gateway config is secret-free",
        details={"file": str(path)},
    )


async def run_diagnostics(
    gateway: GatewayStatusController,
    store: StateStore,
    log_file_resolver: LogFileResolver,
) -> DiagnosticsResult:
    """Run every check and summarize."""
    checks = [
        await _check_gateway(gateway),
        await _check_state(store),
        await _check_logs(log_file_resolver),
        await _check_telegram(store),
        await _check_gmail(store),
        await _check_redaction(store),
    ]
    result = DiagnosticsResult(
        ran_at=datetime.now(timezone.utc).isoformat(), checks=checks,
    )
    logger.info("Diagnostics finished: %s", result.overall)
    return result
