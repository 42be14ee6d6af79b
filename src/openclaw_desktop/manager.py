"""ManagerService: the operations the desktop UI and CLI call.

Wires the state store, audit journal, gateway controller and Gmail OAuth
handshake together and adds the audit trail around each action.  Audit
writes go through :meth:`AuditLog.safe_append` and never fail an action.
Input validation that needs the permission catalog or the integration list
happens here; invalid input raises ``ValueError`` with a stable error id
as its message.

Usage::

    service = ManagerService.from_config(load_manager_config())
    await service.startup()
    gateway = await service.start_gateway()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx

from .audit import AuditLog, AuditTail
from .catalog import is_known_permission
from .config import ManagerConfig
from .diagnostics import DiagnosticsResult, LogFileResolver, run_diagnostics
from .gateway import GatewayCliRunner, GatewayState, GatewayStatusController
from .logs import resolve_gateway_log_file_path
from .oauth import (
    GmailOAuthHandshake,
    GoogleOAuthClient,
    OAuthCallbackResult,
    OAuthHandshakeError,
    OAuthStartResult,
    OAuthStatus,
    PendingOAuthSlot,
)
from .state.schema import KNOWN_INTEGRATIONS
from .state.store import (
    ConfirmBeforeSendPolicyState,
    GmailOauthCredsSummary,
    IntegrationConnection,
    PermissionsState,
    StateStore,
)
from .telegram import looks_like_telegram_token, validate_telegram_token

logger = logging.getLogger("openclaw_desktop.manager")

MAX_AUDIT_LINES = 1000


@dataclass
class ManagerStatus:
    gateway: GatewayState
    telegram: IntegrationConnection
    gmail: IntegrationConnection

    def to_dict(self) -> dict:
        return {
            "gateway": self.gateway.to_dict(),
            "integrations": {
                "telegram": self.telegram.to_dict(),
                "gmail": self.gmail.to_dict(),
            },
        }


async def _default_log_file_resolver() -> Optional[Path]:
    return await asyncio.to_thread(resolve_gateway_log_file_path)


class ManagerService:
    """Transport-free facade over the manager core.

    Args:
        store: Persistent state.
        audit: Audit journal.
        gateway: Gateway lifecycle controller.
        oauth: Gmail OAuth handshake (owns the pending-request slot).
        telegram_client: ``httpx.AsyncClient`` for ``getMe`` calls; a
            client per call when ``None``.
        log_file_resolver: Async callable locating the gateway log file.
        actor: Audit actor recorded for UI-initiated actions.
    """

    def __init__(
        self,
        store: StateStore,
        audit: AuditLog,
        gateway: GatewayStatusController,
        oauth: GmailOAuthHandshake,
        telegram_client: Optional[httpx.AsyncClient] = None,
        log_file_resolver: Optional[LogFileResolver] = None,
        actor: str = "desktop-ui",
    ) -> None:
        self.store = store
        self.audit = audit
        self.gateway = gateway
        self.oauth = oauth
        self._telegram_client = telegram_client
        self._log_file_resolver = log_file_resolver or _default_log_file_resolver
        self._actor = actor

    @classmethod
    def from_config(cls, config: ManagerConfig, actor: str = "desktop-ui") -> "ManagerService":
        store = StateStore(
            config.data_dir,
            quarantine_invalid_state=config.quarantine_invalid_state,
        )
        audit = AuditLog(config.data_dir, tail_max_bytes=config.audit_tail_max_bytes)
        gateway = GatewayStatusController(
            GatewayCliRunner(config.gateway_command, timeout=config.gateway_timeout),
        )
        oauth = GmailOAuthHandshake(
            store,
            slot=PendingOAuthSlot(ttl_seconds=config.oauth_pending_ttl),
            client=GoogleOAuthClient(),
            audit=audit,
            scope=config.gmail_scope,
        )
        return cls(store, audit, gateway, oauth, actor=actor)

    async def _audit(self, type: str, details: Optional[dict[str, Any]] = None) -> None:
        await self.audit.safe_append(type, self._actor, details)

    async def startup(self) -> Path:
        """Regenerate the gateway config in case a previous run crashed
        between the state write and the projection write."""
        path = await self.store.regenerate_config()
        logger.info("Manager started with data dir %s", self.store.data_dir)
        return path

    async def status(self) -> ManagerStatus:
        return ManagerStatus(
            gateway=await self.gateway.status(),
            telegram=await self.store.get_telegram_connection(),
            gmail=await self.store.get_gmail_connection(),
        )

    # -- gateway -------------------------------------------------------------

    async def start_gateway(self) -> GatewayState:
        state = await self.gateway.start()
        await self._audit("gateway.start", {"status": state.status})
        return state

    async def stop_gateway(self) -> GatewayState:
        state = await self.gateway.stop()
        await self._audit("gateway.stop", {"status": state.status})
        return state

    async def restart_gateway(self) -> GatewayState:
        state = await self.gateway.restart()
        await self._audit("gateway.restart", {"status": state.status})
        return state

    # -- telegram ------------------------------------------------------------

    async def connect_telegram(self, token: str) -> IntegrationConnection:
        """Validate *token* with Telegram and store it.

        Raises:
            ValueError: ``invalid_token`` for a malformed token, or
                ``telegram_validation_failed`` when Telegram rejects it.
                Either way the failure is recorded on the integration.
        """
        token = (token or "").strip()
        if not token or not looks_like_telegram_token(token):
            await self.store.set_telegram_error("invalid_token_format")
            await self._audit(
                "integrations.telegram.connect_failed", {"error": "invalid_token_format"},
            )
            raise ValueError("invalid_token")

        validated = await validate_telegram_token(token, client=self._telegram_client)
        if not validated.ok:
            await self.store.set_telegram_error(validated.error or "telegram_validation_failed")
            await self._audit(
                "integrations.telegram.connect_failed", {"error": validated.error},
            )
            raise ValueError("telegram_validation_failed")

        await self.store.set_telegram_token(token, account_label=validated.account_label)
        await self._audit(
            "integrations.telegram.connect", {"accountLabel": validated.account_label},
        )
        return await self.store.get_telegram_connection()

    async def disconnect_telegram(self) -> IntegrationConnection:
        await self.store.clear_telegram()
        await self._audit("integrations.telegram.disconnect")
        return await self.store.get_telegram_connection()

    # -- gmail ---------------------------------------------------------------

    async def set_gmail_oauth_creds(
        self, client_id: str, client_secret: str,
    ) -> GmailOauthCredsSummary:
        client_id = (client_id or "").strip()
        client_secret = (client_secret or "").strip()
        if not client_id or not client_secret:
            await self._audit(
                "integrations.gmail.oauthCreds.set_failed", {"error": "missing_fields"},
            )
            raise ValueError("missing_fields")
        await self.store.set_gmail_oauth_creds(client_id, client_secret)
        await self._audit("integrations.gmail.oauthCreds.set")
        return await self.store.get_gmail_oauth_creds_summary()

    async def clear_gmail_oauth_creds(self) -> GmailOauthCredsSummary:
        await self.store.clear_gmail_oauth_creds()
        await self._audit("integrations.gmail.oauthCreds.clear")
        return await self.store.get_gmail_oauth_creds_summary()

    async def start_gmail_oauth(self, host: str) -> OAuthStartResult:
        try:
            result = await self.oauth.start(host)
        except OAuthHandshakeError as e:
            await self._audit("integrations.gmail.oauth.start_failed", {"error": e.code})
            raise
        await self._audit("integrations.gmail.oauth.start")
        return result

    async def complete_gmail_oauth(
        self,
        state: Optional[str],
        code: Optional[str],
        error: Optional[str] = None,
    ) -> OAuthCallbackResult:
        # The handshake audits its own outcome with the "browser" actor.
        return await self.oauth.callback(state, code, error)

    async def clear_gmail_oauth(self, host: str) -> OAuthStatus:
        await self.store.clear_gmail_oauth_tokens()
        await self._audit("integrations.gmail.oauth.clear")
        return await self.oauth.status(host)

    async def gmail_oauth_status(self, host: str) -> OAuthStatus:
        return await self.oauth.status(host)

    # -- permissions and policies --------------------------------------------

    async def get_permissions(self) -> PermissionsState:
        return await self.store.get_permissions()

    async def set_permission(self, permission_id: str, enabled: Any) -> PermissionsState:
        permission_id = (permission_id or "").strip()
        if not is_known_permission(permission_id):
            raise ValueError("unknown_permission")
        if not isinstance(enabled, bool):
            raise ValueError("invalid_enabled")
        await self.store.set_permission(permission_id, enabled)
        await self._audit("permissions.set", {"id": permission_id, "enabled": enabled})
        return await self.store.get_permissions()

    async def reset_permissions(self) -> PermissionsState:
        await self.store.reset_permissions()
        await self._audit("permissions.reset")
        return await self.store.get_permissions()

    async def get_confirm_before_send_policy(self) -> ConfirmBeforeSendPolicyState:
        return await self.store.get_confirm_before_send_policy()

    async def set_confirm_before_send_policy(
        self, integration_id: str, enabled: Any,
    ) -> ConfirmBeforeSendPolicyState:
        integration_id = (integration_id or "").strip()
        if integration_id not in KNOWN_INTEGRATIONS:
            raise ValueError("invalid_integration")
        if not isinstance(enabled, bool):
            raise ValueError("invalid_enabled")
        await self.store.set_confirm_before_send_policy(integration_id, enabled)
        await self._audit(
            "policies.confirmBeforeSend.set",
            {"integrationId": integration_id, "enabled": enabled},
        )
        return await self.store.get_confirm_before_send_policy()

    # -- audit and diagnostics -----------------------------------------------

    async def recent_audit(self, limit: int = 200) -> AuditTail:
        return await self.audit.read_recent(max(0, min(MAX_AUDIT_LINES, int(limit))))

    async def run_diagnostics(self) -> DiagnosticsResult:
        result = await run_diagnostics(self.gateway, self.store, self._log_file_resolver)
        await self._audit("diagnostics.run", {"overall": result.overall})
        return result
