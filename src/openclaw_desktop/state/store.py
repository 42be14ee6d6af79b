"""StateStore: persisted integrations, permissions and policies.

The store is the only writer of ``state.json``.  Every mutator follows the
same sequence::

    lock -> read document -> pure merge -> durable write state.json
         -> project + durable write openclaw.generated.json

The two writes are not one transaction.  A crash between them leaves the
generated config stale; :meth:`StateStore.regenerate_config` rebuilds it
and is called on process start.

Locking: an ``asyncio.Lock`` serializes mutators issued from this process,
and a ``filelock.FileLock`` on ``state.json.lock`` serializes them against
another manager process pointed at the same data directory.

Usage::

    store = StateStore(data_dir)
    await store.set_telegram_token("123:ABC", account_label="@my_bot")
    conn = await store.get_telegram_connection()
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

from filelock import FileLock

from ..catalog import PERMISSION_CATALOG_V1, PermissionDef, materialize_permissions
from ..paths import STATE_FILE, resolve_data_dir
from ..projector import write_generated_config_sync, generated_config_path
from ..utils.safe_io import (
    durable_write_sync,
    ensure_secure_dir,
    quarantine_file_sync,
    read_bytes_or_none,
)
from ..utils.safe_json import safe_json_loads
from .schema import (
    KNOWN_INTEGRATIONS,
    default_state,
    is_valid_state,
    materialize_confirm_before_send,
    normalize_state,
)

logger = logging.getLogger("openclaw_desktop.state.store")

# Characters of the OAuth client id shown in summaries.
CLIENT_ID_SUFFIX_LENGTH = 8

StateDoc = dict[str, Any]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Views and inputs
# ---------------------------------------------------------------------------

@dataclass
class IntegrationConnection:
    """Connection status of one integration.  Never carries secrets."""
    integration_id: str
    connected: bool
    account_label: Optional[str] = None
    connected_at: Optional[str] = None
    last_validated_at: Optional[str] = None
    needs_attention: bool = False
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "integrationId": self.integration_id,
            "connected": self.connected,
            "accountLabel": self.account_label,
            "connectedAt": self.connected_at,
            "lastValidatedAt": self.last_validated_at,
            "needsAttention": self.needs_attention,
            "lastError": self.last_error,
        }


@dataclass
class GmailOauthCreds:
    """Bring-your-own OAuth client credentials."""
    client_id: str
    client_secret: str = field(repr=False)


@dataclass
class GmailOauthCredsSummary:
    configured: bool
    client_id_suffix: Optional[str] = None
    updated_at: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "configured": self.configured,
            "clientIdSuffix": self.client_id_suffix,
            "updatedAt": self.updated_at,
            "lastError": self.last_error,
        }


@dataclass
class GmailOauthTokens:
    """Token material returned by the provider's token endpoint."""
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    scope: Optional[str] = None
    token_type: Optional[str] = None
    expires_at: Optional[str] = None
    account_email: Optional[str] = None


@dataclass
class GmailOauthTokensSummary:
    authorized: bool
    scope: Optional[str] = None
    expires_at: Optional[str] = None
    account_email: Optional[str] = None
    updated_at: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def needs_attention(self) -> bool:
        return self.last_error is not None

    def to_dict(self) -> dict:
        return {
            "authorized": self.authorized,
            "scope": self.scope,
            "expiresAt": self.expires_at,
            "accountEmail": self.account_email,
            "updatedAt": self.updated_at,
            "needsAttention": self.needs_attention,
            "lastError": self.last_error,
        }


@dataclass
class PermissionsState:
    """The static catalog plus the materialized enabled map."""
    catalog: tuple[PermissionDef, ...]
    enabled: dict[str, bool]

    def to_dict(self) -> dict:
        return {
            "catalog": [p.to_dict() for p in self.catalog],
            "enabled": dict(self.enabled),
        }


@dataclass
class ConfirmBeforeSendPolicyState:
    enabled: dict[str, bool]

    def to_dict(self) -> dict:
        return {"enabled": dict(self.enabled)}


# ---------------------------------------------------------------------------
# StateStore
# ---------------------------------------------------------------------------

class StateStore:
    """Durable, schema-versioned store for the manager's domain state.

    Args:
        data_dir: Directory holding ``state.json``.  Defaults to
            :func:`~openclaw_desktop.paths.resolve_data_dir`.
        quarantine_invalid_state: When a mutator finds a document on disk
            that fails shape validation, rename it aside to
            ``state.json.invalid-<timestamp>`` before writing.  When
            ``False`` the invalid file only survives as ``state.json.bak``.
        lock_timeout: Seconds to wait for the cross-process file lock.
    """

    def __init__(
        self,
        data_dir: Union[str, Path, None] = None,
        *,
        quarantine_invalid_state: bool = True,
        lock_timeout: float = 10.0,
    ) -> None:
        self._data_dir = Path(data_dir) if data_dir is not None else resolve_data_dir()
        self._state_path = self._data_dir / STATE_FILE
        self._quarantine_invalid_state = quarantine_invalid_state
        self._lock_timeout = lock_timeout
        self._lock = asyncio.Lock()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def generated_config_path(self) -> Path:
        return generated_config_path(self._data_dir)

    # -- read path -----------------------------------------------------------

    def _load_sync(self) -> tuple[StateDoc, bool]:
        """Read the document from disk.

        Returns ``(state, invalid)``; *invalid* is ``True`` when a file
        exists but could not be used, in which case *state* is the default
        document.
        """
        raw = read_bytes_or_none(self._state_path)
        if raw is None:
            return default_state(), False
        try:
            parsed = safe_json_loads(raw)
        except ValueError as e:
            logger.warning(
                "State file %s is not valid JSON (%s); using defaults",
                self._state_path, e,
            )
            return default_state(), True
        if not is_valid_state(parsed):
            logger.warning(
                "State file %s does not match schema v1; using defaults",
                self._state_path,
            )
            return default_state(), True
        return parsed, False

    async def get_state(self) -> StateDoc:
        """Return the current document, or defaults when absent or invalid.

        A valid document comes back exactly as stored.  Optional sub-trees
        it omits are only filled in when a mutator rewrites the file.
        """
        state, _invalid = await asyncio.to_thread(self._load_sync)
        return state

    async def _view(self) -> StateDoc:
        return normalize_state(await self.get_state())

    # -- write path ----------------------------------------------------------

    def _file_lock(self) -> FileLock:
        return FileLock(
            str(self._state_path) + ".lock", timeout=self._lock_timeout,
        )

    def _write_sync(self, next_state: StateDoc) -> None:
        durable_write_sync(
            self._state_path, json.dumps(next_state, indent=2) + "\n",
        )
        write_generated_config_sync(self._data_dir, next_state)

    def _mutate_sync(self, update: Callable[[StateDoc], StateDoc]) -> StateDoc:
        ensure_secure_dir(self._data_dir)
        with self._file_lock():
            current, invalid = self._load_sync()
            if invalid and self._quarantine_invalid_state:
                label = "invalid-" + datetime.now(timezone.utc).strftime(
                    "%Y%m%dT%H%M%S%fZ",
                )
                aside = quarantine_file_sync(self._state_path, label)
                if aside is not None:
                    logger.warning("Quarantined invalid state file to %s", aside)
            next_state = update(normalize_state(current))
            self._write_sync(next_state)
        return next_state

    async def _mutate(self, update: Callable[[StateDoc], StateDoc]) -> StateDoc:
        async with self._lock:
            return await asyncio.to_thread(self._mutate_sync, update)

    async def write_state(self, next_state: StateDoc) -> None:
        """Replace the whole document.

        Raises:
            ValueError: If *next_state* does not match schema v1.
        """
        if not is_valid_state(next_state):
            raise ValueError("State document does not match schema v1")
        stored = copy.deepcopy(next_state)
        await self._mutate(lambda _current: stored)

    def _regenerate_sync(self) -> Path:
        ensure_secure_dir(self._data_dir)
        with self._file_lock():
            state, _invalid = self._load_sync()
            return write_generated_config_sync(self._data_dir, state)

    async def regenerate_config(self) -> Path:
        """Re-project the current state into the generated config."""
        async with self._lock:
            return await asyncio.to_thread(self._regenerate_sync)

    # -- telegram ------------------------------------------------------------

    async def set_telegram_token(
        self, token: str, account_label: Optional[str] = None,
    ) -> None:
        now = _now_iso()

        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            telegram = nxt["integrations"]["telegram"]
            telegram["token"] = token
            if account_label:
                telegram["accountLabel"] = account_label
            else:
                telegram.pop("accountLabel", None)
            telegram.setdefault("connectedAt", now)
            telegram["lastValidatedAt"] = now
            telegram.pop("lastError", None)
            return nxt

        await self._mutate(update)
        logger.info("Telegram token stored")

    async def set_telegram_error(self, message: str) -> None:
        """Record a validation failure.  The stored token is removed."""
        now = _now_iso()

        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            telegram = nxt["integrations"]["telegram"]
            telegram.pop("token", None)
            telegram.pop("accountLabel", None)
            telegram["lastError"] = message
            telegram["lastValidatedAt"] = now
            return nxt

        await self._mutate(update)
        logger.info("Telegram marked as needing attention: %s", message)

    async def clear_telegram(self) -> None:
        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            nxt["integrations"]["telegram"] = {}
            return nxt

        await self._mutate(update)
        logger.info("Telegram integration cleared")

    async def get_telegram_connection(self) -> IntegrationConnection:
        telegram = (await self._view())["integrations"]["telegram"]
        return IntegrationConnection(
            integration_id="telegram",
            connected=bool(telegram.get("token")),
            account_label=telegram.get("accountLabel"),
            connected_at=telegram.get("connectedAt"),
            last_validated_at=telegram.get("lastValidatedAt"),
            needs_attention=bool(telegram.get("lastError")),
            last_error=telegram.get("lastError"),
        )

    # -- gmail: oauth client credentials -------------------------------------

    async def set_gmail_oauth_creds(self, client_id: str, client_secret: str) -> None:
        now = _now_iso()

        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            nxt["integrations"]["gmail"]["oauth"] = {
                "clientId": client_id,
                "clientSecret": client_secret,
                "updatedAt": now,
            }
            return nxt

        await self._mutate(update)
        logger.info("Gmail OAuth client credentials stored")

    async def clear_gmail_oauth_creds(self) -> None:
        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            nxt["integrations"]["gmail"].pop("oauth", None)
            return nxt

        await self._mutate(update)
        logger.info("Gmail OAuth client credentials cleared")

    async def get_gmail_oauth_creds(self) -> Optional[GmailOauthCreds]:
        """Full client credentials, for the OAuth handshake only."""
        oauth = (await self._view())["integrations"]["gmail"].get("oauth") or {}
        client_id = oauth.get("clientId")
        client_secret = oauth.get("clientSecret")
        if not client_id or not client_secret:
            return None
        return GmailOauthCreds(client_id=client_id, client_secret=client_secret)

    async def get_gmail_oauth_creds_summary(self) -> GmailOauthCredsSummary:
        oauth = (await self._view())["integrations"]["gmail"].get("oauth") or {}
        client_id = oauth.get("clientId")
        configured = bool(client_id and oauth.get("clientSecret"))
        return GmailOauthCredsSummary(
            configured=configured,
            client_id_suffix=(
                client_id[-CLIENT_ID_SUFFIX_LENGTH:] if configured else None
            ),
            updated_at=oauth.get("updatedAt"),
            last_error=oauth.get("lastError"),
        )

    # -- gmail: oauth tokens -------------------------------------------------

    async def set_gmail_oauth_tokens(self, tokens: GmailOauthTokens) -> None:
        """Store freshly exchanged tokens.

        A previously stored refresh token is kept when the provider did
        not issue a new one.
        """
        now = _now_iso()

        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            gmail = nxt["integrations"]["gmail"]
            previous = gmail.get("tokens") or {}
            doc: dict[str, Any] = {"accessToken": tokens.access_token}
            refresh_token = tokens.refresh_token or previous.get("refreshToken")
            if refresh_token:
                doc["refreshToken"] = refresh_token
            if tokens.scope:
                doc["scope"] = tokens.scope
            if tokens.token_type:
                doc["tokenType"] = tokens.token_type
            if tokens.expires_at:
                doc["expiresAt"] = tokens.expires_at
            if tokens.account_email:
                doc["accountEmail"] = tokens.account_email
            doc["updatedAt"] = now
            gmail["tokens"] = doc
            return nxt

        await self._mutate(update)
        logger.info("Gmail OAuth tokens stored")

    async def set_gmail_oauth_tokens_error(self, message: str) -> None:
        """Record a failed (re-)authorization.

        Tokens from an earlier successful authorization are kept; the next
        successful :meth:`set_gmail_oauth_tokens` clears the error.
        """
        now = _now_iso()

        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            tokens = nxt["integrations"]["gmail"].setdefault("tokens", {})
            tokens["lastError"] = message
            tokens["updatedAt"] = now
            return nxt

        await self._mutate(update)
        logger.info("Gmail authorization marked as needing attention: %s", message)

    async def clear_gmail_oauth_tokens(self) -> None:
        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            nxt["integrations"]["gmail"].pop("tokens", None)
            return nxt

        await self._mutate(update)
        logger.info("Gmail OAuth tokens cleared")

    async def get_gmail_oauth_tokens_summary(self) -> GmailOauthTokensSummary:
        tokens = (await self._view())["integrations"]["gmail"].get("tokens") or {}
        return GmailOauthTokensSummary(
            authorized=bool(tokens.get("accessToken")),
            scope=tokens.get("scope"),
            expires_at=tokens.get("expiresAt"),
            account_email=tokens.get("accountEmail"),
            updated_at=tokens.get("updatedAt"),
            last_error=tokens.get("lastError"),
        )

    async def get_gmail_connection(self) -> IntegrationConnection:
        gmail = (await self._view())["integrations"]["gmail"]
        tokens = gmail.get("tokens") or {}
        last_error = tokens.get("lastError") or (gmail.get("oauth") or {}).get("lastError")
        connected = bool(tokens.get("accessToken"))
        return IntegrationConnection(
            integration_id="gmail",
            connected=connected,
            account_label=tokens.get("accountEmail"),
            connected_at=tokens.get("updatedAt") if connected else None,
            needs_attention=bool(last_error),
            last_error=last_error,
        )

    # -- permissions ---------------------------------------------------------

    async def get_permissions(self) -> PermissionsState:
        overrides = (await self._view())["permissions"]
        return PermissionsState(
            catalog=PERMISSION_CATALOG_V1,
            enabled=materialize_permissions(overrides),
        )

    async def set_permission(self, permission_id: str, enabled: bool) -> None:
        """Store an override.

        Whether *permission_id* is in the catalog is checked by the caller;
        unknown ids already in the document are ignored on read.
        """
        if not isinstance(enabled, bool):
            raise TypeError("enabled must be a bool")

        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            nxt["permissions"][permission_id] = enabled
            return nxt

        await self._mutate(update)
        logger.info("Permission %s set to %s", permission_id, enabled)

    async def reset_permissions(self) -> None:
        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            nxt["permissions"] = {}
            return nxt

        await self._mutate(update)
        logger.info("Permissions reset to catalog defaults")

    # -- policies ------------------------------------------------------------

    async def get_confirm_before_send_policy(self) -> ConfirmBeforeSendPolicyState:
        overrides = (await self._view())["policies"]["confirmBeforeSend"]
        return ConfirmBeforeSendPolicyState(
            enabled=materialize_confirm_before_send(overrides),
        )

    async def set_confirm_before_send_policy(
        self, integration_id: str, enabled: bool,
    ) -> None:
        if integration_id not in KNOWN_INTEGRATIONS:
            raise ValueError(f"Unknown integration: {integration_id}")
        if not isinstance(enabled, bool):
            raise TypeError("enabled must be a bool")

        def update(state: StateDoc) -> StateDoc:
            nxt = copy.deepcopy(state)
            nxt["policies"]["confirmBeforeSend"][integration_id] = enabled
            return nxt

        await self._mutate(update)
        logger.info("confirmBeforeSend for %s set to %s", integration_id, enabled)
