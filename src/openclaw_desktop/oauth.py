"""Gmail OAuth authorization-code handshake.

Flow::

    start(host) ──► pending request in PendingOAuthSlot ──► user's browser
                                                            │
    callback(state, code, error) ◄──────────────────────────┘
        validate against the slot, take it (single use),
        exchange code, resolve account email, persist tokens

At most one flow is pending per process.  The pending request lives in an
explicitly owned :class:`PendingOAuthSlot`, not on disk: a restart of the
manager mid-flow invalidates it, and starting a new flow replaces the old
one.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import httpx

from .audit import AuditLog
from .config import DEFAULT_GMAIL_SCOPE
from .state.store import (
    GmailOauthCreds,
    GmailOauthCredsSummary,
    GmailOauthTokens,
    GmailOauthTokensSummary,
    StateStore,
)

logger = logging.getLogger("openclaw_desktop.oauth")

GOOGLE_AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GMAIL_PROFILE_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/profile"

CALLBACK_PATH = "/integrations/gmail/oauth/callback"

# Pending requests older than this are rejected (10 minutes).
DEFAULT_PENDING_TTL = 600.0


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class OAuthHandshakeError(Exception):
    """A handshake could not be started.  ``code`` is a stable error id."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code


class GoogleOAuthError(Exception):
    """The token endpoint rejected the exchange or returned no token."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Pending request slot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PendingOAuthRequest:
    state: str
    created_at: float
    redirect_uri: str
    scope: str


class PendingOAuthSlot:
    """Holds the single in-flight authorization request.

    Args:
        ttl_seconds: Age after which a pending request is expired.
        clock: Returns the current time in seconds (``time.time``).
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_PENDING_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._pending: Optional[PendingOAuthRequest] = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def replace(self, request: PendingOAuthRequest) -> Optional[PendingOAuthRequest]:
        """Install *request*, returning the one it displaced (if any)."""
        previous = self._pending
        self._pending = request
        return previous

    def peek(self) -> Optional[PendingOAuthRequest]:
        return self._pending

    def take(self) -> Optional[PendingOAuthRequest]:
        """Remove and return the pending request."""
        pending, self._pending = self._pending, None
        return pending

    def clear(self) -> None:
        self._pending = None

    def is_expired(self, request: PendingOAuthRequest) -> bool:
        return self._clock() - request.created_at > self._ttl

    def expire(self) -> bool:
        """Drop the pending request if it has expired.  Returns whether it did."""
        if self._pending is not None and self.is_expired(self._pending):
            self._pending = None
            return True
        return False

    def __bool__(self) -> bool:
        return self._pending is not None


# ---------------------------------------------------------------------------
# Google endpoints
# ---------------------------------------------------------------------------

class GoogleOAuthClient:
    """Google authorization URL, token exchange and Gmail profile lookup.

    Args:
        http_client: Shared ``httpx.AsyncClient``.  When ``None`` a client
            is created per request.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ) -> None:
        self._http = http_client
        self._timeout = timeout

    @staticmethod
    def build_authorization_url(
        client_id: str, redirect_uri: str, scope: str, state: str,
    ) -> str:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": scope,
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{GOOGLE_AUTH_ENDPOINT}?{urlencode(params)}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http is not None:
            return await self._http.request(method, url, timeout=self._timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=False) as client:
            return await client.request(method, url, **kwargs)

    async def exchange_code(
        self, code: str, creds: GmailOauthCreds, redirect_uri: str,
    ) -> dict[str, Any]:
        """POST the authorization code to the token endpoint.

        Raises:
            GoogleOAuthError: On transport failure, a non-200 response, or
                a body without ``access_token``.
        """
        try:
            resp = await self._request(
                "POST",
                GOOGLE_TOKEN_ENDPOINT,
                data={
                    "code": code,
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
        except httpx.HTTPError as e:
            raise GoogleOAuthError(f"Token request failed: {e}") from e

        if resp.status_code != 200:
            raise GoogleOAuthError(
                f"Token exchange failed: HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict) or not str(data.get("access_token") or "").strip():
            raise GoogleOAuthError(
                "Token exchange failed: missing access token",
                status_code=resp.status_code,
            )
        return data

    async def fetch_account_email(self, access_token: str) -> Optional[str]:
        """Best-effort Gmail profile lookup.  ``None`` on any failure."""
        try:
            resp = await self._request(
                "GET",
                GMAIL_PROFILE_ENDPOINT,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            if resp.status_code != 200:
                return None
            profile = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Gmail profile lookup failed: %s", type(e).__name__)
            return None
        email = str((profile or {}).get("emailAddress") or "").strip() if isinstance(profile, dict) else ""
        return email or None


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------

@dataclass
class OAuthStartResult:
    auth_url: str
    redirect_uri: str
    scope: str

    def to_dict(self) -> dict:
        return {
            "authUrl": self.auth_url,
            "redirectUri": self.redirect_uri,
            "scope": self.scope,
        }


@dataclass
class OAuthCallbackResult:
    """Terminal outcome of a callback.

    ``error`` is a stable id: ``provider_error``, ``no_pending_request``,
    ``expired``, ``state_mismatch``, ``missing_code``,
    ``missing_oauth_creds`` or ``token_exchange_failed``.
    """
    ok: bool
    error: Optional[str] = None
    message: Optional[str] = None
    account_email: Optional[str] = None


@dataclass
class OAuthStatus:
    creds: GmailOauthCredsSummary
    tokens: GmailOauthTokensSummary
    redirect_uri: str
    pending: bool

    def to_dict(self) -> dict:
        return {
            "oauthCreds": self.creds.to_dict(),
            "oauthTokens": self.tokens.to_dict(),
            "redirectUri": self.redirect_uri,
            "pending": self.pending,
        }


def _expires_at(expires_in: Any, now: float) -> Optional[str]:
    try:
        seconds = float(expires_in)
    except (TypeError, ValueError):
        return None
    if not seconds > 0 or seconds == float("inf"):
        return None
    moment = datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(seconds=seconds)
    return moment.isoformat()


class GmailOAuthHandshake:
    """CSRF-protected, single-pending, time-bounded Gmail authorization.

    Args:
        store: Source of client credentials and sink for tokens.
        slot: The process's pending-request slot.
        client: Google endpoint client.
        audit: Optional audit journal for ``callback_failed`` /
            ``authorized`` events (written best-effort).
        scope: Requested OAuth scope.
    """

    def __init__(
        self,
        store: StateStore,
        slot: Optional[PendingOAuthSlot] = None,
        client: Optional[GoogleOAuthClient] = None,
        audit: Optional[AuditLog] = None,
        scope: str = DEFAULT_GMAIL_SCOPE,
    ) -> None:
        self._store = store
        self._slot = slot if slot is not None else PendingOAuthSlot()
        self._client = client if client is not None else GoogleOAuthClient()
        self._audit = audit
        self._scope = scope

    @property
    def slot(self) -> PendingOAuthSlot:
        return self._slot

    @staticmethod
    def redirect_uri_for(host: str) -> str:
        return f"http://{host or '127.0.0.1'}{CALLBACK_PATH}"

    async def start(self, host: str) -> OAuthStartResult:
        """Begin a flow, replacing any pending one.

        Raises:
            OAuthHandshakeError: ``missing_oauth_creds`` when no client
                credentials are configured.
        """
        redirect_uri = self.redirect_uri_for(host)
        creds = await self._store.get_gmail_oauth_creds()
        if creds is None:
            raise OAuthHandshakeError(
                "missing_oauth_creds",
                "Gmail OAuth client credentials are not configured",
            )

        state = secrets.token_urlsafe(32)
        displaced = self._slot.replace(PendingOAuthRequest(
            state=state,
            created_at=self._slot.now(),
            redirect_uri=redirect_uri,
            scope=self._scope,
        ))
        if displaced is not None:
            logger.info("New Gmail OAuth flow replaced a pending one")

        auth_url = self._client.build_authorization_url(
            creds.client_id, redirect_uri, self._scope, state,
        )
        return OAuthStartResult(auth_url=auth_url, redirect_uri=redirect_uri, scope=self._scope)

    async def _fail(
        self, error: str, message: str, details: Optional[dict] = None,
    ) -> OAuthCallbackResult:
        logger.warning("Gmail OAuth callback failed: %s", error)
        if self._audit is not None:
            await self._audit.safe_append(
                "integrations.gmail.oauth.callback_failed",
                "browser",
                {"error": error, **(details or {})},
            )
        return OAuthCallbackResult(ok=False, error=error, message=message)

    async def callback(
        self,
        state: Optional[str],
        code: Optional[str],
        error: Optional[str] = None,
    ) -> OAuthCallbackResult:
        """Complete the pending flow.  Never raises for protocol failures."""
        state = (state or "").strip()
        code = (code or "").strip()
        error = (error or "").strip()

        if error:
            # Leave the pending request for a retry in the same flow.
            return await self._fail("provider_error", f"Gmail authorization failed: {error}")

        pending = self._slot.peek()
        if pending is None:
            return await self._fail(
                "no_pending_request",
                "No pending OAuth request. Start the flow again from the desktop app.",
            )

        if self._slot.is_expired(pending):
            self._slot.clear()
            return await self._fail(
                "expired", "OAuth request expired. Start the flow again.",
            )

        if not state or not secrets.compare_digest(
            state.encode("utf-8"), pending.state.encode("utf-8"),
        ):
            self._slot.clear()
            return await self._fail(
                "state_mismatch", "Invalid OAuth callback. Start the flow again.",
            )

        if not code:
            self._slot.clear()
            return await self._fail(
                "missing_code", "Invalid OAuth callback. Start the flow again.",
            )

        creds = await self._store.get_gmail_oauth_creds()
        if creds is None:
            return await self._fail(
                "missing_oauth_creds",
                "Missing OAuth client credentials. Enter them in the desktop app and try again.",
            )

        # Single use: nothing after this point can reuse the pending request.
        self._slot.take()

        try:
            data = await self._client.exchange_code(code, creds, pending.redirect_uri)
        except GoogleOAuthError as e:
            await self._store.set_gmail_oauth_tokens_error("token_exchange_failed")
            return await self._fail(
                "token_exchange_failed", str(e), {"status": e.status_code},
            )

        access_token = str(data["access_token"]).strip()
        account_email = await self._client.fetch_account_email(access_token)

        await self._store.set_gmail_oauth_tokens(GmailOauthTokens(
            access_token=access_token,
            refresh_token=str(data["refresh_token"]) if data.get("refresh_token") else None,
            scope=str(data["scope"]) if data.get("scope") else pending.scope,
            token_type=str(data["token_type"]) if data.get("token_type") else None,
            expires_at=_expires_at(data.get("expires_in"), self._slot.now()),
            account_email=account_email,
        ))
        if self._audit is not None:
            await self._audit.safe_append("integrations.gmail.oauth.authorized", "browser")
        logger.info("Gmail OAuth authorized")
        return OAuthCallbackResult(ok=True, account_email=account_email)

    async def status(self, host: str) -> OAuthStatus:
        self._slot.expire()
        return OAuthStatus(
            creds=await self._store.get_gmail_oauth_creds_summary(),
            tokens=await self._store.get_gmail_oauth_tokens_summary(),
            redirect_uri=self.redirect_uri_for(host),
            pending=bool(self._slot),
        )
