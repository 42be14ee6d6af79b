"""Tests for ManagerService: validation, audit trail, wiring."""

import json
import sys
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from openclaw_desktop.audit import AuditLog
from openclaw_desktop.config import ManagerConfig
from openclaw_desktop.gateway import GatewayStatusController
from openclaw_desktop.manager import ManagerService
from openclaw_desktop.oauth import (
    GOOGLE_TOKEN_ENDPOINT,
    GmailOAuthHandshake,
    GoogleOAuthClient,
    OAuthHandshakeError,
)
from openclaw_desktop.state.store import StateStore

TOKEN = "123456:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"


class Gateway:
    def __init__(self, status="stopped"):
        self.status = status
        self.calls = []

    async def __call__(self, args):
        self.calls.append(args[0])
        if args[0] == "start":
            self.status = "running"
        elif args[0] == "stop":
            self.status = "stopped"
        return f"Runtime: {self.status}"


def _telegram_handler(request):
    if request.url.path.endswith("/getMe"):
        if "bad" in request.url.path:
            return httpx.Response(401, json={"ok": False})
        return httpx.Response(200, json={"ok": True, "result": {"username": "my_bot"}})
    return httpx.Response(404)


def _google_handler(request):
    if str(request.url) == GOOGLE_TOKEN_ENDPOINT:
        return httpx.Response(200, json={"access_token": "ya29.x", "expires_in": 60})
    return httpx.Response(200, json={"emailAddress": "user@example.com"})


@pytest.fixture
def gateway_cli():
    return Gateway()


@pytest.fixture
def service(store, audit, gateway_cli, tmp_path):
    google = httpx.AsyncClient(transport=httpx.MockTransport(_google_handler))
    telegram = httpx.AsyncClient(transport=httpx.MockTransport(_telegram_handler))

    async def log_file():
        return tmp_path / "gateway.log"

    return ManagerService(
        store,
        audit,
        GatewayStatusController(gateway_cli),
        GmailOAuthHandshake(store, client=GoogleOAuthClient(http_client=google), audit=audit),
        telegram_client=telegram,
        log_file_resolver=log_file,
    )


async def _events(audit):
    return (await audit.read_recent(100)).events


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_startup_regenerates_config(self, service, store):
        path = await service.startup()
        assert path == store.generated_config_path
        assert path.exists()

    @pytest.mark.asyncio
    async def test_status(self, service):
        status = (await service.status()).to_dict()
        assert status["gateway"] == {"status": "stopped"}
        assert status["integrations"]["telegram"]["connected"] is False
        assert status["integrations"]["gmail"]["connected"] is False

    @pytest.mark.asyncio
    async def test_gateway_actions_are_audited(self, service, audit, gateway_cli):
        assert (await service.start_gateway()).status == "running"
        assert (await service.restart_gateway()).status == "running"
        assert (await service.stop_gateway()).status == "stopped"

        events = await _events(audit)
        assert [e["type"] for e in events] == [
            "gateway.start", "gateway.restart", "gateway.stop",
        ]
        assert all(e["actor"] == "desktop-ui" for e in events)
        assert events[0]["details"] == {"status": "running"}


class TestTelegram:

    @pytest.mark.asyncio
    async def test_connect(self, service, audit):
        conn = await service.connect_telegram(f"  {TOKEN}  ")

        assert conn.connected is True
        assert conn.account_label == "@my_bot"
        events = await _events(audit)
        assert events[-1]["type"] == "integrations.telegram.connect"
        assert TOKEN not in audit.file_path.read_text()

    @pytest.mark.asyncio
    async def test_malformed_token(self, service, store, audit):
        with pytest.raises(ValueError, match="invalid_token"):
            await service.connect_telegram("not-a-token")

        conn = await store.get_telegram_connection()
        assert conn.last_error == "invalid_token_format"
        assert (await _events(audit))[-1]["type"] == "integrations.telegram.connect_failed"

    @pytest.mark.asyncio
    async def test_rejected_token(self, service, store):
        with pytest.raises(ValueError, match="telegram_validation_failed"):
            await service.connect_telegram("123456:badbadbadbadbad")

        conn = await store.get_telegram_connection()
        assert conn.connected is False
        assert conn.last_error == "telegram_http_401"

    @pytest.mark.asyncio
    async def test_disconnect(self, service, audit):
        await service.connect_telegram(TOKEN)
        conn = await service.disconnect_telegram()
        assert conn.connected is False
        assert (await _events(audit))[-1]["type"] == "integrations.telegram.disconnect"


class TestGmail:

    @pytest.mark.asyncio
    async def test_creds_require_both_fields(self, service, audit):
        with pytest.raises(ValueError, match="missing_fields"):
            await service.set_gmail_oauth_creds("client-id", " ")
        assert (await _events(audit))[-1]["type"] == "integrations.gmail.oauthCreds.set_failed"

    @pytest.mark.asyncio
    async def test_set_and_clear_creds(self, service, audit):
        summary = await service.set_gmail_oauth_creds("client-id-12345678", "GOCSPX-s")
        assert summary.configured is True
        assert summary.client_id_suffix == "12345678"

        summary = await service.clear_gmail_oauth_creds()
        assert summary.configured is False
        types = [e["type"] for e in await _events(audit)]
        assert types[-2:] == [
            "integrations.gmail.oauthCreds.set", "integrations.gmail.oauthCreds.clear",
        ]

    @pytest.mark.asyncio
    async def test_start_without_creds(self, service, audit):
        with pytest.raises(OAuthHandshakeError):
            await service.start_gmail_oauth("127.0.0.1:18790")
        event = (await _events(audit))[-1]
        assert event["type"] == "integrations.gmail.oauth.start_failed"
        assert event["details"] == {"error": "missing_oauth_creds"}

    @pytest.mark.asyncio
    async def test_full_flow(self, service, audit):
        await service.set_gmail_oauth_creds("client-id", "GOCSPX-s")
        started = await service.start_gmail_oauth("127.0.0.1:18790")
        state = parse_qs(urlparse(started.auth_url).query)["state"][0]

        assert (await service.gmail_oauth_status("127.0.0.1:18790")).pending is True

        result = await service.complete_gmail_oauth(state, "code")
        assert result.ok is True

        status = await service.gmail_oauth_status("127.0.0.1:18790")
        assert status.tokens.authorized is True
        assert status.pending is False

        status = await service.clear_gmail_oauth("127.0.0.1:18790")
        assert status.tokens.authorized is False

        events = await _events(audit)
        authorized = [e for e in events if e["type"] == "integrations.gmail.oauth.authorized"]
        assert authorized[0]["actor"] == "browser"
        assert events[-1]["type"] == "integrations.gmail.oauth.clear"


class TestPermissionsAndPolicies:

    @pytest.mark.asyncio
    async def test_set_permission(self, service, audit, store):
        perms = await service.set_permission("telegram.send", True)
        assert perms.enabled["telegram.send"] is True

        event = (await _events(audit))[-1]
        assert event["type"] == "permissions.set"
        assert event["details"] == {"id": "telegram.send", "enabled": True}

        generated = json.loads(store.generated_config_path.read_text())
        assert generated["channels"]["telegram"]["allowSend"] is True

    @pytest.mark.asyncio
    async def test_unknown_permission(self, service, store):
        with pytest.raises(ValueError, match="unknown_permission"):
            await service.set_permission("shell.exec", True)
        assert not store.state_path.exists()

    @pytest.mark.asyncio
    async def test_non_bool_enabled(self, service):
        with pytest.raises(ValueError, match="invalid_enabled"):
            await service.set_permission("telegram.send", "true")

    @pytest.mark.asyncio
    async def test_reset(self, service, audit):
        await service.set_permission("telegram.send", True)
        perms = await service.reset_permissions()
        assert perms.enabled["telegram.send"] is False
        assert (await _events(audit))[-1]["type"] == "permissions.reset"

    @pytest.mark.asyncio
    async def test_policy(self, service, audit):
        assert (await service.get_confirm_before_send_policy()).enabled == {
            "telegram": True, "gmail": True,
        }
        policy = await service.set_confirm_before_send_policy("gmail", False)
        assert policy.enabled == {"telegram": True, "gmail": False}
        event = (await _events(audit))[-1]
        assert event["details"] == {"integrationId": "gmail", "enabled": False}

    @pytest.mark.asyncio
    async def test_policy_validation(self, service):
        with pytest.raises(ValueError, match="invalid_integration"):
            await service.set_confirm_before_send_policy("slack", False)
        with pytest.raises(ValueError, match="invalid_enabled"):
            await service.set_confirm_before_send_policy("gmail", 0)


class TestAuditAndDiagnostics:

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_action(self, store, tmp_path, gateway_cli):
        blocker = tmp_path / "blocked"
        blocker.write_text("")
        service = ManagerService(
            store,
            AuditLog(blocker),
            GatewayStatusController(gateway_cli),
            GmailOAuthHandshake(store),
        )
        perms = await service.set_permission("gmail.read", True)
        assert perms.enabled["gmail.read"] is True

    @pytest.mark.asyncio
    async def test_recent_audit_is_clamped(self, service):
        for _ in range(3):
            await service.reset_permissions()
        assert len((await service.recent_audit(-10)).events) == 0
        assert len((await service.recent_audit(5000)).events) == 3

    @pytest.mark.asyncio
    async def test_run_diagnostics(self, service, audit):
        result = await service.run_diagnostics()
        assert len(result.checks) == 6
        event = (await _events(audit))[-1]
        assert event["type"] == "diagnostics.run"
        assert event["details"] == {"overall": result.overall}


class TestFromConfig:

    @pytest.mark.asyncio
    async def test_wires_config(self, tmp_path):
        config = ManagerConfig(
            data_dir=tmp_path / "data",
            gateway_command=[sys.executable, "-c", "print('Runtime: running')"],
            gateway_timeout=30,
            oauth_pending_ttl=5,
        )
        service = ManagerService.from_config(config, actor="cli")

        assert isinstance(service.store, StateStore)
        assert service.store.data_dir == tmp_path / "data"
        assert service.oauth.slot.ttl_seconds == 5
        assert (await service.gateway.status()).status == "running"

        await service.reset_permissions()
        assert (await _events(service.audit))[-1]["actor"] == "cli"
