"""Telegram bot token checks: local format check and ``getMe`` validation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger("openclaw_desktop.telegram")

TELEGRAM_API_BASE = "https://api.telegram.org"

# <bot id>:<secret>, e.g. 123456:AAH...; the secret part is ~35 chars
_TOKEN_PATTERN = re.compile(r"^\d+:[A-Za-z0-9_-]{10,}$")


@dataclass
class TelegramValidation:
    ok: bool
    account_label: Optional[str] = None
    error: Optional[str] = None


def looks_like_telegram_token(token: str) -> bool:
    return bool(_TOKEN_PATTERN.match(token))


def _account_label(result: object) -> Optional[str]:
    if not isinstance(result, dict):
        return None
    username = result.get("username")
    if username:
        return f"@{username}"
    first_name = result.get("first_name")
    return str(first_name) if first_name else None


async def validate_telegram_token(
    token: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 10.0,
) -> TelegramValidation:
    """Call ``getMe`` with *token*.

    Success needs HTTP 200 and ``{"ok": true}``.  Never raises: transport
    failures come back as ``TelegramValidation(ok=False, error=...)``.
    Error strings never include the token, which is part of the URL.
    """
    url = f"{TELEGRAM_API_BASE}/bot{token}/getMe"
    try:
        if client is not None:
            resp = await client.get(url, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=False) as owned:
                resp = await owned.get(url)
    except httpx.HTTPError as e:
        # httpx messages can embed the request URL, and with it the token
        logger.warning("Telegram getMe request failed: %s", type(e).__name__)
        return TelegramValidation(ok=False, error="telegram_fetch_failed")

    try:
        data = resp.json()
    except ValueError:
        data = None

    if resp.status_code != 200:
        return TelegramValidation(ok=False, error=f"telegram_http_{resp.status_code}")
    if not isinstance(data, dict) or data.get("ok") is not True:
        return TelegramValidation(ok=False, error="telegram_not_ok")
    return TelegramValidation(ok=True, account_label=_account_label(data.get("result")))
