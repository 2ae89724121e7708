from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import httpx


TELEGRAM_API_BASE_URL = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE_LEN = 3900


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str
    api_base_url: str = TELEGRAM_API_BASE_URL

    def method_url(self, method: str) -> str:
        return f"{self.api_base_url.rstrip('/')}/bot{self.bot_token}/{method}"


@dataclass(frozen=True)
class TelegramCommand:
    name: str
    args: list[str] = field(default_factory=list)
    chat_id: str | None = None

    @property
    def arg_text(self) -> str:
        return " ".join(self.args)


def _redact(config: TelegramConfig, msg: str) -> str:
    if config.bot_token:
        msg = msg.replace(config.bot_token, "<redacted>")
    return msg


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunk = s[:cut].rstrip()
        parts.append(chunk)
        s = s[cut:].lstrip()
    return parts


async def send_telegram_message(
    client: httpx.AsyncClient, config: TelegramConfig, text: str, *, chat_id: str | None = None
) -> tuple[bool, dict]:
    payload = {"chat_id": chat_id or config.chat_id, "text": text}
    try:
        resp = await client.post(config.method_url("sendMessage"), json=payload, timeout=15.0)
        data = resp.json()
        return bool(data.get("ok")), data
    except Exception as e:
        return False, {"ok": False, "error": _redact(config, f"{type(e).__name__}: {e}")}


async def send_telegram_message_chunked(
    client: httpx.AsyncClient,
    config: TelegramConfig,
    text: str,
    *,
    chat_id: str | None = None,
    max_len: int = TELEGRAM_MAX_MESSAGE_LEN,
) -> tuple[bool, list[dict]]:
    parts = split_telegram_message(text, max_len=max_len)
    ok_all = True
    responses: list[dict] = []
    for part in parts:
        ok, resp = await send_telegram_message(client, config, part, chat_id=chat_id)
        ok_all = ok_all and ok
        responses.append(resp)
    return ok_all, responses


async def get_telegram_updates(
    client: httpx.AsyncClient,
    config: TelegramConfig,
    *,
    offset: int | None = None,
    timeout_seconds: int = 30,
) -> tuple[bool, list[dict]]:
    """Long-poll getUpdates. Returns (ok, updates); never raises on transport errors."""
    params: dict[str, Any] = {"timeout": int(timeout_seconds), "allowed_updates": json.dumps(["message"])}
    if offset is not None:
        params["offset"] = int(offset)
    try:
        resp = await client.get(config.method_url("getUpdates"), params=params, timeout=timeout_seconds + 10.0)
        data = resp.json()
    except Exception as e:
        return False, [{"ok": False, "error": _redact(config, f"{type(e).__name__}: {e}")}]
    if not data.get("ok"):
        return False, [data]
    result = data.get("result")
    if not isinstance(result, list):
        return True, []
    return True, [u for u in result if isinstance(u, dict)]


async def get_telegram_bot_username(client: httpx.AsyncClient, config: TelegramConfig) -> tuple[str | None, dict]:
    """Resolve the bot's own username via getMe. Returns (username, response); never raises."""
    try:
        resp = await client.get(config.method_url("getMe"), timeout=15.0)
        data = resp.json()
    except Exception as e:
        return None, {"ok": False, "error": _redact(config, f"{type(e).__name__}: {e}")}
    result = data.get("result") if data.get("ok") else None
    username = result.get("username") if isinstance(result, dict) else None
    if not isinstance(username, str) or not username.strip():
        return None, data
    return username.strip().lstrip("@"), data


def parse_telegram_command(text: str, *, chat_id: Any = None, bot_username: str | None = None) -> TelegramCommand | None:
    """
    Parse "/name arg ..." into a TelegramCommand. Returns None for plain text
    and for commands addressed to another bot ("/uptime@other_bot"). A
    "@name" suffix is only accepted when it matches bot_username.
    """
    s = (text or "").strip()
    if not s.startswith("/"):
        return None
    head, *args = s.split()
    name = head[1:]
    if "@" in name:
        name, _, target = name.partition("@")
        if not bot_username or target.lower() != bot_username.lower().lstrip("@"):
            return None
    name = name.lower()
    if not name:
        return None
    return TelegramCommand(name=name, args=args, chat_id=str(chat_id) if chat_id is not None else None)


def redact_telegram_response(data: dict) -> str:
    safe = {"ok": data.get("ok")}
    if isinstance(data.get("result"), dict):
        safe["result"] = {"message_id": data["result"].get("message_id")}
    if data.get("error"):
        safe["error"] = data.get("error")
    if data.get("description"):
        safe["description"] = data.get("description")
    return json.dumps(safe, ensure_ascii=False)
