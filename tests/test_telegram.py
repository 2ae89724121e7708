from __future__ import annotations

import json

import httpx
import pytest

from uptime_watch.bot import CommandListener
from uptime_watch.dispatcher import NotificationDispatcher
from uptime_watch.query import QueryService
from uptime_watch.state import SharedState
from uptime_watch.telegram import (
    TELEGRAM_MAX_MESSAGE_LEN,
    TelegramConfig,
    get_telegram_bot_username,
    get_telegram_updates,
    parse_telegram_command,
    redact_telegram_response,
    send_telegram_message,
    split_telegram_message,
)

TOKEN = "123:secret-token"
CONFIG = TelegramConfig(bot_token=TOKEN, chat_id="-100")


class _FakeBotApi:
    """Records sendMessage calls, answers getMe and serves queued getUpdates batches."""

    def __init__(
        self,
        *,
        updates: list[list[dict]] | None = None,
        send_ok: bool = True,
        username: str | None = "watch_bot",
    ) -> None:
        self.username = username
        self.get_me_calls = 0
        self.updates = list(updates or [])
        self.send_ok = send_ok
        self.sent: list[dict] = []
        self.offsets: list[str | None] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.url.path.startswith(f"/bot{TOKEN}/")
        method = request.url.path.rsplit("/", 1)[-1]
        if method == "sendMessage":
            payload = json.loads(request.content)
            self.sent.append(payload)
            if not self.send_ok:
                return httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})
            return httpx.Response(200, json={"ok": True, "result": {"message_id": len(self.sent)}})
        if method == "getMe":
            self.get_me_calls += 1
            if self.username is None:
                return httpx.Response(401, json={"ok": False, "description": "Unauthorized"})
            return httpx.Response(200, json={"ok": True, "result": {"id": 1, "is_bot": True, "username": self.username}})
        if method == "getUpdates":
            self.offsets.append(request.url.params.get("offset"))
            batch = self.updates.pop(0) if self.updates else []
            return httpx.Response(200, json={"ok": True, "result": batch})
        return httpx.Response(404, json={"ok": False})


def _update(update_id: int, text: str, chat_id: int = 42) -> dict:
    return {"update_id": update_id, "message": {"message_id": update_id, "chat": {"id": chat_id}, "text": text}}


def test_split_telegram_message_respects_max_len() -> None:
    text = ("line\n" * 2000).strip()
    parts = split_telegram_message(text, max_len=500)
    assert len(parts) > 1
    assert all(0 < len(p) <= 500 for p in parts)


def test_split_telegram_message_default_limit() -> None:
    text = "a" * (TELEGRAM_MAX_MESSAGE_LEN + 10)
    parts = split_telegram_message(text)
    assert len(parts) == 2
    assert all(len(p) <= TELEGRAM_MAX_MESSAGE_LEN for p in parts)


@pytest.mark.parametrize(
    ("text", "name", "args"),
    [
        ("/uptime", "uptime", []),
        ("/Stats https://a.example", "stats", ["https://a.example"]),
        ("  /stats@watch_bot https://a.example  ", "stats", ["https://a.example"]),
        ("/help", "help", []),
    ],
)
def test_parse_telegram_command(text: str, name: str, args: list[str]) -> None:
    cmd = parse_telegram_command(text, chat_id=42, bot_username="watch_bot")
    assert cmd is not None
    assert cmd.name == name
    assert cmd.args == args
    assert cmd.chat_id == "42"


@pytest.mark.parametrize("text", ["hello", "", "/", "/uptime@other_bot"])
def test_parse_telegram_command_ignores_non_commands(text: str) -> None:
    assert parse_telegram_command(text, bot_username="watch_bot") is None


def test_parse_telegram_command_rejects_suffix_when_own_name_unknown() -> None:
    assert parse_telegram_command("/uptime@watch_bot") is None
    assert parse_telegram_command("/uptime").name == "uptime"


@pytest.mark.asyncio
async def test_send_message_posts_to_chat() -> None:
    api = _FakeBotApi()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        ok, data = await send_telegram_message(client, CONFIG, "hi")
    assert ok is True
    assert api.sent == [{"chat_id": "-100", "text": "hi"}]
    assert redact_telegram_response(data) == json.dumps({"ok": True, "result": {"message_id": 1}})


@pytest.mark.asyncio
async def test_send_message_transport_error_is_redacted() -> None:
    def _fail(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError(f"cannot reach {request.url}", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(_fail)) as client:
        ok, data = await send_telegram_message(client, CONFIG, "hi")
    assert ok is False
    assert TOKEN not in data["error"]
    assert "<redacted>" in data["error"]


@pytest.mark.asyncio
async def test_dispatcher_reports_failure_without_raising() -> None:
    api = _FakeBotApi(send_ok=False)
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        dispatcher = NotificationDispatcher(client, CONFIG)
        assert await dispatcher.send("Server x is down!") is False
    assert len(api.sent) == 1


@pytest.mark.asyncio
async def test_dispatcher_splits_long_messages() -> None:
    api = _FakeBotApi()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        dispatcher = NotificationDispatcher(client, CONFIG)
        assert await dispatcher.send("x" * (TELEGRAM_MAX_MESSAGE_LEN * 2 + 1), chat_id="7") is True
    assert len(api.sent) == 3
    assert {p["chat_id"] for p in api.sent} == {"7"}


@pytest.mark.asyncio
async def test_get_updates_returns_batch() -> None:
    api = _FakeBotApi(updates=[[_update(5, "/uptime")]])
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        ok, updates = await get_telegram_updates(client, CONFIG, offset=5, timeout_seconds=0)
    assert ok is True
    assert [u["update_id"] for u in updates] == [5]
    assert api.offsets == ["5"]


@pytest.mark.asyncio
async def test_command_listener_answers_in_originating_chat() -> None:
    state = SharedState()
    await state.record_check("https://a.example", True)
    api = _FakeBotApi(
        updates=[
            [
                _update(10, "/uptime", chat_id=1),
                _update(11, "just chatting", chat_id=1),
                _update(12, "/stats https://missing.example", chat_id=2),
            ],
            [],
        ]
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        listener = CommandListener(
            client, CONFIG, QueryService(state, ["https://a.example"]), poll_timeout_seconds=0, retry_delay_seconds=0
        )
        assert await listener.poll_once() == 3
        assert listener.offset == 13
        assert await listener.poll_once() == 0

    assert api.offsets == [None, "13"]
    assert [p["chat_id"] for p in api.sent] == ["1", "2"]
    assert api.sent[0]["text"].startswith("Monitoring statistics:")
    assert api.sent[1]["text"].startswith("Server 'https://missing.example' not found in monitoring list.")
    assert await state.endpoint_report("https://missing.example") is None


@pytest.mark.asyncio
async def test_command_listener_survives_failed_poll() -> None:
    def _down(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"ok": False, "description": "Bad Gateway"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(_down)) as client:
        listener = CommandListener(client, CONFIG, QueryService(SharedState(), []), retry_delay_seconds=0)
        assert await listener.poll_once() == 0
        assert listener.offset is None


@pytest.mark.asyncio
async def test_get_bot_username() -> None:
    api = _FakeBotApi(username="watch_bot")
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        username, data = await get_telegram_bot_username(client, CONFIG)
    assert username == "watch_bot"
    assert data["ok"] is True


@pytest.mark.asyncio
async def test_command_listener_ignores_commands_for_other_bots() -> None:
    state = SharedState()
    await state.record_check("https://a.example", True)
    api = _FakeBotApi(
        updates=[
            [
                _update(20, "/uptime@someone_elses_bot", chat_id=1),
                _update(21, "/stats@someone_elses_bot https://a.example", chat_id=1),
                _update(22, "/uptime@Watch_Bot", chat_id=3),
            ],
            [_update(23, "/uptime@someone_elses_bot", chat_id=1)],
        ]
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        listener = CommandListener(
            client, CONFIG, QueryService(state, ["https://a.example"]), poll_timeout_seconds=0, retry_delay_seconds=0
        )
        assert await listener.poll_once() == 3
        assert listener.bot_username == "watch_bot"
        assert await listener.poll_once() == 1

    assert api.get_me_calls == 1
    assert [p["chat_id"] for p in api.sent] == ["3"]
    assert api.sent[0]["text"].startswith("Monitoring statistics:")


@pytest.mark.asyncio
async def test_command_listener_without_identity_answers_only_plain_commands() -> None:
    api = _FakeBotApi(username=None, updates=[[_update(30, "/uptime@watch_bot"), _update(31, "/help")]])
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        listener = CommandListener(client, CONFIG, QueryService(SharedState(), []), poll_timeout_seconds=0)
        assert await listener.poll_once() == 2
        assert listener.bot_username is None

    assert len(api.sent) == 1
    assert api.sent[0]["text"].startswith("Available commands:")
