from __future__ import annotations

import json

import httpx
import pytest

from voice_note_relay.core.clock import FakeClock
from voice_note_relay.core.relay.update_relay import UpdateRelay
from voice_note_relay.domain.errors import RelayError
from voice_note_relay.providers.telegram import TelegramMessageSurface


def _surface(handler) -> tuple[TelegramMessageSurface, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelegramMessageSurface(token="123:abc", client=client, api_base="https://tg.test"), client


@pytest.mark.asyncio
async def test_send_posts_message_and_returns_id():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 77}})

    surface, client = _surface(handler)
    async with client:
        assert await surface.send("42", "hi") == 77

    assert seen == [("/bot123:abc/sendMessage", {"chat_id": "42", "text": "hi"})]


@pytest.mark.asyncio
async def test_edit_posts_edit_message_text():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True, "result": True})

    surface, client = _surface(handler)
    async with client:
        await surface.edit("42", 7, "✅ done")

    assert seen == [
        ("/bot123:abc/editMessageText", {"chat_id": "42", "message_id": 7, "text": "✅ done"})
    ]


@pytest.mark.asyncio
async def test_not_modified_edit_is_ignored():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={
                "ok": False,
                "description": "Bad Request: message is not modified: specified new message content",
            },
        )

    surface, client = _surface(handler)
    async with client:
        await surface.edit("42", 7, "same")


@pytest.mark.asyncio
async def test_api_error_raises_relay_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked"})

    surface, client = _surface(handler)
    async with client:
        with pytest.raises(RelayError, match="blocked"):
            await surface.send("42", "hi")


@pytest.mark.asyncio
async def test_transport_error_raises_relay_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    surface, client = _surface(handler)
    async with client:
        with pytest.raises(RelayError):
            await surface.edit("42", 7, "x")


@pytest.mark.asyncio
async def test_non_json_response_raises_relay_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>bad gateway</html>")

    surface, client = _surface(handler)
    async with client:
        with pytest.raises(RelayError, match="502"):
            await surface.send("42", "hi")


def test_surface_requires_token():
    with pytest.raises(ValueError):
        TelegramMessageSurface(token="", client=httpx.AsyncClient())


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [["bad gateway"], None, "oops"])
async def test_non_object_json_reply_raises_relay_error(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json=body)

    surface, client = _surface(handler)
    async with client:
        with pytest.raises(RelayError):
            await surface.edit("42", 7, "hello")
        with pytest.raises(RelayError):
            await surface.send("42", "hello")


@pytest.mark.asyncio
async def test_relay_completion_survives_non_object_json_reply():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(502, json=["bad gateway"])

    surface, client = _surface(handler)
    async with client:
        relay = UpdateRelay(surface=surface, clock=FakeClock(), chat_id="42", message_id=7)
        await relay.complete("hello")

    assert calls == ["/bot123:abc/editMessageText"]
