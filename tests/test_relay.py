import asyncio
from typing import List, Optional

import httpx
import pytest

from ai_relay import upstream
from ai_relay.errors import UpstreamUnavailable

CHAT_URL = "https://openai.test/v1/chat/completions"
CHUNKS = [b"data: 1\n\n", b"data: 2\n\n", b"data: 3\n\n"]


class RecordingStream(httpx.AsyncByteStream):
    """Upstream body that yields fixed chunks and records whether it was closed."""

    def __init__(self, chunks: List[bytes], fail_after: Optional[int] = None) -> None:
        self.chunks = chunks
        self.fail_after = fail_after
        self.yielded = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            if self.fail_after is not None and self.yielded >= self.fail_after:
                raise httpx.ReadError("connection reset")
            self.yielded += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def _scope() -> dict:
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.4"},
        "http_version": "1.1",
        "method": "POST",
        "path": "/chat",
        "headers": [],
    }


async def _never_disconnect():
    await asyncio.Event().wait()


async def _open(settings, upstream_mock, stream: httpx.AsyncByteStream):
    upstream_mock.handler = lambda request: httpx.Response(
        200, headers={"content-type": "text/event-stream"}, stream=stream
    )
    return await upstream.relay_stream(
        settings,
        "POST",
        CHAT_URL,
        default_content_type="text/event-stream",
        cors_headers=settings.cors_headers,
    )


def _bodies(messages: List[dict]) -> List[tuple]:
    return [(m["body"], m.get("more_body", False)) for m in messages if m["type"] == "http.response.body"]


@pytest.mark.asyncio
async def test_relay_forwards_each_chunk_as_it_arrives(settings, upstream_mock):
    first_sent = asyncio.Event()

    class GatedStream(RecordingStream):
        async def __aiter__(self):
            yield CHUNKS[0]
            # Only reachable once the first chunk has gone out to the caller.
            await asyncio.wait_for(first_sent.wait(), timeout=1)
            yield CHUNKS[1]

    stream = GatedStream(CHUNKS[:2])
    response = await _open(settings, upstream_mock, stream)
    messages = []

    async def send(message):
        messages.append(message)
        if message.get("body") == CHUNKS[0]:
            first_sent.set()

    await response(_scope(), _never_disconnect, send)

    assert messages[0]["type"] == "http.response.start"
    assert messages[0]["status"] == 200
    assert _bodies(messages) == [(CHUNKS[0], True), (CHUNKS[1], True), (b"", False)]
    assert stream.closed


@pytest.mark.asyncio
async def test_relay_releases_upstream_when_caller_disconnects(settings, upstream_mock):
    stream = RecordingStream(CHUNKS)
    response = await _open(settings, upstream_mock, stream)
    messages = []

    async def send(message):
        if len(messages) == 2:
            raise OSError("client went away")
        messages.append(message)

    with pytest.raises(Exception):
        await response(_scope(), _never_disconnect, send)

    assert _bodies(messages) == [(CHUNKS[0], True)]
    assert stream.closed
    assert stream.yielded < len(CHUNKS)


@pytest.mark.asyncio
async def test_relay_releases_upstream_on_mid_stream_failure(settings, upstream_mock):
    stream = RecordingStream(CHUNKS, fail_after=1)
    response = await _open(settings, upstream_mock, stream)
    messages = []

    async def send(message):
        messages.append(message)

    await response(_scope(), _never_disconnect, send)

    assert _bodies(messages) == [(CHUNKS[0], True), (b"", False)]
    assert stream.closed


@pytest.mark.asyncio
async def test_relay_releases_upstream_when_never_sent(settings, upstream_mock):
    stream = RecordingStream(CHUNKS)
    response = await _open(settings, upstream_mock, stream)

    async def send(message):
        raise OSError("client went away")

    with pytest.raises(Exception):
        await response(_scope(), _never_disconnect, send)

    assert stream.yielded == 0
    assert stream.closed


@pytest.mark.asyncio
async def test_relay_keeps_upstream_status_and_default_content_type(settings, upstream_mock):
    upstream_mock.handler = lambda request: httpx.Response(429, stream=RecordingStream([b'{"error": "slow down"}']))

    response = await upstream.relay_stream(
        settings,
        "POST",
        CHAT_URL,
        default_content_type="application/json",
        cors_headers=settings.cors_headers,
    )
    messages = []

    async def send(message):
        messages.append(message)

    await response(_scope(), _never_disconnect, send)

    start = messages[0]
    headers = dict(start["headers"])
    assert start["status"] == 429
    assert headers[b"content-type"].startswith(b"application/json")
    assert headers[b"access-control-allow-origin"] == b"*"
    assert _bodies(messages)[0] == (b'{"error": "slow down"}', True)


@pytest.mark.asyncio
async def test_relay_open_failure_raises_unavailable(settings, upstream_mock):
    def fail(request):
        raise httpx.ConnectError("refused", request=request)

    upstream_mock.handler = fail

    with pytest.raises(UpstreamUnavailable):
        await upstream.relay_stream(
            settings,
            "POST",
            CHAT_URL,
            default_content_type="text/event-stream",
            cors_headers={},
        )
