"""
Real Functionality Tests - Notification Stream.

Tests the ingest and reconnect loop against a scripted websocket:
- Frames are dispatched as independent handler tasks
- Binary, foreign and malformed frames are skipped
- Clean closes, protocol errors and connect failures all reconnect
- The reconnect delay never grows
- Already-dispatched notifications are never re-processed
- stop() ends the loop

Mocks: websockets.connect (scripted sessions), handler
Real: Decode, dispatch, task tracking, reconnect loop
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from websockets.exceptions import ConnectionClosedError

from mastobot import notification_stream
from mastobot.notification_stream import NotificationStream


class FakeConnection:
    """Async context manager yielding scripted frames, then closing."""

    def __init__(self, frames, error=None):
        self.frames = frames
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame
        if self.error:
            raise self.error


@pytest.fixture
def handler():
    h = AsyncMock()
    h.handle = AsyncMock()
    return h


@pytest.fixture
def scripted_connect(monkeypatch):
    """
    Replace websockets.connect with scripted sessions.

    Each session is either a FakeConnection or an exception raised on
    connect. The stream is stopped once the script runs out.
    """
    def _install(stream: NotificationStream, sessions: list):
        urls = []

        def fake_connect(url, **kwargs):
            urls.append((url, kwargs))
            session = sessions.pop(0)
            if not sessions:
                stream.stop()
            if isinstance(session, Exception):
                raise session
            return session

        monkeypatch.setattr(notification_stream.websockets, "connect", fake_connect)
        return urls

    return _install


def handled_ids(handler) -> list[str]:
    return [call.args[0].id for call in handler.handle.await_args_list]


async def drain(stream: NotificationStream) -> None:
    while stream.in_flight:
        await asyncio.sleep(0)


@pytest.mark.real
@pytest.mark.asyncio
class TestNotificationStreamReal:
    """Real functionality tests for the stream loop."""

    async def test_reconnects_without_reprocessing(
        self, handler, scripted_connect, sample_mention_payload, make_stream_frame
    ):
        stream = NotificationStream(
            "wss://mastodon.test/api/v1/streaming", "tok", handler, reconnect_delay=0, open_timeout=5
        )
        first = make_stream_frame(dict(sample_mention_payload, id="1"))
        second = make_stream_frame(dict(sample_mention_payload, id="2"))
        third = make_stream_frame(dict(sample_mention_payload, id="3"))

        urls = scripted_connect(stream, [
            FakeConnection([first, b"\x00binary", "not json"]),
            FakeConnection([second], error=ConnectionClosedError(None, None)),
            OSError("connection refused"),
            FakeConnection([third]),
        ])

        await asyncio.wait_for(stream.run(), timeout=5)
        await drain(stream)

        assert handled_ids(handler) == ["1", "2", "3"]
        assert stream.sessions == 4
        assert len(urls) == 4
        url, kwargs = urls[0]
        assert "stream=user%3Anotification" in url
        assert "access_token=tok" in url
        assert kwargs["open_timeout"] == 5

    async def test_unexpected_error_reconnects(self, handler, scripted_connect, sample_mention_payload, make_stream_frame):
        stream = NotificationStream("wss://mastodon.test/api/v1/streaming", "tok", handler, reconnect_delay=0)
        frame = make_stream_frame(sample_mention_payload)

        scripted_connect(stream, [
            FakeConnection([], error=RuntimeError("boom")),
            FakeConnection([frame]),
        ])

        await asyncio.wait_for(stream.run(), timeout=5)
        await drain(stream)

        assert handled_ids(handler) == ["9001"]

    async def test_dispatch_ignores_other_events(self, handler, make_stream_frame):
        stream = NotificationStream("wss://mastodon.test/api/v1/streaming", "tok", handler)

        assert stream.dispatch(make_stream_frame({"id": "1"}, event="update")) is None
        assert stream.dispatch("{broken") is None
        assert stream.in_flight == 0

    async def test_dispatch_tracks_tasks(self, handler, sample_mention_payload, make_stream_frame):
        release = asyncio.Event()

        async def slow_handle(notification):
            await release.wait()

        handler.handle = AsyncMock(side_effect=slow_handle)
        stream = NotificationStream("wss://mastodon.test/api/v1/streaming", "tok", handler)

        task = stream.dispatch(make_stream_frame(sample_mention_payload))
        await asyncio.sleep(0)
        assert stream.in_flight == 1

        release.set()
        await task
        await asyncio.sleep(0)
        assert stream.in_flight == 0

    async def test_reconnect_delay_stays_constant(self, handler, scripted_connect, monkeypatch):
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        monkeypatch.setattr(notification_stream.asyncio, "sleep", fake_sleep)
        stream = NotificationStream("wss://mastodon.test/api/v1/streaming", "tok", handler, reconnect_delay=7)

        urls = scripted_connect(stream, [OSError("connection refused") for _ in range(4)])

        await asyncio.wait_for(stream.run(), timeout=5)

        assert len(urls) == 4
        assert sleeps == [7, 7, 7]
        handler.handle.assert_not_awaited()
