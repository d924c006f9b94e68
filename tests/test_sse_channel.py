"""Tests for SSE framing and the httpx-backed push channel."""
import asyncio

import httpx
import pytest

from services.stream.adapter import MessageStreamAdapter
from services.stream.errors import TransportError
from services.stream.sse_channel import SSEChannelFactory, SSEPushChannel, iter_sse_frames
from shared.config.stream import ApiSettings
from tests.fakes import chat_frame

STREAM_URL = "http://chat.test/rooms/room-1/stream"


async def _lines(*lines):
    for line in lines:
        yield line


async def _collect(lines):
    return [frame async for frame in iter_sse_frames(lines)]


class Recorder:
    def __init__(self):
        self.opened = 0
        self.frames = []
        self.errors = []
        self.done = asyncio.Event()

    def on_open(self):
        self.opened += 1

    def on_frame(self, data):
        self.frames.append(data)

    def on_error(self, error):
        self.errors.append(error)
        self.done.set()


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _sse_response(body: bytes, status: int = 200, content_type: str = "text/event-stream"):
    return httpx.Response(status, headers={"content-type": content_type}, content=body)


class TestIterSSEFrames:
    @pytest.mark.asyncio
    async def test_blank_line_dispatches(self):
        frames = await _collect(_lines("data: one", "", "data: two", ""))
        assert [f.data for f in frames] == ["one", "two"]
        assert frames[0].event == "message"

    @pytest.mark.asyncio
    async def test_multiline_data_joined(self):
        frames = await _collect(_lines("data: a", "data: b", ""))
        assert frames[0].data == "a\nb"

    @pytest.mark.asyncio
    async def test_event_and_id_fields(self):
        frames = await _collect(_lines("event: chat", "id: 42", "data: {}", ""))
        assert frames[0].event == "chat"
        assert frames[0].event_id == "42"

    @pytest.mark.asyncio
    async def test_comments_ignored(self):
        frames = await _collect(_lines(": keepalive", "", "data: x", ""))
        assert [f.data for f in frames] == ["x"]

    @pytest.mark.asyncio
    async def test_byte_order_mark_only_stripped_at_stream_start(self):
        frames = await _collect(_lines("\ufeffdata: a", "", "data: b\ufeff", ""))
        assert [f.data for f in frames] == ["a", "b\ufeff"]

    @pytest.mark.asyncio
    async def test_trailing_frame_flushed(self):
        frames = await _collect(_lines("data: tail"))
        assert [f.data for f in frames] == ["tail"]


class TestSSEPushChannel:
    @pytest.mark.asyncio
    async def test_frames_then_end_of_stream_is_error(self):
        body = b'data: {"type": "ping"}\n\nid: 7\ndata: hello\n\n'
        seen_paths = []

        def handler(request):
            seen_paths.append(request.url.path)
            assert request.headers["accept"] == "text/event-stream"
            return _sse_response(body)

        async with _client(handler) as client:
            rec = Recorder()
            channel = SSEPushChannel(STREAM_URL, client=client, room_id="room-1")
            channel.open(rec.on_open, rec.on_frame, rec.on_error)
            await asyncio.wait_for(rec.done.wait(), timeout=2)

        assert seen_paths == ["/rooms/room-1/stream"]
        assert rec.opened == 1
        assert rec.frames == ['{"type": "ping"}', "hello"]
        assert len(rec.errors) == 1
        assert isinstance(rec.errors[0], TransportError)

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        async with _client(lambda request: _sse_response(b"down", status=503)) as client:
            rec = Recorder()
            channel = SSEPushChannel(STREAM_URL, client=client)
            channel.open(rec.on_open, rec.on_frame, rec.on_error)
            await asyncio.wait_for(rec.done.wait(), timeout=2)

        assert rec.opened == 0
        assert rec.errors[0].status_code == 503

    @pytest.mark.asyncio
    async def test_wrong_content_type(self):
        handler = lambda request: _sse_response(b"{}", content_type="application/json")  # noqa: E731
        async with _client(handler) as client:
            rec = Recorder()
            channel = SSEPushChannel(STREAM_URL, client=client)
            channel.open(rec.on_open, rec.on_frame, rec.on_error)
            await asyncio.wait_for(rec.done.wait(), timeout=2)

        assert rec.opened == 0
        assert isinstance(rec.errors[0], TransportError)

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            rec = Recorder()
            channel = SSEPushChannel(STREAM_URL, client=client)
            channel.open(rec.on_open, rec.on_frame, rec.on_error)
            await asyncio.wait_for(rec.done.wait(), timeout=2)

        assert isinstance(rec.errors[0], TransportError)
        assert "connection refused" in str(rec.errors[0])

    @pytest.mark.asyncio
    async def test_close_suppresses_callbacks(self):
        async with _client(lambda request: _sse_response(b"data: x\n\n")) as client:
            rec = Recorder()
            channel = SSEPushChannel(STREAM_URL, client=client)
            channel.open(rec.on_open, rec.on_frame, rec.on_error)
            channel.close()
            for _ in range(5):
                await asyncio.sleep(0)

        assert channel.closed
        assert rec.opened == 0
        assert rec.frames == []
        assert rec.errors == []

    @pytest.mark.asyncio
    async def test_open_twice_rejected(self):
        async with _client(lambda request: _sse_response(b"")) as client:
            channel = SSEPushChannel(STREAM_URL, client=client)
            rec = Recorder()
            channel.open(rec.on_open, rec.on_frame, rec.on_error)
            with pytest.raises(RuntimeError):
                channel.open(rec.on_open, rec.on_frame, rec.on_error)
            channel.close()


class TestSSEChannelFactory:
    @pytest.mark.asyncio
    async def test_builds_room_scoped_channels(self):
        async with _client(lambda request: _sse_response(b"")) as client:
            factory = SSEChannelFactory(ApiSettings(base_url="http://chat.test"), client=client)
            channel = factory("room-9")
            assert channel.url == "http://chat.test/rooms/room-9/stream"
            assert channel.room_id == "room-9"
            await factory.aclose()
            assert not client.is_closed


class TestReaderFailures:
    @pytest.mark.asyncio
    async def test_raising_frame_callback_becomes_transport_error(self):
        body = b"data: one\n\ndata: two\n\n"

        async with _client(lambda request: _sse_response(body)) as client:
            rec = Recorder()

            def on_frame(data):
                rec.frames.append(data)
                raise RuntimeError("consumer blew up")

            channel = SSEPushChannel(STREAM_URL, client=client, room_id="room-1")
            channel.open(rec.on_open, on_frame, rec.on_error)
            await asyncio.wait_for(rec.done.wait(), timeout=2)

        assert rec.frames == ["one"]
        assert len(rec.errors) == 1
        assert isinstance(rec.errors[0], TransportError)
        assert "consumer blew up" in str(rec.errors[0])

    @pytest.mark.asyncio
    async def test_adapter_survives_failing_auto_scroll(self):
        body = b"".join(
            f"data: {chat_frame(f'm{i}')}\n\n".encode() for i in range(3)
        )
        errors = asyncio.Event()

        def broken(message):
            raise RuntimeError("scroll failed")

        async with _client(lambda request: _sse_response(body)) as client:
            factory = SSEChannelFactory(ApiSettings(base_url="http://chat.test"), client=client)
            adapter = MessageStreamAdapter(
                "room-1",
                channel_factory=factory,
                on_auto_scroll=broken,
                on_error=lambda error: errors.set(),
            )
            adapter.start()
            # the body ends after three frames, which reports a transport error
            await asyncio.wait_for(errors.wait(), timeout=2)
            adapter.close()

        assert [m.message_id for m in adapter.messages] == ["m0", "m1", "m2"]
