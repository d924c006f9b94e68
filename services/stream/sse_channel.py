import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, List, Optional

import httpx

from services.stream.errors import TransportError
from shared.config.stream import ApiSettings
from shared.logging.logger import get_logger

log = get_logger("stream.sse")

OpenCallback = Callable[[], None]
FrameCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


@dataclass
class SSEFrame:
    """
    Lightweight container for SSE frames.

    The room stream emits event/data/id triplets using the standard
    Server-Sent Events framing; only the data payload is handed upward.
    """

    event: str
    data: str
    event_id: Optional[str] = None


async def iter_sse_frames(lines: AsyncIterator[str]) -> AsyncIterator[SSEFrame]:
    """
    Parse a stream of body lines into SSEFrame objects.
    """
    data_lines: List[str] = []
    event_name: Optional[str] = None
    event_id: Optional[str] = None
    first = True

    async for raw_line in lines:
        if raw_line is None:
            continue

        line = raw_line.rstrip("\r")
        if first:
            # byte order mark may only lead the stream
            line = line.lstrip("\ufeff")
            first = False

        # Empty line signals dispatch
        if line == "":
            if data_lines:
                yield SSEFrame(
                    event=event_name or "message",
                    data="\n".join(data_lines),
                    event_id=event_id,
                )

            data_lines = []
            event_name = None
            event_id = None
            continue

        # Comments/keepalives begin with ':'
        if line.startswith(":"):
            continue

        if line.startswith("data:"):
            value = line[5:]
            data_lines.append(value[1:] if value.startswith(" ") else value)
            continue

        if line.startswith("event:"):
            event_name = line[6:].strip() or event_name
            continue

        if line.startswith("id:"):
            event_id = line[3:].strip() or event_id
            continue

        # Unknown field → ignore

    # Flush any trailing data when the stream closes without a blank line
    if data_lines:
        yield SSEFrame(
            event=event_name or "message",
            data="\n".join(data_lines),
            event_id=event_id,
        )


class PushChannel:
    """
    One-way server push channel.

    Implementations deliver callbacks on the running event loop:
    - on_open once the stream is established
    - on_frame for every data frame, in arrival order
    - on_error at most once, when the stream fails or ends

    After close() no callback may fire.
    """

    def open(
        self,
        on_open: OpenCallback,
        on_frame: FrameCallback,
        on_error: ErrorCallback,
    ) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


ChannelFactory = Callable[[str], PushChannel]


class SSEPushChannel(PushChannel):
    """
    Push channel over an httpx streaming GET.

    Rules:
    - One reader task per channel; close() cancels it
    - Non-200 or non event-stream responses are transport errors
    - A stream that ends without close() is a transport error
    """

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient,
        room_id: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.url = url
        self.room_id = room_id
        self._client = client
        self._headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        if headers:
            self._headers.update(headers)

        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------

    def open(
        self,
        on_open: OpenCallback,
        on_frame: FrameCallback,
        on_error: ErrorCallback,
    ) -> None:
        if self._task is not None:
            raise RuntimeError("SSE channel already opened")
        if self._closed:
            raise RuntimeError("SSE channel is closed")

        log.info("Opening room stream (room_id=%s, url=%s)", self.room_id, self.url)
        self._task = asyncio.get_running_loop().create_task(
            self._run(on_open, on_frame, on_error)
        )

    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        log.debug("Room stream closed (room_id=%s)", self.room_id)

    # ------------------------------------------------------------------

    async def _run(
        self,
        on_open: OpenCallback,
        on_frame: FrameCallback,
        on_error: ErrorCallback,
    ) -> None:
        try:
            async with self._client.stream("GET", self.url, headers=self._headers) as resp:
                status = resp.status_code
                ct = resp.headers.get("content-type")

                if status != 200 or (ct and "text/event-stream" not in ct):
                    body_preview = ""
                    try:
                        raw = await resp.aread()
                        body_preview = raw.decode(errors="ignore")[:500]
                    except httpx.HTTPError:
                        body_preview = "<unreadable>"

                    raise TransportError(
                        f"Stream connection failed [{status}] content-type={ct} body={body_preview}",
                        room_id=self.room_id,
                        status_code=status,
                    )

                if self._closed:
                    return
                on_open()

                async for frame in iter_sse_frames(resp.aiter_lines()):
                    if self._closed:
                        return
                    log.debug(
                        "Stream frame (room_id=%s, event=%s, id=%s)",
                        self.room_id,
                        frame.event,
                        frame.event_id,
                    )
                    on_frame(frame.data)

            if not self._closed:
                raise TransportError("Stream closed by server", room_id=self.room_id)

        except asyncio.CancelledError:
            raise

        except TransportError as e:
            if not self._closed:
                log.warning("Stream transport error (room_id=%s): %s", self.room_id, e)
                on_error(e)

        except httpx.HTTPError as e:
            if not self._closed:
                log.warning("Stream HTTP error (room_id=%s): %s", self.room_id, e)
                on_error(TransportError(str(e) or type(e).__name__, room_id=self.room_id))

        except Exception as e:
            if not self._closed:
                log.exception("Stream reader failed (room_id=%s)", self.room_id)
                on_error(TransportError(f"Stream reader failed: {e!r}", room_id=self.room_id))


class SSEChannelFactory:
    """
    Builds room-scoped SSE channels sharing one AsyncClient.

    The factory owns the client unless one is supplied.
    """

    def __init__(
        self,
        api: ApiSettings,
        *,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.api = api
        self._headers = dict(headers or {})
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=None),
            follow_redirects=True,
        )
        self._client_owned = client is None

    def __call__(self, room_id: str) -> SSEPushChannel:
        return SSEPushChannel(
            self.api.stream_url(room_id),
            client=self._client,
            room_id=room_id,
            headers=self._headers,
        )

    async def aclose(self) -> None:
        if self._client_owned:
            await self._client.aclose()


__all__ = [
    "ChannelFactory",
    "PushChannel",
    "SSEChannelFactory",
    "SSEFrame",
    "SSEPushChannel",
    "iter_sse_frames",
]
