"""
Console room chat client.

Joins a room, prints the live stream and sends every stdin line as a
chat message. Type /reconnect to rebuild the stream, /quit (or EOF) to
leave.
"""

import argparse
import asyncio
import signal
import sys
import threading
import uuid
from dataclasses import replace
from typing import Optional

from dotenv import load_dotenv

from services.rooms.client import RoomsApiError, RoomsClient
from services.stream.adapter import MessageStreamAdapter, StreamSnapshot
from services.stream.errors import ReconnectExhausted, StreamError
from services.stream.sse_channel import SSEChannelFactory
from shared.config.stream import load_client_config
from shared.logging.logger import get_logger

log = get_logger("core.app")


class ConsolePrinter:
    """Prints newly ingested messages and connection transitions."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        self._printed = 0
        self._status_seen: Optional[str] = None
        self._participants: Optional[int] = None

    def __call__(self, snapshot: StreamSnapshot) -> None:
        if len(snapshot.messages) < self._printed:
            # history was cleared by a manual reconnect
            self._printed = 0

        for message in snapshot.messages[self._printed:]:
            who = "you" if message.author_id == self.user_id else message.author_name
            stamp = message.sent_at.astimezone().strftime("%H:%M:%S")
            print(f"[{stamp}] {who}: {message.body}")
        self._printed = len(snapshot.messages)

        if snapshot.participant_count != self._participants:
            self._participants = snapshot.participant_count
            if snapshot.participant_count:
                print(f"👥 {snapshot.participant_count} connected")

        status = self._status(snapshot)
        if status != self._status_seen:
            self._status_seen = status
            if status == "connected":
                print("✅ Connected to chat")
            elif status == "reconnecting":
                print("⏳ Connection lost, reconnecting...")
            elif status == "offline":
                print(f"❌ Offline: {snapshot.last_error} (type /reconnect to retry)")

    @staticmethod
    def _status(snapshot: StreamSnapshot) -> str:
        if snapshot.is_connected:
            return "connected"
        if snapshot.is_connecting:
            return "reconnecting" if snapshot.last_error is not None else "connecting"
        if isinstance(snapshot.last_error, ReconnectExhausted):
            return "offline"
        return "idle"


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
    def _read() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line.rstrip("\n"))
        loop.call_soon_threadsafe(queue.put_nowait, None)

    threading.Thread(target=_read, name="stdin-reader", daemon=True).start()


async def _input_loop(
    queue: asyncio.Queue,
    adapter: MessageStreamAdapter,
    rooms: RoomsClient,
    user_id: str,
    user_name: str,
    stop_event: asyncio.Event,
) -> None:
    while not stop_event.is_set():
        line = await queue.get()
        if line is None or line.strip() == "/quit":
            stop_event.set()
            return

        text = line.strip()
        if not text:
            continue

        if text == "/reconnect":
            adapter.reconnect()
            continue

        if not adapter.is_connected:
            print("⚠️ Not connected; message not sent")
            continue

        try:
            await rooms.send_message(adapter.room_id, user_id, user_name, text)
        except RoomsApiError as e:
            log.error(f"[{adapter.room_id}] Failed to send message: {e}")
            print("⚠️ Failed to send message. Please try again.")


async def main(args, stop_event: asyncio.Event) -> None:
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    config = load_client_config()
    if args.base_url:
        config = replace(config, api=replace(config.api, base_url=args.base_url.rstrip("/")))

    log.info(f"matchchat booting (api={config.api.base_url})")

    rooms = RoomsClient(config.api)
    channels = SSEChannelFactory(config.api)

    try:
        if args.list:
            for room in await rooms.list_rooms():
                print(f"{room.room_id}  {room.name}  ({room.league}, {room.active_users} online)")
            return

        user_id = str(uuid.uuid4())
        user_name = args.name.strip()

        try:
            await rooms.join_room(args.room, user_id, user_name)
        except RoomsApiError as e:
            log.warning(f"[{args.room}] Join failed, streaming anyway: {e}")

        def _on_error(error: StreamError) -> None:
            if isinstance(error, ReconnectExhausted):
                log.error(f"[{args.room}] Stream offline: {error}")

        adapter = MessageStreamAdapter(
            args.room,
            channel_factory=channels,
            on_connect=lambda: log.info(f"[{args.room}] Connected to chat"),
            on_error=_on_error,
            settings=config.stream,
        )
        adapter.subscribe(ConsolePrinter(user_id))
        adapter.start()

        queue: asyncio.Queue = asyncio.Queue()
        _start_stdin_reader(asyncio.get_running_loop(), queue)
        input_task = asyncio.create_task(
            _input_loop(queue, adapter, rooms, user_id, user_name, stop_event)
        )

        await stop_event.wait()
        log.info("Shutdown initiated")

        input_task.cancel()
        try:
            await input_task
        except asyncio.CancelledError:
            pass

        adapter.close()

    finally:
        await channels.aclose()
        await rooms.aclose()
        log.info("matchchat stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    def _handler(signum, frame):
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="matchchat console room client")
    parser.add_argument("--room", help="Room id to join")
    parser.add_argument("--name", help="Display name to chat as")
    parser.add_argument("--base-url", help="Override the API base URL")
    parser.add_argument("--list", action="store_true", help="List rooms and exit")
    return parser


def run(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.list and (not args.room or not args.name or not args.name.strip()):
        parser.error("--room and --name are required unless --list is given")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    stop_event = asyncio.Event()

    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(args, stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutting down")

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))

        loop.run_until_complete(loop.shutdown_asyncgens())
        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
