import argparse
import logging
import sys

import trio

from peerdrop.config import RelayClientConfig, SessionConfig
from peerdrop.constants import DEFAULT_RELAY_PORT, DEFAULT_RELAY_URL
from peerdrop.session import PeerSession, SessionEvent, TransferDirection
from peerdrop.signaling import RelayServer
from peerdrop.transfer import TransferMetadata

logger = logging.getLogger("peerdrop.cli")

# Time allowed for queued frames to leave the channel before closing
FLUSH_TIMEOUT = 30.0


def _print_progress(direction: TransferDirection, percent: int, meta: TransferMetadata) -> None:
    verb = "Sending" if direction is TransferDirection.SEND else "Receiving"
    end = "\n" if percent >= 100 else ""
    print(f"\r{verb} {meta.name}: {percent:3d}%", end=end, flush=True)


def _session_for(relay_url: str) -> PeerSession:
    return PeerSession(SessionConfig(relay=RelayClientConfig(url=relay_url)))


async def run_relay(host: str | None, port: int) -> None:
    server = RelayServer()
    print(f"Relay listening on ws://{host or '0.0.0.0'}:{port}/")
    await server.serve(host, port)


async def run_receive(relay_url: str, out_dir: str) -> None:
    session = _session_for(relay_url)
    received_send, received_receive = trio.open_memory_channel(1)

    session.events.on(
        SessionEvent.CONNECTED, lambda remote_id: print(f"Connected to {remote_id}")
    )
    session.events.on(
        SessionEvent.METADATA,
        lambda meta: print(f"Incoming {meta.name} ({meta.byte_size} bytes)"),
    )
    session.events.on(SessionEvent.PROGRESS, _print_progress)
    session.events.on(
        SessionEvent.COMPLETE,
        lambda payload, meta: received_send.send_nowait((payload, meta)),
    )

    async def serve(*, task_status: trio.TaskStatus[None] = trio.TASK_STATUS_IGNORED) -> None:
        async with received_send:
            await session.run(task_status=task_status)

    async with trio.open_nursery() as nursery:

        def on_disconnected(reason: str) -> None:
            # Become reachable again for the next sender
            print(f"\nDisconnected: {reason}")
            nursery.start_soon(session.reset)

        session.events.on(SessionEvent.DISCONNECTED, on_disconnected)
        await nursery.start(serve)
        print(f"Your id: {session.local_id}")
        print("Waiting for a sender...")

        try:
            payload, meta = await received_receive.receive()
        except trio.EndOfChannel:
            print("Relay connection lost", file=sys.stderr)
            return
        target = trio.Path(out_dir) / trio.Path(meta.name).name
        await target.parent.mkdir(parents=True, exist_ok=True)
        await target.write_bytes(payload)
        print(f"Saved {target}")

        await session.close()


async def run_send(relay_url: str, remote_id: str, path: str) -> int:
    session = _session_for(relay_url)
    connected = trio.Event()
    disconnected = trio.Event()

    session.events.on(SessionEvent.CONNECTED, lambda remote_id: connected.set())
    session.events.on(SessionEvent.DISCONNECTED, lambda reason: disconnected.set())
    session.events.on(SessionEvent.PROGRESS, _print_progress)

    async with trio.open_nursery() as nursery:

        async def wait_disconnected() -> None:
            await disconnected.wait()
            nursery.cancel_scope.cancel()

        await nursery.start(session.run)
        nursery.start_soon(wait_disconnected)
        print(f"Connecting to {remote_id}...")
        if await session.connect(remote_id):
            await connected.wait()
            meta = await session.send(path)
        else:
            meta = None

        # Our own close below also disconnects
        with trio.CancelScope(shield=True):
            if meta is not None and not await session.flush(FLUSH_TIMEOUT):
                logger.warning("Channel did not drain before closing")
            await session.close()
        if meta is None:
            print("Transfer failed", file=sys.stderr)
            return 1
        print(f"Sent {meta.name} ({meta.byte_size} bytes)")
        return 0

    # The peer went away before the transfer finished
    print("Disconnected", file=sys.stderr)
    return 1


def relay_main() -> None:
    parser = argparse.ArgumentParser(
        description="Run a signaling relay that forwards every message to every other client."
    )
    parser.add_argument("--host", default=None, type=str, help="interface to bind")
    parser.add_argument(
        "-p", "--port", default=DEFAULT_RELAY_PORT, type=int, help="port to listen on"
    )
    args = parser.parse_args()

    try:
        trio.run(run_relay, args.host, args.port)
    except KeyboardInterrupt:
        pass


def receive_main() -> None:
    parser = argparse.ArgumentParser(
        description="Print a peer id and save the next file a peer sends to it."
    )
    parser.add_argument("--relay", default=DEFAULT_RELAY_URL, help="relay websocket url")
    parser.add_argument("--out", default=".", help="directory to save the file in")
    args = parser.parse_args()

    try:
        trio.run(run_receive, args.relay, args.out)
    except KeyboardInterrupt:
        pass


def send_main() -> None:
    parser = argparse.ArgumentParser(description="Send one file to a waiting peer.")
    parser.add_argument("--relay", default=DEFAULT_RELAY_URL, help="relay websocket url")
    parser.add_argument("--to", required=True, help="peer id printed by peerdrop-receive")
    parser.add_argument("file", help="file to send")
    args = parser.parse_args()

    try:
        code = trio.run(run_send, args.relay, args.to, args.file)
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)
