from contextlib import asynccontextmanager

import pytest
import trio
from trio.testing import wait_all_tasks_blocked

from peerdrop.rtc import ChannelState
from peerdrop.session import PeerSession, SessionEvent, TransferDirection
from peerdrop.signaling import RelayServer
from peerdrop.tools.fakes import FakeBridge, MemoryRelayClient, link_peer_connections
from peerdrop.transfer.frames import FileInfoFrame, TransferMetadata


class SessionLog:
    def __init__(self, session):
        self.events = []
        for event in SessionEvent:
            session.events.on(event, self._recorder(event))

    def _recorder(self, event):
        def record(*args):
            self.events.append((event, args))

        return record

    def of(self, event):
        return [args for recorded, args in self.events if recorded is event]


def make_session(server, local_id, host):
    return PeerSession(
        local_id=local_id,
        relay=MemoryRelayClient(server),
        bridge=FakeBridge(host=host),
    )


@asynccontextmanager
async def running_sessions():
    server = RelayServer()
    alice = make_session(server, "alice", 1)
    bob = make_session(server, "bob", 2)
    async with trio.open_nursery() as nursery:
        await nursery.start(alice.run)
        await nursery.start(bob.run)
        await wait_all_tasks_blocked()
        yield alice, bob
        await alice.close()
        await bob.close()


async def connect(alice, bob):
    assert await alice.connect(bob.local_id)
    await wait_all_tasks_blocked()
    link_peer_connections(
        alice.handshake.peer_connection, bob.handshake.peer_connection
    )


def test_generates_local_id():
    first = PeerSession(bridge=FakeBridge())
    second = PeerSession(bridge=FakeBridge())
    assert first.local_id
    assert first.local_id != second.local_id
    assert first.state is ChannelState.IDLE
    assert first.remote_id is None


@pytest.mark.trio
async def test_handshake_over_relay():
    async with running_sessions() as (alice, bob):
        alice_log, bob_log = SessionLog(alice), SessionLog(bob)

        assert await alice.connect("bob")
        await wait_all_tasks_blocked()

        assert bob.state is ChannelState.NEGOTIATING
        assert bob.remote_id == "alice"
        alice_pc = alice.handshake.peer_connection
        bob_pc = bob.handshake.peer_connection
        assert alice_pc.remoteDescription.type == "answer"
        assert bob_pc.remoteDescription.type == "offer"
        assert len(alice_pc.added_candidates) == 2
        assert len(bob_pc.added_candidates) == 2

        link_peer_connections(alice_pc, bob_pc)

        assert alice.state is ChannelState.OPEN
        assert bob.state is ChannelState.OPEN
        assert alice.connected and bob.connected
        assert alice_log.of(SessionEvent.CONNECTED) == [("bob",)]
        assert bob_log.of(SessionEvent.CONNECTED) == [("alice",)]


@pytest.mark.trio
async def test_send_file_between_sessions(tmp_path):
    path = tmp_path / "report.bin"
    payload = bytes(i % 253 for i in range(40000))
    path.write_bytes(payload)

    async with running_sessions() as (alice, bob):
        alice_log, bob_log = SessionLog(alice), SessionLog(bob)
        await connect(alice, bob)

        meta = await alice.send(path)

        assert bob_log.of(SessionEvent.METADATA) == [(meta,)]
        assert bob_log.of(SessionEvent.PROGRESS) == [
            (TransferDirection.RECEIVE, 33, meta),
            (TransferDirection.RECEIVE, 66, meta),
            (TransferDirection.RECEIVE, 100, meta),
        ]
        assert bob_log.of(SessionEvent.COMPLETE) == [(payload, meta)]
        assert [args[1] for args in alice_log.of(SessionEvent.PROGRESS)] == [
            33,
            66,
            100,
        ]
        assert all(
            args[0] is TransferDirection.SEND
            for args in alice_log.of(SessionEvent.PROGRESS)
        )
        assert alice_log.of(SessionEvent.SENT) == [(meta,)]


@pytest.mark.trio
async def test_send_before_connected_is_rejected():
    async with running_sessions() as (alice, bob):
        assert await alice.send(b"too early") is None

        assert await alice.connect("bob")
        await wait_all_tasks_blocked()
        assert alice.state is ChannelState.NEGOTIATING
        assert await alice.send(b"still too early") is None


@pytest.mark.trio
async def test_second_connect_is_rejected():
    async with running_sessions() as (alice, bob):
        await connect(alice, bob)

        assert await alice.connect("carol") is False
        assert await bob.connect("alice") is False
        assert alice.remote_id == "bob"


@pytest.mark.trio
async def test_disconnect_abandons_inbound_transfer():
    async with running_sessions() as (alice, bob):
        bob_log = SessionLog(bob)
        await connect(alice, bob)
        channel = alice.handshake.data_channel
        meta = TransferMetadata("t1", "big.bin", 100, "application/octet-stream", 1)
        channel.send(FileInfoFrame(meta).encode())
        assert bob.receiver.busy

        bob.handshake.peer_connection.set_connection_state("failed")

        assert bob.state is ChannelState.FAILED
        assert not bob.connected
        assert not bob.receiver.busy
        assert bob_log.of(SessionEvent.DISCONNECTED) == [("peer connection failed",)]

        # Frames still trickling in from the dead channel are dropped
        channel.send(FileInfoFrame(meta).encode())
        channel.send(b"x" * 100)
        assert bob_log.of(SessionEvent.METADATA) == [(meta,)]
        assert bob_log.of(SessionEvent.COMPLETE) == []


@pytest.mark.trio
async def test_reset_allows_new_handshake():
    async with running_sessions() as (alice, bob):
        await connect(alice, bob)

        await alice.reset()
        await bob.reset()
        assert alice.state is ChannelState.IDLE
        assert bob.state is ChannelState.IDLE
        assert not alice.connected

        assert await bob.connect("alice")
        await wait_all_tasks_blocked()
        assert alice.state is ChannelState.NEGOTIATING
        assert alice.remote_id == "bob"


@pytest.mark.trio
async def test_close_ends_run():
    server = RelayServer()
    bridge = FakeBridge()
    session = PeerSession(local_id="solo", relay=MemoryRelayClient(server), bridge=bridge)
    finished = trio.Event()

    async def run_session(task_status=trio.TASK_STATUS_IGNORED):
        await session.run(task_status=task_status)
        finished.set()

    async with trio.open_nursery() as nursery:
        await nursery.start(run_session)
        await wait_all_tasks_blocked()
        assert server.connection_count == 1

        await session.close()
        with trio.fail_after(1):
            await finished.wait()

    assert server.connection_count == 0
    assert bridge.entered is False


@pytest.mark.trio
async def test_relay_loss_while_idle_ends_run():
    server = RelayServer()
    session = make_session(server, "solo", 3)

    async with trio.open_nursery() as nursery:
        await nursery.start(session.run)
        await wait_all_tasks_blocked()
        await session.relay.aclose()
        with trio.fail_after(1):
            while server.connection_count:
                await trio.sleep(0.01)

    assert session.state is ChannelState.IDLE
