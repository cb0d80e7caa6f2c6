"""
In-memory stand-ins for aiortc objects and relay websockets.

They implement just the attributes and events peerdrop reads, so sessions,
handshakes and transfers can be driven end to end without a network.
"""

from collections import defaultdict
from collections.abc import Callable
from typing import Any

from aiortc import RTCSessionDescription
import trio
from trio_websocket import CloseReason, ConnectionClosed

from peerdrop.config import RelayClientConfig
from peerdrop.constants import (
    CONNECTION_STATE_CLOSED,
    CONNECTION_STATE_CONNECTED,
    DATA_CHANNEL_OPEN,
)
from peerdrop.signaling.envelope import SignalEnvelope
from peerdrop.signaling.relay_client import SignalRelayClient
from peerdrop.signaling.relay_server import RelayServer

NORMAL_CLOSURE = 1000

FAKE_SDP_TEMPLATE = (
    "v=0\r\n"
    "o=- 3900000000 3900000000 IN IP4 0.0.0.0\r\n"
    "s=-\r\n"
    "t=0 0\r\n"
    "a=group:BUNDLE 0\r\n"
    "m=application 9 DTLS/SCTP 5000\r\n"
    "c=IN IP4 0.0.0.0\r\n"
    "a=mid:0\r\n"
    "a=candidate:1 1 UDP 2130706431 192.168.1.{host} 50000 typ host\r\n"
    "a=candidate:2 1 UDP 1694498815 203.0.113.{host} 50001 typ srflx "
    "raddr 192.168.1.{host} rport 50000\r\n"
    "a=end-of-candidates\r\n"
    "a={kind}\r\n"
)


class _Emitter:
    """pyee-style ``on``/``emit`` as used by aiortc objects."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, handler: Callable[..., Any] | None = None) -> Any:
        if handler is None:

            def decorator(f: Callable[..., Any]) -> Callable[..., Any]:
                self._listeners[event].append(f)
                return f

            return decorator
        self._listeners[event].append(handler)
        return handler

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners[event]):
            handler(*args)

    def listener_count(self, event: str) -> int:
        return len(self._listeners[event])


class FakeDataChannel(_Emitter):
    """
    Data channel double.

    ``send`` records every frame and delivers it to the paired channel as a
    ``message`` event. With ``hold_buffer`` set, sent bytes stay counted in
    ``bufferedAmount`` until ``drain`` is called.
    """

    def __init__(self, label: str = "data", hold_buffer: bool = False) -> None:
        super().__init__()
        self.label = label
        self.readyState = "connecting"
        self.bufferedAmount = 0
        self.bufferedAmountLowThreshold = 0
        self.hold_buffer = hold_buffer
        self.peer: FakeDataChannel | None = None
        self.sent: list[str | bytes] = []

    def send(self, data: str | bytes) -> None:
        if self.readyState != DATA_CHANNEL_OPEN:
            raise ConnectionError(f"data channel is {self.readyState}")
        self.sent.append(data)
        if self.hold_buffer:
            self.bufferedAmount += len(data)
        if self.peer is not None and self.peer.readyState == DATA_CHANNEL_OPEN:
            self.peer.emit("message", data)

    def open(self) -> None:
        self.readyState = DATA_CHANNEL_OPEN
        self.emit("open")

    def close(self) -> None:
        if self.readyState == "closed":
            return
        self.readyState = "closed"
        self.emit("close")

    def drain(self, amount: int | None = None) -> None:
        before = self.bufferedAmount
        if amount is None:
            self.bufferedAmount = 0
        else:
            self.bufferedAmount = max(0, before - amount)
        if (
            before > self.bufferedAmountLowThreshold
            and self.bufferedAmount <= self.bufferedAmountLowThreshold
        ):
            self.emit("bufferedamountlow")

    @property
    def binary_frames(self) -> list[bytes]:
        return [frame for frame in self.sent if isinstance(frame, bytes)]

    @property
    def text_frames(self) -> list[str]:
        return [frame for frame in self.sent if isinstance(frame, str)]


def pair_data_channels(
    local: FakeDataChannel, remote: FakeDataChannel | None = None
) -> FakeDataChannel:
    """Connect ``local`` to ``remote`` (created if missing) and open both."""
    if remote is None:
        remote = FakeDataChannel(local.label)
    local.peer = remote
    remote.peer = local
    remote.readyState = DATA_CHANNEL_OPEN
    local.open()
    return remote


class FakePeerConnection(_Emitter):
    def __init__(self, ice_servers: Any = None) -> None:
        super().__init__()
        self.ice_servers = ice_servers
        self.connectionState = "new"
        self.localDescription: RTCSessionDescription | None = None
        self.remoteDescription: RTCSessionDescription | None = None
        self.added_candidates: list[Any] = []
        self.data_channels: list[FakeDataChannel] = []

    def set_connection_state(self, state: str) -> None:
        self.connectionState = state
        self.emit("connectionstatechange")


class FakeBridge:
    """
    Trio-native replacement for ``RTCBridge``.

    Every call is recorded in ``calls``; naming a method in ``fail_on`` makes
    it raise ``RuntimeError``.
    """

    def __init__(self, host: int = 10) -> None:
        self.host = host
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self.peer_connections: list[FakePeerConnection] = []
        self.entered = False

    async def __aenter__(self) -> "FakeBridge":
        self.entered = True
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.entered = False

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    def _sdp(self, kind: str) -> str:
        setup = "setup:actpass" if kind == "offer" else "setup:active"
        return FAKE_SDP_TEMPLATE.format(host=self.host, kind=setup)

    def create_peer_connection(self, ice_servers: Any) -> FakePeerConnection:
        self._record("create_peer_connection")
        peer_connection = FakePeerConnection(ice_servers)
        self.peer_connections.append(peer_connection)
        return peer_connection

    def create_data_channel(
        self, peer_connection: FakePeerConnection, label: str
    ) -> FakeDataChannel:
        self._record("create_data_channel")
        channel = FakeDataChannel(label)
        peer_connection.data_channels.append(channel)
        return channel

    async def create_offer(
        self, peer_connection: FakePeerConnection
    ) -> RTCSessionDescription:
        await trio.lowlevel.checkpoint()
        self._record("create_offer")
        return RTCSessionDescription(sdp=self._sdp("offer"), type="offer")

    async def create_answer(
        self, peer_connection: FakePeerConnection
    ) -> RTCSessionDescription:
        await trio.lowlevel.checkpoint()
        self._record("create_answer")
        return RTCSessionDescription(sdp=self._sdp("answer"), type="answer")

    async def set_local_description(
        self, peer_connection: FakePeerConnection, description: RTCSessionDescription
    ) -> None:
        await trio.lowlevel.checkpoint()
        self._record("set_local_description")
        peer_connection.localDescription = description

    async def set_remote_description(
        self, peer_connection: FakePeerConnection, description: RTCSessionDescription
    ) -> None:
        await trio.lowlevel.checkpoint()
        self._record("set_remote_description")
        peer_connection.remoteDescription = description

    async def add_ice_candidate(
        self, peer_connection: FakePeerConnection, candidate: Any
    ) -> None:
        await trio.lowlevel.checkpoint()
        self._record("add_ice_candidate")
        peer_connection.added_candidates.append(candidate)

    async def close_peer_connection(self, peer_connection: FakePeerConnection) -> None:
        await trio.lowlevel.checkpoint()
        self._record("close_peer_connection")
        for channel in peer_connection.data_channels:
            channel.close()
        if peer_connection.connectionState != CONNECTION_STATE_CLOSED:
            peer_connection.set_connection_state(CONNECTION_STATE_CLOSED)


def link_peer_connections(
    caller: FakePeerConnection, receiver: FakePeerConnection
) -> FakeDataChannel:
    """
    Complete a fake negotiation the way aiortc reports it: the caller's data
    channel opens, the receiver gets a ``datachannel`` event and both peer
    connections become ``connected``. Returns the receiver's channel.
    """
    local = caller.data_channels[0]
    remote = pair_data_channels(local)
    receiver.data_channels.append(remote)
    receiver.emit("datachannel", remote)
    caller.set_connection_state(CONNECTION_STATE_CONNECTED)
    receiver.set_connection_state(CONNECTION_STATE_CONNECTED)
    return remote


class RecordingSignalSender:
    """
    Signal sender that keeps every envelope; ``deliver`` is the result.

    While ``gate`` is set to an unset ``trio.Event``, every send blocks on it.
    """

    def __init__(self, deliver: bool = True) -> None:
        self.deliver = deliver
        self.gate: trio.Event | None = None
        self.sent: list[SignalEnvelope] = []

    async def send(self, envelope: SignalEnvelope) -> bool:
        if self.gate is not None:
            await self.gate.wait()
        await trio.lowlevel.checkpoint()
        self.sent.append(envelope)
        return self.deliver

    def of_kind(self, kind: Any) -> list[SignalEnvelope]:
        return [envelope for envelope in self.sent if envelope.kind is kind]


class FakeWebSocket:
    """One end of an in-memory websocket, see ``memory_websocket_pair``."""

    def __init__(
        self,
        send_channel: trio.MemorySendChannel[str],
        receive_channel: trio.MemoryReceiveChannel[str],
    ) -> None:
        self._send_channel = send_channel
        self._receive_channel = receive_channel
        self.closed: CloseReason | None = None
        self.sent: list[str] = []

    def _closed_error(self) -> ConnectionClosed:
        if self.closed is None:
            self.closed = CloseReason(NORMAL_CLOSURE, "peer closed")
        return ConnectionClosed(self.closed)

    async def send_message(self, message: str) -> None:
        if self.closed is not None:
            raise ConnectionClosed(self.closed)
        try:
            await self._send_channel.send(message)
        except (trio.BrokenResourceError, trio.ClosedResourceError):
            raise self._closed_error()
        self.sent.append(message)

    async def get_message(self) -> str:
        if self.closed is not None:
            raise ConnectionClosed(self.closed)
        try:
            return await self._receive_channel.receive()
        except (trio.EndOfChannel, trio.ClosedResourceError):
            raise self._closed_error()

    async def aclose(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self.closed is None:
            self.closed = CloseReason(code, reason or None)
        await self._send_channel.aclose()
        await self._receive_channel.aclose()


def memory_websocket_pair(buffer: int = 64) -> tuple[FakeWebSocket, FakeWebSocket]:
    a_send, b_receive = trio.open_memory_channel(buffer)
    b_send, a_receive = trio.open_memory_channel(buffer)
    return FakeWebSocket(a_send, a_receive), FakeWebSocket(b_send, b_receive)


class MemoryRelayClient(SignalRelayClient):
    """``SignalRelayClient`` attached to an in-process ``RelayServer``."""

    def __init__(
        self, server: RelayServer, config: RelayClientConfig | None = None
    ) -> None:
        super().__init__(config or RelayClientConfig(url="memory://relay"))
        self._server = server

    async def run(
        self, *, task_status: trio.TaskStatus[None] = trio.TASK_STATUS_IGNORED
    ) -> None:
        client_end, server_end = memory_websocket_pair()
        async with trio.open_nursery() as nursery:
            nursery.start_soon(self._server.handle_connection, server_end)
            task_status.started()
            try:
                await self.serve_connection(client_end)
            finally:
                await client_end.aclose()
