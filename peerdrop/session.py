"""
Peer session: one local identity, one relay connection, at most one direct
channel and one transfer in each direction.

Usage::

    session = PeerSession(SessionConfig(relay=RelayClientConfig(url=...)))
    session.events.on(SessionEvent.COMPLETE, on_complete)
    async with trio.open_nursery() as nursery:
        await nursery.start(session.run)
        await session.connect(remote_id)
"""

from enum import Enum
import logging
from typing import Any

import trio

from .config import SessionConfig
from .constants import DATA_CHANNEL_OPEN
from .events import EventEmitter
from .identity import generate_peer_id, validate_peer_id
from .rtc import ChannelState, HandshakeEvent, HandshakeStateMachine, RTCBridge
from .signaling import RelayConnectionState, SignalRelayClient
from .transfer import (
    ReceiverEvent,
    SenderEvent,
    TransferMetadata,
    TransferReceiver,
    TransferSender,
)
from .transfer.sender import TransferSource

logger = logging.getLogger("peerdrop.session")


class TransferDirection(Enum):
    SEND = "send"
    RECEIVE = "receive"


class SessionEvent(Enum):
    # (remote_id,)
    CONNECTED = "connected"
    # (reason,)
    DISCONNECTED = "disconnected"
    # (meta,)
    METADATA = "metadata"
    # (direction, percent, meta)
    PROGRESS = "progress"
    # (payload, meta)
    COMPLETE = "complete"
    # (meta,)
    SENT = "sent"


class PeerSession:
    def __init__(
        self,
        config: SessionConfig | None = None,
        local_id: str | None = None,
        relay: SignalRelayClient | None = None,
        bridge: Any | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self._local_id = (
            validate_peer_id(local_id) if local_id is not None else generate_peer_id()
        )
        self.relay = relay if relay is not None else SignalRelayClient(self.config.relay)
        self._bridge = bridge if bridge is not None else RTCBridge()
        self.handshake = HandshakeStateMachine(
            self._local_id, self.relay, self._bridge, self.config.handshake
        )
        self.sender = TransferSender(self.config.transfer)
        self.receiver = TransferReceiver()
        self.events: EventEmitter[SessionEvent] = EventEmitter(SessionEvent)

        self._connected = False
        self._closed = trio.Event()
        self._wire_events()

    @property
    def local_id(self) -> str:
        return self._local_id

    @property
    def remote_id(self) -> str | None:
        return self.handshake.remote_id

    @property
    def state(self) -> ChannelState:
        return self.handshake.state

    @property
    def connected(self) -> bool:
        """True once the channel is OPEN and its data channel can carry frames."""
        return self._connected

    def _wire_events(self) -> None:
        self.handshake.events.on(HandshakeEvent.DATA_CHANNEL, self._on_data_channel)
        self.handshake.events.on(HandshakeEvent.OPENED, self._maybe_connected)
        self.handshake.events.on(HandshakeEvent.DISCONNECTED, self._on_disconnected)

        self.receiver.events.on(
            ReceiverEvent.METADATA,
            lambda meta: self.events.emit(SessionEvent.METADATA, meta),
        )
        self.receiver.events.on(
            ReceiverEvent.PROGRESS,
            lambda percent, meta: self.events.emit(
                SessionEvent.PROGRESS, TransferDirection.RECEIVE, percent, meta
            ),
        )
        self.receiver.events.on(
            ReceiverEvent.COMPLETE,
            lambda payload, meta: self.events.emit(SessionEvent.COMPLETE, payload, meta),
        )

        self.sender.events.on(
            SenderEvent.PROGRESS,
            lambda percent, meta: self.events.emit(
                SessionEvent.PROGRESS, TransferDirection.SEND, percent, meta
            ),
        )
        self.sender.events.on(
            SenderEvent.COMPLETE,
            lambda meta: self.events.emit(SessionEvent.SENT, meta),
        )

    def _on_data_channel(self, channel: Any) -> None:
        self.sender.attach(channel)

        def on_message(message: Any) -> None:
            # Frames from a torn down channel must not reach a fresh transfer
            if (
                channel is self.handshake.data_channel
                and not self.handshake.state.is_terminal
            ):
                self.receiver.handle_message(message)

        def on_open() -> None:
            logger.debug(f"Data channel {channel.label} open")
            self._maybe_connected()

        channel.on("message", on_message)
        channel.on("open", on_open)
        self._maybe_connected()

    def _maybe_connected(self) -> None:
        channel = self.handshake.data_channel
        if (
            self._connected
            or self.handshake.state is not ChannelState.OPEN
            or channel is None
            or channel.readyState != DATA_CHANNEL_OPEN
        ):
            return
        self._connected = True
        logger.info(f"Connected to {self.remote_id}")
        self.events.emit(SessionEvent.CONNECTED, self.remote_id)

    def _on_disconnected(self, reason: str) -> None:
        self._connected = False
        self.receiver.reset()
        self.sender.detach()
        logger.info(f"Disconnected from {self.remote_id}: {reason}")
        self.events.emit(SessionEvent.DISCONNECTED, reason)
        if self.relay.state is RelayConnectionState.CLOSED:
            self._closed.set()

    def _channel_active(self) -> bool:
        return self.handshake.state in (ChannelState.NEGOTIATING, ChannelState.OPEN)

    async def run(
        self, *, task_status: trio.TaskStatus[None] = trio.TASK_STATUS_IGNORED
    ) -> None:
        """
        Run the relay connection and dispatch inbound envelopes to the handshake.

        Returns after ``close()``, or once the relay is gone with no channel
        left. Losing the relay does not end a live channel, only new
        handshakes become impossible.
        """
        async with self._bridge:
            try:
                async with trio.open_nursery() as nursery:
                    await nursery.start(self.relay.run)
                    logger.info(f"Session {self._local_id} running")
                    task_status.started()

                    async for envelope in self.relay.receive():
                        await self.handshake.handle_envelope(envelope)
                    if not self._closed.is_set() and self._channel_active():
                        logger.warning("Relay connection lost, no new handshakes possible")
                        await self._closed.wait()
            finally:
                with trio.CancelScope(shield=True):
                    await self.handshake.close()

    async def connect(self, remote_id: str) -> bool:
        """Start a handshake with ``remote_id``; False unless the channel is IDLE."""
        return await self.handshake.connect(remote_id)

    async def send(
        self,
        source: TransferSource,
        name: str | None = None,
        media_type: str | None = None,
    ) -> TransferMetadata | None:
        """
        Send a file path or bytes payload to the connected peer.

        Returns None, with a warning, when not connected or while another
        outbound transfer is in flight.
        """
        if self.handshake.state is not ChannelState.OPEN:
            logger.warning(
                f"Cannot send while channel is {self.handshake.state.value}"
            )
            return None
        return await self.sender.send(source, name=name, media_type=media_type)

    async def flush(self, timeout: float) -> bool:
        return await self.sender.flush(timeout)

    async def reset(self) -> None:
        """Drop the current channel and return to IDLE, keeping the relay."""
        await self.handshake.reset()
        self.receiver.reset()
        self._connected = False

    async def close(self) -> None:
        await self.handshake.close()
        await self.relay.aclose()
        self._closed.set()
