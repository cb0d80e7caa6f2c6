"""
Negotiation of the direct channel.

The caller creates the data channel and an offer; the receiver adopts the
offer's sender as its remote identity and answers. Both sides exchange the
candidates found in their local descriptions. The peer connection's
``connectionstatechange`` events then drive the channel state::

    IDLE -> NEGOTIATING -> OPEN -> CLOSED | FAILED
"""

from enum import Enum
import logging
from typing import Any, Protocol

from aiortc import RTCSessionDescription

from peerdrop.config import HandshakeConfig
from peerdrop.constants import (
    CONNECTION_STATE_CLOSED,
    CONNECTION_STATE_CONNECTED,
    CONNECTION_STATE_DISCONNECTED,
    CONNECTION_STATE_FAILED,
)
from peerdrop.events import EventEmitter
from peerdrop.exceptions import EnvelopeError
from peerdrop.identity import validate_peer_id
from peerdrop.signaling.envelope import SignalEnvelope, SignalKind

from .async_bridge import RTCBridge
from .candidates import extract_candidates, parse_candidate

logger = logging.getLogger("peerdrop.rtc.handshake")


class ChannelState(Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ChannelState.CLOSED, ChannelState.FAILED)


class HandshakeRole(Enum):
    CALLER = "caller"
    RECEIVER = "receiver"


class HandshakeEvent(Enum):
    # (new_state, old_state)
    STATE_CHANGED = "state_changed"
    # (data_channel,)
    DATA_CHANNEL = "data_channel"
    # ()
    OPENED = "opened"
    # (reason,)
    DISCONNECTED = "disconnected"


class SignalSender(Protocol):
    async def send(self, envelope: SignalEnvelope) -> bool: ...


class HandshakeStateMachine:
    def __init__(
        self,
        local_id: str,
        signal_sender: SignalSender,
        bridge: Any | None = None,
        config: HandshakeConfig | None = None,
    ) -> None:
        self._local_id = validate_peer_id(local_id)
        self._signal_sender = signal_sender
        self._bridge = bridge if bridge is not None else RTCBridge()
        self._config = config or HandshakeConfig()
        self.events: EventEmitter[HandshakeEvent] = EventEmitter(HandshakeEvent)

        self._state = ChannelState.IDLE
        self._role: HandshakeRole | None = None
        self._remote_id: str | None = None
        self._peer_connection: Any | None = None
        self._data_channel: Any | None = None
        self._remote_description_set = False
        self._pending_candidates: list[dict[str, Any]] = []

    @property
    def local_id(self) -> str:
        return self._local_id

    @property
    def remote_id(self) -> str | None:
        return self._remote_id

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def role(self) -> HandshakeRole | None:
        return self._role

    @property
    def peer_connection(self) -> Any | None:
        return self._peer_connection

    @property
    def data_channel(self) -> Any | None:
        return self._data_channel

    def _set_state(self, new_state: ChannelState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.info(f"Channel state {old_state.value} -> {new_state.value}")
        self.events.emit(HandshakeEvent.STATE_CHANGED, new_state, old_state)

    def _fail(self, reason: str) -> None:
        if self._state.is_terminal:
            return
        logger.error(f"Handshake with {self._remote_id} failed: {reason}")
        self._set_state(ChannelState.FAILED)
        self.events.emit(HandshakeEvent.DISCONNECTED, reason)

    def _is_current(self, peer_connection: Any) -> bool:
        """False once the negotiation was torn down or superseded."""
        return (
            peer_connection is self._peer_connection
            and not self._state.is_terminal
            and self._state is not ChannelState.IDLE
        )

    # Peer connection plumbing

    def _create_peer_connection(self) -> Any:
        peer_connection = self._bridge.create_peer_connection(
            self._config.ice_servers
        )

        def on_connection_state_change() -> None:
            self._handle_connection_state(peer_connection)

        def on_data_channel(channel: Any) -> None:
            if peer_connection is not self._peer_connection:
                return
            logger.info(f"Received data channel: {channel.label}")
            self._attach_data_channel(channel)

        peer_connection.on("connectionstatechange", on_connection_state_change)
        peer_connection.on("datachannel", on_data_channel)
        self._peer_connection = peer_connection
        return peer_connection

    def _attach_data_channel(self, channel: Any) -> None:
        self._data_channel = channel
        self.events.emit(HandshakeEvent.DATA_CHANNEL, channel)

    def _handle_connection_state(self, peer_connection: Any) -> None:
        if peer_connection is not self._peer_connection:
            return

        connection_state = peer_connection.connectionState
        logger.debug(f"Connection state changed: {connection_state}")

        if connection_state == CONNECTION_STATE_CONNECTED:
            if self._state is ChannelState.NEGOTIATING:
                self._set_state(ChannelState.OPEN)
                self.events.emit(HandshakeEvent.OPENED)
        elif connection_state in (
            CONNECTION_STATE_FAILED,
            CONNECTION_STATE_DISCONNECTED,
        ):
            if self._state in (ChannelState.NEGOTIATING, ChannelState.OPEN):
                self._fail(f"peer connection {connection_state}")
        elif connection_state == CONNECTION_STATE_CLOSED:
            if not self._state.is_terminal and self._state is not ChannelState.IDLE:
                self._set_state(ChannelState.CLOSED)
                self.events.emit(HandshakeEvent.DISCONNECTED, "peer connection closed")

    # Signaling

    async def _signal(self, envelope: SignalEnvelope) -> bool:
        return await self._signal_sender.send(envelope)

    async def _send_local_candidates(
        self, peer_connection: Any, remote_id: str, sdp: str
    ) -> None:
        candidates = extract_candidates(sdp)
        for candidate in candidates:
            if not self._is_current(peer_connection):
                return
            delivered = await self._signal(
                SignalEnvelope.candidate(self._local_id, remote_id, candidate)
            )
            if not delivered:
                logger.warning("Local ICE candidate was not delivered")
        logger.debug(f"Sent {len(candidates)} ICE candidates to {remote_id}")

    async def _apply_candidate(
        self, peer_connection: Any, candidate_init: dict[str, Any]
    ) -> None:
        try:
            candidate = parse_candidate(candidate_init)
        except EnvelopeError as e:
            logger.debug(f"Ignoring malformed candidate: {e}")
            return
        try:
            await self._bridge.add_ice_candidate(peer_connection, candidate)
            logger.debug("Added remote ICE candidate")
        except Exception as e:
            logger.warning(f"Could not add remote ICE candidate: {e}")

    async def _flush_pending_candidates(self, peer_connection: Any) -> None:
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate_init in pending:
            if not self._is_current(peer_connection):
                return
            await self._apply_candidate(peer_connection, candidate_init)

    async def connect(self, remote_id: str) -> bool:
        """
        Start negotiating a direct channel to ``remote_id`` as the caller.

        Returns False without side effects unless the channel is ``IDLE``.
        """
        if self._state is not ChannelState.IDLE:
            logger.warning(f"Cannot connect while channel is {self._state.value}")
            return False

        remote_id = validate_peer_id(remote_id)
        self._remote_id = remote_id
        self._role = HandshakeRole.CALLER
        self._set_state(ChannelState.NEGOTIATING)
        logger.info(f"Connecting to {remote_id}")

        peer_connection: Any = None
        try:
            peer_connection = self._create_peer_connection()
            channel = self._bridge.create_data_channel(
                peer_connection, self._config.channel_label
            )
            self._attach_data_channel(channel)
            offer = await self._bridge.create_offer(peer_connection)
            if not self._is_current(peer_connection):
                return False
            await self._bridge.set_local_description(peer_connection, offer)
            if not self._is_current(peer_connection):
                return False
            sdp = peer_connection.localDescription.sdp
        except Exception as e:
            if self._is_current(peer_connection):
                self._fail(f"could not create offer: {e}")
            return False

        delivered = await self._signal(
            SignalEnvelope.offer(self._local_id, remote_id, sdp)
        )
        if not self._is_current(peer_connection):
            logger.debug("Negotiation torn down while sending offer")
            return False
        if not delivered:
            self._fail("offer was not delivered")
            return False
        logger.info(f"Sent SDP offer to {remote_id}")

        await self._send_local_candidates(peer_connection, remote_id, sdp)
        return True

    async def handle_envelope(self, envelope: SignalEnvelope) -> None:
        """Process one inbound envelope; anything not addressed to us is dropped."""
        if not envelope.is_addressed_to(self._local_id):
            logger.debug(
                f"Discarding {envelope.kind.value} envelope for {envelope.recipient}"
            )
            return

        if envelope.kind is SignalKind.OFFER:
            await self._handle_offer(envelope)
        elif envelope.kind is SignalKind.ANSWER:
            await self._handle_answer(envelope)
        elif envelope.kind is SignalKind.CANDIDATE:
            await self._handle_candidate(envelope)

    async def _handle_offer(self, envelope: SignalEnvelope) -> None:
        if self._state is not ChannelState.IDLE:
            # No renegotiation: later offers never touch the live channel
            logger.warning(
                f"Ignoring offer from {envelope.sender}: "
                f"channel is {self._state.value}"
            )
            return

        logger.info(f"Received SDP offer from {envelope.sender}")
        self._remote_id = envelope.sender
        self._role = HandshakeRole.RECEIVER
        self._set_state(ChannelState.NEGOTIATING)

        peer_connection: Any = None
        try:
            peer_connection = self._create_peer_connection()
            await self._bridge.set_remote_description(
                peer_connection,
                RTCSessionDescription(sdp=envelope.payload, type="offer"),
            )
            if not self._is_current(peer_connection):
                return
            self._remote_description_set = True
            await self._flush_pending_candidates(peer_connection)

            answer = await self._bridge.create_answer(peer_connection)
            if not self._is_current(peer_connection):
                return
            await self._bridge.set_local_description(peer_connection, answer)
            if not self._is_current(peer_connection):
                return
            sdp = peer_connection.localDescription.sdp
        except Exception as e:
            if self._is_current(peer_connection):
                self._fail(f"could not answer offer: {e}")
            return

        delivered = await self._signal(
            SignalEnvelope.answer(self._local_id, envelope.sender, sdp)
        )
        if not self._is_current(peer_connection):
            logger.debug("Negotiation torn down while sending answer")
            return
        if not delivered:
            self._fail("answer was not delivered")
            return
        logger.info(f"Sent SDP answer to {envelope.sender}")

        await self._send_local_candidates(peer_connection, envelope.sender, sdp)

    async def _handle_answer(self, envelope: SignalEnvelope) -> None:
        peer_connection = self._peer_connection
        if (
            self._role is not HandshakeRole.CALLER
            or self._state is not ChannelState.NEGOTIATING
            or self._remote_description_set
            or envelope.sender != self._remote_id
            or peer_connection is None
        ):
            logger.debug(f"Ignoring unexpected answer from {envelope.sender}")
            return

        logger.info(f"Received SDP answer from {envelope.sender}")
        self._remote_description_set = True
        try:
            await self._bridge.set_remote_description(
                peer_connection,
                RTCSessionDescription(sdp=envelope.payload, type="answer"),
            )
        except Exception as e:
            if self._is_current(peer_connection):
                self._fail(f"could not apply answer: {e}")
            return

        await self._flush_pending_candidates(peer_connection)

    async def _handle_candidate(self, envelope: SignalEnvelope) -> None:
        peer_connection = self._peer_connection
        if (
            self._state not in (ChannelState.NEGOTIATING, ChannelState.OPEN)
            or peer_connection is None
        ):
            logger.debug(
                f"Ignoring candidate from {envelope.sender}: "
                f"channel is {self._state.value}"
            )
            return
        if envelope.sender != self._remote_id:
            logger.debug(f"Ignoring candidate from unknown peer {envelope.sender}")
            return

        if not self._remote_description_set:
            self._pending_candidates.append(envelope.payload)
            logger.debug("Queued remote ICE candidate until remote description")
            return

        await self._apply_candidate(peer_connection, envelope.payload)

    async def close(self) -> None:
        """Tear down the peer connection; the channel ends up CLOSED or FAILED."""
        peer_connection = self._peer_connection
        self._peer_connection = None
        self._data_channel = None
        self._pending_candidates = []

        if self._state in (ChannelState.NEGOTIATING, ChannelState.OPEN):
            self._set_state(ChannelState.CLOSED)
            self.events.emit(HandshakeEvent.DISCONNECTED, "closed locally")

        if peer_connection is not None:
            try:
                await self._bridge.close_peer_connection(peer_connection)
            except Exception as e:
                logger.warning(f"Error closing peer connection: {e}")

    async def reset(self) -> None:
        """Close any negotiation and return to IDLE, ready for a fresh handshake."""
        await self.close()
        self._role = None
        self._remote_id = None
        self._remote_description_set = False
        self._set_state(ChannelState.IDLE)
