from collections.abc import AsyncIterator
from enum import Enum
import logging
from typing import Any

import trio
from trio_websocket import (
    ConnectionClosed,
    HandshakeError as WebSocketHandshakeError,
    open_websocket_url,
)

from peerdrop.config import RelayClientConfig
from peerdrop.exceptions import EnvelopeError, RelayClientError

from .envelope import SignalEnvelope

logger = logging.getLogger("peerdrop.signaling.relay_client")


class RelayConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class SignalRelayClient:
    """
    Sends and receives signaling envelopes over a persistent relay websocket.

    The relay is a broadcast medium, so every decoded envelope is handed to
    ``receive()`` as is; filtering on the recipient is left to the consumer.
    """

    def __init__(self, config: RelayClientConfig | None = None) -> None:
        self._config = config or RelayClientConfig()
        self._state = RelayConnectionState.CONNECTING
        self._ws: Any | None = None
        self._send_lock = trio.Lock()

        self._inbound_send: trio.MemorySendChannel[SignalEnvelope]
        self._inbound_receive: trio.MemoryReceiveChannel[SignalEnvelope]
        self._inbound_send, self._inbound_receive = trio.open_memory_channel(
            self._config.inbound_buffer
        )
        self._receiving = False

    @property
    def state(self) -> RelayConnectionState:
        return self._state

    @property
    def url(self) -> str:
        return self._config.url

    async def run(
        self, *, task_status: trio.TaskStatus[None] = trio.TASK_STATUS_IGNORED
    ) -> None:
        """
        Connect to the relay and pump inbound messages until it closes.

        ``task_status.started()`` fires before the websocket is open so that
        callers may queue sends while the connection is still establishing.
        """
        task_status.started()
        logger.debug(f"Connecting to relay {self._config.url}")
        try:
            async with open_websocket_url(
                self._config.url,
                message_queue_size=self._config.message_queue_size,
                max_message_size=self._config.max_message_size,
            ) as ws:
                await self.serve_connection(ws)
        except (OSError, WebSocketHandshakeError) as e:
            logger.error(f"Could not connect to relay {self._config.url}: {e}")
        finally:
            self._mark_closed()

    async def serve_connection(self, ws: Any) -> None:
        """Pump an already open websocket until it closes."""
        if self._state is RelayConnectionState.CLOSED:
            raise RelayClientError("Relay client is closed")

        self._ws = ws
        self._state = RelayConnectionState.OPEN
        logger.info(f"Relay connection open ({self._config.url})")

        try:
            while True:
                message = await ws.get_message()
                try:
                    envelope = SignalEnvelope.from_json(message)
                except EnvelopeError as e:
                    logger.debug(f"Dropping undecodable relay message: {e}")
                    continue
                try:
                    await self._inbound_send.send(envelope)
                except trio.ClosedResourceError:
                    logger.debug("Inbound consumer gone, dropping envelope")
        except ConnectionClosed as e:
            logger.info(f"Relay connection closed: {e.reason}")
        finally:
            self._mark_closed()

    def _mark_closed(self) -> None:
        if self._state is not RelayConnectionState.CLOSED:
            logger.debug("Relay client closed")
        self._state = RelayConnectionState.CLOSED
        self._ws = None
        self._inbound_send.close()

    async def send(self, envelope: SignalEnvelope) -> bool:
        """
        Deliver ``envelope`` to the relay.

        Retries on the configured fixed interval while the connection is still
        establishing. Returns ``False`` when the envelope was dropped; signaling
        loss is only recoverable by restarting the handshake.
        """
        retry = self._config.retry
        data = envelope.to_json()

        for attempt in range(retry.max_attempts + 1):
            if self._state is RelayConnectionState.OPEN and self._ws is not None:
                try:
                    async with self._send_lock:
                        await self._ws.send_message(data)
                    logger.debug(
                        f"Sent {envelope.kind.value} envelope to {envelope.recipient}"
                    )
                    return True
                except ConnectionClosed:
                    logger.warning("Relay connection closed while sending")
                    self._mark_closed()
                    break

            if self._state is not RelayConnectionState.CONNECTING:
                break
            if attempt == retry.max_attempts:
                break

            logger.warning(
                f"Relay not open yet, retrying in {retry.delay}s "
                f"(attempt {attempt + 1}/{retry.max_attempts})"
            )
            await retry.sleep(retry.delay)

        logger.warning(
            f"Relay connection not usable ({self._state.value}), "
            f"dropping {envelope.kind.value} envelope for {envelope.recipient}"
        )
        return False

    async def receive(self) -> AsyncIterator[SignalEnvelope]:
        """
        Yield inbound envelopes for the life of the relay connection.

        The sequence ends when the connection closes and cannot be restarted.
        """
        if self._receiving:
            raise RelayClientError("Relay envelope stream already consumed")
        self._receiving = True

        async with self._inbound_receive:
            async for envelope in self._inbound_receive:
                yield envelope

    async def aclose(self) -> None:
        ws = self._ws
        self._mark_closed()
        if ws is not None:
            try:
                await ws.aclose()
            except Exception as e:
                logger.debug(f"Error closing relay websocket (non-critical): {e}")
