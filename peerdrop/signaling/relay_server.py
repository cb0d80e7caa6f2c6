"""
Minimal signaling relay.

Every JSON message received from one connection is forwarded to every other
open connection. The relay never inspects addressing; peers filter on the
``to`` field themselves.
"""

import json
import logging
from typing import Any
import uuid

import trio
from trio_websocket import (
    ConnectionClosed,
    WebSocketConnection,
    WebSocketRequest,
    serve_websocket,
)

from peerdrop.constants import (
    RELAY_MAX_MESSAGE_SIZE,
    RELAY_MESSAGE_QUEUE_SIZE,
    RELAY_SEND_TIMEOUT,
)

logger = logging.getLogger("peerdrop.signaling.relay_server")


class RelayServer:
    def __init__(self, send_timeout: float = RELAY_SEND_TIMEOUT) -> None:
        self._clients: dict[Any, str] = {}
        self._send_timeout = send_timeout

    @property
    def connection_count(self) -> int:
        return len(self._clients)

    def register(self, ws: Any) -> str:
        connection_id = str(uuid.uuid4())
        self._clients[ws] = connection_id
        logger.info(f"New connection {connection_id}")
        return connection_id

    def unregister(self, ws: Any) -> None:
        connection_id = self._clients.pop(ws, None)
        if connection_id is not None:
            logger.info(f"Connection {connection_id} closed")

    async def _forward(self, client: Any, message: str) -> bool:
        with trio.move_on_after(self._send_timeout):
            try:
                await client.send_message(message)
                return True
            except ConnectionClosed:
                logger.debug(
                    f"Skipping closed connection {self._clients.get(client)}"
                )
                return False
        logger.warning(
            f"Dropped message for slow connection {self._clients.get(client)}"
        )
        return False

    async def broadcast(self, sender: Any, message: str) -> int:
        """
        Forward ``message`` to every client except ``sender``.

        Each client is written to from its own task, so a stalled client only
        loses its own copy after ``send_timeout``.
        """
        results: list[bool] = []

        async def forward(client: Any) -> None:
            results.append(await self._forward(client, message))

        async with trio.open_nursery() as nursery:
            for client in list(self._clients):
                if client is sender or getattr(client, "closed", None) is not None:
                    continue
                nursery.start_soon(forward, client)
        return sum(results)

    async def handle_connection(self, ws: Any) -> None:
        self.register(ws)
        try:
            while True:
                message = await ws.get_message()
                try:
                    data = json.loads(message)
                except (json.JSONDecodeError, UnicodeDecodeError):
                    logger.debug("Dropping non-JSON message")
                    continue
                await self.broadcast(ws, json.dumps(data))
        except ConnectionClosed:
            pass
        finally:
            self.unregister(ws)

    async def _handle_request(self, request: WebSocketRequest) -> None:
        ws: WebSocketConnection = await request.accept()
        await self.handle_connection(ws)

    async def serve(
        self,
        host: str | None,
        port: int,
        *,
        task_status: trio.TaskStatus[Any] = trio.TASK_STATUS_IGNORED,
    ) -> None:
        """Serve until cancelled; ``task_status`` receives the WebSocketServer."""
        logger.info(f"Signaling relay listening on {host or '*'}:{port}")
        await serve_websocket(
            self._handle_request,
            host,
            port,
            None,
            message_queue_size=RELAY_MESSAGE_QUEUE_SIZE,
            max_message_size=RELAY_MAX_MESSAGE_SIZE,
            task_status=task_status,
        )
