from collections.abc import Sequence
import logging
from typing import (
    Any,
    AsyncContextManager,
)

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from trio_asyncio import (
    aio_as_trio,
    open_loop,
)

logger = logging.getLogger("peerdrop.rtc.async_bridge")


def build_rtc_configuration(ice_servers: Sequence[dict[str, Any]]) -> RTCConfiguration:
    """Turn ``[{"urls": ..., "username": ..., "credential": ...}]`` into aiortc config."""
    servers = [
        RTCIceServer(
            urls=server["urls"],
            username=server.get("username"),
            credential=server.get("credential"),
        )
        for server in ice_servers
    ]
    return RTCConfiguration(iceServers=servers)


class RTCBridge:
    """
    Runs aiortc's asyncio coroutines from trio.

    Enter the bridge once (``async with bridge:``) around everything that
    touches aiortc; it keeps a trio-asyncio loop open for that scope. aiortc
    callbacks then run on the trio thread, so handlers may mutate session
    state directly.
    """

    def __init__(self) -> None:
        self._loop_context: AsyncContextManager[Any] | None = None

    async def __aenter__(self) -> "RTCBridge":
        if self._loop_context is None:
            self._loop_context = open_loop()
            await self._loop_context.__aenter__()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._loop_context is not None:
            loop_context, self._loop_context = self._loop_context, None
            await loop_context.__aexit__(exc_type, exc_val, exc_tb)

    def create_peer_connection(
        self, ice_servers: Sequence[dict[str, Any]]
    ) -> RTCPeerConnection:
        peer_connection = RTCPeerConnection(build_rtc_configuration(ice_servers))
        logger.debug("Created RTCPeerConnection")
        return peer_connection

    def create_data_channel(
        self, peer_connection: RTCPeerConnection, label: str
    ) -> RTCDataChannel:
        data_channel = peer_connection.createDataChannel(label)
        logger.debug(f"Created data channel: {label}")
        return data_channel

    async def create_offer(
        self, peer_connection: RTCPeerConnection
    ) -> RTCSessionDescription:
        return await aio_as_trio(peer_connection.createOffer())

    async def create_answer(
        self, peer_connection: RTCPeerConnection
    ) -> RTCSessionDescription:
        return await aio_as_trio(peer_connection.createAnswer())

    async def set_local_description(
        self, peer_connection: RTCPeerConnection, description: RTCSessionDescription
    ) -> None:
        await aio_as_trio(peer_connection.setLocalDescription(description))
        logger.debug(f"Set local {description.type} description")

    async def set_remote_description(
        self, peer_connection: RTCPeerConnection, description: RTCSessionDescription
    ) -> None:
        await aio_as_trio(peer_connection.setRemoteDescription(description))
        logger.debug(f"Set remote {description.type} description")

    async def add_ice_candidate(
        self, peer_connection: RTCPeerConnection, candidate: RTCIceCandidate | None
    ) -> None:
        await aio_as_trio(peer_connection.addIceCandidate(candidate))

    async def close_peer_connection(self, peer_connection: RTCPeerConnection) -> None:
        try:
            await aio_as_trio(peer_connection.close())
            logger.debug("Closed peer connection")
        except RuntimeError as e:
            # The asyncio loop may already be gone during teardown
            if "closed" in str(e).lower() or "no running event loop" in str(e).lower():
                logger.debug(
                    "Event loop closed during peer connection cleanup (non-critical)"
                )
                return
            raise
