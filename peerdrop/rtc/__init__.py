"""
Direct channel negotiation over WebRTC (aiortc, driven from trio).
"""

from .async_bridge import RTCBridge
from .handshake import (
    ChannelState,
    HandshakeEvent,
    HandshakeRole,
    HandshakeStateMachine,
)

__all__ = [
    "ChannelState",
    "HandshakeEvent",
    "HandshakeRole",
    "HandshakeStateMachine",
    "RTCBridge",
]
