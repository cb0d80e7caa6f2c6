"""peerdrop: direct peer-to-peer file transfer over WebRTC data channels."""

from importlib.metadata import PackageNotFoundError, version as __version

from peerdrop.config import (
    HandshakeConfig,
    RelayClientConfig,
    RetryPolicy,
    SessionConfig,
    TransferConfig,
)
from peerdrop.identity import (
    generate_peer_id,
)
from peerdrop.rtc import (
    ChannelState,
    HandshakeStateMachine,
)
from peerdrop.session import (
    PeerSession,
    SessionEvent,
    TransferDirection,
)
from peerdrop.signaling import (
    RelayServer,
    SignalEnvelope,
    SignalRelayClient,
)
from peerdrop.transfer import (
    TransferMetadata,
    TransferReceiver,
    TransferSender,
)
from peerdrop.utils.logging import (
    setup_logging,
)

# Configure logging from PEERDROP_DEBUG / PEERDROP_DEBUG_FILE
setup_logging()

__all__ = [
    "ChannelState",
    "HandshakeConfig",
    "HandshakeStateMachine",
    "PeerSession",
    "RelayClientConfig",
    "RelayServer",
    "RetryPolicy",
    "SessionConfig",
    "SessionEvent",
    "SignalEnvelope",
    "SignalRelayClient",
    "TransferConfig",
    "TransferDirection",
    "TransferMetadata",
    "TransferReceiver",
    "TransferSender",
    "generate_peer_id",
]

try:
    __version__ = __version("peerdrop")
except PackageNotFoundError:
    __version__ = "0.0.0"
