"""
Signaling over an untrusted relay.

Envelopes are addressed JSON messages; the relay broadcasts them and each
peer keeps only those addressed to it.
"""

from .envelope import (
    SignalEnvelope,
    SignalKind,
)
from .relay_client import (
    RelayConnectionState,
    SignalRelayClient,
)
from .relay_server import (
    RelayServer,
)

__all__ = [
    "RelayConnectionState",
    "RelayServer",
    "SignalEnvelope",
    "SignalKind",
    "SignalRelayClient",
]
