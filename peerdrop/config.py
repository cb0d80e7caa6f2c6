"""
Configuration management for peerdrop.

This module holds the tunables of the signal relay client, the handshake
and the transfer engine, grouped under a single ``SessionConfig``.
"""

from collections.abc import Awaitable, Callable
from dataclasses import (
    dataclass,
    field,
)
from typing import Any

import trio

from .constants import (
    BUFFERED_AMOUNT_LOW_THRESHOLD,
    CHUNK_SIZE,
    DATA_CHANNEL_LABEL,
    DEFAULT_ICE_SERVERS,
    DEFAULT_RELAY_URL,
    DRAIN_POLL_INTERVAL,
    INBOUND_ENVELOPE_BUFFER,
    MAX_BUFFERED_AMOUNT,
    RELAY_MAX_MESSAGE_SIZE,
    RELAY_MESSAGE_QUEUE_SIZE,
    SIGNAL_MAX_RETRIES,
    SIGNAL_RETRY_DELAY,
)


@dataclass
class RetryPolicy:
    """
    Bounded, fixed-delay retry schedule.

    ``sleep`` is the scheduler used between attempts; it defaults to
    ``trio.sleep`` and can be swapped out in tests.
    """

    max_attempts: int = SIGNAL_MAX_RETRIES
    delay: float = SIGNAL_RETRY_DELAY
    sleep: Callable[[float], Awaitable[Any]] = trio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.delay < 0:
            raise ValueError("delay must be >= 0")


@dataclass
class RelayClientConfig:
    """Configuration for the signal relay client."""

    url: str = DEFAULT_RELAY_URL
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    # trio-websocket settings
    message_queue_size: int = RELAY_MESSAGE_QUEUE_SIZE
    max_message_size: int = RELAY_MAX_MESSAGE_SIZE

    # Inbound envelopes buffered before the pump blocks
    inbound_buffer: int = INBOUND_ENVELOPE_BUFFER


@dataclass
class HandshakeConfig:
    """Configuration for negotiating the direct channel."""

    ice_servers: list[dict[str, Any]] = field(
        default_factory=lambda: list(DEFAULT_ICE_SERVERS)
    )
    channel_label: str = DATA_CHANNEL_LABEL


@dataclass
class TransferConfig:
    """Chunking and flow control settings for file transfers."""

    chunk_size: int = CHUNK_SIZE
    buffered_amount_low_threshold: int = BUFFERED_AMOUNT_LOW_THRESHOLD
    max_buffered_amount: int = MAX_BUFFERED_AMOUNT
    drain_poll_interval: float = DRAIN_POLL_INTERVAL

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.buffered_amount_low_threshold > self.max_buffered_amount:
            raise ValueError(
                "buffered_amount_low_threshold must not exceed max_buffered_amount"
            )


@dataclass
class SessionConfig:
    """Configuration for a peer session."""

    relay: RelayClientConfig = field(default_factory=RelayClientConfig)
    handshake: HandshakeConfig = field(default_factory=HandshakeConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
