import logging

import pytest

from peerdrop.tools.fakes import (
    FakeBridge,
    FakeDataChannel,
    RecordingSignalSender,
)


@pytest.fixture
def propagate_logs():
    """Let caplog see peerdrop records; setup_logging detaches the tree."""
    logger = logging.getLogger("peerdrop")
    original = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = original


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def signal_sender():
    return RecordingSignalSender()


@pytest.fixture
def open_channel():
    channel = FakeDataChannel()
    channel.readyState = "open"
    return channel
