from .frames import (
    ChunkFrame,
    FileCompleteFrame,
    FileInfoFrame,
    TransferMetadata,
    chunk_count_for,
    decode_frame,
)
from .receiver import (
    ChunkBuffer,
    ReceiverEvent,
    TransferReceiver,
)
from .sender import (
    SendCursor,
    SenderEvent,
    TransferSender,
)

__all__ = [
    "ChunkBuffer",
    "ChunkFrame",
    "FileCompleteFrame",
    "FileInfoFrame",
    "ReceiverEvent",
    "SendCursor",
    "SenderEvent",
    "TransferMetadata",
    "TransferReceiver",
    "TransferSender",
    "chunk_count_for",
    "decode_frame",
]
