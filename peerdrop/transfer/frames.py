"""
Transfer framing over the data channel.

Structured frames travel as text messages, chunks as binary messages; the
channel's own text/binary distinction tells them apart, so chunks carry no
in-band tag or sequence number.
"""

from dataclasses import dataclass
import json
from typing import Any

from peerdrop.constants import (
    CHUNK_SIZE,
    DEFAULT_MEDIA_TYPE,
    MESSAGE_TYPE_FILE_COMPLETE,
    MESSAGE_TYPE_FILE_INFO,
)
from peerdrop.exceptions import FrameError


def chunk_count_for(byte_size: int, chunk_size: int = CHUNK_SIZE) -> int:
    return (byte_size + chunk_size - 1) // chunk_size


@dataclass(frozen=True)
class TransferMetadata:
    transfer_id: str
    name: str
    byte_size: int
    media_type: str
    chunk_count: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "fileId": self.transfer_id,
            "name": self.name,
            "size": self.byte_size,
            "type": self.media_type,
            "totalChunks": self.chunk_count,
        }

    @classmethod
    def from_wire(cls, meta: Any) -> "TransferMetadata":
        if not isinstance(meta, dict):
            raise FrameError("file-info frame has no meta object")
        try:
            transfer_id = str(meta["fileId"])
            name = str(meta["name"])
            byte_size = int(meta["size"])
            chunk_count = int(meta["totalChunks"])
        except (KeyError, TypeError, ValueError) as e:
            raise FrameError(f"Invalid file-info meta: {e}")
        if byte_size < 0 or chunk_count < 0:
            raise FrameError("file-info meta has negative size or chunk count")
        return cls(
            transfer_id=transfer_id,
            name=name,
            byte_size=byte_size,
            media_type=str(meta.get("type") or DEFAULT_MEDIA_TYPE),
            chunk_count=chunk_count,
        )


@dataclass(frozen=True)
class FileInfoFrame:
    meta: TransferMetadata

    def encode(self) -> str:
        return json.dumps(
            {"messageType": MESSAGE_TYPE_FILE_INFO, "meta": self.meta.to_wire()}
        )


@dataclass(frozen=True)
class FileCompleteFrame:
    transfer_id: str

    def encode(self) -> str:
        return json.dumps(
            {"messageType": MESSAGE_TYPE_FILE_COMPLETE, "fileId": self.transfer_id}
        )


@dataclass(frozen=True)
class ChunkFrame:
    data: bytes


Frame = FileInfoFrame | FileCompleteFrame | ChunkFrame


def decode_frame(message: str | bytes | bytearray | memoryview) -> Frame:
    """
    Decode one data channel message.

    Binary messages are chunks. Text messages must be a known structured frame.
    """
    if isinstance(message, (bytes, bytearray, memoryview)):
        return ChunkFrame(bytes(message))
    if not isinstance(message, str):
        raise FrameError(f"Unsupported message type {type(message)}")

    try:
        parsed = json.loads(message)
    except json.JSONDecodeError as e:
        raise FrameError(f"Structured frame is not valid JSON: {e}")
    if not isinstance(parsed, dict):
        raise FrameError("Structured frame must be an object")

    message_type = parsed.get("messageType")
    if message_type == MESSAGE_TYPE_FILE_INFO:
        return FileInfoFrame(TransferMetadata.from_wire(parsed.get("meta")))
    if message_type == MESSAGE_TYPE_FILE_COMPLETE:
        transfer_id = parsed.get("fileId")
        if transfer_id is None:
            raise FrameError("file-complete frame has no fileId")
        return FileCompleteFrame(str(transfer_id))
    raise FrameError(f"Unknown structured frame type: {message_type!r}")
