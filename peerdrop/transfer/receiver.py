from enum import Enum
import logging
from typing import Any

from peerdrop.events import EventEmitter
from peerdrop.exceptions import FrameError

from .frames import (
    ChunkFrame,
    FileCompleteFrame,
    FileInfoFrame,
    TransferMetadata,
    decode_frame,
)

logger = logging.getLogger("peerdrop.transfer.receiver")


class ReceiverEvent(Enum):
    # (meta,)
    METADATA = "metadata"
    # (percent, meta)
    PROGRESS = "progress"
    # (payload, meta)
    COMPLETE = "complete"
    # (meta, reason)
    ABANDONED = "abandoned"


class ChunkBuffer:
    """Append-only chunk store for one inbound transfer."""

    def __init__(self, expected_chunks: int) -> None:
        self.expected_chunks = expected_chunks
        self._chunks: list[bytes] = []
        self._byte_count = 0

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def byte_count(self) -> int:
        return self._byte_count

    @property
    def is_full(self) -> bool:
        return len(self._chunks) >= self.expected_chunks

    def append(self, data: bytes) -> int:
        self._chunks.append(data)
        self._byte_count += len(data)
        return len(self._chunks)

    def assemble(self) -> bytes:
        return b"".join(self._chunks)

    def clear(self) -> None:
        self._chunks.clear()
        self._byte_count = 0


class TransferReceiver:
    """
    Reassembles inbound frames into payloads.

    Out-of-protocol frames never raise: a chunk or completion with no
    transfer in progress is ignored, a completion for another transfer id is
    ignored, and a new ``file-info`` while a transfer is in progress replaces
    it (the old one is reported as abandoned).
    """

    def __init__(self) -> None:
        self.events: EventEmitter[ReceiverEvent] = EventEmitter(ReceiverEvent)
        self._meta: TransferMetadata | None = None
        self._buffer: ChunkBuffer | None = None

    @property
    def current(self) -> TransferMetadata | None:
        return self._meta

    @property
    def busy(self) -> bool:
        return self._meta is not None

    @property
    def received_chunks(self) -> int:
        return len(self._buffer) if self._buffer is not None else 0

    def handle_message(self, message: Any) -> None:
        try:
            frame = decode_frame(message)
        except FrameError as e:
            logger.warning(f"Ignoring undecodable frame: {e}")
            return
        self.handle_frame(frame)

    def handle_frame(self, frame: FileInfoFrame | FileCompleteFrame | ChunkFrame) -> None:
        if isinstance(frame, FileInfoFrame):
            self._on_file_info(frame.meta)
        elif isinstance(frame, ChunkFrame):
            self._on_chunk(frame.data)
        elif isinstance(frame, FileCompleteFrame):
            self._on_complete(frame.transfer_id)

    def reset(self) -> None:
        """Drop any in-progress transfer; later frames for it are ignored."""
        if self._meta is not None:
            self._abandon("receiver reset")

    def _abandon(self, reason: str) -> None:
        meta = self._meta
        self._release()
        if meta is not None:
            logger.warning(f"Transfer {meta.transfer_id} abandoned: {reason}")
            self.events.emit(ReceiverEvent.ABANDONED, meta, reason)

    def _release(self) -> None:
        if self._buffer is not None:
            self._buffer.clear()
        self._buffer = None
        self._meta = None

    def _on_file_info(self, meta: TransferMetadata) -> None:
        if self._meta is not None:
            self._abandon(f"superseded by transfer {meta.transfer_id}")

        logger.info(
            f"Receiving {meta.name} ({meta.byte_size} bytes, "
            f"{meta.chunk_count} chunks) as {meta.transfer_id}"
        )
        self._meta = meta
        self._buffer = ChunkBuffer(meta.chunk_count)
        self.events.emit(ReceiverEvent.METADATA, meta)

    def _on_chunk(self, data: bytes) -> None:
        meta, buffer = self._meta, self._buffer
        if meta is None or buffer is None:
            logger.debug(f"Ignoring {len(data)} byte chunk, no transfer in progress")
            return
        if buffer.is_full:
            logger.warning(
                f"Ignoring chunk beyond {meta.chunk_count} for {meta.transfer_id}"
            )
            return

        received = buffer.append(data)
        percent = received * 100 // meta.chunk_count
        self.events.emit(ReceiverEvent.PROGRESS, percent, meta)

    def _on_complete(self, transfer_id: str) -> None:
        meta, buffer = self._meta, self._buffer
        if meta is None or buffer is None:
            logger.debug(f"Ignoring completion of {transfer_id}, no transfer in progress")
            return
        if transfer_id != meta.transfer_id:
            logger.warning(
                f"Ignoring completion of {transfer_id}, "
                f"receiving {meta.transfer_id}"
            )
            return
        if not buffer.is_full or buffer.byte_count != meta.byte_size:
            self._abandon(
                f"incomplete: {len(buffer)}/{meta.chunk_count} chunks, "
                f"{buffer.byte_count}/{meta.byte_size} bytes"
            )
            return

        payload = buffer.assemble()
        self._release()
        logger.info(f"Transfer {meta.transfer_id} complete ({len(payload)} bytes)")
        self.events.emit(ReceiverEvent.COMPLETE, payload, meta)
