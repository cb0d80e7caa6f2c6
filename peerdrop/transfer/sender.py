from dataclasses import dataclass
from enum import Enum
import logging
import mimetypes
import os
from typing import Any
import uuid

import trio

from peerdrop.config import TransferConfig
from peerdrop.constants import DATA_CHANNEL_OPEN, DEFAULT_MEDIA_TYPE
from peerdrop.events import EventEmitter
from peerdrop.exceptions import ChannelClosedError, TransferError

from .frames import (
    FileCompleteFrame,
    FileInfoFrame,
    TransferMetadata,
    chunk_count_for,
)

logger = logging.getLogger("peerdrop.transfer.sender")

DEFAULT_PAYLOAD_NAME = "untitled"

TransferSource = str | os.PathLike[str] | bytes | bytearray | memoryview


class SenderEvent(Enum):
    # (meta,)
    STARTED = "started"
    # (percent, meta)
    PROGRESS = "progress"
    # (meta,)
    COMPLETE = "complete"
    # (meta, reason)
    ABORTED = "aborted"


@dataclass
class SendCursor:
    transfer_id: str
    total_chunks: int = 0
    next_chunk_index: int = 0


class _BytesSource:
    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._view = memoryview(data).cast("B")
        self._offset = 0
        self.byte_size = len(self._view)

    async def read(self, n: int) -> bytes:
        chunk = bytes(self._view[self._offset : self._offset + n])
        self._offset += len(chunk)
        return chunk

    async def aclose(self) -> None:
        self._view.release()


class _FileSource:
    def __init__(self, file: Any, byte_size: int) -> None:
        self._file = file
        self.byte_size = byte_size

    @classmethod
    async def open(cls, path: trio.Path) -> "_FileSource":
        stat = await path.stat()
        file = await trio.open_file(path, "rb")
        return cls(file, stat.st_size)

    async def read(self, n: int) -> bytes:
        return await self._file.read(n)

    async def aclose(self) -> None:
        await self._file.aclose()


class TransferSender:
    """
    Streams one payload at a time over an attached data channel.

    A transfer is a ``file-info`` text frame, ``chunk_count`` binary frames in
    index order and a ``file-complete`` text frame. Each chunk is read and
    handed to the channel before the next one is read.
    """

    def __init__(self, config: TransferConfig | None = None) -> None:
        self._config = config or TransferConfig()
        self.events: EventEmitter[SenderEvent] = EventEmitter(SenderEvent)
        self._channel: Any | None = None
        self._cursor: SendCursor | None = None
        self._drained = trio.Event()

    @property
    def cursor(self) -> SendCursor | None:
        return self._cursor

    @property
    def busy(self) -> bool:
        return self._cursor is not None

    def attach(self, channel: Any) -> None:
        """Use ``channel`` for future transfers and arm its drain notification."""
        self._channel = channel
        channel.bufferedAmountLowThreshold = self._config.buffered_amount_low_threshold

        def on_buffered_amount_low() -> None:
            if channel is self._channel:
                self._drained.set()

        channel.on("bufferedamountlow", on_buffered_amount_low)

    def detach(self) -> None:
        self._channel = None

    async def send(
        self,
        source: TransferSource,
        name: str | None = None,
        media_type: str | None = None,
    ) -> TransferMetadata | None:
        """
        Send ``source`` (a path or a bytes-like payload).

        Returns the transfer metadata once the completion frame is queued, or
        None when the transfer could not start or was abandoned.
        """
        channel = self._channel
        if channel is None or channel.readyState != DATA_CHANNEL_OPEN:
            logger.warning("Data channel not ready, not sending")
            return None
        if self._cursor is not None:
            logger.warning(
                f"Transfer {self._cursor.transfer_id} still in flight, not sending"
            )
            return None

        # Claim the sender before the first checkpoint
        cursor = SendCursor(transfer_id=uuid.uuid4().hex)
        self._cursor = cursor
        reader: _BytesSource | _FileSource | None = None
        meta: TransferMetadata | None = None
        try:
            if isinstance(source, (bytes, bytearray, memoryview)):
                reader = _BytesSource(source)
                name = name or DEFAULT_PAYLOAD_NAME
            else:
                path = trio.Path(source)
                reader = await _FileSource.open(path)
                name = name or path.name

            meta = TransferMetadata(
                transfer_id=cursor.transfer_id,
                name=name,
                byte_size=reader.byte_size,
                media_type=media_type
                or mimetypes.guess_type(name)[0]
                or DEFAULT_MEDIA_TYPE,
                chunk_count=chunk_count_for(reader.byte_size, self._config.chunk_size),
            )
            cursor.total_chunks = meta.chunk_count
            await self._transmit(channel, cursor, meta, reader)
            return meta
        except OSError as e:
            logger.error(f"Could not read transfer source {source!r}: {e}")
            return None
        except TransferError as e:
            logger.error(f"Transfer {cursor.transfer_id} abandoned: {e}")
            if meta is not None:
                self.events.emit(SenderEvent.ABORTED, meta, str(e))
            return None
        finally:
            self._cursor = None
            if reader is not None:
                await reader.aclose()

    async def _transmit(
        self,
        channel: Any,
        cursor: SendCursor,
        meta: TransferMetadata,
        reader: _BytesSource | _FileSource,
    ) -> None:
        logger.info(
            f"Sending {meta.name} ({meta.byte_size} bytes, "
            f"{meta.chunk_count} chunks) as {meta.transfer_id}"
        )
        self._send_frame(channel, FileInfoFrame(meta).encode())
        self.events.emit(SenderEvent.STARTED, meta)

        while cursor.next_chunk_index < cursor.total_chunks:
            await self._wait_for_drain(channel)
            data = await reader.read(self._config.chunk_size)
            if not data:
                raise TransferError(
                    f"source ended after {cursor.next_chunk_index} chunks",
                    meta.transfer_id,
                )
            self._send_frame(channel, data)
            cursor.next_chunk_index += 1

            # 100 is reserved for the queued completion frame
            if cursor.next_chunk_index < cursor.total_chunks:
                percent = cursor.next_chunk_index * 100 // cursor.total_chunks
                self.events.emit(SenderEvent.PROGRESS, percent, meta)
            await trio.lowlevel.checkpoint()

        self._send_frame(channel, FileCompleteFrame(meta.transfer_id).encode())
        logger.info(f"Transfer {meta.transfer_id} queued completely")
        self.events.emit(SenderEvent.PROGRESS, 100, meta)
        self.events.emit(SenderEvent.COMPLETE, meta)

    def _send_frame(self, channel: Any, data: str | bytes) -> None:
        if channel is not self._channel or channel.readyState != DATA_CHANNEL_OPEN:
            raise ChannelClosedError("data channel is no longer open")
        try:
            channel.send(data)
        except Exception as e:
            raise ChannelClosedError(f"data channel send failed: {e}") from e

    async def _wait_for_drain(self, channel: Any) -> None:
        if channel.bufferedAmount <= self._config.max_buffered_amount:
            return

        logger.debug(
            f"Channel buffer {channel.bufferedAmount} above "
            f"{self._config.max_buffered_amount}, pausing"
        )
        while channel.bufferedAmount > self._config.buffered_amount_low_threshold:
            if channel is not self._channel or channel.readyState != DATA_CHANNEL_OPEN:
                raise ChannelClosedError("data channel closed while paused")
            self._drained = trio.Event()
            # Poll as well, in case the channel never reports the drain
            with trio.move_on_after(self._config.drain_poll_interval):
                await self._drained.wait()
        logger.debug(f"Channel buffer drained to {channel.bufferedAmount}, resuming")

    async def flush(self, timeout: float) -> bool:
        """Wait until the channel buffer is empty. False on timeout or close."""
        channel = self._channel
        with trio.move_on_after(timeout):
            while channel is not None and channel is self._channel:
                if channel.readyState != DATA_CHANNEL_OPEN:
                    return False
                if channel.bufferedAmount == 0:
                    return True
                await trio.sleep(self._config.drain_poll_interval)
        return False
