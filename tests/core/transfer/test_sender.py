import json

import pytest
import trio
from trio.testing import wait_all_tasks_blocked

from peerdrop.config import TransferConfig
from peerdrop.transfer.sender import SenderEvent, TransferSender
from peerdrop.tools.fakes import FakeDataChannel


class SenderLog:
    def __init__(self, sender):
        self.events = []
        for event in SenderEvent:
            sender.events.on(event, self._recorder(event))

    def _recorder(self, event):
        def record(*args):
            self.events.append((event, args))

        return record

    def percents(self):
        return [args[0] for event, args in self.events if event is SenderEvent.PROGRESS]

    def of(self, event):
        return [args for recorded, args in self.events if recorded is event]


def attached_sender(channel=None, config=None):
    if channel is None:
        channel = FakeDataChannel()
        channel.readyState = "open"
    sender = TransferSender(config)
    sender.attach(channel)
    return sender, channel, SenderLog(sender)


@pytest.mark.trio
async def test_send_bytes_frames_in_order():
    sender, channel, log = attached_sender()
    payload = bytes(range(256)) * 156 + b"\x07" * 64  # 40000 bytes

    meta = await sender.send(payload, name="report.bin")

    assert meta.byte_size == 40000
    assert meta.chunk_count == 3
    assert meta.name == "report.bin"
    assert meta.media_type == "application/octet-stream"

    info, *chunks, complete = channel.sent
    assert json.loads(info)["meta"]["totalChunks"] == 3
    assert [len(chunk) for chunk in chunks] == [16384, 16384, 7232]
    assert all(isinstance(chunk, bytes) for chunk in chunks)
    assert b"".join(chunks) == payload
    assert json.loads(complete) == {
        "messageType": "file-complete",
        "fileId": meta.transfer_id,
    }

    assert log.percents() == [33, 66, 100]
    assert log.of(SenderEvent.STARTED) == [(meta,)]
    assert log.of(SenderEvent.COMPLETE) == [(meta,)]
    assert sender.cursor is None


@pytest.mark.trio
async def test_send_file_guesses_name_and_type(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_bytes(b"hello world")
    sender, channel, _ = attached_sender()

    meta = await sender.send(str(path))

    assert meta.name == "notes.txt"
    assert meta.media_type == "text/plain"
    assert channel.binary_frames == [b"hello world"]


@pytest.mark.trio
async def test_empty_payload_sends_no_chunks():
    sender, channel, log = attached_sender()

    meta = await sender.send(b"", name="empty")

    assert meta.chunk_count == 0
    assert channel.binary_frames == []
    assert len(channel.text_frames) == 2
    assert log.percents() == [100]


@pytest.mark.trio
async def test_send_requires_open_channel():
    channel = FakeDataChannel()
    sender, _, log = attached_sender(channel)

    assert await sender.send(b"data") is None
    assert channel.sent == []
    assert log.events == []

    detached = TransferSender()
    assert await detached.send(b"data") is None


@pytest.mark.trio
async def test_missing_file_is_reported(tmp_path):
    sender, channel, _ = attached_sender()

    assert await sender.send(tmp_path / "nope.bin") is None
    assert channel.sent == []
    assert not sender.busy


@pytest.mark.trio
async def test_concurrent_send_is_rejected():
    config = TransferConfig(
        chunk_size=4,
        buffered_amount_low_threshold=0,
        max_buffered_amount=4,
    )
    channel = FakeDataChannel(hold_buffer=True)
    channel.readyState = "open"
    sender, _, _ = attached_sender(channel, config)
    results = []

    async def send_first():
        results.append(await sender.send(b"0123456789ab", name="first"))

    async with trio.open_nursery() as nursery:
        nursery.start_soon(send_first)
        await wait_all_tasks_blocked()
        assert sender.busy

        assert await sender.send(b"other", name="second") is None

        channel.drain()
        await wait_all_tasks_blocked()
        channel.drain()

    (meta,) = results
    assert meta.name == "first"
    assert channel.binary_frames == [b"0123", b"4567", b"89ab"]


@pytest.mark.trio
async def test_backpressure_pauses_until_drained():
    config = TransferConfig(
        chunk_size=10,
        buffered_amount_low_threshold=10,
        max_buffered_amount=25,
        drain_poll_interval=60,
    )
    channel = FakeDataChannel(hold_buffer=True)
    channel.readyState = "open"
    sender, _, _ = attached_sender(channel, config)
    assert channel.bufferedAmountLowThreshold == 10
    done = trio.Event()

    async def send():
        await sender.send(b"x" * 60, name="big")
        done.set()

    async with trio.open_nursery() as nursery:
        nursery.start_soon(send)
        await wait_all_tasks_blocked()

        # The file-info frame alone is above the limit
        assert channel.bufferedAmount > 25
        assert channel.binary_frames == []

        # Draining to just above the low mark is not enough
        channel.drain(channel.bufferedAmount - 11)
        await wait_all_tasks_blocked()
        assert channel.binary_frames == []

        channel.drain()
        await wait_all_tasks_blocked()
        assert len(channel.binary_frames) == 3
        assert channel.bufferedAmount == 30
        assert sender.cursor.next_chunk_index == 3
        assert not done.is_set()

        channel.drain()
        await wait_all_tasks_blocked()
        assert len(channel.binary_frames) == 6
        assert done.is_set()


@pytest.mark.trio
async def test_backpressure_falls_back_to_polling():
    config = TransferConfig(
        chunk_size=10,
        buffered_amount_low_threshold=0,
        max_buffered_amount=10,
        drain_poll_interval=0.01,
    )
    channel = FakeDataChannel(hold_buffer=True)
    channel.readyState = "open"
    sender, _, _ = attached_sender(channel, config)

    async with trio.open_nursery() as nursery:
        nursery.start_soon(sender.send, b"y" * 30)
        await wait_all_tasks_blocked()
        assert channel.binary_frames == []

        # Emptied without a bufferedamountlow event
        channel.bufferedAmount = 0
        with trio.fail_after(1):
            while len(channel.binary_frames) < 3:
                await trio.sleep(0.01)
                channel.bufferedAmount = 0


@pytest.mark.trio
async def test_channel_close_mid_transfer_aborts():
    config = TransferConfig(
        chunk_size=10,
        buffered_amount_low_threshold=0,
        max_buffered_amount=10,
        drain_poll_interval=0.01,
    )
    channel = FakeDataChannel(hold_buffer=True)
    channel.readyState = "open"
    sender, _, log = attached_sender(channel, config)
    results = []

    async def send():
        results.append(await sender.send(b"z" * 50, name="doomed"))

    async with trio.open_nursery() as nursery:
        nursery.start_soon(send)
        await wait_all_tasks_blocked()
        channel.close()

    assert results == [None]
    assert not sender.busy
    ((meta, reason),) = log.of(SenderEvent.ABORTED)
    assert meta.name == "doomed"
    assert "closed" in reason
    assert log.of(SenderEvent.COMPLETE) == []
    assert 100 not in log.percents()


@pytest.mark.trio
async def test_flush_waits_for_empty_buffer():
    channel = FakeDataChannel(hold_buffer=True)
    channel.readyState = "open"
    sender, _, _ = attached_sender(
        channel, TransferConfig(drain_poll_interval=0.01)
    )
    await sender.send(b"abc", name="small")
    assert channel.bufferedAmount > 0

    assert await sender.flush(0.05) is False
    channel.drain()
    assert await sender.flush(1) is True
