import json

import pytest

from peerdrop.exceptions import FrameError
from peerdrop.transfer.frames import (
    ChunkFrame,
    FileCompleteFrame,
    FileInfoFrame,
    TransferMetadata,
    chunk_count_for,
    decode_frame,
)

META = TransferMetadata(
    transfer_id="f1",
    name="report.bin",
    byte_size=40000,
    media_type="application/octet-stream",
    chunk_count=3,
)


@pytest.mark.parametrize(
    "byte_size, expected",
    [(0, 0), (1, 1), (16384, 1), (16385, 2), (40000, 3), (32768, 2)],
)
def test_chunk_count_is_ceiling(byte_size, expected):
    assert chunk_count_for(byte_size) == expected


def test_file_info_wire_format():
    message = json.loads(FileInfoFrame(META).encode())
    assert message == {
        "messageType": "file-info",
        "meta": {
            "fileId": "f1",
            "name": "report.bin",
            "size": 40000,
            "type": "application/octet-stream",
            "totalChunks": 3,
        },
    }


def test_file_complete_wire_format():
    assert json.loads(FileCompleteFrame("f1").encode()) == {
        "messageType": "file-complete",
        "fileId": "f1",
    }


def test_structured_frames_are_text():
    assert isinstance(FileInfoFrame(META).encode(), str)
    assert isinstance(FileCompleteFrame("f1").encode(), str)


def test_decode_binary_message_is_chunk():
    assert decode_frame(b"\x00\x01") == ChunkFrame(b"\x00\x01")
    assert decode_frame(bytearray(b"ab")) == ChunkFrame(b"ab")


def test_decode_file_info():
    frame = decode_frame(FileInfoFrame(META).encode())
    assert frame == FileInfoFrame(META)


def test_decode_file_info_defaults_missing_type():
    raw = json.dumps(
        {
            "messageType": "file-info",
            "meta": {"fileId": "x", "name": "a", "size": 3, "totalChunks": 1},
        }
    )
    frame = decode_frame(raw)
    assert frame.meta.media_type == "application/octet-stream"


def test_decode_file_complete():
    assert decode_frame(FileCompleteFrame("f1").encode()) == FileCompleteFrame("f1")


@pytest.mark.parametrize(
    "message",
    [
        "plain text",
        "[]",
        json.dumps({"messageType": "file-chunk", "chunk": [1, 2]}),
        json.dumps({"messageType": "file-info"}),
        json.dumps({"messageType": "file-info", "meta": {"fileId": "x"}}),
        json.dumps(
            {
                "messageType": "file-info",
                "meta": {"fileId": "x", "name": "a", "size": -1, "totalChunks": 0},
            }
        ),
        json.dumps({"messageType": "file-complete"}),
        12345,
    ],
)
def test_decode_rejects_bad_frames(message):
    with pytest.raises(FrameError):
        decode_frame(message)
