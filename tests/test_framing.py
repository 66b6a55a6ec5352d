import asyncio
import struct

import pytest

from scp.errors import BadFrameLengthError, IncompleteFrameError
from scp.framing import MAX_FRAME_SIZE, encode, read_frame


def make_reader(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


async def test_frame_and_read():
    payload = '{"type":"LIST_USERS","timestamp":1}'
    assert await read_frame(make_reader(encode(payload))) == payload


async def test_round_trip_non_ascii():
    payload = "héllo wörld ✓ 你好"
    assert await read_frame(make_reader(encode(payload))) == payload


def test_prefix_is_big_endian_utf8_length():
    payload = "naïve"
    framed = encode(payload)
    (length,) = struct.unpack(">I", framed[:4])
    assert length == len(payload.encode("utf-8"))
    assert framed[4:] == payload.encode("utf-8")


def test_empty_payload():
    assert encode("") == b"\x00\x00\x00\x00"


async def test_consecutive_frames():
    reader = make_reader(encode("one") + encode("two"))
    assert await read_frame(reader) == "one"
    assert await read_frame(reader) == "two"
    assert await read_frame(reader) is None


async def test_clean_eof_returns_none():
    assert await read_frame(make_reader(b"")) is None


async def test_eof_mid_length():
    with pytest.raises(IncompleteFrameError):
        await read_frame(make_reader(b"\x00\x00"))


async def test_eof_mid_payload():
    with pytest.raises(IncompleteFrameError):
        await read_frame(make_reader(struct.pack(">I", 10) + b"abc"))


async def test_negative_length_rejected():
    with pytest.raises(BadFrameLengthError):
        await read_frame(make_reader(b"\xff\xff\xff\xff" + b"x"))


async def test_oversized_length_rejected():
    with pytest.raises(BadFrameLengthError):
        await read_frame(make_reader(struct.pack(">I", MAX_FRAME_SIZE + 1)))


def test_encode_refuses_oversized_payload():
    with pytest.raises(BadFrameLengthError):
        encode("x" * (MAX_FRAME_SIZE + 1))


async def test_payload_is_not_interpreted():
    # Framing doesn't care whether the payload is JSON.
    assert await read_frame(make_reader(encode("not json {"))) == "not json {"
