import asyncio
import struct
from typing import Optional

from .errors import BadFrameLengthError, IncompleteFrameError

"""
framing.py - length-prefixed framing for asyncio streams.

Protocol:
- Each frame = 4-byte big-endian unsigned length (N) + N bytes of UTF-8 text.
- The length counts the payload only.
- We don't look inside the payload here; JSON is the parser's business.

Hard cap at MAX_FRAME_SIZE so a buggy peer can't make us allocate silly
amounts of memory. Anything with the high bit set is treated as a negative
length and rejected the same way.
"""

MAX_FRAME_SIZE = 64 * 1024  # 64 KiB, well above any valid SCP message
LENGTH_STRUCT = struct.Struct(">I")  # big-endian unsigned 32-bit length
_SIGN_BIT = 0x80000000


def encode(payload: str) -> bytes:
    """Return len32be(utf8(payload)) + utf8(payload)."""
    data = payload.encode("utf-8")
    if len(data) > MAX_FRAME_SIZE:
        raise BadFrameLengthError(f"Frame too large: {len(data)} > {MAX_FRAME_SIZE}")
    return LENGTH_STRUCT.pack(len(data)) + data


async def read_frame(reader: asyncio.StreamReader) -> Optional[str]:
    """
    Read one frame and return its payload as text.

    Returns:
        The decoded payload, or None on a clean EOF before the first byte of
        the length prefix.

    Raises:
        IncompleteFrameError: EOF after a partial prefix or partial payload.
        BadFrameLengthError: negative or oversized length.
    """
    # 1) Length prefix. Zero bytes then EOF is the benign end of stream.
    try:
        len_bytes = await reader.readexactly(LENGTH_STRUCT.size)
    except asyncio.IncompleteReadError as exc:
        if not exc.partial:
            return None
        raise IncompleteFrameError("Incomplete frame length") from exc

    (length,) = LENGTH_STRUCT.unpack(len_bytes)
    if length & _SIGN_BIT:
        raise BadFrameLengthError("Negative frame length")
    if length > MAX_FRAME_SIZE:
        raise BadFrameLengthError(f"Frame too large: {length} > {MAX_FRAME_SIZE}")

    # 2) Payload, exactly as long as the prefix said.
    try:
        payload = await reader.readexactly(length)
    except asyncio.IncompleteReadError as exc:
        raise IncompleteFrameError("Incomplete frame payload") from exc

    # Bad UTF-8 becomes U+FFFD; the stream itself is still in sync.
    return payload.decode("utf-8", errors="replace")


async def write_frame(writer: asyncio.StreamWriter, payload: str) -> None:
    """Frame a payload and flush it to the transport."""
    writer.write(encode(payload))
    await writer.drain()
