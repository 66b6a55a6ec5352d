from enum import Enum
from typing import Optional

"""
errors.py - exception types and the error codes we put on the wire.

Two families live here:
- Local exceptions (framing trouble, bad messages, rejected handshakes, bad
  config) that callers catch and turn into behavior.
- ErrorCode values, which peers see inside ERROR messages. Those strings are
  part of the protocol, so don't rename them.
"""


class ScpError(Exception):
    """Root for everything this package raises on purpose."""


# -----------------------
# Framing
# -----------------------

class FrameError(ScpError):
    """The byte stream can't be cut into frames any more."""


class IncompleteFrameError(FrameError):
    """Peer hung up in the middle of a length prefix or payload."""


class BadFrameLengthError(FrameError):
    """Length prefix is negative (high bit set) or over the frame cap."""


# -----------------------
# Messages
# -----------------------

class InvalidMessageError(ScpError):
    """A payload failed JSON decoding, construction, or validation."""

    def __init__(self, detail: str, msg_type: Optional[str] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.msg_type = msg_type


class UnknownMessageTypeError(InvalidMessageError):
    """The 'type' tag isn't one we know."""


# -----------------------
# Client / config
# -----------------------

class ConnectionRejectedError(ScpError):
    """Server answered our CONNECT with an ERROR or a non-OK ack."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class ConfigError(ScpError):
    """Config file missing, not JSON, or holding out-of-range values."""


class ErrorCode(str, Enum):
    """Codes carried in ERROR messages."""
    SERVER_BUSY = "SERVER_BUSY"
    BAD_JSON = "BAD_JSON"
    INVALID_HANDSHAKE = "INVALID_HANDSHAKE"
    USERNAME_TAKEN = "USERNAME_TAKEN"
    INVALID_USERNAME = "INVALID_USERNAME"
    INVALID_MESSAGE = "INVALID_MESSAGE"
    INVALID_SENDER = "INVALID_SENDER"
    UNKNOWN_USER = "UNKNOWN_USER"
    NOT_ALLOWED = "NOT_ALLOWED"
