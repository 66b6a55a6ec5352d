import json
import re
import time
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, ValidationError

from .errors import InvalidMessageError, UnknownMessageTypeError

"""
messages.py - the SCP v1 message set, its JSON codec, and the validator.

What this module does:
- Defines one pydantic model per message type, all sharing an envelope of
  `type` + `timestamp` (epoch milliseconds).
- parse(): JSON text -> typed, validated message. Strict order: decode JSON,
  pull out `type`, look up the model, build it, then run the validator.
- serialize(): message -> compact JSON text using the wire field names
  (`from`, `clientId`, ...).
- validate(): the semantic rules (username shape, text length, version).

Every failure along the parse path comes out as InvalidMessageError, so
callers only have one thing to catch. Unknown JSON fields are ignored so
newer peers can add fields without breaking us.
"""

VERSION = "1.0"
MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 32
MAX_CONTENT_LENGTH = 1024
WELCOME_TEXT = "Welcome to SCP v1"

USERNAME_PATTERN = re.compile(r"[A-Za-z0-9_.-]+")


def now_ms() -> int:
    """Current time in milliseconds (used for timestamp)."""
    return int(time.time() * 1000)


class MessageType(str, Enum):
    """Closed set of type tags. The value is what goes on the wire."""
    CONNECT = "CONNECT"
    CONNECT_ACK = "CONNECT_ACK"
    SET_USERNAME = "SET_USERNAME"
    CHAT_MESSAGE = "CHAT_MESSAGE"
    LIST_USERS = "LIST_USERS"
    USER_LIST = "USER_LIST"
    SERVER_BROADCAST = "SERVER_BROADCAST"
    ERROR = "ERROR"
    DISCONNECT = "DISCONNECT"


# -----------------------
# Field rules
# -----------------------

def validate_username(username: Optional[str]) -> None:
    """Trimmed length in [3, 32], characters limited to [A-Za-z0-9_.-]."""
    if username is None:
        raise InvalidMessageError("username required")
    trimmed = username.strip()
    if len(trimmed) < MIN_USERNAME_LENGTH or len(trimmed) > MAX_USERNAME_LENGTH:
        raise InvalidMessageError("username length invalid")
    if not USERNAME_PATTERN.fullmatch(trimmed):
        raise InvalidMessageError("username contains invalid characters")


def validate_text(value: Optional[str], field: str) -> None:
    """Non-empty after trim and no longer than MAX_CONTENT_LENGTH."""
    if value is None:
        raise InvalidMessageError(f"{field} required")
    trimmed = value.strip()
    if not trimmed:
        raise InvalidMessageError(f"{field} cannot be empty")
    if len(trimmed) > MAX_CONTENT_LENGTH:
        raise InvalidMessageError(f"{field} too long")


# -----------------------
# Message models
# -----------------------

class BaseMessage(BaseModel):
    """Envelope shared by every message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    TYPE: ClassVar[MessageType]

    type: MessageType
    timestamp: StrictInt = Field(default_factory=now_ms)

    def to_json(self) -> str:
        return serialize(self)

    def check(self) -> None:
        """Type-specific rules; the envelope is checked by validate()."""


class ConnectMessage(BaseMessage):
    """Client handshake; must be the first frame on a connection."""

    TYPE: ClassVar[MessageType] = MessageType.CONNECT
    type: MessageType = MessageType.CONNECT
    client_id: StrictStr = Field(alias="clientId")
    username: Optional[StrictStr] = None
    version: Optional[StrictStr] = None

    def check(self) -> None:
        validate_text(self.client_id, "clientId")
        if self.version != VERSION:
            raise InvalidMessageError("Unsupported version")
        # Blank means "pick a guest name for me".
        if self.username is not None and self.username.strip():
            validate_username(self.username)


class ConnectAckMessage(BaseMessage):
    TYPE: ClassVar[MessageType] = MessageType.CONNECT_ACK
    type: MessageType = MessageType.CONNECT_ACK
    status: StrictStr
    message: StrictStr

    @property
    def ok(self) -> bool:
        return self.status.lower() == "ok"

    def check(self) -> None:
        validate_text(self.status, "status")
        validate_text(self.message, "message")


class SetUsernameMessage(BaseMessage):
    TYPE: ClassVar[MessageType] = MessageType.SET_USERNAME
    type: MessageType = MessageType.SET_USERNAME
    username: StrictStr

    def check(self) -> None:
        validate_username(self.username)


class ListUsersMessage(BaseMessage):
    TYPE: ClassVar[MessageType] = MessageType.LIST_USERS
    type: MessageType = MessageType.LIST_USERS


class UserListMessage(BaseMessage):
    TYPE: ClassVar[MessageType] = MessageType.USER_LIST
    type: MessageType = MessageType.USER_LIST
    users: List[StrictStr]


class ChatMessage(BaseMessage):
    """User-authored text, either to everyone or (direct=True) to one user."""

    TYPE: ClassVar[MessageType] = MessageType.CHAT_MESSAGE
    type: MessageType = MessageType.CHAT_MESSAGE
    sender: StrictStr = Field(alias="from")
    to: Optional[StrictStr] = None
    direct: StrictBool
    content: StrictStr

    def check(self) -> None:
        validate_username(self.sender)
        validate_text(self.content, "content")
        # Non-direct messages leave `to` alone; it means nothing there.
        if self.direct:
            validate_username(self.to)


class ServerBroadcastMessage(BaseMessage):
    TYPE: ClassVar[MessageType] = MessageType.SERVER_BROADCAST
    type: MessageType = MessageType.SERVER_BROADCAST
    content: StrictStr

    def check(self) -> None:
        validate_text(self.content, "content")


class ErrorMessage(BaseMessage):
    TYPE: ClassVar[MessageType] = MessageType.ERROR
    type: MessageType = MessageType.ERROR
    code: StrictStr
    message: StrictStr

    def check(self) -> None:
        validate_text(self.code, "code")
        validate_text(self.message, "message")


class DisconnectMessage(BaseMessage):
    TYPE: ClassVar[MessageType] = MessageType.DISCONNECT
    type: MessageType = MessageType.DISCONNECT
    reason: Optional[StrictStr] = None


MESSAGE_CLASSES: Dict[MessageType, Type[BaseMessage]] = {
    cls.TYPE: cls
    for cls in (
        ConnectMessage,
        ConnectAckMessage,
        SetUsernameMessage,
        ListUsersMessage,
        UserListMessage,
        ChatMessage,
        ServerBroadcastMessage,
        ErrorMessage,
        DisconnectMessage,
    )
}


# -----------------------
# Codec + validator
# -----------------------

def validate(message: BaseMessage) -> None:
    """Raise InvalidMessageError unless the message satisfies protocol rules."""
    if message.timestamp <= 0:
        raise InvalidMessageError("timestamp missing", message.type.value)
    try:
        message.check()
    except InvalidMessageError as exc:
        exc.msg_type = message.type.value
        raise


def serialize(message: BaseMessage) -> str:
    """Compact JSON with wire field names; unset optional fields are left out."""
    obj = message.model_dump(by_alias=True, mode="json", exclude_none=True)
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _describe(exc: ValidationError) -> str:
    # First problem is enough for a peer; keep it short.
    err = exc.errors()[0]
    where = ".".join(str(part) for part in err.get("loc", ()))
    return f"{where}: {err.get('msg')}" if where else str(err.get("msg"))


def parse(text: str) -> BaseMessage:
    """
    Turn one frame payload into a validated message.

    Raises:
        InvalidMessageError: bad JSON, missing/unknown type, wrong field
            shapes, or a failed validation rule.
    """
    # 1) Decode JSON.
    try:
        obj: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidMessageError(f"Bad JSON: {exc.msg}") from exc
    if not isinstance(obj, dict):
        raise InvalidMessageError("Bad JSON: expected an object")

    # 2) Find the type tag and the model that goes with it.
    type_str = obj.get("type")
    if not isinstance(type_str, str):
        raise InvalidMessageError("Missing type field")
    try:
        msg_type = MessageType(type_str)
    except ValueError:
        raise UnknownMessageTypeError(f"Unknown message type: {type_str}", type_str) from None

    if "timestamp" not in obj:
        raise InvalidMessageError("timestamp missing", type_str)

    # 3) Build it; pydantic checks field presence and JSON types.
    try:
        message = MESSAGE_CLASSES[msg_type].model_validate(obj)
    except ValidationError as exc:
        raise InvalidMessageError(f"Invalid {type_str}: {_describe(exc)}", type_str) from exc

    # 4) Protocol rules.
    validate(message)
    return message
