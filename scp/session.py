import asyncio
import logging
import uuid
from enum import Enum
from typing import Optional

from .errors import ErrorCode, FrameError, InvalidMessageError
from .framing import read_frame, write_frame
from .messages import (
    WELCOME_TEXT,
    BaseMessage,
    ChatMessage,
    ConnectAckMessage,
    ConnectMessage,
    DisconnectMessage,
    ErrorMessage,
    ListUsersMessage,
    ServerBroadcastMessage,
    SetUsernameMessage,
    UserListMessage,
    parse,
    serialize,
    validate_username,
)
from .registry import ClientRegistry

"""
session.py - per-connection state machine for the chat server.

Lifecycle:
    ACCEPTED --CONNECT ok--> NAMED --EOF / DISCONNECT / error--> CLOSED
    ACCEPTED --bad first frame / name taken--> REJECTED (ERROR sent, closed)

One task runs a session from accept to close. Other sessions' tasks call
send() on us during fan-out, so writes go through a per-session lock to keep
frames whole and in order.
"""

logger = logging.getLogger(__name__)


class SessionState(Enum):
    ACCEPTED = "ACCEPTED"
    NAMED = "NAMED"
    REJECTED = "REJECTED"
    CLOSED = "CLOSED"


def guest_name() -> str:
    """Fallback username for a CONNECT without one."""
    return "guest-" + uuid.uuid4().hex[:8]


class ClientSession:
    """One connected client: its stream, its claimed name, its read loop."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, registry: ClientRegistry) -> None:
        self.reader = reader
        self.writer = writer
        self.registry = registry
        self.username: Optional[str] = None
        self.active = True
        self.state = SessionState.ACCEPTED
        self.peer = writer.get_extra_info("peername")
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<ClientSession {self.username or '-'} {self.peer} {self.state.value}>"

    async def run(self) -> None:
        """Handshake, then serve until the client goes away. Always tears down."""
        try:
            if await self._handshake():
                await self._listen_loop()
        except FrameError as exc:
            logger.warning("Framing error from %s: %s", self.username or self.peer, exc)
        except OSError as exc:
            logger.warning("Read failed for %s: %s", self.username or self.peer, exc)
        except Exception as exc:
            logger.warning("Client handler error: %s", exc)
        finally:
            await self._teardown()

    # -----------------------
    # Handshake (ACCEPTED -> NAMED | REJECTED)
    # -----------------------

    async def _handshake(self) -> bool:
        text = await read_frame(self.reader)
        if text is None:
            logger.info("Connection %s closed before handshake", self.peer)
            return False

        try:
            message = parse(text)
        except InvalidMessageError as exc:
            await self._reject(ErrorCode.BAD_JSON, exc.detail)
            return False

        if not isinstance(message, ConnectMessage):
            await self._reject(ErrorCode.INVALID_HANDSHAKE, "First message must be CONNECT")
            return False

        desired = (message.username or "").strip() or guest_name()
        if not self.registry.register(desired, self):
            await self._reject(ErrorCode.USERNAME_TAKEN, "Username already in use")
            return False

        self.username = desired
        self.state = SessionState.NAMED
        await self.send(ConnectAckMessage(status="OK", message=WELCOME_TEXT))
        await self.registry.broadcast(ServerBroadcastMessage(content=f"{desired} joined"), exclude=self)
        return True

    async def _reject(self, code: ErrorCode, text: str) -> None:
        logger.info("Rejecting handshake from %s: %s (%s)", self.peer, code.value, text)
        self.state = SessionState.REJECTED
        await self.send_error(code, text)
        self.active = False

    # -----------------------
    # Steady state (NAMED)
    # -----------------------

    async def _listen_loop(self) -> None:
        while self.active:
            text = await read_frame(self.reader)
            if text is None:
                break
            try:
                message = parse(text)
            except InvalidMessageError as exc:
                await self.send_error(ErrorCode.INVALID_MESSAGE, exc.detail)
                continue
            await self._dispatch(message)

    async def _dispatch(self, message: BaseMessage) -> None:
        if isinstance(message, SetUsernameMessage):
            await self._handle_set_username(message)
        elif isinstance(message, ChatMessage):
            await self._handle_chat(message)
        elif isinstance(message, ListUsersMessage):
            await self.send(UserListMessage(users=self.registry.list_usernames()))
        elif isinstance(message, DisconnectMessage):
            logger.info("Disconnect requested by %s: %s", self.username, message.reason)
            self.active = False
        else:
            await self.send_error(ErrorCode.NOT_ALLOWED, "Message type not allowed in this state")

    async def _handle_set_username(self, message: SetUsernameMessage) -> None:
        old_name = self.username
        new_name = message.username.strip()
        if await self.claim(new_name) and new_name != old_name:
            await self.registry.broadcast(
                ServerBroadcastMessage(content=f"{old_name} is now known as {new_name}"), exclude=self
            )

    async def claim(self, desired: Optional[str]) -> bool:
        """
        Move this session to a new name. On failure an ERROR goes to the
        client and the current name is kept.
        """
        if desired is None or not desired.strip():
            await self.send_error(ErrorCode.INVALID_USERNAME, "Username required")
            return False
        try:
            validate_username(desired)
        except InvalidMessageError as exc:
            await self.send_error(ErrorCode.INVALID_USERNAME, exc.detail)
            return False

        if desired == self.username:
            return True
        if not self.registry.register(desired, self):
            await self.send_error(ErrorCode.USERNAME_TAKEN, "Username already in use")
            return False
        if self.username is not None:
            self.registry.unregister(self.username)
        self.username = desired
        return True

    async def _handle_chat(self, message: ChatMessage) -> None:
        if message.sender.strip() != self.username:
            await self.send_error(ErrorCode.INVALID_SENDER, "from field must match session username")
            return

        if not message.direct:
            await self.registry.broadcast(message, exclude=self)
            return

        target_name = (message.to or "").strip()
        target = self.registry.get(target_name)
        if target is None:
            await self.send_error(ErrorCode.UNKNOWN_USER, f"User not found: {target_name}")
            return
        await target.send(message)

    # -----------------------
    # Output
    # -----------------------

    async def send(self, message: BaseMessage) -> None:
        """
        Frame and write one message. A transport failure marks the session
        inactive; nothing is retried.
        """
        if not self.active:
            return
        async with self._send_lock:
            try:
                await write_frame(self.writer, serialize(message))
            except FrameError as exc:
                logger.warning("Dropped oversized %s for %s: %s", message.type.value, self.username, exc)
            except OSError as exc:
                logger.warning("Failed to send to %s: %s", self.username, exc)
                self.active = False

    async def send_error(self, code: ErrorCode, text: str) -> None:
        await self.send(ErrorMessage(code=code.value, message=text))

    def close(self) -> None:
        """Stop sending and close the transport; run() then sees EOF and tears down."""
        self.active = False
        self.writer.close()

    # -----------------------
    # Teardown (-> CLOSED)
    # -----------------------

    async def _teardown(self) -> None:
        name = self.username
        if name is not None:
            self.registry.unregister(name)
            self.username = None
            await self.registry.broadcast(ServerBroadcastMessage(content=f"{name} left"), exclude=self)

        self.active = False
        self.state = SessionState.CLOSED
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except OSError as exc:
            logger.debug("Ignoring close error for %s: %s", self.peer, exc)
