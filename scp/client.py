import asyncio
import logging
import uuid
from typing import Callable, Optional

from .errors import ConnectionRejectedError, ErrorCode, FrameError, InvalidMessageError
from .framing import read_frame, write_frame
from .messages import (
    VERSION,
    BaseMessage,
    ChatMessage,
    ConnectAckMessage,
    ConnectMessage,
    DisconnectMessage,
    ErrorMessage,
    ListUsersMessage,
    MessageType,
    SetUsernameMessage,
    parse,
    serialize,
    validate,
)

"""
client.py - client side of an SCP v1 connection.

connect() does the CONNECT / CONNECT_ACK exchange and then starts a reader
task. Everything the server sends afterwards lands in `inbox` (and in the
optional on_message callback). `None` in the inbox means the stream ended.
"""

logger = logging.getLogger(__name__)

MessageHandler = Callable[[BaseMessage], None]


class ChatClient:
    """One connection to a chat server, presenting a username."""

    def __init__(self, host: str, port: int, username: Optional[str], on_message: Optional[MessageHandler] = None) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.on_message = on_message
        self.inbox: asyncio.Queue[Optional[BaseMessage]] = asyncio.Queue()
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()
        self._previous_name: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.writer is not None and not self.writer.is_closing()

    async def connect(self) -> ConnectAckMessage:
        """
        Open the socket and run the handshake.

        Raises:
            ConnectionRejectedError: server said no (ERROR, non-OK ack) or
                answered with something that isn't a CONNECT_ACK.
            OSError: couldn't reach the server at all.
        """
        self.reader, self.writer = await asyncio.open_connection(self.host, self.port)
        await self.send(ConnectMessage(client_id=str(uuid.uuid4()), username=self.username, version=VERSION))

        text = await read_frame(self.reader)
        if text is None:
            await self.close()
            raise ConnectionRejectedError("NO_RESPONSE", "No response from server")
        try:
            reply = parse(text)
        except InvalidMessageError as exc:
            await self.close()
            raise ConnectionRejectedError(ErrorCode.INVALID_MESSAGE.value, exc.detail) from exc

        if isinstance(reply, ErrorMessage):
            await self.close()
            raise ConnectionRejectedError(reply.code, reply.message)
        if not isinstance(reply, ConnectAckMessage):
            await self.close()
            raise ConnectionRejectedError(ErrorCode.INVALID_HANDSHAKE.value, "Unexpected handshake response")
        if not reply.ok:
            # Anything other than OK is a rejection; pass the text through.
            await self.close()
            raise ConnectionRejectedError(reply.status, reply.message)

        self._reader_task = asyncio.create_task(self.reader_loop())
        return reply

    async def reader_loop(self) -> None:
        """Background task: parse frames and hand them to inbox/on_message."""
        assert self.reader is not None
        try:
            while True:
                text = await read_frame(self.reader)
                if text is None:
                    break
                try:
                    message = parse(text)
                except InvalidMessageError as exc:
                    logger.warning("Received invalid message: %s", exc.detail)
                    continue

                self._track_rename(message)
                await self.inbox.put(message)
                if self.on_message is not None:
                    self.on_message(message)
                if isinstance(message, DisconnectMessage):
                    await self.close()
                    break
        except (FrameError, OSError) as exc:
            logger.warning("Receiver error: %s", exc)
        finally:
            await self.inbox.put(None)

    def _track_rename(self, message: BaseMessage) -> None:
        # We never get a positive ack for SET_USERNAME, only errors.
        if self._previous_name is None or not isinstance(message, ErrorMessage):
            return
        if message.code in (ErrorCode.USERNAME_TAKEN.value, ErrorCode.INVALID_USERNAME.value):
            self.username = self._previous_name
            self._previous_name = None

    async def send(self, message: BaseMessage) -> None:
        """Validate, frame, and write one message."""
        if self.writer is None:
            raise ConnectionError("Not connected")
        validate(message)
        async with self._send_lock:
            await write_frame(self.writer, serialize(message))

    async def wait_for(self, msg_type: MessageType, timeout: Optional[float] = None) -> Optional[BaseMessage]:
        """Drain the inbox until a message of msg_type shows up (None on EOF)."""

        async def _next() -> Optional[BaseMessage]:
            while True:
                message = await self.inbox.get()
                if message is None or message.type == msg_type:
                    return message

        return await asyncio.wait_for(_next(), timeout)

    # -----------------------
    # Helpers
    # -----------------------

    async def send_chat_to_all(self, content: str) -> None:
        await self.send(ChatMessage(sender=self.username, to=None, direct=False, content=content))

    async def send_direct(self, to: str, content: str) -> None:
        await self.send(ChatMessage(sender=self.username, to=to, direct=True, content=content))

    async def request_username_change(self, new_name: str) -> None:
        """Ask for a new name; local name switches now and reverts on error."""
        await self.send(SetUsernameMessage(username=new_name))
        self._previous_name = self.username
        self.username = new_name.strip()

    async def request_user_list(self) -> None:
        await self.send(ListUsersMessage())

    async def disconnect(self, reason: str = "client_exit") -> None:
        """Say goodbye if we can, then close either way."""
        try:
            if self.connected:
                await self.send(DisconnectMessage(reason=reason))
        except OSError as exc:
            logger.debug("DISCONNECT not delivered: %s", exc)
        finally:
            await self.close()

    async def close(self) -> None:
        if self.writer is None:
            return
        writer, self.writer = self.writer, None
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
