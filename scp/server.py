import asyncio
import logging
from typing import Dict, Optional

from .config import ServerConfig
from .errors import ErrorCode
from .framing import encode
from .messages import ErrorMessage, ServerBroadcastMessage, serialize
from .registry import ClientRegistry
from .session import ClientSession

"""
server.py - TCP listener for SCP v1.

asyncio.start_server does the accepting; every accepted connection gets its
own task running a ClientSession. Before a session is spawned we check the
registry against maxClients and turn the socket away with SERVER_BUSY if the
server is full.

Shutdown (stop()):
  1) flip the running flag and close the listening socket,
  2) tell everyone "Server shutting down",
  3) close every session's socket so its read loop hits EOF, and wait for
     the teardowns (sessions still running after SHUTDOWN_GRACE get cancelled).
"""

logger = logging.getLogger(__name__)

BUSY_TEXT = "Server is at capacity"
SHUTDOWN_TEXT = "Server shutting down"
SHUTDOWN_GRACE = 5.0  # seconds


class ChatServer:
    """Owns the listening socket, the registry, and the session tasks."""

    def __init__(self, host: str, port: int, max_clients: int) -> None:
        self.host = host
        self._port = port
        self.max_clients = max_clients
        self.registry = ClientRegistry()
        self.running = False
        self._server: Optional[asyncio.AbstractServer] = None
        self._sessions: Dict[ClientSession, asyncio.Task] = {}
        self._stopped = asyncio.Event()

    @classmethod
    def from_config(cls, config: ServerConfig, host: str = "0.0.0.0") -> "ChatServer":
        return cls(host, config.port, config.max_clients)

    @property
    def port(self) -> int:
        """Port actually bound (useful when the config asks for 0)."""
        if self._server is None or not self._server.sockets:
            return self._port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Bind and begin accepting. Returns once the socket is listening."""
        self._server = await asyncio.start_server(self.handle_conn, self.host, self._port)
        self.running = True
        self._stopped.clear()
        logger.info("Server listening on port %d", self.port)

    async def serve_forever(self) -> None:
        """start() if needed, then block until stop() has finished."""
        if self._server is None:
            await self.start()
        await self._stopped.wait()

    async def handle_conn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Per-connection entry point; admission control then the session."""
        if not self.running:
            await self._reject(writer, ErrorCode.SERVER_BUSY, SHUTDOWN_TEXT)
            return
        if self.registry.size() >= self.max_clients:
            logger.warning("Rejecting %s: at capacity (%d)", writer.get_extra_info("peername"), self.max_clients)
            await self._reject(writer, ErrorCode.SERVER_BUSY, BUSY_TEXT)
            return

        session = ClientSession(reader, writer, self.registry)
        task = asyncio.current_task()
        if task is not None:
            self._sessions[session] = task
        try:
            await session.run()
        finally:
            self._sessions.pop(session, None)

    async def _reject(self, writer: asyncio.StreamWriter, code: ErrorCode, text: str) -> None:
        """Write a single ERROR frame and hang up. Best effort."""
        try:
            writer.write(encode(serialize(ErrorMessage(code=code.value, message=text))))
            await writer.drain()
        except OSError as exc:
            logger.debug("Could not deliver %s: %s", code.value, exc)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def broadcast_system(self, content: str) -> None:
        await self.registry.broadcast(ServerBroadcastMessage(content=content))

    async def stop(self) -> None:
        """Stop accepting, notify connected users, and end every session."""
        if not self.running:
            return
        self.running = False
        if self._server is not None:
            self._server.close()

        await self.broadcast_system(SHUTDOWN_TEXT)

        sessions = dict(self._sessions)
        for session in sessions:
            session.close()
        if sessions:
            _, pending = await asyncio.wait(list(sessions.values()), timeout=SHUTDOWN_GRACE)
            for task in pending:
                logger.warning("Session task did not finish within %.1fs; cancelling", SHUTDOWN_GRACE)
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if self._server is not None:
            await self._server.wait_closed()
        logger.info("Server stopped")
        self._stopped.set()
