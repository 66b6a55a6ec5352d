import asyncio
from typing import Optional, Tuple

import pytest_asyncio

from scp.client import ChatClient
from scp.framing import read_frame, write_frame
from scp.messages import BaseMessage, MessageType, parse
from scp.server import ChatServer

TIMEOUT = 3.0


@pytest_asyncio.fixture
async def server():
    srv = ChatServer("127.0.0.1", 0, max_clients=10)
    await srv.start()
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def connect(server):
    """Factory: connect(username) -> ChatClient already past the handshake."""
    clients = []

    async def _connect(username: Optional[str], srv: Optional[ChatServer] = None) -> ChatClient:
        target = srv or server
        client = ChatClient("127.0.0.1", target.port, username)
        await client.connect()
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        await client.close()


async def open_raw(port: int) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    return await asyncio.open_connection("127.0.0.1", port)


async def send_raw(writer: asyncio.StreamWriter, payload: str) -> None:
    await write_frame(writer, payload)


async def recv_raw(reader: asyncio.StreamReader) -> Optional[BaseMessage]:
    text = await asyncio.wait_for(read_frame(reader), TIMEOUT)
    return None if text is None else parse(text)


async def expect(client: ChatClient, msg_type: MessageType) -> BaseMessage:
    message = await client.wait_for(msg_type, TIMEOUT)
    assert message is not None, f"stream ended while waiting for {msg_type.value}"
    return message
