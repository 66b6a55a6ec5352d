import argparse
import asyncio
import signal
import sys
from typing import Optional, Tuple

from .client import ChatClient
from .config import HostsConfig, ServerConfig
from .errors import ConfigError, ConnectionRejectedError, InvalidMessageError
from .logs import configure_logging
from .messages import (
    BaseMessage,
    ChatMessage,
    DisconnectMessage,
    ErrorMessage,
    ServerBroadcastMessage,
    UserListMessage,
)
from .server import ChatServer

"""
run.py - single entry point for the SCP chat server and console client.

Quick examples:
  Server:  python -m scp.run --mode server --config ./server-config.json
  Client:  python -m scp.run --mode client --host 127.0.0.1 --port 9000 --username alice
  Alias:   python -m scp.run --mode client --name local --hosts ./hosts.json --username bob
"""

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9000

COMMAND_HELP = """Commands during session:
  /all <message>         Broadcast to all users
  /dm <user> <message>   Direct message a user
  /name <new>            Request a username change
  /list                  Show connected users
  /help                  Show this command list
  /quit                  Disconnect and exit"""


# -------------------------
# Server
# -------------------------

async def run_server(config: ServerConfig) -> None:
    """Serve until SIGINT/SIGTERM, then shut down cleanly."""
    server = ChatServer.from_config(config)
    try:
        await server.start()
    except OSError as exc:
        raise SystemExit(f"Could not listen on port {config.port}: {exc}")
    print(f"Server listening on port {server.port}")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(server.stop()))
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt from asyncio.run.
            pass
    await server.serve_forever()


# -------------------------
# Client
# -------------------------

def format_message(message: BaseMessage) -> Optional[str]:
    """One console line per incoming message (None for nothing to show)."""
    if isinstance(message, ChatMessage):
        if message.direct:
            return f"[DM from {message.sender}] {message.content}"
        return f"[{message.sender}] {message.content}"
    if isinstance(message, ServerBroadcastMessage):
        return f"[SERVER] {message.content}"
    if isinstance(message, ErrorMessage):
        return f"[ERROR] {message.code}: {message.message}"
    if isinstance(message, DisconnectMessage):
        return f"[SERVER] Disconnect: {message.reason}"
    if isinstance(message, UserListMessage):
        return "[USERS] " + ", ".join(message.users)
    return None


async def handle_command(line: str, client: ChatClient) -> bool:
    """Run one slash command. Returns False when the user asked to quit."""
    line = line.strip()
    if not line:
        return True
    if line.startswith("/help"):
        print(COMMAND_HELP)
    elif line.startswith("/quit"):
        await client.disconnect()
        print("Disconnected. Bye!")
        return False
    elif line.startswith("/all "):
        await client.send_chat_to_all(line[5:])
    elif line.startswith("/dm "):
        parts = line.split(None, 2)
        if len(parts) < 3:
            print("Usage: /dm <user> <message>")
        else:
            await client.send_direct(parts[1], parts[2])
    elif line.startswith("/name "):
        await client.request_username_change(line[6:])
    elif line.startswith("/list"):
        await client.request_user_list()
    else:
        print("Unknown command. Type /help for the command list.")
    return True


async def run_client(host: str, port: int, username: str) -> None:
    """Connect, print whatever arrives, and feed stdin lines to handle_command()."""

    def show(message: BaseMessage) -> None:
        line = format_message(message)
        if line:
            print(line)

    client = ChatClient(host, port, username, on_message=show)
    try:
        await client.connect()
    except (OSError, ConnectionRejectedError) as exc:
        raise SystemExit(f"Could not connect to {host}:{port}. Is the server running and reachable? ({exc})")
    print(f"Connected to {host}:{port} as {username}")
    print(COMMAND_HELP)

    loop = asyncio.get_running_loop()
    while client.connected:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            await client.disconnect()
            break
        try:
            if not await handle_command(line, client):
                break
        except (InvalidMessageError, ValueError) as exc:
            print(f"Sorry, that command failed: {exc}")
        except OSError as exc:
            print(f"Could not send. Please check your connection and try again. ({exc})")


def resolve_alias(alias: str, hosts_path: str) -> Tuple[str, int]:
    try:
        hosts = HostsConfig.load(hosts_path)
    except ConfigError as exc:
        raise SystemExit(str(exc))
    entry = hosts.find_by_alias(alias)
    if entry is None:
        raise SystemExit(f"Alias not found: {alias}")
    return entry.host, entry.port


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="SCP v1 chat server and console client")
    p.add_argument("--mode", choices=["server", "client"], required=True)
    p.add_argument("--config", default="./server-config.json", help="Server config JSON")
    p.add_argument("--host", default=DEFAULT_HOST)
    p.add_argument("--port", type=int, default=DEFAULT_PORT)
    p.add_argument("--name", dest="alias", help="Look up host/port by alias in the hosts file")
    p.add_argument("--hosts", default="./hosts.json", help="Hosts file for --name")
    p.add_argument("--username", default="guest")
    return p.parse_args(argv)


def main(argv: Optional[list] = None) -> None:
    """Dispatch into the chosen mode; keep top-level code very small."""
    args = parse_args(argv)
    if args.mode == "server":
        try:
            config = ServerConfig.load(args.config)
        except ConfigError as exc:
            raise SystemExit(f"{exc}. Use --config <path> to point to a valid file.")
        try:
            configure_logging(config.log_file)
        except OSError as exc:
            raise SystemExit(f"Failed to configure logging. Check logFile path in config: {exc}")
        asyncio.run(run_server(config))

    elif args.mode == "client":
        host, port = args.host, args.port
        if args.alias:
            host, port = resolve_alias(args.alias, args.hosts)
        try:
            asyncio.run(run_client(host, port, args.username))
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
