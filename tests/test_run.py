import json

import pytest

from scp.messages import ChatMessage, ErrorMessage, ServerBroadcastMessage, UserListMessage
from scp.run import format_message, handle_command, parse_args, resolve_alias


class RecordingClient:
    def __init__(self):
        self.calls = []

    async def send_chat_to_all(self, content):
        self.calls.append(("all", content))

    async def send_direct(self, to, content):
        self.calls.append(("dm", to, content))

    async def request_username_change(self, new_name):
        self.calls.append(("name", new_name))

    async def request_user_list(self):
        self.calls.append(("list",))

    async def disconnect(self, reason="client_exit"):
        self.calls.append(("quit",))


def test_format_message():
    assert format_message(ChatMessage(sender="alice", direct=False, content="hi")) == "[alice] hi"
    assert format_message(ChatMessage(sender="alice", to="bob", direct=True, content="psst")) == "[DM from alice] psst"
    assert format_message(ServerBroadcastMessage(content="bob joined")) == "[SERVER] bob joined"
    assert format_message(ErrorMessage(code="UNKNOWN_USER", message="User not found: x")) == "[ERROR] UNKNOWN_USER: User not found: x"
    assert format_message(UserListMessage(users=["a", "b"])) == "[USERS] a, b"


async def test_slash_commands():
    client = RecordingClient()
    assert await handle_command("/all hello there", client)
    assert await handle_command("/dm bob how are you", client)
    assert await handle_command("/name robert", client)
    assert await handle_command("/list", client)
    assert not await handle_command("/quit", client)
    assert client.calls == [
        ("all", "hello there"),
        ("dm", "bob", "how are you"),
        ("name", "robert"),
        ("list",),
        ("quit",),
    ]


async def test_incomplete_dm_is_not_sent(capsys):
    client = RecordingClient()
    assert await handle_command("/dm bob", client)
    assert client.calls == []
    assert "Usage" in capsys.readouterr().out


def test_resolve_alias(tmp_path):
    path = tmp_path / "hosts.json"
    path.write_text(json.dumps({"hosts": [{"alias": "Local", "host": "127.0.0.1", "port": 9000}]}))
    assert resolve_alias("local", str(path)) == ("127.0.0.1", 9000)
    with pytest.raises(SystemExit, match="Alias not found"):
        resolve_alias("remote", str(path))


def test_parse_args_defaults():
    args = parse_args(["--mode", "client"])
    assert (args.host, args.port, args.username, args.alias) == ("127.0.0.1", 9000, "guest", None)
