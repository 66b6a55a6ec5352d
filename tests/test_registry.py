import threading

from scp.messages import ServerBroadcastMessage
from scp.registry import ClientRegistry


class FakeSession:
    def __init__(self, name: str, fail: bool = False) -> None:
        self.username = name
        self.fail = fail
        self.received = []

    async def send(self, message) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.received.append(message)


def test_register_is_exclusive():
    registry = ClientRegistry()
    alice = FakeSession("alice")
    assert registry.register("alice", alice)
    assert not registry.register("alice", FakeSession("alice"))
    assert registry.get("alice") is alice
    assert registry.size() == 1


def test_unregister_is_idempotent():
    registry = ClientRegistry()
    registry.register("alice", FakeSession("alice"))
    registry.unregister("alice")
    registry.unregister("alice")
    registry.unregister(None)
    assert registry.get("alice") is None
    assert registry.size() == 0


def test_concurrent_register_single_winner():
    registry = ClientRegistry()
    results = []
    barrier = threading.Barrier(16)

    def worker() -> None:
        barrier.wait()
        results.append(registry.register("alice", FakeSession("alice")))

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results.count(True) == 1
    assert results.count(False) == 15


def test_list_usernames_is_a_snapshot():
    registry = ClientRegistry()
    registry.register("alice", FakeSession("alice"))
    registry.register("bob", FakeSession("bob"))
    names = registry.list_usernames()
    registry.unregister("bob")
    assert sorted(names) == ["alice", "bob"]
    assert registry.list_usernames() == ["alice"]


async def test_broadcast_skips_excluded_session():
    registry = ClientRegistry()
    sessions = {name: FakeSession(name) for name in ("alice", "bob", "carol")}
    for name, session in sessions.items():
        registry.register(name, session)

    msg = ServerBroadcastMessage(content="hello")
    await registry.broadcast(msg, exclude=sessions["alice"])

    assert sessions["alice"].received == []
    assert sessions["bob"].received == [msg]
    assert sessions["carol"].received == [msg]


async def test_broadcast_survives_failing_peer():
    registry = ClientRegistry()
    broken = FakeSession("broken", fail=True)
    healthy = FakeSession("healthy")
    registry.register("broken", broken)
    registry.register("healthy", healthy)

    await registry.broadcast(ServerBroadcastMessage(content="still here"))
    assert [m.content for m in healthy.received] == ["still here"]


async def test_broadcast_without_exclusion_reaches_everyone():
    registry = ClientRegistry()
    a, b = FakeSession("aaa"), FakeSession("bbb")
    registry.register("aaa", a)
    registry.register("bbb", b)
    await registry.broadcast(ServerBroadcastMessage(content="Server shutting down"))
    assert len(a.received) == 1 and len(b.received) == 1
