import logging
import threading
from typing import TYPE_CHECKING, Dict, List, Optional

from .messages import BaseMessage

if TYPE_CHECKING:
    from .session import ClientSession

"""
registry.py - the process-wide username -> session directory.

The registry is the only authority on who owns which name. It never opens or
closes sockets; it just names sessions and fans messages out to them.

All mutations and reads happen under one lock so register() is a real
test-and-set. Broadcast takes a snapshot under the lock and sends outside
it, so a slow peer can't stall register/unregister.
"""

logger = logging.getLogger(__name__)


class ClientRegistry:
    """Thread-safe map of usernames to live sessions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: Dict[str, "ClientSession"] = {}

    def register(self, username: str, session: "ClientSession") -> bool:
        """Claim a username; False if someone already holds it."""
        with self._lock:
            if username in self._clients:
                return False
            self._clients[username] = session
        logger.info("Registered user %s", username)
        return True

    def unregister(self, username: Optional[str]) -> None:
        """Drop a username. Safe to call twice."""
        if username is None:
            return
        with self._lock:
            removed = self._clients.pop(username, None)
        if removed is not None:
            logger.info("Unregistered user %s", username)

    def get(self, username: str) -> Optional["ClientSession"]:
        with self._lock:
            return self._clients.get(username)

    def size(self) -> int:
        with self._lock:
            return len(self._clients)

    def list_usernames(self) -> List[str]:
        """Snapshot copy; callers may keep or send it."""
        with self._lock:
            return list(self._clients)

    def all(self) -> List["ClientSession"]:
        with self._lock:
            return list(self._clients.values())

    async def broadcast(self, message: BaseMessage, exclude: Optional["ClientSession"] = None) -> None:
        """Best-effort send to every session except `exclude`."""
        for session in self.all():
            if session is exclude:
                continue
            try:
                await session.send(message)
            except Exception as exc:
                # One dead peer must not stop the rest of the fan-out.
                logger.warning("Broadcast to %s failed: %s", session.username, exc)
