"""ClientHub — fan-out bridge between the engine and WebSocket clients."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Identity a client presented when it connected."""
    client_id: str
    user_id: str
    username: str


class ClientHub:
    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._subscribers: dict[str, asyncio.Queue] = {}

    def subscribe(self, session: Session) -> asyncio.Queue:
        """Register a new client. Returns a queue that receives (event, data) tuples."""
        q: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers[session.client_id] = q
        return q

    def unsubscribe(self, client_id: str):
        self._subscribers.pop(client_id, None)

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    def _push(self, client_id: str, q: asyncio.Queue, event: str, data: Any) -> bool:
        try:
            q.put_nowait((event, data))
            return True
        except asyncio.QueueFull:
            # Client too slow, drop oldest
            try:
                q.get_nowait()
                q.put_nowait((event, data))
                return True
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                logger.warning("Dropping unresponsive client %s", client_id)
                return False

    async def broadcast(self, event: str, data: Any):
        """Push an event to all connected clients."""
        dead = [
            cid for cid, q in list(self._subscribers.items())
            if not self._push(cid, q, event, data)
        ]
        for cid in dead:
            self.unsubscribe(cid)

    async def send(self, client_id: str, event: str, data: Any):
        """Push an event to one client. A vanished client is ignored."""
        q = self._subscribers.get(client_id)
        if q is None:
            logger.debug("send to unknown client %s (%s) ignored", client_id, event)
            return
        if not self._push(client_id, q, event, data):
            self.unsubscribe(client_id)
