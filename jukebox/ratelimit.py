"""Per-requester minimum interval between accepted actions."""
import time
from collections import OrderedDict
from typing import Optional

from .errors import RateLimited


class RateLimiter:
    """Remembers when each requester last had an action accepted.

    Rejections never refresh the timestamp. The map is bounded: once it holds
    max_entries requesters the least recently accepted one is dropped.
    """

    def __init__(self, interval: float, max_entries: int = 10000, message: str = ""):
        self.interval = interval
        self.max_entries = max_entries
        self.message = message or "Please wait a moment before trying again."
        self._last: OrderedDict[str, float] = OrderedDict()

    def check(self, requester_id: str, now: Optional[float] = None):
        """Raise RateLimited if requester_id acted less than interval ago."""
        if self.interval <= 0:
            return
        now = time.monotonic() if now is None else now
        last = self._last.get(requester_id)
        if last is not None and now - last < self.interval:
            raise RateLimited(self.message)

        self._last[requester_id] = now
        self._last.move_to_end(requester_id)
        while len(self._last) > self.max_entries:
            self._last.popitem(last=False)

    def __len__(self) -> int:
        return len(self._last)
