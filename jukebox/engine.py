"""Core jukebox engine — owns the queue, the now-playing slot and its timer.

Receives commands via methods, broadcasts state via ClientHub. Every queue or
playback transition runs inside one asyncio.Lock, and its broadcasts are sent
before the lock is released, so clients see transitions in the order they
were applied.
"""
import asyncio
import logging
from collections import deque
from typing import Callable, Optional

from .acquirer import AssetAcquirer
from .config import (
    DEFAULT_VOLUME,
    FALLBACK_DURATION,
    PLAYBACK_BUFFER_MS,
    RATE_LIMIT_MAX_ENTRIES,
    SEARCH_INTERVAL,
    SUBMIT_INTERVAL,
)
from .errors import InvalidDuration, InvalidInput, record_error
from .models import Song
from .ratelimit import RateLimiter
from .resolver import Resolver, normalize_query, parse_identifier
from .utils import coerce_duration, now_ms

logger = logging.getLogger(__name__)


class JukeboxEngine:
    def __init__(
        self,
        hub,
        resolver: Optional[Resolver] = None,
        acquirer: Optional[AssetAcquirer] = None,
        *,
        buffer_ms: int = PLAYBACK_BUFFER_MS,
        search_limiter: Optional[RateLimiter] = None,
        submit_limiter: Optional[RateLimiter] = None,
        volume: int = DEFAULT_VOLUME,
        fallback_duration: int = FALLBACK_DURATION,
        clock: Callable[[], int] = now_ms,
    ):
        """hub: ClientHub (anything with async broadcast(event, data))."""
        self.hub = hub
        self.resolver = resolver or Resolver()
        self.acquirer = acquirer or AssetAcquirer()
        self.buffer_ms = buffer_ms
        self.fallback_duration = fallback_duration
        self.clock = clock
        self.search_limiter = search_limiter if search_limiter is not None else RateLimiter(
            SEARCH_INTERVAL, RATE_LIMIT_MAX_ENTRIES,
            "Please wait a moment before searching again.",
        )
        self.submit_limiter = submit_limiter if submit_limiter is not None else RateLimiter(
            SUBMIT_INTERVAL, RATE_LIMIT_MAX_ENTRIES,
            "Please wait a moment before adding another song.",
        )

        self._lock = asyncio.Lock()
        self._queue: deque[Song] = deque()
        self._current: Optional[Song] = None
        self._started_at: int = 0

        # Playing <=> exactly one live handle. _slot numbers each now-playing
        # period; a fire carrying an older slot is stale and ignored.
        self._timer: Optional[asyncio.TimerHandle] = None
        self._slot = 0
        self._advance_task: Optional[asyncio.Task] = None

        self._volume = volume
        self._processing = 0

    # ── Read-only views ──────────────────────────────────────────────────────

    @property
    def now_playing(self) -> Optional[Song]:
        return self._current

    @property
    def started_at(self) -> int:
        return self._started_at

    @property
    def queue(self) -> tuple[Song, ...]:
        return tuple(self._queue)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and not self._timer.cancelled()

    @property
    def processing(self) -> bool:
        return self._processing > 0

    def get_volume(self) -> int:
        return self._volume

    # ── Queue store ──────────────────────────────────────────────────────────

    async def enqueue(self, song: Song):
        """Append song; start it right away if nothing is playing."""
        async with self._lock:
            self._queue.append(song)
            logger.info("Queued '%s' (%s) for %s", song.title, song.id, song.added_by)
            if self._current is None:
                await self._advance_locked()
            else:
                await self._broadcast_queue()

    async def advance(self):
        """Natural advance: move the next queued song to now playing."""
        async with self._lock:
            await self._advance_locked()

    async def _advance_locked(self):
        self._cancel_timer()
        self._slot += 1

        if not self._queue:
            self._current = None
            self._started_at = 0
            logger.info("Queue empty, nothing playing")
            await self.hub.broadcast("now_playing", None)
            return

        song = self._queue.popleft()
        self._current = song
        self._started_at = self.clock()
        self._arm_timer(song.duration_ms + self.buffer_ms)
        logger.info("Now playing '%s' added by %s (%ss)", song.title, song.added_by, song.duration)

        await self.hub.broadcast("now_playing", self._now_playing_payload())
        await self._broadcast_queue()

    # ── Playback timer ───────────────────────────────────────────────────────

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm_timer(self, delay_ms: int):
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay_ms / 1000, self._on_timer, self._slot)

    def _on_timer(self, slot: int):
        if slot != self._slot:
            logger.debug("Ignoring stale timer for slot %s (current %s)", slot, self._slot)
            return
        self._advance_task = asyncio.create_task(self._advance_from_timer(slot))

    async def _advance_from_timer(self, slot: int):
        try:
            async with self._lock:
                if slot != self._slot:
                    logger.debug("Slot %s already advanced", slot)
                    return
                finished = self._current
                logger.info(
                    "Server timer: '%s' finished",
                    finished.title if finished else "?",
                )
                await self._advance_locked()
        except Exception:
            logger.exception("Timer advance failed")

    # ── Sync responder ───────────────────────────────────────────────────────

    def sync(self, now: Optional[int] = None) -> dict:
        """Where a late-joining client should resume. Pure read."""
        now = self.clock() if now is None else now
        song = self._current
        if song is None:
            return {"song": None, "elapsed_ms": 0, "server_now": now}
        elapsed = max(0, min(now - self._started_at, song.duration_ms))
        return {
            "song": song.summary(),
            "elapsed_ms": elapsed,
            "server_now": now,
            "started_at": self._started_at,
        }

    def get_state(self) -> dict:
        """Full snapshot for a newly connected client."""
        return {
            "now_playing": self._now_playing_payload(),
            "queue": [s.summary() for s in self._queue],
            "processing": self.processing,
            "volume": self._volume,
        }

    # ── Volume ───────────────────────────────────────────────────────────────

    async def set_volume(self, value) -> int:
        try:
            level = int(value)
        except (TypeError, ValueError):
            raise InvalidInput("Volume must be a number between 0 and 100.") from None
        if not 0 <= level <= 100:
            raise InvalidInput("Volume must be a number between 0 and 100.")
        self._volume = level
        await self.hub.broadcast("volume", {"volume": level})
        return level

    # ── Requests ─────────────────────────────────────────────────────────────

    async def search(self, requester_id: str, query: str, limit: Optional[int] = None) -> list[dict]:
        # Malformed requests are rejected before they can use up the interval
        query = normalize_query(query)
        limit = self.resolver.clamp_limit(limit)
        self.search_limiter.check(requester_id)
        logger.info("Search by %s: %r", requester_id, query)
        results = await self.resolver.search(query, limit)
        return [r.to_dict() for r in results]

    async def submit(self, requester_id: str, text: str, added_by: str) -> Song:
        """Resolve, acquire and enqueue one song. Raises JukeboxError on failure."""
        identifier, source_url = parse_identifier(text)
        self.submit_limiter.check(requester_id)

        await self._set_processing(+1)
        try:
            info = await self.resolver.lookup(identifier)
            path = await self.acquirer.acquire(identifier, source_url)
            song = Song(
                id=identifier,
                title=info.get("title") or identifier,
                artist=info.get("channel") or info.get("uploader") or "Unknown",
                duration=self._duration_of(info, identifier),
                thumbnail=info.get("thumbnail") or "",
                url=source_url,
                file_path=self.acquirer.public_path(identifier),
                added_by=added_by,
            )
            logger.debug("Asset for %s at %s", identifier, path)
            await self.enqueue(song)
            return song
        finally:
            await self._set_processing(-1)

    def _duration_of(self, info: dict, identifier: str) -> int:
        raw = info.get("duration")
        if raw is None:
            raw = info.get("duration_string")
        try:
            return coerce_duration(raw)
        except InvalidDuration as e:
            record_error("duration", identifier, {"duration": raw}, str(e))
            return self.fallback_duration

    async def song_ended(self, requester_id: str):
        # The server timer decides when songs end; client reports are informational
        logger.debug("Client %s reported song ended", requester_id)

    # ── Broadcast helpers ────────────────────────────────────────────────────

    async def _set_processing(self, delta: int):
        was = self.processing
        self._processing = max(0, self._processing + delta)
        if self.processing != was:
            await self.hub.broadcast("processing", self.processing)

    def _now_playing_payload(self) -> Optional[dict]:
        if self._current is None:
            return None
        payload = self._current.summary()
        payload["started_at"] = self._started_at
        return payload

    async def _broadcast_queue(self):
        await self.hub.broadcast("queue", [s.summary() for s in self._queue])

    async def stop(self):
        """Graceful shutdown."""
        self._cancel_timer()
        if self._advance_task and not self._advance_task.done():
            self._advance_task.cancel()
            try:
                await self._advance_task
            except (asyncio.CancelledError, Exception):
                pass
