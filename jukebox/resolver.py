"""Catalog search and metadata lookup (YouTube via yt-dlp)."""
import asyncio
import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

import yt_dlp

from .config import MAX_SEARCH_RESULTS, YTDLP_COOKIE_FILE
from .errors import InvalidInput, ResolutionFailed, record_error
from .models import SearchResult

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2

_VIDEO_ID = re.compile(r"[A-Za-z0-9_-]{11}")
_YOUTUBE_HOSTS = {
    "youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com",
}
_SHORT_HOSTS = {"youtu.be", "www.youtu.be"}


def normalize_query(query) -> str:
    query = query.strip() if isinstance(query, str) else ""
    if len(query) < MIN_QUERY_LENGTH:
        raise InvalidInput(f"Search must be at least {MIN_QUERY_LENGTH} characters.")
    return query


def watch_url(identifier: str) -> str:
    return f"https://www.youtube.com/watch?v={identifier}"


def parse_identifier(text: str) -> tuple[str, str]:
    """Turn a video id or YouTube URL into (identifier, canonical watch URL)."""
    text = (text or "").strip()
    if not text:
        raise InvalidInput("Provide a YouTube URL or video id.")
    if _VIDEO_ID.fullmatch(text):
        return text, watch_url(text)

    parsed = urlparse(text if "://" in text else f"https://{text}")
    host = (parsed.hostname or "").lower()
    candidate = ""
    if host in _YOUTUBE_HOSTS:
        if parsed.path == "/watch":
            candidate = (parse_qs(parsed.query).get("v") or [""])[0]
        else:
            parts = [p for p in parsed.path.split("/") if p]
            if len(parts) >= 2 and parts[0] in ("shorts", "embed", "live"):
                candidate = parts[1]
    elif host in _SHORT_HOSTS:
        candidate = parsed.path.lstrip("/").split("/")[0]

    if not _VIDEO_ID.fullmatch(candidate):
        raise InvalidInput("Invalid URL or video id.")
    return candidate, watch_url(candidate)


class YtDlpLogger:
    """Routes yt-dlp's own messages into our logging tree."""

    def __init__(self, name: str = __name__):
        self._log = logging.getLogger(name)
        self.last_error: str | None = None

    def debug(self, msg: str):
        pass

    def info(self, msg: str):
        pass

    def warning(self, msg: str):
        self._log.debug("yt-dlp: %s", msg)

    def error(self, msg: str):
        self.last_error = msg
        self._log.debug("yt-dlp: %s", msg)


class YtDlpCatalog:
    """Blocking yt-dlp calls. Run these off the event loop."""

    def __init__(self, cookie_file: Optional[str] = YTDLP_COOKIE_FILE):
        self.cookie_file = cookie_file

    def _options(self, **extra) -> dict:
        options = {
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "skip_download": True,
            "logger": YtDlpLogger(__name__),
        }
        if self.cookie_file:
            options["cookiefile"] = self.cookie_file
        options.update(extra)
        return options

    def search(self, query: str, limit: int) -> list[dict]:
        with yt_dlp.YoutubeDL(self._options(extract_flat="in_playlist")) as ydl:
            info = ydl.extract_info(f"ytsearch{limit}:{query}", download=False)
        return list((info or {}).get("entries") or [])

    def lookup(self, url: str) -> dict:
        with yt_dlp.YoutubeDL(self._options(noplaylist=True)) as ydl:
            info = ydl.extract_info(url, download=False)
            if not info:
                raise ResolutionFailed("Catalog returned no metadata")
            return ydl.sanitize_info(info)


def _thumbnail(entry: dict) -> str:
    if entry.get("thumbnail"):
        return entry["thumbnail"]
    thumbs = entry.get("thumbnails") or []
    return thumbs[-1].get("url", "") if thumbs else ""


def _is_playable_video(entry: dict) -> bool:
    if not entry or not entry.get("id"):
        return False
    if entry.get("_type", "url") not in ("url", "video"):
        return False
    if entry.get("ie_key", "Youtube") != "Youtube":
        return False
    return entry.get("live_status") not in ("is_live", "is_upcoming")


def _to_result(entry: dict) -> SearchResult:
    duration = entry.get("duration")
    return SearchResult(
        id=entry["id"],
        title=entry.get("title") or "Unknown",
        artist=entry.get("channel") or entry.get("uploader") or "Unknown",
        duration=int(duration) if isinstance(duration, (int, float)) else None,
        thumbnail=_thumbnail(entry),
        url=entry.get("webpage_url") or watch_url(entry["id"]),
    )


class Resolver:
    def __init__(self, catalog=None, max_results: int = MAX_SEARCH_RESULTS):
        self.catalog = catalog or YtDlpCatalog()
        self.max_results = max_results

    def clamp_limit(self, limit) -> int:
        """Requested result count within [1, max_results]; None means max_results."""
        try:
            return max(1, min(int(limit or self.max_results), self.max_results))
        except (TypeError, ValueError):
            raise InvalidInput("Result limit must be a number.") from None

    async def search(self, query: str, limit: Optional[int] = None) -> list[SearchResult]:
        """Playable candidates for a free-text query, catalog order preserved."""
        query = normalize_query(query)
        limit = self.clamp_limit(limit)

        try:
            entries = await asyncio.to_thread(self.catalog.search, query, limit)
        except ResolutionFailed:
            raise
        except Exception as e:
            record_error("search", query, {"limit": limit}, str(e))
            raise ResolutionFailed(f"Search failed: {e}") from e

        results = [_to_result(e) for e in entries if _is_playable_video(e)]
        if not results:
            raise ResolutionFailed(f"No songs found for '{query}'.")
        return results[:limit]

    async def lookup(self, identifier: str) -> dict:
        """Full catalog metadata for one canonical identifier."""
        try:
            info = await asyncio.to_thread(self.catalog.lookup, watch_url(identifier))
        except ResolutionFailed:
            raise
        except Exception as e:
            record_error("lookup", identifier, None, str(e))
            raise ResolutionFailed(f"Couldn't fetch song info: {e}") from e
        if info.get("live_status") in ("is_live", "is_upcoming"):
            raise ResolutionFailed("Live streams can't be queued.")
        return info
