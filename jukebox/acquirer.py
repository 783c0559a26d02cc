"""Asset acquisition — download + transcode to mp3, cached by identifier.

One file per canonical identifier at MUSIC_DIR/<identifier>.mp3. Work happens
in a private scratch directory and only a verified, non-empty result is moved
onto the canonical path, so a failed fetch can never leave a file behind that
later requests would mistake for a cache hit.
"""
import asyncio
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

import yt_dlp

from .config import ACQUIRE_TIMEOUT, AUDIO_BITRATE, MUSIC_DIR, YTDLP_COOKIE_FILE
from .errors import AcquisitionFailed, InvalidInput, record_error
from .resolver import YtDlpLogger

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[A-Za-z0-9_-]+")

# (identifier, source_url, scratch_dir) -> path of the produced mp3
Fetcher = Callable[[str, str, Path], Path]


class YtDlpFetcher:
    """Blocking yt-dlp download with FFmpeg audio extraction."""

    def __init__(self, bitrate: str = AUDIO_BITRATE, cookie_file: Optional[str] = YTDLP_COOKIE_FILE):
        self.bitrate = bitrate
        self.cookie_file = cookie_file

    def _options(self, output_template: str, yt_logger: YtDlpLogger) -> dict:
        options = {
            "format": "bestaudio/best",
            "outtmpl": output_template,
            "noplaylist": True,
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "retries": 3,
            "fragment_retries": 3,
            "socket_timeout": 30,
            "logger": yt_logger,
            "postprocessors": [
                {
                    "key": "FFmpegExtractAudio",
                    "preferredcodec": "mp3",
                    "preferredquality": str(self.bitrate),
                }
            ],
            "keepvideo": False,
        }
        if self.cookie_file:
            options["cookiefile"] = self.cookie_file
        return options

    def __call__(self, identifier: str, source_url: str, dest_dir: Path) -> Path:
        yt_logger = YtDlpLogger(__name__)
        options = self._options(str(dest_dir / f"{identifier}.%(ext)s"), yt_logger)
        try:
            with yt_dlp.YoutubeDL(options) as ydl:
                info = ydl.extract_info(source_url, download=True)
        except yt_dlp.utils.DownloadError as e:
            raise AcquisitionFailed(f"Download failed: {yt_logger.last_error or e}") from e
        if info is None:
            raise AcquisitionFailed("yt-dlp returned no info")

        output = dest_dir / f"{identifier}.mp3"
        if not output.exists():
            raise AcquisitionFailed("Conversion to mp3 produced no file")
        return output


def _is_fresh(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def _discard(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Couldn't remove partial asset %s: %s", path, e)


class AssetAcquirer:
    def __init__(
        self,
        music_dir: Path = MUSIC_DIR,
        fetcher: Optional[Fetcher] = None,
        timeout: float = ACQUIRE_TIMEOUT,
    ):
        self.music_dir = Path(music_dir)
        self.scratch_dir = self.music_dir / ".partial"
        self.fetcher = fetcher or YtDlpFetcher()
        self.timeout = timeout
        self._inflight: dict[str, asyncio.Task] = {}

    def path_for(self, identifier: str) -> Path:
        """Canonical asset path, derived from the identifier alone."""
        if not _SAFE_ID.fullmatch(identifier or ""):
            raise InvalidInput(f"Invalid identifier: {identifier!r}")
        return self.music_dir / f"{identifier}.mp3"

    def public_path(self, identifier: str) -> str:
        return f"/music/{self.path_for(identifier).name}"

    def is_cached(self, identifier: str) -> bool:
        return _is_fresh(self.path_for(identifier))

    def in_flight(self, identifier: str) -> bool:
        return identifier in self._inflight

    async def acquire(self, identifier: str, source_url: str) -> Path:
        """Return the local asset for identifier, fetching it at most once.

        Concurrent callers for the same identifier share one fetch and all
        receive its result (or its AcquisitionFailed).
        """
        target = self.path_for(identifier)
        if _is_fresh(target):
            logger.debug("Cache hit for %s", identifier)
            return target

        task = self._inflight.get(identifier)
        if task is None:
            task = asyncio.create_task(self._fetch(identifier, source_url, target))
            self._inflight[identifier] = task
            task.add_done_callback(lambda t, key=identifier: self._release(key, t))
        else:
            logger.info("Joining in-flight acquisition of %s", identifier)

        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout)
        except asyncio.TimeoutError:
            record_error("acquire", source_url, {"id": identifier}, f"timed out after {self.timeout}s")
            raise AcquisitionFailed(f"Download timed out after {self.timeout:g}s") from None

    def _release(self, identifier: str, task: asyncio.Task):
        # Held until the worker really finishes so a timed-out fetch is never duplicated
        if self._inflight.get(identifier) is task:
            del self._inflight[identifier]
        if not task.cancelled():
            task.exception()

    async def _fetch(self, identifier: str, source_url: str, target: Path) -> Path:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix=f"{identifier}-", dir=self.scratch_dir))
        logger.info("Acquiring %s from %s", identifier, source_url)
        try:
            produced = Path(await asyncio.to_thread(self.fetcher, identifier, source_url, work_dir))
            if not _is_fresh(produced):
                raise AcquisitionFailed("The converted audio file is empty")
            os.replace(produced, target)
        except Exception as e:
            if not _is_fresh(target):
                _discard(target)
            record_error("acquire", source_url, {"id": identifier}, str(e))
            if isinstance(e, AcquisitionFailed):
                raise
            raise AcquisitionFailed(f"Couldn't process the song: {e}") from e
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        logger.info("Acquired %s -> %s", identifier, target)
        return target
