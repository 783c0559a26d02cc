"""Test configuration and fixtures"""

import threading
import time
from pathlib import Path

import pytest

from jukebox import errors
from jukebox.acquirer import AssetAcquirer
from jukebox.engine import JukeboxEngine
from jukebox.errors import AcquisitionFailed
from jukebox.models import Song
from jukebox.ratelimit import RateLimiter
from jukebox.resolver import Resolver


@pytest.fixture(autouse=True)
def errors_log(tmp_path, monkeypatch):
    """Keep structured error logs out of the project tree"""
    monkeypatch.setattr(errors, "OUTPUT_DIR", tmp_path / "output")
    monkeypatch.setattr(errors, "ERRORS_LOG", tmp_path / "output" / "errors.log")
    return tmp_path / "output" / "errors.log"


class FakeHub:
    """Records broadcasts in order"""

    def __init__(self):
        self.events = []

    async def broadcast(self, event, data):
        self.events.append((event, data))

    def kinds(self):
        return [event for event, _ in self.events]

    def clear(self):
        self.events.clear()


class FakeClock:
    def __init__(self, now=1_700_000_000_000):
        self.now = now

    def __call__(self):
        return self.now


class FakeCatalog:
    """Stands in for YtDlpCatalog; counts calls"""

    def __init__(self, entries=None, info=None, error=None):
        self.entries = entries if entries is not None else [
            video_entry("aaaaaaaaaaa", "First Song", 75),
            video_entry("bbbbbbbbbbb", "Second Song", 3661),
        ]
        self.info = info or {}
        self.error = error
        self.search_calls = []
        self.lookup_calls = []

    def search(self, query, limit):
        self.search_calls.append((query, limit))
        if self.error:
            raise self.error
        return list(self.entries)

    def lookup(self, url):
        self.lookup_calls.append(url)
        if self.error:
            raise self.error
        identifier = url.rsplit("v=", 1)[-1]
        return self.info.get(identifier, {
            "id": identifier,
            "title": f"Song {identifier}",
            "channel": "Some Artist",
            "duration": 200,
            "thumbnail": f"https://img.example/{identifier}.jpg",
        })


class FakeFetcher:
    """Writes a small mp3 into the scratch dir; optional delay and failure"""

    def __init__(self, delay=0.0, fail=None, payload=b"ID3fake-audio"):
        self.delay = delay
        self.fail = fail
        self.payload = payload
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, identifier, source_url, dest_dir: Path) -> Path:
        with self._lock:
            self.calls.append(identifier)
        if self.delay:
            time.sleep(self.delay)
        output = dest_dir / f"{identifier}.mp3"
        if self.fail == "partial":
            output.write_bytes(self.payload[:3])
            raise AcquisitionFailed("connection reset mid-download")
        if self.fail == "empty":
            output.write_bytes(b"")
            return output
        if self.fail == "crash":
            raise RuntimeError("ffmpeg exited with status 1")
        output.write_bytes(self.payload)
        return output


def video_entry(video_id, title, duration=None, **extra):
    entry = {
        "_type": "url",
        "ie_key": "Youtube",
        "id": video_id,
        "url": f"https://www.youtube.com/watch?v={video_id}",
        "title": title,
        "channel": "Some Artist",
        "duration": duration,
        "thumbnails": [{"url": f"https://img.example/{video_id}.jpg"}],
    }
    entry.update(extra)
    return entry


def make_song(song_id="aaaaaaaaaaa", duration=180, title=None, added_by="Ana"):
    return Song(
        id=song_id,
        title=title or f"Song {song_id}",
        artist="Some Artist",
        duration=duration,
        thumbnail="",
        url=f"https://www.youtube.com/watch?v={song_id}",
        file_path=f"/music/{song_id}.mp3",
        added_by=added_by,
    )


@pytest.fixture
def hub():
    return FakeHub()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def music_dir(tmp_path):
    path = tmp_path / "music"
    path.mkdir()
    return path


@pytest.fixture
def acquirer(music_dir, fetcher):
    return AssetAcquirer(music_dir, fetcher=fetcher, timeout=5)


@pytest.fixture
def engine(hub, catalog, acquirer, clock):
    eng = JukeboxEngine(
        hub,
        Resolver(catalog),
        acquirer,
        buffer_ms=2000,
        search_limiter=RateLimiter(2.0),
        submit_limiter=RateLimiter(0),
        clock=clock,
    )
    yield eng
    eng._cancel_timer()
