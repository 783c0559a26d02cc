"""Song and search-result records."""
from dataclasses import dataclass
from typing import Optional

from .utils import format_duration


@dataclass(frozen=True)
class SearchResult:
    """One playable candidate returned by the catalog."""
    id: str
    title: str
    artist: str
    duration: Optional[int]  # seconds; None when the catalog omits it
    thumbnail: str
    url: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "duration": self.duration,
            "duration_fmt": format_duration(self.duration) if self.duration is not None else "Unknown",
            "thumbnail": self.thumbnail,
            "url": self.url,
        }


@dataclass(frozen=True)
class Song:
    """A queued song with its audio already on disk."""
    id: str  # canonical identifier, also the asset cache key
    title: str
    artist: str
    duration: int  # seconds, authoritative
    thumbnail: str
    url: str
    file_path: str  # public path clients fetch the audio from
    added_by: str

    def __post_init__(self):
        if self.duration < 0:
            raise ValueError(f"duration must be >= 0, got {self.duration}")

    @property
    def duration_ms(self) -> int:
        return self.duration * 1000

    def summary(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "duration": self.duration,
            "duration_fmt": format_duration(self.duration),
            "thumbnail": self.thumbnail,
            "url": self.url,
            "file_path": self.file_path,
            "added_by": self.added_by,
        }
