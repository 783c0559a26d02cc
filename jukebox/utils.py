"""Duration helpers shared by the resolver, engine and payloads."""
import time

from .errors import InvalidDuration


def now_ms() -> int:
    """Wall-clock epoch milliseconds, the timebase clients sync against."""
    return int(time.time() * 1000)


def format_duration(seconds: int) -> str:
    """75 -> "1:15", 3661 -> "1:01:01"."""
    total_s = max(0, int(seconds))
    h, rem = divmod(total_s, 3600)
    m, s = divmod(rem, 60)
    if h > 0:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def parse_duration(text: str) -> int:
    """Parse "MM:SS" or "H:MM:SS" into whole seconds."""
    parts = text.strip().split(":") if isinstance(text, str) else []
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise InvalidDuration(f"Unrecognised duration: {text!r}")
    total = 0
    for part in parts:
        total = total * 60 + int(part)
    return total


def coerce_duration(value) -> int:
    """Accept catalog durations as int/float seconds or a clock string."""
    if isinstance(value, bool):
        raise InvalidDuration(f"Unrecognised duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise InvalidDuration(f"Negative duration: {value!r}")
        return int(value)
    if isinstance(value, str):
        if value.strip().isdigit():
            return int(value.strip())
        return parse_duration(value)
    raise InvalidDuration(f"Unrecognised duration: {value!r}")
