"""Module 1 — Config & Constants"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (one level up from jukebox/)
_ROOT = Path(__file__).parent.parent
load_dotenv(_ROOT / ".env")

# ─── Paths ────────────────────────────────────────────────────────────────────
ROOT_DIR = _ROOT
MUSIC_DIR = Path(os.getenv("MUSIC_DIR", str(ROOT_DIR / "public" / "music")))
OUTPUT_DIR = ROOT_DIR / os.getenv("OUTPUT_DIR", "output")
ERRORS_LOG = OUTPUT_DIR / "errors.log"

# ─── Web server ──────────────────────────────────────────────────────────────
WEB_HOST = os.getenv("WEB_HOST", "0.0.0.0")
WEB_PORT = int(os.getenv("WEB_PORT", "3001"))

# ─── Rate limits (seconds between accepted actions per requester) ─────────────
SEARCH_INTERVAL = float(os.getenv("SEARCH_INTERVAL", "2.0"))
SUBMIT_INTERVAL = float(os.getenv("SUBMIT_INTERVAL", "0"))   # 0 = disabled
RATE_LIMIT_MAX_ENTRIES = int(os.getenv("RATE_LIMIT_MAX_ENTRIES", "10000"))

# ─── Catalog ──────────────────────────────────────────────────────────────────
MAX_SEARCH_RESULTS = int(os.getenv("MAX_SEARCH_RESULTS", "5"))
YTDLP_COOKIE_FILE = os.getenv("YTDLP_COOKIE_FILE", "").strip() or None

# ─── Acquisition ──────────────────────────────────────────────────────────────
ACQUIRE_TIMEOUT = int(os.getenv("ACQUIRE_TIMEOUT", "300"))
AUDIO_BITRATE = os.getenv("AUDIO_BITRATE", "192")

# ─── Playback ─────────────────────────────────────────────────────────────────
# Slack added after each song before the server advances the queue
PLAYBACK_BUFFER_MS = int(os.getenv("PLAYBACK_BUFFER_MS", "2000"))
# Used when the catalog reports a duration we cannot parse
FALLBACK_DURATION = int(os.getenv("FALLBACK_DURATION", "180"))
DEFAULT_VOLUME = int(os.getenv("DEFAULT_VOLUME", "50"))

APP_VERSION = "0.1.0"

# ─── Dev mode ─────────────────────────────────────────────────────────────────
DEV_MODE = os.getenv("DEV_MODE", "1").strip() in ("1", "true", "yes")
