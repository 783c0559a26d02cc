"""Startup preflight check."""
import shutil
import tempfile
from pathlib import Path

import httpx
from rich.console import Console

from .config import APP_VERSION, MUSIC_DIR

console = Console()

CATALOG_URL = "https://www.youtube.com"
MIN_FREE_MB = 200


async def run_preflight(music_dir: Path = MUSIC_DIR) -> bool:
    """
    Run all startup checks. Print results. Return True only if ALL pass.
    """
    console.print(f"\n  [bold]♪  Jukebox v{APP_VERSION}[/bold] — preflight check\n")

    checks = [
        ("Python deps", _check_python_deps),
        ("ffmpeg", _check_ffmpeg),
        ("Music directory", lambda: _check_music_dir(music_dir)),
        ("Catalog reachable", _check_catalog),
    ]

    results = []
    for i, (label, fn) in enumerate(checks, 1):
        ok, msg, fix = await fn()
        results.append((ok, label, msg, fix))
        icon = "[green]✓[/green]" if ok else "[red]✗[/red]"
        dot_count = 30 - len(label)
        dots = "." * max(dot_count, 3)
        status = f"[green]{msg}[/green]" if ok else f"[red]{msg}[/red]"
        console.print(f"  [{i}/{len(checks)}] {label} {dots} {icon} {status}")

    # Print fix instructions for any failures
    failures = [(label, fix) for ok, label, _, fix in results if not ok and fix]
    if failures:
        console.print("")
        for label, fix in failures:
            console.print(f"  [yellow]Fix for {label}:[/yellow]")
            for line in fix.strip().splitlines():
                console.print(f"    {line}")
            console.print("")
        console.print("  Then re-run: [bold]python server.py[/bold]\n")
        return False

    console.print("")
    return True


async def _check_python_deps() -> tuple[bool, str, str]:
    missing = []
    versions = []
    try:
        from yt_dlp.version import __version__ as ytdlp_version
        versions.append(f"yt-dlp {ytdlp_version}")
    except ImportError:
        missing.append("yt-dlp")

    try:
        import starlette
        versions.append(f"starlette {starlette.__version__}")
    except ImportError:
        missing.append("starlette")

    try:
        import uvicorn
        versions.append(f"uvicorn {uvicorn.__version__}")
    except ImportError:
        missing.append("uvicorn")

    if missing:
        return False, f"missing: {', '.join(missing)}", "Run: pip install -e ."
    return True, ", ".join(versions), ""


async def _check_ffmpeg() -> tuple[bool, str, str]:
    path = shutil.which("ffmpeg")
    if path:
        return True, path, ""
    fix = (
        "ffmpeg is needed to convert downloads to mp3. Install it with:\n"
        "  apt install ffmpeg   (Debian/Ubuntu)\n"
        "  brew install ffmpeg  (macOS)"
    )
    return False, "not found on PATH", fix


async def _check_music_dir(music_dir: Path) -> tuple[bool, str, str]:
    try:
        music_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=music_dir):
            pass
    except OSError as e:
        return False, "not writable", f"Check permissions on {music_dir} ({e})\nOr set MUSIC_DIR in .env"

    free_mb = shutil.disk_usage(music_dir).free / 1_048_576
    if free_mb < MIN_FREE_MB:
        return False, f"only {free_mb:.0f}MB free", f"Free up space in {music_dir}"
    cached = len(list(music_dir.glob("*.mp3")))
    return True, f"{cached} cached songs, {free_mb:.0f}MB free", ""


async def _check_catalog() -> tuple[bool, str, str]:
    try:
        async with httpx.AsyncClient(timeout=5, follow_redirects=True) as client:
            r = await client.get(CATALOG_URL)
            if r.status_code < 500:
                return True, f"{CATALOG_URL.replace('https://', '')} responding", ""
            return False, f"HTTP {r.status_code}", "The catalog is having trouble. Try again later."
    except Exception:
        pass
    return False, "not responding", "Check the server's internet connection."
