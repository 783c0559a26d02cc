"""Shared jukebox server — entry point."""
import asyncio
import logging
import sys

import uvicorn

from jukebox.config import DEV_MODE, WEB_HOST, WEB_PORT
from jukebox.preflight import run_preflight
from jukebox.web.server import create_app


def main():
    logging.basicConfig(
        level=logging.DEBUG if DEV_MODE else logging.INFO,
        format="%(levelname)s: %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    ok = asyncio.run(run_preflight())
    if not ok:
        sys.exit(1)

    uvicorn.run(create_app(), host=WEB_HOST, port=WEB_PORT, log_level="info")


if __name__ == "__main__":
    main()
