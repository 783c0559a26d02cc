"""Error taxonomy + structured error logging (JSON lines to errors.log)."""
import json
import logging
import sys
from datetime import datetime
from typing import Optional

from .config import ERRORS_LOG, OUTPUT_DIR

logger = logging.getLogger(__name__)


class JukeboxError(Exception):
    """Base for failures reported back to a single requester.

    str(error) is the human-readable reason sent to the client.
    """


class RateLimited(JukeboxError):
    pass


class InvalidInput(JukeboxError):
    pass


class ResolutionFailed(JukeboxError):
    pass


class AcquisitionFailed(JukeboxError):
    pass


class InvalidDuration(JukeboxError):
    pass


def record_error(
    stage: str,
    user_msg: str = "",
    params: Optional[dict] = None,
    raw: str = "",
) -> dict:
    """Log a failure and append it to errors.log as one JSON line."""
    entry = {
        "timestamp": datetime.now().isoformat(),
        "stage": stage,
        "input": user_msg,
        "params": params,
        "error": raw,
        "python": sys.version.split()[0],
    }

    _append_to_log(entry)
    logger.error("Error at %s: %s", stage, raw)

    return entry


def _append_to_log(entry: dict):
    try:
        OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        with open(ERRORS_LOG, "a") as f:
            f.write(json.dumps(entry) + "\n")
    except OSError:
        pass
