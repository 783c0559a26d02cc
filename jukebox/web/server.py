"""Starlette app — health route, audio serving and the jukebox WebSocket."""
import asyncio
import logging
import shutil
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from starlette.applications import Starlette
from starlette.responses import FileResponse, JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from ..acquirer import AssetAcquirer
from ..config import APP_VERSION
from ..engine import JukeboxEngine
from ..errors import JukeboxError
from ..resolver import Resolver
from .state import ClientHub, Session

logger = logging.getLogger(__name__)

# Close code sent when a client connects without an identity
CLOSE_NO_IDENTITY = 4401

# Shared state
_hub = ClientHub()
_engine: JukeboxEngine | None = None
_started = time.monotonic()

# Long-running requests (search, submit) run detached from the reader loop
_request_tasks: set[asyncio.Task] = set()


# ── Health ───────────────────────────────────────────────────────────────────

async def health(request):
    music_dir = _engine.acquirer.music_dir
    try:
        free_mb = shutil.disk_usage(music_dir if music_dir.exists() else music_dir.parent).free / 1_048_576
    except OSError:
        free_mb = 0.0
    current = _engine.now_playing
    return JSONResponse({
        "status": "ok",
        "version": APP_VERSION,
        "connected_clients": _hub.client_count,
        "uptime": round(time.monotonic() - _started, 1),
        "now_playing": current.id if current else None,
        "queue_length": len(_engine.queue),
        "processing": _engine.processing,
        "disk_free_mb": round(free_mb),
    })


# ── Audio serving ────────────────────────────────────────────────────────────

async def serve_audio(request):
    """Serve cached mp3 assets."""
    filename = request.path_params["filename"]

    # Security: prevent path traversal
    if ".." in filename or "/" in filename or not filename.endswith(".mp3"):
        return Response("Forbidden", status_code=403)

    file_path = _engine.acquirer.music_dir / filename
    if not file_path.is_file():
        return Response("Not found", status_code=404)
    return FileResponse(file_path, media_type="audio/mpeg")


# ── WebSocket ────────────────────────────────────────────────────────────────

async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    user_id = websocket.query_params.get("user_id", "").strip()
    if not user_id:
        logger.info("WS rejected: missing user_id")
        await websocket.close(code=CLOSE_NO_IDENTITY)
        return

    session = Session(
        client_id=str(uuid.uuid4()),
        user_id=user_id,
        username=websocket.query_params.get("username", "").strip() or "Guest",
    )
    queue = _hub.subscribe(session)
    logger.info("WS connected: %s (%s)", session.username, session.client_id)

    # Send initial state
    await _hub.send(session.client_id, "state", _engine.get_state())

    # Two tasks: one reads from client, one writes from queue
    async def _reader():
        try:
            while True:
                data = await websocket.receive_json()
                if isinstance(data, dict):
                    await _dispatch(session, data)
                else:
                    logger.warning("WS %s sent non-object message", session.client_id)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error("WS reader error: %s", e)

    async def _writer():
        try:
            while True:
                event, data = await queue.get()
                await websocket.send_json({"type": event, "data": data})
        except Exception as e:
            logger.debug("WS writer stopped for %s: %s", session.client_id, e)

    reader_task = asyncio.create_task(_reader())
    writer_task = asyncio.create_task(_writer())

    try:
        done, pending = await asyncio.wait(
            [reader_task, writer_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
    finally:
        _hub.unsubscribe(session.client_id)
        logger.info("WS disconnected: %s (%s)", session.username, session.client_id)


async def _dispatch(session: Session, data: dict):
    # Search and submit wait on the catalog; everything else answers in order
    if data.get("type") in ("search", "submit"):
        task = asyncio.create_task(_respond(session, data))
        _request_tasks.add(task)
        task.add_done_callback(_request_tasks.discard)
    else:
        await _respond(session, data)


async def _respond(session: Session, data: dict):
    result = await _handle_ws_message(session, data)
    if result is None:
        return
    await _hub.send(session.client_id, "response", {
        "request_id": data.get("request_id"),
        "request": data.get("type", ""),
        **result,
    })


async def _handle_ws_message(session: Session, data: dict) -> Optional[dict]:
    """Route one client request to the engine. Failures go to this requester only."""
    msg_type = data.get("type", "")

    try:
        if msg_type == "search":
            results = await _engine.search(session.user_id, data.get("query", ""), data.get("limit"))
            return {"success": True, "results": results}

        elif msg_type == "submit":
            text = data.get("url") or data.get("id") or ""
            added_by = (data.get("added_by") or "").strip() or session.username
            song = await _engine.submit(session.user_id, text, added_by)
            return {"success": True, "message": f"'{song.title}' added to the queue", "song": song.summary()}

        elif msg_type == "get_state":
            return {"success": True, **_engine.get_state()}

        elif msg_type == "sync":
            return {"success": True, **_engine.sync()}

        elif msg_type == "set_volume":
            level = await _engine.set_volume(data.get("volume"))
            return {"success": True, "volume": level}

        elif msg_type == "get_volume":
            return {"success": True, "volume": _engine.get_volume()}

        elif msg_type == "song_ended":
            await _engine.song_ended(session.user_id)
            return None

        else:
            logger.warning("Unknown WS message type: %s", msg_type)
            return {"success": False, "error": f"Unknown request type: {msg_type!r}"}

    except JukeboxError as e:
        logger.info("%s by %s rejected: %s", msg_type, session.username, e)
        return {"success": False, "error": str(e)}
    except Exception:
        logger.exception("Unhandled error for %s from %s", msg_type, session.username)
        return {"success": False, "error": "Something went wrong processing your request."}


# ── App factory ──────────────────────────────────────────────────────────────

@asynccontextmanager
async def _lifespan(app):
    _engine.acquirer.music_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Jukebox ready, assets in %s", _engine.acquirer.music_dir)
    yield
    await _engine.stop()
    for task in list(_request_tasks):
        task.cancel()
    logger.info("Jukebox stopped")


def create_app(
    resolver: Resolver | None = None,
    acquirer: AssetAcquirer | None = None,
    **engine_options,
) -> Starlette:
    global _engine, _hub

    _hub = ClientHub()
    _engine = JukeboxEngine(_hub, resolver, acquirer, **engine_options)

    routes = [
        Route("/api/health", health),
        Route("/music/{filename}", serve_audio),
        WebSocketRoute("/ws", websocket_endpoint),
    ]

    return Starlette(routes=routes, lifespan=_lifespan)
