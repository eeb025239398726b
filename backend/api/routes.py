"""HTTP routes for receiving, listing and viewing documents."""

import asyncio
import logging
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, StreamingResponse

from api.events import UpdateBroker
from config import APP_NAME, MAX_UPLOAD_BYTES
from notify import send_notification
from store.errors import EntryNotFound, InvalidIdentifier, PersistenceError, StoreError
from store.models import FileEntry
from store.service import ContentStore

logger = logging.getLogger(__name__)

router = APIRouter()

INDEX_PATH = Path(__file__).parent / "static" / "index.html"


# --- Dependencies (set on app.state by main.create_app) ---

def get_store(request: Request) -> ContentStore:
    return request.app.state.store


def get_broker(request: Request) -> UpdateBroker:
    return request.app.state.broker


def _http_error(e: StoreError) -> HTTPException:
    if isinstance(e, InvalidIdentifier):
        return HTTPException(status_code=400, detail="invalid ID")
    if isinstance(e, EntryNotFound):
        return HTTPException(status_code=404, detail="file not found")
    logger.error(f"Storage error: {e}")
    return HTTPException(status_code=500, detail=str(e))


def _index_response() -> FileResponse:
    if not INDEX_PATH.exists():
        raise HTTPException(status_code=404, detail="viewer not installed")
    return FileResponse(INDEX_PATH, media_type="text/html; charset=utf-8")


# --- Receiving ---

@router.post("/receive")
async def receive_file(
    request: Request,
    file: UploadFile | None = File(None),
    sender: str = Form("unknown"),
    store: ContentStore = Depends(get_store),
    broker: UpdateBroker = Depends(get_broker),
):
    """Store a pushed document and tell live viewers about it."""
    if file is None:
        raise HTTPException(status_code=400, detail="missing file field")

    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="file too large")

    sender = sender.strip() or "unknown"
    filename = file.filename or "untitled.html"

    try:
        entry, was_update = await asyncio.to_thread(store.save, filename, sender, data)
    except PersistenceError as e:
        raise _http_error(e)

    logger.info(
        f"{'Updated' if was_update else 'Received'} {entry.filename!r} "
        f"from {entry.sender} ({entry.size} bytes)"
    )

    if was_update:
        await broker.publish_updated(entry)
    else:
        await broker.publish_received(entry)

    if request.app.state.notify:
        pending = request.app.state.notify_tasks
        task = asyncio.create_task(asyncio.to_thread(
            send_notification,
            APP_NAME,
            f"Received {entry.filename} from {entry.sender}",
        ))
        pending.add(task)
        task.add_done_callback(pending.discard)

    return {"ok": True, "id": entry.id, "updated": was_update}


# --- Browsing ---

@router.get("/files", response_model=None)
async def list_files(request: Request, store: ContentStore = Depends(get_store)):
    """JSON listing for API clients, the viewer page for browsers."""
    if "application/json" not in request.headers.get("accept", ""):
        return _index_response()
    try:
        return await asyncio.to_thread(store.list)
    except StoreError as e:
        raise _http_error(e)


@router.get("/files/{entry_id}")
async def get_file(entry_id: str, store: ContentStore = Depends(get_store)) -> FileEntry:
    try:
        return await asyncio.to_thread(store.get, entry_id)
    except StoreError as e:
        raise _http_error(e)


@router.get("/files/{entry_id}/raw")
async def get_file_raw(entry_id: str, store: ContentStore = Depends(get_store)):
    """Serve the stored bytes as-is."""
    try:
        path = store.content_path(entry_id)
    except StoreError as e:
        raise _http_error(e)
    if not await asyncio.to_thread(path.is_file):
        raise HTTPException(status_code=404, detail="file not found")
    return FileResponse(path, media_type="text/html; charset=utf-8")


@router.delete("/files/{entry_id}")
async def delete_file(
    entry_id: str,
    store: ContentStore = Depends(get_store),
    broker: UpdateBroker = Depends(get_broker),
):
    try:
        await asyncio.to_thread(store.delete, entry_id)
    except StoreError as e:
        raise _http_error(e)
    await broker.publish_removed(entry_id)
    return {"ok": True, "id": entry_id}


# --- Live updates ---

@router.get("/events")
async def events(request: Request, broker: UpdateBroker = Depends(get_broker)):
    subscription = await broker.subscribe()
    return StreamingResponse(
        broker.stream(subscription, request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# --- Misc ---

@router.get("/health")
async def health(request: Request):
    return {"name": request.app.state.device_name, "status": "ok"}


@router.get("/", response_model=None)
async def index():
    return _index_response()
