"""REST API routes: the LocalSend v2 protocol plus the local control API."""

import logging
import os

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from config import API_PREFIX
from transfer.errors import RequestRejected, TransferCancelled
from transfer.manager import TransferManager
from transfer.models import SendRequestBody

logger = logging.getLogger(__name__)

protocol_router = APIRouter(prefix=API_PREFIX)
router = APIRouter(prefix="/api")


def get_manager(request: Request) -> TransferManager:
    """The TransferManager created in main.create_app()."""
    return request.app.state.manager


def _content_length(request: Request) -> int | None:
    value = request.headers.get("content-length")
    try:
        return int(value) if value is not None else None
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid Content-Length")


# --- LocalSend protocol ---

@protocol_router.get("/info")
async def info(manager: TransferManager = Depends(get_manager)):
    return manager.device_info.to_wire()


@protocol_router.post("/prepare-upload")
async def prepare_upload(request: Request, manager: TransferManager = Depends(get_manager)):
    """Accept a manifest and hand out a session id plus one token per file."""
    raw = await request.body()
    try:
        response = await manager.handle_prepare_upload(raw)
    except RequestRejected as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    if response is None:
        return Response(status_code=204)
    return response.to_wire()


@protocol_router.post("/upload")
async def upload(
    request: Request,
    sessionId: str | None = None,
    fileId: str | None = None,
    token: str | None = None,
    manager: TransferManager = Depends(get_manager),
):
    """Receive the raw bytes of one authorized file."""
    peer = request.client.host if request.client else ""
    try:
        await manager.handle_upload(
            sessionId,
            fileId,
            token,
            request.stream(),
            _content_length(request),
            peer,
        )
    except TransferCancelled as e:
        raise HTTPException(status_code=500, detail=f"Transfer cancelled: {e}")
    except RequestRejected as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return Response(status_code=200)


@protocol_router.post("/cancel")
async def cancel(sessionId: str | None = None, manager: TransferManager = Depends(get_manager)):
    if not sessionId:
        raise HTTPException(status_code=400, detail="Missing parameters")
    if not manager.cancel_session(sessionId):
        raise HTTPException(status_code=404, detail="Unknown session")
    return Response(status_code=200)


# --- Browser form upload ---

@router.post("/files", status_code=201)
async def upload_form(
    file: list[UploadFile] = File(default=[]),
    directoryName: str = Form(default=""),
    manager: TransferManager = Depends(get_manager),
):
    """Store files posted from a browser form."""
    try:
        count, target_dir = await manager.handle_form_upload(file, directoryName)
    except RequestRejected as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return PlainTextResponse(
        f"Files uploaded successfully, total {count} files, "
        f"uploaded to directory: {target_dir}\n",
        status_code=201,
    )


# --- Transfers ---

@router.get("/transfers")
async def list_transfers(manager: TransferManager = Depends(get_manager)):
    """Return all transfers (active + completed)."""
    transfers = manager.get_transfers()
    return {"transfers": [t.model_dump(mode="json") for t in transfers]}


@router.post("/transfers", status_code=202)
async def create_transfer(body: SendRequestBody, manager: TransferManager = Depends(get_manager)):
    """Send a local file or directory to a peer in the background."""
    if not os.path.exists(body.path):
        raise HTTPException(status_code=400, detail="Path not found")

    manager.queue_send(body.host, body.path, body.port, body.preview)
    return {"status": "queued", "message": f"Sending {body.path} to {body.host}"}


# --- Settings ---

class SettingsBody(BaseModel):
    save_dir: str | None = None


@router.get("/settings")
async def get_settings(manager: TransferManager = Depends(get_manager)):
    return {
        "alias": manager.device_info.alias,
        "save_dir": str(manager.save_dir),
    }


@router.put("/settings")
async def update_settings(body: SettingsBody, manager: TransferManager = Depends(get_manager)):
    if body.save_dir is not None:
        try:
            manager.save_dir = body.save_dir
        except OSError as e:
            raise HTTPException(
                status_code=400, detail=f"Invalid directory: {e}"
            )
    return {"status": "updated"}
