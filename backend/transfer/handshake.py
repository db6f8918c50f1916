"""
The prepare-upload handshake.

``prepare_upload`` is the initiator: it posts a manifest to a peer and
returns the session id and per-file tokens. ``HandshakeResponder`` is the
other side: it decodes inbound manifests, allocates the session and
delivers text previews to the clipboard.
"""

import asyncio
import logging
from typing import Awaitable, Callable

import aiohttp
from pydantic import ValidationError

from config import API_PREFIX, PREPARE_TIMEOUT, TEXT_PREVIEW_EXTENSIONS
from transfer.errors import (
    MalformedRequest,
    PeerResponseError,
    TransferError,
    TransferRejected,
)
from transfer.manifest import Manifest
from transfer.models import PrepareUploadRequest, PrepareUploadResponse
from transfer.sessions import SessionStore

logger = logging.getLogger(__name__)

HANDSHAKE_STATUS_REASONS = {
    400: "invalid body",
    403: "rejected",
    500: "unknown error by receiver",
}

AcceptCallback = Callable[[PrepareUploadRequest], Awaitable[bool]]
ClipboardWriter = Callable[[str], None]


def raise_for_handshake_status(status: int) -> None:
    """Map a non-200 prepare-upload status to a PeerResponseError."""
    if status == 200:
        return
    reason = HANDSHAKE_STATUS_REASONS.get(
        status, f"failed to send metadata: received status code {status}"
    )
    raise PeerResponseError(status, reason)


async def prepare_upload(
    http: aiohttp.ClientSession,
    base_url: str,
    manifest: Manifest,
    timeout: float = PREPARE_TIMEOUT,
) -> PrepareUploadResponse | None:
    """
    Announce ``manifest`` to the peer at ``base_url``.

    Returns the peer's session and tokens, or None when the peer answers
    204 (nothing needs to be transferred). Raises PeerResponseError for
    other non-200 answers and TransferError for transport failures.
    """
    url = f"{base_url}{API_PREFIX}/prepare-upload"
    payload = manifest.to_request().to_wire()

    try:
        async with http.post(
            url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            if resp.status == 204:
                logger.info("Finished (no file transfer needed)")
                return None
            raise_for_handshake_status(resp.status)
            body = await resp.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise TransferError(f"error sending prepare-upload request: {e}") from e

    try:
        return PrepareUploadResponse.model_validate_json(body)
    except ValidationError as e:
        raise TransferError(f"error decoding prepare-upload response: {e}") from e


def _wants_clipboard(file_name: str, preview: str | None) -> bool:
    return bool(preview) and file_name.lower().endswith(TEXT_PREVIEW_EXTENSIONS)


class HandshakeResponder:
    """Accepts manifests and turns them into sessions."""

    def __init__(
        self,
        store: SessionStore,
        clipboard_writer: ClipboardWriter,
        accept_callback: AcceptCallback | None = None,
    ) -> None:
        self._store = store
        self._clipboard_writer = clipboard_writer
        self._accept_callback = accept_callback

    async def handle(self, raw: bytes) -> PrepareUploadResponse | None:
        """
        Process a raw prepare-upload body.

        Returns None for an empty manifest (answered with 204). Raises
        MalformedRequest for an undecodable body and TransferRejected when
        the operator declines; neither creates a session.
        """
        try:
            request = PrepareUploadRequest.model_validate_json(raw)
        except ValidationError as e:
            raise MalformedRequest("invalid body") from e

        logger.info(
            f"Received request from {request.info.alias}, "
            f"device is {request.info.device_model}"
        )

        if not request.files:
            return None

        if self._accept_callback and not await self._accept_callback(request):
            logger.info(f"Transfer from {request.info.alias} rejected")
            raise TransferRejected("rejected")

        session = self._store.create_session(request)

        for meta in request.files.values():
            if _wants_clipboard(meta.file_name, meta.preview):
                self._deliver_preview(meta.file_name, meta.preview)

        return PrepareUploadResponse(session_id=session.session_id, files=session.tokens)

    def _deliver_preview(self, file_name: str, preview: str) -> None:
        try:
            self._clipboard_writer(preview)
            logger.info(f"Copied preview of {file_name} to clipboard")
        except Exception as e:
            logger.warning(f"Failed to copy preview of {file_name} to clipboard: {e}")
