"""
Streaming uploads for the initiator side.

Each file is read by a background task into a bounded ``Conduit`` while the
upload request consumes the other end as its body. An upload only counts
as sent once the request has finished AND the reader task has reported.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Protocol

import aiofiles
import aiohttp

from config import API_PREFIX, CHUNK_SIZE, UPLOAD_TIMEOUT
from transfer.conduit import Conduit
from transfer.errors import PeerResponseError, TransferCancelled, TransferError
from transfer.models import TransferDirection, TransferInfo, TransferState
from transfer.progress import ProgressCallback, ProgressThrottle

logger = logging.getLogger(__name__)

UPLOAD_STATUS_REASONS = {
    400: "missing parameters",
    403: "invalid token or IP address",
    409: "blocked by another session",
    500: "unknown error by receiver",
}


def raise_for_upload_status(status: int) -> None:
    """Map a non-200 upload status to a PeerResponseError."""
    if status == 200:
        return
    reason = UPLOAD_STATUS_REASONS.get(
        status, f"file upload failed: received status code {status}"
    )
    raise PeerResponseError(status, reason)


@dataclass
class UploadJob:
    """One authorized file of a session."""
    session_id: str
    file_id: str
    token: str
    path: Path
    size: int


class Dispatcher(Protocol):
    """Runs the uploads of one session."""

    async def run(
        self,
        jobs: Iterable[UploadJob],
        upload: Callable[[UploadJob, asyncio.Event], Awaitable[None]],
        cancel_event: asyncio.Event,
    ) -> None: ...


class SequentialDispatcher:
    """Upload one file at a time in manifest order, stopping at the first failure."""

    async def run(self, jobs, upload, cancel_event) -> None:
        for job in jobs:
            if cancel_event.is_set():
                raise TransferCancelled(f"transfer cancelled before {job.file_id}")
            await upload(job, cancel_event)


class StreamingUploader:
    """Streams files to one peer's upload endpoint."""

    def __init__(
        self,
        http: aiohttp.ClientSession,
        base_url: str,
        peer: str,
        progress_callback: ProgressCallback | None = None,
        state_callback: ProgressCallback | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._http = http
        self._url = f"{base_url}{API_PREFIX}/upload"
        self._peer = peer
        self._progress_callback = progress_callback
        self._state_callback = state_callback
        self._chunk_size = chunk_size

    async def _set_state(self, info: TransferInfo, state: TransferState, error: str | None = None) -> None:
        info.state = state
        info.error_message = error
        if state == TransferState.COMPLETED:
            info.progress_percent = 100.0
        if self._state_callback:
            await self._state_callback(info)

    async def _pump(self, path: Path, size: int, conduit: Conduit, info: TransferInfo) -> None:
        """Copy exactly ``size`` bytes of the file into the conduit."""
        throttle = ProgressThrottle(self._progress_callback)
        remaining = size
        try:
            async with aiofiles.open(path, "rb") as f:
                while remaining > 0:
                    chunk = await f.read(min(self._chunk_size, remaining))
                    if not chunk:
                        raise TransferError(f"{path} shrank while uploading")
                    remaining -= len(chunk)
                    await conduit.write(chunk)
                    await throttle.advance(info, len(chunk))
        except Exception as e:
            await conduit.close(e)
            raise
        await conduit.close()

    async def _post(self, job: UploadJob, conduit: Conduit) -> int:
        params = {
            "sessionId": job.session_id,
            "fileId": job.file_id,
            "token": job.token,
        }
        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Length": str(job.size),
        }
        async with self._http.post(
            self._url,
            params=params,
            data=conduit.chunks(),
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=UPLOAD_TIMEOUT),
        ) as resp:
            await resp.read()
            return resp.status

    async def upload(self, job: UploadJob, cancel_event: asyncio.Event) -> None:
        """
        Upload one file.

        Raises TransferCancelled if ``cancel_event`` fires before the upload
        is confirmed, PeerResponseError for mapped statuses and
        TransferError for read or transport failures.
        """
        info = TransferInfo(
            transfer_id=f"{job.session_id}/{job.file_id}",
            session_id=job.session_id,
            file_id=job.file_id,
            file_name=job.path.name,
            file_size=job.size,
            direction=TransferDirection.SENDING,
            peer=self._peer,
        )
        await self._set_state(info, TransferState.TRANSFERRING)

        conduit = Conduit()
        producer = asyncio.create_task(self._pump(job.path, job.size, conduit, info))
        request = asyncio.create_task(self._post(job, conduit))
        watcher = asyncio.create_task(cancel_event.wait())

        try:
            await asyncio.wait({request, watcher}, return_when=asyncio.FIRST_COMPLETED)
            if not request.done():
                request.cancel()
            (request_result,) = await asyncio.gather(request, return_exceptions=True)
            if request_result != 200:
                # Nobody will consume the rest of the body
                producer.cancel()
            (producer_result,) = await asyncio.gather(producer, return_exceptions=True)
        finally:
            for task in (watcher, request, producer):
                if not task.done():
                    task.cancel()

        try:
            self._check_outcome(job, cancel_event, request_result, producer_result)
        except TransferCancelled as e:
            await self._set_state(info, TransferState.CANCELLED, str(e))
            raise
        except TransferError as e:
            logger.error(f"Upload of {job.file_id} failed: {e}")
            await self._set_state(info, TransferState.FAILED, str(e))
            raise

        info.transferred_bytes = job.size
        await self._set_state(info, TransferState.COMPLETED)
        logger.info(f"File {job.file_id} uploaded successfully")

    @staticmethod
    def _check_outcome(job, cancel_event, request_result, producer_result) -> None:
        # A confirmed upload stands even if cancellation arrived meanwhile;
        # the dispatcher stops before the next file.
        if isinstance(request_result, asyncio.CancelledError) or (
            cancel_event.is_set() and request_result != 200
        ):
            raise TransferCancelled(f"transfer of {job.file_id} cancelled")
        if isinstance(producer_result, Exception):
            raise TransferError(f"upload error: {producer_result}") from producer_result
        if isinstance(request_result, BaseException):
            raise TransferError(
                f"error sending file upload request: {request_result!r}"
            ) from request_result
        raise_for_upload_status(request_result)
