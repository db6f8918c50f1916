"""
Streaming downloads for the responder side.

An upload request is authorized against the session store, then a
background task copies the request body to disk in bounded chunks while
the handler watches for the session being cancelled. Any failure or
cancellation removes the partially written file.
"""

import asyncio
import contextlib
import logging
import os
from pathlib import Path
from typing import AsyncIterator, Iterable, Protocol

import aiofiles
from starlette.requests import ClientDisconnect

from config import CHUNK_SIZE
from transfer.errors import (
    InvalidPath,
    MissingParameters,
    ReceiveFailed,
    TransferCancelled,
    TransferError,
    UnknownFile,
)
from transfer.models import TransferDirection, TransferInfo, TransferState
from transfer.progress import ProgressCallback, ProgressThrottle
from transfer.sessions import Session, SessionStore

logger = logging.getLogger(__name__)


class FormFile(Protocol):
    """The parts of an uploaded multipart file the form handler needs."""
    filename: str | None

    async def read(self, size: int = -1) -> bytes: ...


def resolve_destination(base: str | Path, *parts: str) -> Path:
    """Join ``parts`` under ``base``, refusing anything that escapes it."""
    base_path = Path(base).resolve()
    dest = base_path.joinpath(*parts).resolve()
    if dest == base_path or not dest.is_relative_to(base_path):
        raise InvalidPath(f"invalid file name: {'/'.join(parts)!r}")
    return dest


async def read_chunks(stream: AsyncIterator[bytes], chunk_size: int) -> AsyncIterator[bytes]:
    """Regroup an arbitrary byte stream into chunks of at most ``chunk_size``."""
    buffer = bytearray()
    async for data in stream:
        buffer += data
        while len(buffer) >= chunk_size:
            yield bytes(buffer[:chunk_size])
            del buffer[:chunk_size]
    if buffer:
        yield bytes(buffer)


class StreamingDownloader:
    """Materializes authorized uploads under the save directory."""

    def __init__(
        self,
        store: SessionStore,
        save_dir: str | Path,
        progress_callback: ProgressCallback | None = None,
        state_callback: ProgressCallback | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._store = store
        self.save_dir = Path(save_dir)
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

    async def receive(
        self,
        session_id: str | None,
        file_id: str | None,
        token: str | None,
        stream: AsyncIterator[bytes],
        content_length: int | None = None,
        peer: str = "",
    ) -> Path:
        """
        Receive one uploaded file and return where it was written.

        Raises a RequestRejected subclass for bad parameters or failed
        authorization (nothing is written), ReceiveFailed for I/O errors and
        short bodies, and TransferCancelled when the client disconnects or
        the session is cancelled.
        """
        if not (session_id and file_id and token):
            raise MissingParameters("missing parameters")

        file_name = self._store.lookup(file_id)
        if file_name is None:
            raise UnknownFile("invalid file ID")
        dest = resolve_destination(self.save_dir, file_name)

        session = self._store.begin_upload(session_id, file_id, token, dest)
        info = TransferInfo(
            transfer_id=f"{session_id}/{file_id}",
            session_id=session_id,
            file_id=file_id,
            file_name=file_name,
            file_size=content_length or 0,
            state=TransferState.AUTHORIZED,
            direction=TransferDirection.RECEIVING,
            peer=peer or session.sender.alias,
        )

        success = False
        try:
            await self._receive_into(dest, stream, content_length, info, session)
            success = True
        except asyncio.CancelledError:
            await self._discard(dest, info, TransferState.CANCELLED, "request cancelled")
            raise
        except TransferCancelled as e:
            await self._discard(dest, info, TransferState.CANCELLED, str(e))
            raise
        except TransferError as e:
            await self._discard(dest, info, TransferState.FAILED, str(e))
            raise
        except Exception as e:
            await self._discard(dest, info, TransferState.FAILED, str(e))
            raise ReceiveFailed(f"failed to receive file: {e}") from e
        finally:
            self._store.finish_upload(session_id, file_id, success, dest)

        await self._set_state(info, TransferState.COMPLETED)
        logger.info(f"File saved to: {dest}")
        return dest

    async def _receive_into(
        self,
        dest: Path,
        stream: AsyncIterator[bytes],
        content_length: int | None,
        info: TransferInfo,
        session: Session,
    ) -> None:
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(dest, "wb") as f:
                await self._set_state(info, TransferState.TRANSFERRING)
                copy_task = asyncio.create_task(self._copy(stream, f, info, content_length))
                watcher = asyncio.create_task(session.cancelled.wait())
                try:
                    done, _ = await asyncio.wait(
                        {copy_task, watcher}, return_when=asyncio.FIRST_COMPLETED
                    )
                finally:
                    for task in (copy_task, watcher):
                        if not task.done():
                            task.cancel()
                    # The file must not be closed under a running write
                    await asyncio.gather(copy_task, return_exceptions=True)

                if copy_task not in done:
                    raise TransferCancelled(f"{info.session_id} was cancelled")
                copy_task.result()
        except ClientDisconnect as e:
            raise TransferCancelled("client disconnected") from e
        except OSError as e:
            raise ReceiveFailed(f"failed to write file: {e}") from e

    async def _copy(self, stream, f, info: TransferInfo, content_length: int | None) -> None:
        throttle = ProgressThrottle(self._progress_callback)
        async for chunk in read_chunks(stream, self._chunk_size):
            await f.write(chunk)
            await throttle.advance(info, len(chunk))

        if content_length is not None and info.transferred_bytes != content_length:
            raise ReceiveFailed(
                f"expected {content_length} bytes, received {info.transferred_bytes}"
            )

    async def _discard(self, dest: Path, info: TransferInfo, state: TransferState, reason: str) -> None:
        """Delete an incomplete destination file."""
        with contextlib.suppress(FileNotFoundError):
            os.remove(dest)
        if state == TransferState.CANCELLED:
            logger.info(f"Transfer of {info.file_name} cancelled: {reason}")
        else:
            logger.error(f"Transfer error for {info.file_name}: {reason}")
        await self._set_state(info, state, reason)

    async def save_form_files(self, files: Iterable[FormFile], directory_name: str = "") -> tuple[int, Path]:
        """
        Store browser form uploads under the save directory, or under the
        ``directory_name`` sub-directory when one is given.

        Returns (file count, target directory).
        """
        files = [f for f in files if f.filename]
        if not files:
            raise MissingParameters("no files uploaded")

        prefix = (directory_name,) if directory_name else ()
        target_dir = self.save_dir.resolve().joinpath(*prefix)
        # Reject the whole batch before anything is written
        destinations = [
            resolve_destination(self.save_dir, *prefix, upload.filename)
            for upload in files
        ]
        written: list[Path] = []
        try:
            for upload, dest in zip(files, destinations):
                logger.info(f"Saving file {upload.filename!r} to {dest}")
                dest.parent.mkdir(parents=True, exist_ok=True)
                written.append(dest)
                async with aiofiles.open(dest, "wb") as out:
                    while chunk := await upload.read(self._chunk_size):
                        await out.write(chunk)
        except OSError as e:
            for path in written:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(path)
            raise ReceiveFailed(f"failed to save file: {e}") from e

        return len(files), target_dir
