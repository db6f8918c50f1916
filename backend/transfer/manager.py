"""
Transfer Manager — orchestrates inbound sessions and outbound sends.

Owns the session store, the cancel registry and the per-direction
components, tracks transfer state, and fans events out to registered
listeners (progress bars, the control API).
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncIterator, Iterable

import aiohttp

from config import DEFAULT_SAVE_DIR, DEFAULT_SCHEME, LOCALSEND_PORT
from transfer.clipboard import write_to_clipboard
from transfer.downloader import FormFile, StreamingDownloader
from transfer.errors import TransferError
from transfer.handshake import (
    AcceptCallback,
    ClipboardWriter,
    HandshakeResponder,
    prepare_upload,
)
from transfer.manifest import build_manifest
from transfer.models import DeviceInfo, PrepareUploadResponse, TransferInfo
from transfer.registry import CancelRegistry
from transfer.sessions import SessionStore
from transfer.uploader import (
    Dispatcher,
    SequentialDispatcher,
    StreamingUploader,
    UploadJob,
)

logger = logging.getLogger(__name__)


def base_url(host: str, port: int, scheme: str) -> str:
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"{scheme}://{host}:{port}"


class TransferManager:
    """Manages all active and completed file transfers."""

    def __init__(
        self,
        device_info: DeviceInfo,
        save_dir: str | Path = DEFAULT_SAVE_DIR,
        clipboard_writer: ClipboardWriter = write_to_clipboard,
        accept_callback: AcceptCallback | None = None,
        dispatcher: Dispatcher | None = None,
        scheme: str = DEFAULT_SCHEME,
    ) -> None:
        self.device_info = device_info
        self.scheme = scheme
        self._transfers: dict[str, TransferInfo] = {}
        self._tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._event_callbacks: list = []  # async fn(event_type, data)

        self.store = SessionStore()
        self.registry = CancelRegistry()
        self._dispatcher = dispatcher or SequentialDispatcher()
        self._responder = HandshakeResponder(
            self.store, clipboard_writer, accept_callback
        )
        self._downloader = StreamingDownloader(
            self.store,
            save_dir,
            progress_callback=self._on_progress,
            state_callback=self._on_state_change,
        )

    @property
    def save_dir(self) -> Path:
        return self._downloader.save_dir

    @save_dir.setter
    def save_dir(self, path: str | Path) -> None:
        os.makedirs(path, exist_ok=True)
        self._downloader.save_dir = Path(path)

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    async def start(self) -> None:
        os.makedirs(self.save_dir, exist_ok=True)
        logger.info(f"Receiving files into {self.save_dir.resolve()}")

    async def stop(self) -> None:
        """Cancel background sends."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Transfer manager stopped")

    def get_transfers(self) -> list[TransferInfo]:
        return list(self._transfers.values())

    # --- Responder side ---

    async def handle_prepare_upload(self, raw: bytes) -> PrepareUploadResponse | None:
        return await self._responder.handle(raw)

    async def handle_upload(
        self,
        session_id: str | None,
        file_id: str | None,
        token: str | None,
        stream: AsyncIterator[bytes],
        content_length: int | None,
        peer: str = "",
    ) -> Path:
        return await self._downloader.receive(
            session_id, file_id, token, stream, content_length, peer
        )

    async def handle_form_upload(self, files: Iterable[FormFile], directory_name: str = "") -> tuple[int, Path]:
        return await self._downloader.save_form_files(files, directory_name)

    # --- Initiator side ---

    async def send(
        self,
        host: str,
        path: str | Path,
        port: int = LOCALSEND_PORT,
        include_preview: bool = False,
    ) -> PrepareUploadResponse | None:
        """
        Send a file or directory tree to ``host``.

        Builds the manifest, performs the handshake and uploads every file
        in manifest order. While the uploads run, the session can be
        cancelled through ``cancel_session``. Returns the peer's handshake
        response, or None when the peer needed no transfer.
        """
        manifest = await asyncio.to_thread(
            build_manifest, path, self.device_info, include_preview
        )
        url = base_url(host, port, self.scheme)

        connector = aiohttp.TCPConnector(ssl=False)
        async with aiohttp.ClientSession(connector=connector) as http:
            response = await prepare_upload(http, url, manifest)
            if response is None:
                return None

            jobs = []
            for file_id, meta in manifest.files.items():
                token = response.files.get(file_id)
                if token is None:
                    raise TransferError(f"token not found for file: {file_id}")
                jobs.append(
                    UploadJob(
                        session_id=response.session_id,
                        file_id=file_id,
                        token=token,
                        path=manifest.sources[file_id],
                        size=meta.size,
                    )
                )

            uploader = StreamingUploader(
                http,
                url,
                peer=host,
                progress_callback=self._on_progress,
                state_callback=self._on_state_change,
            )
            cancel_event = asyncio.Event()
            self.registry.register(response.session_id, cancel_event.set)
            try:
                await self._dispatcher.run(jobs, uploader.upload, cancel_event)
            finally:
                self.registry.unregister(response.session_id)

        logger.info(f"Sent {len(jobs)} file(s) to {host} in {response.session_id}")
        return response

    def queue_send(self, host: str, path: str | Path, port: int = LOCALSEND_PORT, include_preview: bool = False) -> asyncio.Task:
        """Run ``send`` in the background; failures are logged and emitted."""
        task = asyncio.create_task(self._send_task(host, path, port, include_preview))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _send_task(self, host, path, port, include_preview) -> None:
        try:
            await self.send(host, path, port, include_preview)
        except (TransferError, OSError) as e:
            logger.error(f"Send of {path} to {host} failed: {e}")
            await self._emit("notification", {
                "type": "error",
                "message": f"Sending '{path}' to {host} failed: {e}",
            })

    def cancel_session(self, session_id: str) -> bool:
        """Cancel an outbound send and/or close an inbound session."""
        cancelled = self.registry.cancel(session_id)
        closed = self.store.close_session(session_id)
        return cancelled or closed

    # --- Events ---

    async def _on_progress(self, info: TransferInfo) -> None:
        """Called by the uploader/downloader on progress updates."""
        await self._emit("transfer_progress", info.model_dump())

    async def _on_state_change(self, info: TransferInfo) -> None:
        """Called by the uploader/downloader on state changes."""
        async with self._lock:
            self._transfers[info.transfer_id] = info
        await self._emit("transfer_state", info.model_dump())
