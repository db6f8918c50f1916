"""
Progress reporting.

Transfers publish ``TransferInfo`` snapshots through async callbacks; the
throttle keeps byte-level updates to a few per second. ``RichProgressSink``
renders them as live progress bars for the command line.
"""

import time
from typing import Awaitable, Callable

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from config import PROGRESS_INTERVAL
from transfer.models import TransferDirection, TransferInfo, TransferState

ProgressCallback = Callable[[TransferInfo], Awaitable[None]]


async def _ignore(info: TransferInfo) -> None:
    return None


class ProgressThrottle:
    """Forward progress for one transfer at most every ``interval`` seconds."""

    def __init__(
        self,
        callback: ProgressCallback | None,
        interval: float = PROGRESS_INTERVAL,
    ) -> None:
        self._callback = callback or _ignore
        self._interval = interval
        self._last = 0.0

    async def advance(self, info: TransferInfo, n: int) -> None:
        info.transferred_bytes += n
        now = time.monotonic()
        if now - self._last < self._interval:
            return
        self._last = now
        info.progress_percent = (
            info.transferred_bytes / info.file_size * 100
            if info.file_size > 0
            else 100.0
        )
        await self._callback(info)


class RichProgressSink:
    """Live progress bars, one per transfer, driven by manager events."""

    def __init__(self, console: Console | None = None) -> None:
        self._progress = Progress(
            TextColumn("[bold cyan]{task.fields[arrow]}[/] {task.fields[filename]}"),
            BarColumn(bar_width=None),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console or Console(stderr=True),
            expand=True,
        )
        self._tasks: dict[str, TaskID] = {}

    def start(self) -> None:
        self._progress.start()

    def stop(self) -> None:
        self._progress.stop()

    async def handle_event(self, event_type: str, data: dict) -> None:
        """Event handler compatible with TransferManager.on_event()."""
        if event_type not in ("transfer_progress", "transfer_state"):
            return
        info = TransferInfo(**data)
        task_id = self._tasks.get(info.transfer_id)
        if task_id is None:
            arrow = "↑" if info.direction == TransferDirection.SENDING else "↓"
            task_id = self._progress.add_task(
                "transfer",
                total=max(info.file_size, 1),
                filename=info.file_name,
                arrow=arrow,
            )
            self._tasks[info.transfer_id] = task_id

        self._progress.update(task_id, completed=info.transferred_bytes)
        if info.finished:
            if info.state == TransferState.COMPLETED:
                self._progress.update(task_id, completed=max(info.file_size, 1))
            else:
                self._progress.update(
                    task_id, filename=f"{info.file_name} [red]({info.state.value})"
                )
