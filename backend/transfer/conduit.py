"""In-process byte conduit between a file reader task and a request body."""

import asyncio
from typing import AsyncIterator

from config import CONDUIT_DEPTH

_EOF = object()


class Conduit:
    """
    Bounded async pipe of byte chunks.

    The producer calls ``write`` and finally ``close`` (optionally with the
    error that stopped it); the consumer iterates ``chunks()``. At most
    ``depth`` chunks are buffered, so the producer waits for the consumer
    and a file is never held in memory in full.
    """

    def __init__(self, depth: int = CONDUIT_DEPTH) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=depth)

    async def write(self, chunk: bytes) -> None:
        await self._queue.put(chunk)

    async def close(self, error: BaseException | None = None) -> None:
        await self._queue.put(error if error is not None else _EOF)

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is _EOF:
                return
            if isinstance(item, BaseException):
                raise item
            yield item
