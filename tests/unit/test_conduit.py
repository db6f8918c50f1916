from __future__ import annotations

import asyncio

import pytest

from transfer.conduit import Conduit
from transfer.downloader import read_chunks


async def _collect(stream) -> list[bytes]:
    return [chunk async for chunk in stream]


def test_conduit_delivers_chunks_in_order() -> None:
    async def scenario() -> list[bytes]:
        conduit = Conduit(depth=2)

        async def produce() -> None:
            for n in range(10):
                await conduit.write(bytes([n]) * 3)
            await conduit.close()

        producer = asyncio.create_task(produce())
        chunks = await _collect(conduit.chunks())
        await producer
        return chunks

    chunks = asyncio.run(scenario())
    assert chunks == [bytes([n]) * 3 for n in range(10)]


def test_conduit_propagates_producer_error() -> None:
    async def scenario() -> None:
        conduit = Conduit()
        await conduit.write(b"partial")
        await conduit.close(OSError("disk vanished"))
        await _collect(conduit.chunks())

    with pytest.raises(OSError, match="disk vanished"):
        asyncio.run(scenario())


def test_conduit_is_bounded() -> None:
    async def scenario() -> bool:
        conduit = Conduit(depth=1)
        await conduit.write(b"first")
        blocked = asyncio.create_task(conduit.write(b"second"))
        await asyncio.sleep(0.05)
        still_waiting = not blocked.done()
        blocked.cancel()
        return still_waiting

    assert asyncio.run(scenario()) is True


def test_read_chunks_regroups_stream() -> None:
    async def source():
        for piece in (b"abc", b"", b"defgh", b"ij"):
            yield piece

    chunks = asyncio.run(_collect(read_chunks(source(), 4)))
    assert chunks == [b"abcd", b"efgh", b"ij"]
