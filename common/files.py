from __future__ import annotations
from pathlib import Path
from typing import AsyncContextManager, AsyncIterator, Callable
import httpx

CHUNK_SIZE = 64 * 1024


class FileDownload:
    """
    A binary response that has not been read yet. The request is issued when
    `write_file` or `read` is awaited; each call issues it again.
    """

    def __init__(self, open_stream: Callable[[], AsyncContextManager[httpx.Response]]):
        self._open_stream = open_stream

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        async with self._open_stream() as r:
            async for chunk in r.aiter_bytes(CHUNK_SIZE):
                yield chunk

    async def write_file(self, file_path: str | Path) -> str:
        out = Path(file_path)
        # the stream raises on a failed status, so the file is only created for a good response
        async with self._open_stream() as r:
            out.parent.mkdir(parents=True, exist_ok=True)
            with out.open("wb") as f:
                async for chunk in r.aiter_bytes(CHUNK_SIZE):
                    f.write(chunk)
        return str(out)

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self.iter_bytes()])
