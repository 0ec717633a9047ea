"""Local file byte source."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from bookbinder.core.errors import LoadError
from bookbinder.core.logger import setup_logger
from bookbinder.sources import ByteSource, default_chunk_size

logger = setup_logger(__name__)


class FileByteSource(ByteSource):
    """Reads a local file in chunks on a worker thread.

    Files are whole-buffer sources: the archive is detected once the entire
    file has been read, matching how a local file is handed over at once.
    """

    def __init__(self, path: Union[str, Path], chunk_size: Optional[int] = None):
        super().__init__()
        self.path = Path(path)
        self.chunk_size = chunk_size or default_chunk_size()

    async def chunks(self) -> AsyncIterator[bytes]:
        try:
            self._total_size = self.path.stat().st_size
            handle = await asyncio.to_thread(open, self.path, "rb")
        except OSError as e:
            raise LoadError(f"Cannot read {self.path}: {e}") from e

        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                except OSError as e:
                    raise LoadError(f"Error reading {self.path}: {e}") from e
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()
        logger.debug(f"Read {self._total_size} bytes from {self.path}")
