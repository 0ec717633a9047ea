"""Byte sources - where the raw bytes of a book come from."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from bookbinder.core.config import config


class ByteSource(ABC):
    """
    Produces the bytes of a book as a lazy sequence of chunks.

    Attributes:
        locator: Where the bytes come from (e.g. a URL), or None for local data.
        streaming: If True the archive can be detected from the first chunks and
            fed incrementally; if False the whole payload is collected first.
    """

    locator: Optional[str] = None
    streaming: bool = False

    def __init__(self) -> None:
        self._total_size: Optional[int] = None

    @property
    def total_size(self) -> Optional[int]:
        """Total payload size in bytes, once the source knows it."""
        return self._total_size

    @abstractmethod
    def chunks(self) -> AsyncIterator[bytes]:
        """Yield chunks of the payload in order. Raises LoadError on transport failure."""
        raise NotImplementedError


class BufferByteSource(ByteSource):
    """An in-memory buffer, delivered as a single chunk."""

    def __init__(self, buffer: bytes):
        super().__init__()
        self._buffer = bytes(buffer)
        self._total_size = len(self._buffer)

    async def chunks(self) -> AsyncIterator[bytes]:
        if self._buffer:
            yield self._buffer


def default_chunk_size() -> int:
    return int(config.get("CHUNK_SIZE", 8192))


from .file import FileByteSource  # noqa: E402
from .http import HttpByteSource  # noqa: E402

__all__ = [
    "BufferByteSource",
    "ByteSource",
    "FileByteSource",
    "HttpByteSource",
    "default_chunk_size",
]
