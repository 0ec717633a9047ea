"""Byte ingestion: pulls chunks from a source and hands them to extraction."""

from __future__ import annotations

from contextlib import aclosing
from typing import TYPE_CHECKING, Optional

from bookbinder.archive import SIGNATURE_PROBE_BYTES
from bookbinder.core.errors import ArchiveExtractionError, InvalidStateError, LoadError
from bookbinder.core.logger import setup_logger
from bookbinder.core.models import LoadState
from bookbinder.sources import ByteSource

if TYPE_CHECKING:
    from bookbinder.book.book import Book
    from bookbinder.book.extraction import ArchiveExtractionAdapter

logger = setup_logger(__name__)


class LoadCoordinator:
    """Drives one load attempt for a Book.

    Whole-buffer sources are collected completely before the archive is
    detected. Streaming sources are detected as soon as enough leading bytes
    have arrived; later chunks are forwarded to the running extraction.
    """

    def __init__(self, book: "Book"):
        self._book = book
        self._source: Optional[ByteSource] = None
        self._bytes_loaded = 0

    @property
    def bytes_loaded(self) -> int:
        return self._bytes_loaded

    def check_can_load(self, source: ByteSource) -> None:
        """Raise InvalidStateError if `source` may not be loaded into the book."""
        book = self._book
        if book.load_state != LoadState.NOT_LOADED or self._source is not None:
            raise InvalidStateError(
                f"Cannot load book '{book.name}': it is already {book.load_state.value}"
            )
        if source.locator is not None and book.origin is None:
            raise InvalidStateError(
                f"Cannot load book '{book.name}' from {source.locator}: the book has no origin"
            )
        if source.locator is None and book.origin is not None:
            raise InvalidStateError(
                f"Cannot load book '{book.name}' from local data: the book has origin {book.origin}"
            )

    async def load(self, source: ByteSource, expected_size: int = -1) -> None:
        self.check_can_load(source)
        book = self._book
        self._source = source
        book._begin_loading(expected_size)
        logger.debug(f"Loading '{book.name}' ({'streaming' if source.streaming else 'whole buffer'})")

        pending = bytearray()
        adapter: Optional["ArchiveExtractionAdapter"] = None
        try:
            async with aclosing(source.chunks()) as chunks:
                async for chunk in chunks:
                    if not chunk:
                        continue
                    self._bytes_loaded += len(chunk)
                    if book.expected_size_bytes < 0 and source.total_size:
                        book._discover_expected_size(source.total_size)

                    if adapter is None:
                        pending.extend(chunk)
                        if source.streaming and len(pending) >= SIGNATURE_PROBE_BYTES:
                            adapter = book._open_extraction(bytes(pending))
                            pending = bytearray()
                    else:
                        adapter.update(chunk)

                    book._update_loading_progress(self._bytes_loaded)
        except LoadError as e:
            logger.warning(f"Loading '{book.name}' failed after {self._bytes_loaded} bytes: {e}")
            book._fail_loading(e)
            raise
        except ArchiveExtractionError as e:
            # Detection failed on a streaming load; abandon the transfer
            book._fail_loading(e)
            raise
        except Exception as e:
            error = LoadError(f"Byte source failed: {type(e).__name__}: {e}")
            logger.error_trace(f"Loading '{book.name}' failed: {error}")
            book._fail_loading(error)
            raise error from e

        if book.expected_size_bytes < 0:
            book._discover_expected_size(self._bytes_loaded)

        if adapter is None:
            book._finish_loading()
            adapter = book._open_extraction(bytes(pending))
            adapter.finish_input()
        else:
            adapter.finish_input()
            book._finish_loading()

        logger.info(f"Loaded '{book.name}': {self._bytes_loaded} bytes")
