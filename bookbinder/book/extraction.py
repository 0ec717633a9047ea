"""Bridges an unarchiver worker thread to the book's event loop."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Optional

from bookbinder.archive import ArchiveDetector, UnarchiveSignal, UnarchiveSignalKind, Unarchiver
from bookbinder.core.errors import BookError
from bookbinder.core.logger import setup_logger

if TYPE_CHECKING:
    from bookbinder.book.assembly import PageAssemblyPipeline
    from bookbinder.book.book import Book

logger = setup_logger(__name__)


class ArchiveExtractionAdapter:
    """Owns the unarchiver for one book and translates its signals.

    Signals are produced on the unarchiver's worker thread and marshalled
    onto the event loop, so every book mutation happens on the loop thread.
    Constructing the adapter raises UnsupportedFormatError if the detector
    does not recognize the buffer.
    """

    def __init__(
        self,
        book: "Book",
        data: bytes,
        detector: ArchiveDetector,
        pipeline: "PageAssemblyPipeline",
    ):
        self._book = book
        self._pipeline = pipeline
        self._loop = asyncio.get_running_loop()
        self._signals: "asyncio.Queue[UnarchiveSignal]" = asyncio.Queue()
        self._unarchiver: Optional[Unarchiver] = detector.create_unarchiver(data, self._on_signal)
        self.kind = self._unarchiver.kind
        self._accepting_entries = True
        self._started_at: Optional[float] = None
        self.entries_received = 0

    @property
    def is_active(self) -> bool:
        return self._unarchiver is not None

    def _on_signal(self, signal: UnarchiveSignal) -> None:
        # Called on the worker thread
        try:
            self._loop.call_soon_threadsafe(self._signals.put_nowait, signal)
        except RuntimeError:
            logger.debug(f"Dropping {signal.kind.value} signal: event loop is closed")

    def start(self) -> None:
        if self._unarchiver is None:
            raise BookError("Extraction adapter has already been stopped")
        self._started_at = time.monotonic()
        self._unarchiver.start()

    def update(self, data: bytes) -> None:
        if self._unarchiver is not None:
            self._unarchiver.update(data)

    def finish_input(self) -> None:
        if self._unarchiver is not None:
            self._unarchiver.finish_input()

    def abort(self, error: BookError) -> None:
        """Fail the extraction from the loop side (e.g. the transfer broke)."""
        self._signals.put_nowait(UnarchiveSignal.failure(error))

    async def stop(self) -> None:
        """Stop the worker and drop the archive buffer.

        The worker is joined on a helper thread so a long read inside the
        archive library does not stall the event loop.
        """
        unarchiver, self._unarchiver = self._unarchiver, None
        if unarchiver is not None:
            await asyncio.to_thread(unarchiver.stop)

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    async def run(self) -> None:
        """Consume signals until the archive is finished or fails."""
        self.start()
        book = self._book
        try:
            while True:
                signal = await self._signals.get()
                if signal.kind == UnarchiveSignalKind.PROGRESS:
                    book._update_unarchiving_progress(signal.total_entries, signal.compressed_bytes_read)
                elif signal.kind == UnarchiveSignalKind.ENTRY:
                    if self._accepting_entries:
                        self.entries_received += 1
                        self._pipeline.add_entry(signal.data, signal.filename)
                elif signal.kind == UnarchiveSignalKind.INFO:
                    logger.info(f"[{self.kind}] {signal.message}")
                elif signal.kind == UnarchiveSignalKind.ERROR:
                    raise signal.error or BookError(signal.message)
                elif signal.kind == UnarchiveSignalKind.FINISH:
                    break

            # Trailing bytes may still be arriving; pages are published only
            # once the load has ended.
            self._accepting_entries = False
            await book._wait_for_loading_end()
            if book.load_error is not None:
                raise book.load_error
        except BookError as e:
            self._accepting_entries = False
            logger.warning(f"Unarchiving '{book.name}' failed: {e}")
            await self.stop()
            await self._pipeline.discard()
            book._fail_unarchiving(e)
            return

        book._finish_unarchiving()
        await self._pipeline.finish(self)
