"""The Book aggregate: owns load/unarchive state, pages, and subscribers."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, Optional, Tuple, Union

from bookbinder.archive import ArchiveDetector, RegistryArchiveDetector
from bookbinder.book.assembly import PageAssemblyPipeline
from bookbinder.book.extraction import ArchiveExtractionAdapter
from bookbinder.book.loader import LoadCoordinator
from bookbinder.core.errors import ArchiveExtractionError, BookError, InvalidStateError
from bookbinder.core.events import EventBus, SubscriptionHandle
from bookbinder.core.logger import setup_logger
from bookbinder.core.models import BookEvent, BookEventKind, LoadState, Page, UnarchiveState
from bookbinder.pages import ImagePageFactory, PageFactory
from bookbinder.sources import BufferByteSource, ByteSource, FileByteSource, HttpByteSource

logger = setup_logger(__name__)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class Book:
    """
    A book has a name, a set of pages, and a loading and unarchiving state.

    It loads its bytes from exactly one source, unarchives them, and emits
    events to subscribers as that happens. All mutation happens on the event
    loop that runs the load.

    Args:
        name: Display name of the book.
        origin: URL the book is loaded from; None for local files and buffers.
        page_factory: Builds pages from extracted entries.
        archive_detector: Picks the unarchiver for the loaded bytes.
    """

    def __init__(
        self,
        name: str,
        origin: Optional[str] = None,
        page_factory: Optional[PageFactory] = None,
        archive_detector: Optional[ArchiveDetector] = None,
    ):
        self._name = name
        self._origin = origin
        self._page_factory = page_factory or ImagePageFactory()
        self._archive_detector = archive_detector or RegistryArchiveDetector()

        self._load_state = LoadState.NOT_LOADED
        self._unarchive_state = UnarchiveState.NOT_UNARCHIVED
        self._loading_percentage = 0.0
        self._unarchiving_percentage = 0.0
        self._expected_size_bytes = -1
        self._declared_page_count = 0
        self._ready_pages: Tuple[Page, ...] = ()
        self._pages_published = False

        self._bus = EventBus()
        self._loader = LoadCoordinator(self)
        self._pipeline: Optional[PageAssemblyPipeline] = None
        self._adapter: Optional[ArchiveExtractionAdapter] = None
        self._extraction_task: Optional["asyncio.Task[None]"] = None
        self._loading_ended: Optional[asyncio.Event] = None
        self._load_error: Optional[BookError] = None
        self._unarchive_error: Optional[BookError] = None

    def __repr__(self) -> str:
        return (
            f"Book(name={self._name!r}, load_state={self._load_state.value}, "
            f"unarchive_state={self._unarchive_state.value}, pages={len(self._ready_pages)})"
        )

    # --- Queries ---

    @property
    def name(self) -> str:
        return self._name

    @property
    def origin(self) -> Optional[str]:
        return self._origin

    @property
    def load_state(self) -> LoadState:
        return self._load_state

    @property
    def unarchive_state(self) -> UnarchiveState:
        return self._unarchive_state

    @property
    def loading_percentage(self) -> float:
        return self._loading_percentage

    @property
    def unarchiving_percentage(self) -> float:
        return self._unarchiving_percentage

    @property
    def expected_size_bytes(self) -> int:
        return self._expected_size_bytes

    @property
    def declared_page_count(self) -> int:
        return self._declared_page_count

    @property
    def ready_pages(self) -> Tuple[Page, ...]:
        return self._ready_pages

    @property
    def pending_page_tasks(self) -> set:
        return self._pipeline.pending_tasks if self._pipeline else set()

    @property
    def load_error(self) -> Optional[BookError]:
        return self._load_error

    @property
    def unarchive_error(self) -> Optional[BookError]:
        return self._unarchive_error

    def get_name(self) -> str:
        return self._name

    def get_loading_percentage(self) -> float:
        return self._loading_percentage

    def get_unarchiving_percentage(self) -> float:
        return self._unarchiving_percentage

    def get_number_of_pages(self) -> int:
        """Pages announced by the unarchiver; the built page count once extraction completes."""
        if self._pages_published:
            return len(self._ready_pages)
        return self._declared_page_count

    def get_number_of_pages_ready(self) -> int:
        return len(self._ready_pages)

    def get_page(self, index: int) -> Optional[Page]:
        """Return the page at sorted position `index` (0-based), or None."""
        if index < 0 or index >= self.get_number_of_pages():
            return None
        if index >= len(self._ready_pages):
            return None
        return self._ready_pages[index]

    def is_ready_to_unarchive(self) -> bool:
        return self._unarchive_state == UnarchiveState.READY_FOR_UNARCHIVING

    # --- Subscriptions ---

    def subscribe(self, identity: Hashable, callback: Callable[[BookEvent, "Book"], Any]) -> SubscriptionHandle:
        """Register `callback(event, book)` under `identity`, replacing any earlier one."""
        return self._bus.subscribe(identity, callback)

    def unsubscribe(self, identity: Union[Hashable, SubscriptionHandle]) -> None:
        self._bus.unsubscribe(identity)

    # --- Loading ---

    async def load_from_byte_source(self, source: ByteSource, expected_size: int = -1) -> "Book":
        """Load the book from `source`.

        Returns once every byte has been received; extraction continues in
        the background (see wait_until_unarchived()).

        Raises:
            InvalidStateError: the book was already loaded, or the source kind
                does not match the book's origin.
            LoadError: the transfer failed.
            UnsupportedFormatError: the bytes are not a known archive kind.
        """
        await self._loader.load(source, expected_size)
        return self

    async def load_from_local_buffer(self, buffer: bytes) -> "Book":
        """Load the book from bytes already in memory."""
        return await self.load_from_byte_source(BufferByteSource(buffer), len(buffer))

    async def load_from_file(self, path: Union[str, Path]) -> "Book":
        """Load the book from a local file."""
        return await self.load_from_byte_source(FileByteSource(path))

    async def load_from_origin(
        self,
        headers: Optional[Dict[str, str]] = None,
        streaming: bool = True,
        expected_size: int = -1,
    ) -> "Book":
        """Download the book from its origin URL.

        With streaming=True extraction starts on the first chunks and runs
        alongside the transfer; otherwise it starts once the download is done.
        If expected_size is -1 the size reported by the server is used.
        """
        if not self._origin:
            raise InvalidStateError(f"Book '{self._name}' has no origin to load from")
        source = HttpByteSource(self._origin, headers=headers, streaming=streaming)
        return await self.load_from_byte_source(source, expected_size)

    async def wait_until_unarchived(self) -> "Book":
        """Wait for the join step and completion event.

        Raises the extraction error if unarchiving failed.
        """
        if self._extraction_task is None:
            if self._unarchive_error is not None:
                raise self._unarchive_error
            raise InvalidStateError(f"Book '{self._name}' has not started unarchiving")
        await self._extraction_task
        if self._unarchive_error is not None:
            raise self._unarchive_error
        return self

    # --- Internal transitions (called by the pipeline components) ---

    def _emit(self, kind: BookEventKind, **payload: Any) -> None:
        self._bus.notify(BookEvent(kind=kind, book=self, payload=payload))

    def _begin_loading(self, expected_size: int) -> None:
        self._expected_size_bytes = expected_size if expected_size and expected_size > 0 else -1
        self._load_state = LoadState.LOADING
        self._loading_ended = asyncio.Event()

    async def _wait_for_loading_end(self) -> None:
        """Block until the load has finished or failed."""
        if self._loading_ended is not None:
            await self._loading_ended.wait()

    def _discover_expected_size(self, size: int) -> None:
        if size > 0:
            self._expected_size_bytes = size

    def _update_loading_progress(self, bytes_loaded: int) -> None:
        if self._expected_size_bytes <= 0:
            return
        pct = _clamp(bytes_loaded / self._expected_size_bytes)
        if pct > self._loading_percentage:
            self._loading_percentage = pct
            self._emit(BookEventKind.PROGRESS)

    def _finish_loading(self) -> None:
        self._load_state = LoadState.LOADED
        if self._loading_percentage < 1.0:
            self._loading_percentage = 1.0
            self._emit(BookEventKind.PROGRESS)
        if self._loading_ended is not None:
            self._loading_ended.set()

    def _fail_loading(self, error: BookError) -> None:
        self._load_error = error
        self._load_state = LoadState.LOADING_ERROR
        if self._adapter is not None and self._adapter.is_active:
            self._adapter.abort(error)
        if self._loading_ended is not None:
            self._loading_ended.set()

    def _open_extraction(self, data: bytes) -> ArchiveExtractionAdapter:
        """Create the unarchiver for `data` and start extracting."""
        if self._unarchive_state != UnarchiveState.NOT_UNARCHIVED:
            raise InvalidStateError(f"Book '{self._name}' is already {self._unarchive_state.value}")

        self._pipeline = PageAssemblyPipeline(self, self._page_factory)
        try:
            self._adapter = ArchiveExtractionAdapter(self, data, self._archive_detector, self._pipeline)
        except ArchiveExtractionError as e:
            logger.warning(f"Cannot unarchive '{self._name}': {e}")
            self._unarchive_error = e
            self._unarchive_state = UnarchiveState.UNARCHIVING_ERROR
            raise

        self._unarchive_state = UnarchiveState.READY_FOR_UNARCHIVING
        self._emit(BookEventKind.READY_TO_EXTRACT)

        self._unarchive_state = UnarchiveState.UNARCHIVING
        self._extraction_task = asyncio.get_running_loop().create_task(
            self._adapter.run(),
            name=f"unarchive:{self._name}",
        )
        return self._adapter

    def _update_unarchiving_progress(self, total_entries: int, compressed_bytes_read: int) -> None:
        changed = False
        if total_entries > self._declared_page_count:
            self._declared_page_count = total_entries
            changed = True

        size = self._expected_size_bytes if self._expected_size_bytes > 0 else self._loader.bytes_loaded
        if size > 0:
            pct = _clamp(compressed_bytes_read / size)
            if pct > self._unarchiving_percentage:
                self._unarchiving_percentage = pct
                changed = True

        if changed:
            self._emit(BookEventKind.PROGRESS)

    def _finish_unarchiving(self) -> None:
        self._unarchive_state = UnarchiveState.UNARCHIVED
        if self._unarchiving_percentage < 1.0:
            self._unarchiving_percentage = 1.0
            self._emit(BookEventKind.PROGRESS)

    def _fail_unarchiving(self, error: BookError) -> None:
        self._unarchive_error = error
        self._unarchive_state = UnarchiveState.UNARCHIVING_ERROR
        self._adapter = None
        self._emit(BookEventKind.EXTRACTION_ERROR, error=error, message=str(error))

    def _replace_pages(self, pages: list) -> None:
        self._ready_pages = tuple(pages)
        self._pages_published = True
        self._adapter = None
