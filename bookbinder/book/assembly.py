"""Joins concurrent page construction into the final, sorted page list."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, List, Optional, Sequence, Set, Tuple

from bookbinder.core.config import config
from bookbinder.core.errors import PageConstructionError
from bookbinder.core.logger import setup_logger
from bookbinder.core.models import BookEventKind, Page
from bookbinder.pages import PageFactory

if TYPE_CHECKING:
    from bookbinder.book.book import Book
    from bookbinder.book.extraction import ArchiveExtractionAdapter

logger = setup_logger(__name__)


def sort_pages(pages: Sequence[Page]) -> List[Page]:
    """Order pages by filename, case-insensitively; equal keys keep their order."""
    return sorted(pages, key=lambda page: page.filename.lower())


class PageAssemblyPipeline:
    """Builds pages concurrently as entries arrive and publishes them in order.

    Page events are held back until every construction task has settled,
    because entries arrive in archive order rather than reading order.
    """

    def __init__(self, book: "Book", page_factory: PageFactory, concurrency: Optional[int] = None):
        self._book = book
        self._factory = page_factory
        self._tasks: List["asyncio.Task[Page]"] = []
        limit = concurrency if concurrency is not None else int(config.get("PAGE_CONSTRUCTION_CONCURRENCY", 0))
        self._semaphore = asyncio.Semaphore(limit) if limit > 0 else None

    @property
    def pending_tasks(self) -> Set["asyncio.Task[Page]"]:
        return {task for task in self._tasks if not task.done()}

    @property
    def entries_scheduled(self) -> int:
        return len(self._tasks)

    def add_entry(self, data: bytes, filename: str) -> None:
        task = asyncio.get_running_loop().create_task(
            self._construct(data, filename),
            name=f"page:{filename}",
        )
        self._tasks.append(task)

    async def _construct(self, data: bytes, filename: str) -> Page:
        try:
            if self._semaphore is None:
                return await self._factory.create_page(data, filename)
            async with self._semaphore:
                return await self._factory.create_page(data, filename)
        except PageConstructionError:
            raise
        except Exception as e:
            raise PageConstructionError(filename, f"{type(e).__name__}: {e}") from e

    async def join(self) -> Tuple[List[Page], List[PageConstructionError]]:
        """Wait for every task; return (sorted pages, failures)."""
        tasks, self._tasks = self._tasks, []
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        pages: List[Page] = []
        failures: List[PageConstructionError] = []
        for task, outcome in zip(tasks, outcomes):
            if isinstance(outcome, PageConstructionError):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                failures.append(PageConstructionError(task.get_name().removeprefix("page:"), repr(outcome)))
            else:
                pages.append(outcome)

        for failure in failures:
            logger.warning(f"Dropping page: {failure}")
        return sort_pages(pages), failures

    async def discard(self) -> None:
        """Let in-flight tasks settle and drop their results."""
        tasks, self._tasks = self._tasks, []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def finish(self, adapter: "ArchiveExtractionAdapter") -> None:
        """Join, publish pages in order, then release the extractor."""
        book = self._book
        pages, failures = await self.join()

        book._replace_pages(pages)
        for sequence_number, page in enumerate(pages, start=1):
            book._emit(BookEventKind.PAGE_READY, page=page, sequence_number=sequence_number)

        if failures:
            message = f"{len(failures)} page(s) of '{book.name}' could not be built"
            logger.warning(message)
            book._emit(BookEventKind.PAGES_WARNING, failures=failures, message=message)

        book._emit(BookEventKind.EXTRACTION_COMPLETE)

        logger.info(
            f"Book = '{book.name}': {len(pages)} page(s) from {adapter.entries_received} entries "
            f"using {adapter.kind} unarchiver, unarchiving done in {adapter.elapsed:.2f}s"
        )
        await adapter.stop()
