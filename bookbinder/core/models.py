"""Data structures shared across the book pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Mapping, Optional

if TYPE_CHECKING:
    from bookbinder.book.book import Book


class LoadState(str, Enum):
    """Progress of acquiring the raw bytes of a book."""
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"
    LOADING_ERROR = "loading_error"


class UnarchiveState(str, Enum):
    """Progress of extracting pages from the loaded archive."""
    NOT_UNARCHIVED = "not_unarchived"
    READY_FOR_UNARCHIVING = "ready_for_unarchiving"
    UNARCHIVING = "unarchiving"
    UNARCHIVED = "unarchived"
    UNARCHIVING_ERROR = "unarchiving_error"


@dataclass(frozen=True)
class Page:
    """One readable unit of a book, built from a single archive entry."""
    filename: str                    # Entry name inside the archive; the sort key
    data: bytes = field(repr=False)
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ImagePage(Page):
    width: Optional[int] = None      # Read from the image header when available
    height: Optional[int] = None


@dataclass(frozen=True)
class TextPage(Page):
    text: str = ""


class BookEventKind(str, Enum):
    """Kinds of events a Book emits to its subscribers."""
    PROGRESS = "progress"                        # Loading or unarchiving percentage changed
    READY_TO_EXTRACT = "ready_to_extract"        # Buffer available, extraction about to start
    PAGE_READY = "page_ready"                    # payload: page, sequence_number (1-based)
    PAGES_WARNING = "pages_warning"              # payload: failures, message
    EXTRACTION_COMPLETE = "extraction_complete"  # Always the last event of a successful load
    EXTRACTION_ERROR = "extraction_error"        # payload: error, message


@dataclass(frozen=True)
class BookEvent:
    """An event emitted by a Book. Dispatch on `kind`; details live in `payload`."""
    kind: BookEventKind
    book: "Book" = field(repr=False)
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def page(self) -> Optional[Page]:
        return self.payload.get("page")

    @property
    def sequence_number(self) -> Optional[int]:
        return self.payload.get("sequence_number")

    @property
    def failures(self) -> List[Exception]:
        return list(self.payload.get("failures", []))

    @property
    def error(self) -> Optional[BaseException]:
        return self.payload.get("error")

    @property
    def message(self) -> Optional[str]:
        return self.payload.get("message")
