"""
bookbinder - turn comic book archives into ordered pages.

A Book loads its bytes from a file, buffer, or URL, unarchives them
(zip/cbz, rar/cbr, tar/cbt), builds a page from every extracted entry, and
notifies subscribers with progress, page-ready, and completion events.
"""

__version__ = "0.1.0"

from bookbinder.book import Book
from bookbinder.core.errors import (
    ArchiveExtractionError,
    BookError,
    CorruptedArchiveError,
    InvalidStateError,
    LoadError,
    PageConstructionError,
    PasswordProtectedError,
    UnsupportedFormatError,
)
from bookbinder.core.events import EventBus, SubscriptionHandle
from bookbinder.core.models import (
    BookEvent,
    BookEventKind,
    ImagePage,
    LoadState,
    Page,
    TextPage,
    UnarchiveState,
)
from bookbinder.pages import ImagePageFactory, PageFactory
from bookbinder.sources import BufferByteSource, ByteSource, FileByteSource, HttpByteSource

__all__ = [
    "ArchiveExtractionError",
    "Book",
    "BookError",
    "BookEvent",
    "BookEventKind",
    "BufferByteSource",
    "ByteSource",
    "CorruptedArchiveError",
    "EventBus",
    "FileByteSource",
    "HttpByteSource",
    "ImagePage",
    "ImagePageFactory",
    "InvalidStateError",
    "LoadError",
    "LoadState",
    "Page",
    "PageConstructionError",
    "PageFactory",
    "PasswordProtectedError",
    "SubscriptionHandle",
    "TextPage",
    "UnarchiveState",
    "UnsupportedFormatError",
]
