"""Book loading pipeline.

Implementation lives in submodules in this package:

- `loader`: byte ingestion from a source
- `extraction`: unarchiver signal handling on the event loop
- `assembly`: concurrent page construction, join and ordering
- `book`: the Book aggregate that owns state and emits events
"""

from .assembly import PageAssemblyPipeline, sort_pages
from .book import Book
from .extraction import ArchiveExtractionAdapter
from .loader import LoadCoordinator

__all__ = [
    "ArchiveExtractionAdapter",
    "Book",
    "LoadCoordinator",
    "PageAssemblyPipeline",
    "sort_pages",
]
