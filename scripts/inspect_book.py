#!/usr/bin/env python3
"""
Load a comic book archive and log what happens.

Usage:
    python scripts/inspect_book.py path/to/book.cbz
    python scripts/inspect_book.py https://example.com/book.cbr [--whole]

By default URLs are streamed (extraction starts while downloading); pass
--whole to download everything first.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from bookbinder import Book, BookError, BookEvent, BookEventKind
from bookbinder.core.logger import setup_logger

logger = setup_logger("bookbinder.scripts.inspect_book")


def on_event(event: BookEvent, book: Book) -> None:
    match event.kind:
        case BookEventKind.PROGRESS:
            logger.debug(
                f"progress: loaded {book.get_loading_percentage():.0%}, "
                f"unarchived {book.get_unarchiving_percentage():.0%}, "
                f"{book.get_number_of_pages()} page(s) declared"
            )
        case BookEventKind.READY_TO_EXTRACT:
            logger.info("archive recognized, extracting")
        case BookEventKind.PAGE_READY:
            page = event.page
            logger.info(f"  {event.sequence_number:>4}  {page.filename}  ({page.mime_type}, {page.size} bytes)")
        case BookEventKind.PAGES_WARNING:
            logger.warning(event.message)
            for failure in event.failures:
                logger.warning(f"    {failure}")
        case BookEventKind.EXTRACTION_COMPLETE:
            logger.info(f"done: {book.get_number_of_pages()} page(s)")
        case BookEventKind.EXTRACTION_ERROR:
            logger.error(f"extraction failed: {event.message}")


async def inspect(target: str, streaming: bool) -> int:
    if target.startswith(("http://", "https://")):
        book = Book(target.rsplit("/", 1)[-1] or target, origin=target)
        book.subscribe("inspect", on_event)
        await book.load_from_origin(streaming=streaming)
    else:
        book = Book(Path(target).name)
        book.subscribe("inspect", on_event)
        await book.load_from_file(target)
    await book.wait_until_unarchived()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Load a comic book archive and log its events"
    )
    parser.add_argument(
        "target",
        help="Path to a local archive or an http(s) URL",
    )
    parser.add_argument(
        "--whole",
        action="store_true",
        help="Download URLs completely before extracting (default: stream)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(inspect(args.target, streaming=not args.whole))
    except BookError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
