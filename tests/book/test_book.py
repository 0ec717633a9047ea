"""Tests for the Book lifecycle.

Covers:
- Sorted page publication after the join step
- Page construction failures surfaced as a single warning
- Unsupported, corrupted and interrupted loads
- State guards (double load, origin/locator mismatch)
- Progress monotonicity and streaming extraction
"""

import asyncio
import io
import tarfile
import time
import zipfile
from typing import List
from unittest.mock import MagicMock

import pytest

from bookbinder.archive import ArchiveDetector, Unarchiver
from bookbinder.book import ArchiveExtractionAdapter, Book
from bookbinder.core.errors import (
    CorruptedArchiveError,
    InvalidStateError,
    LoadError,
    PageConstructionError,
    UnsupportedFormatError,
)
from bookbinder.core.models import BookEvent, BookEventKind, LoadState, Page, UnarchiveState
from bookbinder.pages import PageFactory
from bookbinder.sources import ByteSource, HttpByteSource


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
ORIGIN = "https://example.com/books/issue-1.cbt"


# =============================================================================
# Fakes and helpers
# =============================================================================

class ScriptedUnarchiver(Unarchiver):
    """Emits a fixed list of entries once the input is complete."""

    kind = "scripted"

    def __init__(self, data, listener, entries):
        super().__init__(data, listener)
        self.entries = entries

    def extract(self):
        data = self._wait_for_complete_input()
        self._emit_progress(len(self.entries), len(data) // 2)
        for name, content in self.entries:
            self._emit_entry(name, content)
        self._emit_progress(len(self.entries), len(data))


class ScriptedDetector(ArchiveDetector):

    def __init__(self, entries):
        self.entries = entries

    def create_unarchiver(self, data, listener):
        return ScriptedUnarchiver(data, listener, self.entries)


class FakePageFactory(PageFactory):
    """Builds plain pages; names in `failing` raise PageConstructionError."""

    def __init__(self, failing=()):
        self.failing = set(failing)

    async def create_page(self, data, filename):
        await asyncio.sleep(0)
        if filename in self.failing:
            raise PageConstructionError(filename, "not an image")
        return Page(filename=filename, data=data)


class ChunkedSource(ByteSource):
    """A remote streaming source serving `data` in fixed-size chunks."""

    def __init__(self, data, chunk_size=100, fail_after=None, locator=ORIGIN,
                 report_size=True, end_delay=0.0, fail_at_end=False):
        super().__init__()
        self.locator = locator
        self.streaming = True
        self.data = data
        self.chunk_size = chunk_size
        self.fail_after = fail_after
        self.end_delay = end_delay
        self.fail_at_end = fail_at_end
        self._total_size = len(data) if report_size else None

    async def chunks(self):
        for offset in range(0, len(self.data), self.chunk_size):
            if self.fail_after is not None and offset >= self.fail_after:
                raise LoadError("connection reset")
            await asyncio.sleep(0)
            yield self.data[offset:offset + self.chunk_size]
        # Hold the stream open after the last chunk, like a slow server close
        await asyncio.sleep(self.end_delay)
        if self.fail_at_end:
            raise LoadError("connection reset before end of stream")


class EventRecorder:

    def __init__(self):
        self.events: List[BookEvent] = []
        self.loading: List[float] = []
        self.unarchiving: List[float] = []

    def __call__(self, event, book):
        self.events.append(event)
        if event.kind == BookEventKind.PROGRESS:
            self.loading.append(book.get_loading_percentage())
            self.unarchiving.append(book.get_unarchiving_percentage())

    @property
    def kinds(self):
        return [e.kind for e in self.events]

    def of_kind(self, kind):
        return [e for e in self.events if e.kind == kind]


def make_zip(entries) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return buffer.getvalue()


def make_tar(entries) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.USTAR_FORMAT) as tf:
        for name, data in entries:
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def load_and_unarchive(book, buffer):
    async def _run():
        await book.load_from_local_buffer(buffer)
        await book.wait_until_unarchived()
    asyncio.run(_run())


def scripted_book(entries, failing=()):
    return Book("Issue 1", page_factory=FakePageFactory(failing), archive_detector=ScriptedDetector(entries))


THREE_PAGES = [("b.jpg", b"bb"), ("a.jpg", b"aa"), ("c.jpg", b"cc")]


# =============================================================================
# Page publication
# =============================================================================

class TestPagePublication:
    """Pages are published in sorted order after every entry has settled."""

    def test_pages_published_in_sorted_order(self):
        book = scripted_book(THREE_PAGES)
        recorder = EventRecorder()
        book.subscribe("reader", recorder)

        load_and_unarchive(book, b"\x00" * 64)

        ready = recorder.of_kind(BookEventKind.PAGE_READY)
        assert [(e.page.filename, e.sequence_number) for e in ready] == [("a.jpg", 1), ("b.jpg", 2), ("c.jpg", 3)]
        assert recorder.kinds.count(BookEventKind.EXTRACTION_COMPLETE) == 1
        assert recorder.kinds[-1] == BookEventKind.EXTRACTION_COMPLETE
        assert BookEventKind.PAGES_WARNING not in recorder.kinds
        assert book.get_number_of_pages() == 3
        assert [p.filename for p in book.ready_pages] == ["a.jpg", "b.jpg", "c.jpg"]

    def test_ready_to_extract_precedes_pages(self):
        book = scripted_book(THREE_PAGES)
        recorder = EventRecorder()
        book.subscribe("reader", recorder)

        load_and_unarchive(book, b"\x00" * 64)

        kinds = recorder.kinds
        assert kinds.count(BookEventKind.READY_TO_EXTRACT) == 1
        assert kinds.index(BookEventKind.READY_TO_EXTRACT) < kinds.index(BookEventKind.PAGE_READY)

    def test_sort_is_case_insensitive(self):
        book = scripted_book([("B.jpg", b"1"), ("a.jpg", b"2"), ("C.jpg", b"3")])

        load_and_unarchive(book, b"\x00" * 64)

        assert [p.filename for p in book.ready_pages] == ["a.jpg", "B.jpg", "C.jpg"]

    def test_failed_page_reported_once(self):
        book = scripted_book(THREE_PAGES, failing={"b.jpg"})
        recorder = EventRecorder()
        book.subscribe("reader", recorder)

        load_and_unarchive(book, b"\x00" * 64)

        ready = recorder.of_kind(BookEventKind.PAGE_READY)
        assert [(e.page.filename, e.sequence_number) for e in ready] == [("a.jpg", 1), ("c.jpg", 2)]
        warnings = recorder.of_kind(BookEventKind.PAGES_WARNING)
        assert len(warnings) == 1
        assert [f.filename for f in warnings[0].failures] == ["b.jpg"]
        assert recorder.kinds[-1] == BookEventKind.EXTRACTION_COMPLETE
        assert book.get_number_of_pages() == 2
        assert book.unarchive_state == UnarchiveState.UNARCHIVED

    def test_declared_count_before_completion(self):
        book = scripted_book(THREE_PAGES, failing={"b.jpg"})
        seen = []
        book.subscribe(
            "counter",
            lambda event, b: seen.append(b.get_number_of_pages()) if event.kind == BookEventKind.PROGRESS else None,
        )

        load_and_unarchive(book, b"\x00" * 64)

        assert 3 in seen
        assert book.declared_page_count == 3
        assert book.get_number_of_pages() == 2

    def test_real_zip_with_default_factory(self):
        data = make_zip([("02.png", PNG), ("01.png", PNG), ("Thumbs.db", b"\x00\x01")])
        book = Book("Issue 1")
        recorder = EventRecorder()
        book.subscribe("reader", recorder)

        load_and_unarchive(book, data)

        assert [p.filename for p in book.ready_pages] == ["01.png", "02.png"]
        assert book.ready_pages[0].mime_type == "image/png"
        assert len(recorder.of_kind(BookEventKind.PAGES_WARNING)) == 1

    def test_empty_archive_completes_with_no_pages(self):
        book = Book("Empty")
        recorder = EventRecorder()
        book.subscribe("reader", recorder)

        load_and_unarchive(book, make_zip([]))

        assert book.get_number_of_pages() == 0
        assert recorder.kinds[-1] == BookEventKind.EXTRACTION_COMPLETE
        assert BookEventKind.PAGE_READY not in recorder.kinds


# =============================================================================
# Queries
# =============================================================================

class TestGetPage:

    def test_out_of_range(self):
        book = scripted_book(THREE_PAGES)
        assert book.get_page(0) is None

        load_and_unarchive(book, b"\x00" * 64)

        assert book.get_page(0).filename == "a.jpg"
        assert book.get_page(2).filename == "c.jpg"
        assert book.get_page(3) is None
        assert book.get_page(-1) is None

    def test_initial_state(self):
        book = Book("Issue 1")

        assert book.get_name() == "Issue 1"
        assert book.load_state == LoadState.NOT_LOADED
        assert book.unarchive_state == UnarchiveState.NOT_UNARCHIVED
        assert book.get_loading_percentage() == 0.0
        assert book.get_unarchiving_percentage() == 0.0
        assert book.get_number_of_pages() == 0
        assert not book.is_ready_to_unarchive()


# =============================================================================
# Subscriptions
# =============================================================================

class TestSubscriptions:

    def test_unsubscribe_during_progress(self):
        book = scripted_book(THREE_PAGES)
        received = []

        def once(event, b):
            received.append(event.kind)
            if event.kind == BookEventKind.PROGRESS:
                b.unsubscribe("once")

        book.subscribe("once", once)
        load_and_unarchive(book, b"\x00" * 64)

        assert received == [BookEventKind.PROGRESS]

    def test_failing_subscriber_does_not_break_load(self):
        book = scripted_book(THREE_PAGES)
        recorder = EventRecorder()
        book.subscribe("broken", MagicMock(side_effect=RuntimeError("boom")))
        book.subscribe("reader", recorder)

        load_and_unarchive(book, b"\x00" * 64)

        assert recorder.kinds[-1] == BookEventKind.EXTRACTION_COMPLETE


# =============================================================================
# State guards
# =============================================================================

class TestStateGuards:

    def test_second_load_rejected(self):
        book = scripted_book(THREE_PAGES)
        load_and_unarchive(book, b"\x00" * 64)

        with pytest.raises(InvalidStateError):
            asyncio.run(book.load_from_local_buffer(b"\x00" * 64))

        assert book.load_state == LoadState.LOADED
        assert book.unarchive_state == UnarchiveState.UNARCHIVED
        assert book.get_number_of_pages() == 3

    def test_local_buffer_rejected_for_book_with_origin(self):
        book = Book("Remote", origin=ORIGIN)

        with pytest.raises(InvalidStateError):
            asyncio.run(book.load_from_local_buffer(make_zip([("a.png", PNG)])))

        assert book.load_state == LoadState.NOT_LOADED

    def test_remote_source_rejected_for_local_book(self):
        book = Book("Local")

        with pytest.raises(InvalidStateError):
            asyncio.run(book.load_from_byte_source(HttpByteSource(ORIGIN)))

        assert book.load_state == LoadState.NOT_LOADED

    def test_load_from_origin_requires_origin(self):
        with pytest.raises(InvalidStateError):
            asyncio.run(Book("Local").load_from_origin())

    def test_wait_before_load_rejected(self):
        with pytest.raises(InvalidStateError):
            asyncio.run(Book("Local").wait_until_unarchived())


# =============================================================================
# Failures
# =============================================================================

class TestFailures:

    def test_unsupported_buffer(self):
        book = Book("Mystery")
        recorder = EventRecorder()
        book.subscribe("reader", recorder)

        with pytest.raises(UnsupportedFormatError):
            asyncio.run(book.load_from_local_buffer(b"\x00" * 1000))

        assert BookEventKind.READY_TO_EXTRACT not in recorder.kinds
        assert book.load_state == LoadState.LOADED
        assert book.unarchive_state == UnarchiveState.UNARCHIVING_ERROR
        assert isinstance(book.unarchive_error, UnsupportedFormatError)

    def test_corrupted_zip(self):
        book = Book("Broken")
        recorder = EventRecorder()
        book.subscribe("reader", recorder)
        data = make_zip([("a.png", PNG * 10)])[:-30]

        with pytest.raises(CorruptedArchiveError):
            load_and_unarchive(book, data)

        errors = recorder.of_kind(BookEventKind.EXTRACTION_ERROR)
        assert len(errors) == 1
        assert isinstance(errors[0].error, CorruptedArchiveError)
        assert BookEventKind.EXTRACTION_COMPLETE not in recorder.kinds
        assert book.unarchive_state == UnarchiveState.UNARCHIVING_ERROR
        assert book.get_number_of_pages() == 0

    def test_transfer_failure_mid_stream(self):
        book = Book("Remote", origin=ORIGIN)
        recorder = EventRecorder()
        book.subscribe("reader", recorder)
        data = make_tar([("p%02d.png" % i, PNG * 20) for i in range(6)])
        source = ChunkedSource(data, chunk_size=300, fail_after=900)

        async def _run():
            with pytest.raises(LoadError):
                await book.load_from_byte_source(source)
            with pytest.raises(LoadError):
                await book.wait_until_unarchived()

        asyncio.run(_run())

        assert book.load_state == LoadState.LOADING_ERROR
        assert book.unarchive_state == UnarchiveState.UNARCHIVING_ERROR
        assert isinstance(book.load_error, LoadError)
        assert len(recorder.of_kind(BookEventKind.EXTRACTION_ERROR)) == 1
        assert BookEventKind.EXTRACTION_COMPLETE not in recorder.kinds


# =============================================================================
# Progress and streaming
# =============================================================================

class TestProgress:

    def test_percentages_are_monotonic_and_complete(self):
        data = make_tar([("p%02d.png" % i, PNG * 20) for i in range(6)])
        book = Book("Remote", origin=ORIGIN)
        recorder = EventRecorder()
        book.subscribe("reader", recorder)

        async def _run():
            await book.load_from_byte_source(ChunkedSource(data, chunk_size=256))
            await book.wait_until_unarchived()

        asyncio.run(_run())

        assert recorder.loading == sorted(recorder.loading)
        assert recorder.unarchiving == sorted(recorder.unarchiving)
        assert book.get_loading_percentage() == 1.0
        assert book.get_unarchiving_percentage() == 1.0
        assert all(0.0 <= pct <= 1.0 for pct in recorder.loading + recorder.unarchiving)

    def test_streaming_tar_extracts_all_pages(self):
        data = make_tar([("p%02d.png" % i, PNG * 20) for i in reversed(range(6))])
        book = Book("Remote", origin=ORIGIN)
        recorder = EventRecorder()
        book.subscribe("reader", recorder)

        async def _run():
            await book.load_from_byte_source(ChunkedSource(data, chunk_size=128))
            assert book.load_state == LoadState.LOADED
            await book.wait_until_unarchived()

        asyncio.run(_run())

        assert [p.filename for p in book.ready_pages] == ["p%02d.png" % i for i in range(6)]
        assert book.expected_size_bytes == len(data)
        assert book.unarchive_state == UnarchiveState.UNARCHIVED
        assert recorder.kinds[-1] == BookEventKind.EXTRACTION_COMPLETE

    def test_ready_to_extract_reports_ready_state(self):
        data = make_tar([("a.png", PNG)])
        book = Book("Remote", origin=ORIGIN)
        states = []

        async def _run():
            await book.load_from_byte_source(ChunkedSource(data, chunk_size=100))
            await book.wait_until_unarchived()

        book.subscribe(
            "states",
            lambda event, b: states.append(b.unarchive_state) if event.kind == BookEventKind.READY_TO_EXTRACT else None,
        )
        asyncio.run(_run())

        assert states == [UnarchiveState.READY_FOR_UNARCHIVING]
        assert [p.filename for p in book.ready_pages] == ["a.png"]

    def test_short_stream_detected_at_end_of_transfer(self):
        data = make_zip([])
        assert len(data) < 262
        book = Book("Remote", origin=ORIGIN)
        recorder = EventRecorder()
        book.subscribe("reader", recorder)

        async def _run():
            await book.load_from_byte_source(ChunkedSource(data, chunk_size=8))
            await book.wait_until_unarchived()

        asyncio.run(_run())

        assert recorder.kinds.count(BookEventKind.READY_TO_EXTRACT) == 1
        assert recorder.kinds[-1] == BookEventKind.EXTRACTION_COMPLETE


# =============================================================================
# Completion ordering
# =============================================================================

class TestCompletionWaitsForLoad:
    """An archive can finish extracting before its transfer has ended."""

    def _tar(self):
        return make_tar([("b.png", PNG), ("a.png", PNG)])

    def test_completion_is_last_event_when_stream_ends_late(self):
        book = Book("Remote", origin=ORIGIN)
        recorder = EventRecorder()
        load_states = []
        book.subscribe("reader", recorder)
        book.subscribe(
            "states",
            lambda event, b: load_states.append(b.load_state)
            if event.kind == BookEventKind.EXTRACTION_COMPLETE else None,
        )
        source = ChunkedSource(self._tar(), chunk_size=512, report_size=False, end_delay=0.3)

        async def _run():
            await book.load_from_byte_source(source)
            await book.wait_until_unarchived()

        asyncio.run(_run())

        assert recorder.kinds[-1] == BookEventKind.EXTRACTION_COMPLETE
        assert load_states == [LoadState.LOADED]
        assert recorder.loading[-1] == 1.0
        assert [p.filename for p in book.ready_pages] == ["a.png", "b.png"]
        assert book.load_state == LoadState.LOADED
        assert book.unarchive_state == UnarchiveState.UNARCHIVED

    def test_transfer_failure_after_archive_end_fails_extraction(self):
        book = Book("Remote", origin=ORIGIN)
        recorder = EventRecorder()
        book.subscribe("reader", recorder)
        source = ChunkedSource(self._tar(), chunk_size=512, end_delay=0.3, fail_at_end=True)

        async def _run():
            with pytest.raises(LoadError):
                await book.load_from_byte_source(source)
            with pytest.raises(LoadError):
                await book.wait_until_unarchived()

        asyncio.run(_run())

        assert book.load_state == LoadState.LOADING_ERROR
        assert book.unarchive_state == UnarchiveState.UNARCHIVING_ERROR
        assert len(recorder.of_kind(BookEventKind.EXTRACTION_ERROR)) == 1
        assert BookEventKind.PAGE_READY not in recorder.kinds
        assert BookEventKind.EXTRACTION_COMPLETE not in recorder.kinds
        assert book.ready_pages == ()


# =============================================================================
# Adapter shutdown
# =============================================================================

class SlowStopUnarchiver(ScriptedUnarchiver):
    """Takes a while to shut down, like a worker stuck in a long read."""

    def stop(self, timeout=5.0):
        time.sleep(0.2)
        super().stop(timeout)


class SlowStopDetector(ArchiveDetector):

    def create_unarchiver(self, data, listener):
        return SlowStopUnarchiver(data, listener, [])


class TestAdapterStop:

    def test_stop_does_not_block_event_loop(self):
        async def _run():
            adapter = ArchiveExtractionAdapter(MagicMock(), b"\x00" * 16, SlowStopDetector(), MagicMock())
            adapter.start()
            ticks = 0

            async def ticker():
                nonlocal ticks
                while True:
                    ticks += 1
                    await asyncio.sleep(0.01)

            task = asyncio.create_task(ticker())
            await adapter.stop()
            task.cancel()
            return adapter, ticks

        adapter, ticks = asyncio.run(_run())

        assert ticks >= 5
        assert not adapter.is_active
