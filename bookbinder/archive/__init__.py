"""
Archive extraction infrastructure.

This module provides:
- UnarchiveSignalKind / UnarchiveSignal: normalized notifications from an extractor
- Unarchiver: base class that extracts entries on a worker thread
- Unarchiver registry keyed by leading-byte signatures
- ArchiveDetector / RegistryArchiveDetector: picks the unarchiver for a buffer

Unarchivers register themselves via the @register_unarchiver decorator.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Type

from bookbinder.core.errors import ArchiveExtractionError, UnsupportedFormatError
from bookbinder.core.logger import setup_logger

logger = setup_logger(__name__)


class UnarchiveSignalKind(Enum):
    PROGRESS = "progress"
    ENTRY = "entry"
    INFO = "info"
    FINISH = "finish"
    ERROR = "error"


@dataclass(frozen=True)
class UnarchiveSignal:
    """Notification from an extractor worker (immutable)."""

    kind: UnarchiveSignalKind
    total_entries: int = 0            # PROGRESS: entries known so far
    compressed_bytes_read: int = 0    # PROGRESS: archive bytes consumed so far
    filename: str = ""                # ENTRY
    data: bytes = b""                 # ENTRY
    message: str = ""                 # INFO / ERROR
    error: Optional[BaseException] = None  # ERROR

    @classmethod
    def progress(cls, total_entries: int, compressed_bytes_read: int) -> "UnarchiveSignal":
        return cls(
            UnarchiveSignalKind.PROGRESS,
            total_entries=total_entries,
            compressed_bytes_read=compressed_bytes_read,
        )

    @classmethod
    def entry(cls, filename: str, data: bytes) -> "UnarchiveSignal":
        return cls(UnarchiveSignalKind.ENTRY, filename=filename, data=data)

    @classmethod
    def info(cls, message: str) -> "UnarchiveSignal":
        return cls(UnarchiveSignalKind.INFO, message=message)

    @classmethod
    def finish(cls) -> "UnarchiveSignal":
        return cls(UnarchiveSignalKind.FINISH)

    @classmethod
    def failure(cls, error: BaseException) -> "UnarchiveSignal":
        return cls(UnarchiveSignalKind.ERROR, message=str(error), error=error)


SignalListener = Callable[[UnarchiveSignal], None]


class Unarchiver(ABC):
    """
    Abstract base class for archive extractors.

    The unarchiver owns the archive buffer from construction until stop().
    More bytes may be appended with update() while a streaming load is in
    progress; finish_input() marks the end of the data. Extraction runs on
    a daemon thread started by start() and reports exclusively through the
    listener, ending with exactly one FINISH or ERROR signal.

    Subclasses implement extract() and call _emit_progress(), _emit_entry()
    and _emit_info(). They read input either with _wait_for_complete_input()
    or incrementally with _read().
    """

    kind: str = "unknown"

    def __init__(self, data: bytes, listener: SignalListener):
        self._buffer = bytearray(data)
        self._listener = listener
        self._input_complete = False
        self._stopped = False
        self._read_offset = 0
        self._condition = threading.Condition()
        self._thread: Optional[threading.Thread] = None

    # --- Control (event loop side) ---

    def start(self) -> None:
        if self._thread is not None:
            raise ArchiveExtractionError(f"{self.kind} unarchiver already started")
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"Unarchiver-{self.kind}",
        )
        self._thread.start()

    def update(self, data: bytes) -> None:
        """Append more archive bytes."""
        with self._condition:
            if self._input_complete:
                raise ArchiveExtractionError("Cannot add bytes after finish_input()")
            self._buffer.extend(data)
            self._condition.notify_all()

    def finish_input(self) -> None:
        """Declare that no more bytes will arrive."""
        with self._condition:
            self._input_complete = True
            self._condition.notify_all()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker and release the archive buffer."""
        with self._condition:
            self._stopped = True
            self._condition.notify_all()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"{self.kind} unarchiver worker did not stop within {timeout}s")
        self._buffer = bytearray()

    @property
    def bytes_available(self) -> int:
        with self._condition:
            return len(self._buffer)

    # --- Worker side ---

    @abstractmethod
    def extract(self) -> None:
        """Extract every entry, emitting signals as it goes."""
        raise NotImplementedError

    def _run(self) -> None:
        try:
            self.extract()
            self._emit(UnarchiveSignal.finish())
        except _Stopped:
            logger.debug(f"{self.kind} unarchiver stopped before finishing")
        except ArchiveExtractionError as e:
            self._emit_final(UnarchiveSignal.failure(e))
        except Exception as e:
            logger.error_trace(f"Unexpected {self.kind} extraction failure: {e}")
            self._emit_final(UnarchiveSignal.failure(ArchiveExtractionError(f"{type(e).__name__}: {e}")))

    def _emit_final(self, signal: UnarchiveSignal) -> None:
        if not self._stopped:
            self._listener(signal)

    def _emit(self, signal: UnarchiveSignal) -> None:
        if self._stopped:
            raise _Stopped()
        self._listener(signal)

    def _emit_progress(self, total_entries: int, compressed_bytes_read: int) -> None:
        self._emit(UnarchiveSignal.progress(total_entries, compressed_bytes_read))

    def _emit_entry(self, filename: str, data: bytes) -> None:
        self._emit(UnarchiveSignal.entry(filename, data))

    def _emit_info(self, message: str) -> None:
        self._emit(UnarchiveSignal.info(message))

    def _wait_for_complete_input(self) -> bytes:
        """Block until finish_input() has been called; return the whole buffer."""
        with self._condition:
            while not self._input_complete and not self._stopped:
                self._condition.wait()
            if self._stopped:
                raise _Stopped()
            return bytes(self._buffer)

    def _read(self, size: int = -1) -> bytes:
        """Read sequentially, blocking until bytes arrive or input is complete."""
        with self._condition:
            while True:
                if self._stopped:
                    raise _Stopped()
                available = len(self._buffer) - self._read_offset
                if size < 0:
                    if self._input_complete:
                        break
                elif available >= size or self._input_complete:
                    break
                self._condition.wait()
            end = len(self._buffer) if size < 0 else min(len(self._buffer), self._read_offset + size)
            chunk = bytes(self._buffer[self._read_offset:end])
            self._read_offset = end
            return chunk

    @property
    def _bytes_consumed(self) -> int:
        return self._read_offset


class _Stopped(Exception):
    """Internal: raised on the worker thread once stop() has been requested."""


def is_safe_entry_name(name: str) -> bool:
    """Reject empty names and names carrying NUL bytes."""
    if not name or "\x00" in name:
        logger.warning(f"Skipping suspicious filename in archive: {name!r}")
        return False
    return True


# =============================================================================
# Registry
# =============================================================================


@dataclass(frozen=True)
class UnarchiverRegistration:
    kind: str
    signatures: Sequence[bytes]
    offset: int
    unarchiver_class: Type[Unarchiver]
    priority: int = 0

    @property
    def probe_length(self) -> int:
        return self.offset + max(len(sig) for sig in self.signatures)

    def matches(self, head: bytes) -> bool:
        window = head[self.offset:]
        return any(window.startswith(sig) for sig in self.signatures)


_UNARCHIVER_REGISTRY: List[UnarchiverRegistration] = []
_UNARCHIVERS_LOADED = False


def register_unarchiver(
    kind: str,
    signatures: Sequence[bytes],
    offset: int = 0,
    priority: int = 0,
) -> Callable[[Type[Unarchiver]], Type[Unarchiver]]:
    """Decorator registering an Unarchiver subclass for the given magic bytes."""
    def decorator(cls: Type[Unarchiver]) -> Type[Unarchiver]:
        cls.kind = kind
        _UNARCHIVER_REGISTRY.append(
            UnarchiverRegistration(
                kind=kind,
                signatures=tuple(signatures),
                offset=offset,
                unarchiver_class=cls,
                priority=priority,
            )
        )
        _UNARCHIVER_REGISTRY.sort(key=lambda entry: entry.priority, reverse=True)
        return cls

    return decorator


def load_unarchivers() -> None:
    global _UNARCHIVERS_LOADED
    if _UNARCHIVERS_LOADED:
        return

    from . import rar_archive  # noqa: F401
    from . import tar_archive  # noqa: F401
    from . import zip_archive  # noqa: F401

    _UNARCHIVERS_LOADED = True


def list_unarchivers() -> List[UnarchiverRegistration]:
    load_unarchivers()
    return list(_UNARCHIVER_REGISTRY)


def resolve_unarchiver(head: bytes) -> Optional[UnarchiverRegistration]:
    load_unarchivers()
    for entry in _UNARCHIVER_REGISTRY:
        if entry.matches(head):
            return entry
    return None


# Bytes a streaming load must see before detection is attempted
SIGNATURE_PROBE_BYTES = 262


class ArchiveDetector(ABC):
    """Strategy that classifies a buffer and builds the matching unarchiver."""

    @abstractmethod
    def create_unarchiver(self, data: bytes, listener: SignalListener) -> Unarchiver:
        """Return an unarchiver for `data` or raise UnsupportedFormatError."""
        raise NotImplementedError


class RegistryArchiveDetector(ArchiveDetector):
    """Detects the archive kind from the registered leading-byte signatures."""

    def create_unarchiver(self, data: bytes, listener: SignalListener) -> Unarchiver:
        registration = resolve_unarchiver(bytes(data[:SIGNATURE_PROBE_BYTES]))
        if registration is None:
            raise UnsupportedFormatError(
                "Could not determine the archive type from its leading bytes; "
                "supported kinds: " + ", ".join(sorted({r.kind for r in list_unarchivers()}))
            )
        logger.debug(f"Detected {registration.kind} archive")
        return registration.unarchiver_class(data, listener)


__all__ = [
    "ArchiveDetector",
    "RegistryArchiveDetector",
    "SIGNATURE_PROBE_BYTES",
    "SignalListener",
    "UnarchiveSignal",
    "UnarchiveSignalKind",
    "Unarchiver",
    "UnarchiverRegistration",
    "is_safe_entry_name",
    "list_unarchivers",
    "load_unarchivers",
    "register_unarchiver",
    "resolve_unarchiver",
]
