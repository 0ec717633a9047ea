"""Exception taxonomy for loading and unarchiving books."""

from typing import Optional


class BookError(Exception):
    """Base class for all errors raised by the book pipeline."""

    pass


class InvalidStateError(BookError):
    """Raised when an operation is invoked in the wrong lifecycle state."""

    pass


class LoadError(BookError):
    """Raised when the bytes of a book could not be transferred."""

    pass


class ArchiveExtractionError(BookError):
    """Raised when archive extraction fails."""

    pass


class UnsupportedFormatError(ArchiveExtractionError):
    """Raised when no known archive kind matches the leading bytes."""

    pass


class PasswordProtectedError(ArchiveExtractionError):
    """Raised when archive requires a password."""

    pass


class CorruptedArchiveError(ArchiveExtractionError):
    """Raised when archive is corrupted."""

    pass


class PageConstructionError(BookError):
    """Raised when a single extracted entry cannot be turned into a page."""

    def __init__(self, filename: str, reason: Optional[str] = None):
        self.filename = filename
        self.reason = reason
        message = f"Could not build page from {filename!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
