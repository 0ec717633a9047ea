"""Page construction from extracted archive entries."""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Optional, Tuple

from bookbinder.core.errors import PageConstructionError
from bookbinder.core.models import ImagePage, Page, TextPage

# (mime type, signature, offset)
IMAGE_SIGNATURES = (
    ("image/jpeg", b"\xff\xd8\xff", 0),
    ("image/png", b"\x89PNG\r\n\x1a\n", 0),
    ("image/gif", b"GIF87a", 0),
    ("image/gif", b"GIF89a", 0),
    ("image/webp", b"WEBP", 8),
    ("image/bmp", b"BM", 0),
)

TEXT_EXTENSIONS = {'.txt', '.nfo'}


class PageFactory(ABC):
    """Builds a Page from the raw bytes of one archive entry."""

    @abstractmethod
    async def create_page(self, data: bytes, filename: str) -> Page:
        """Return the page or raise PageConstructionError."""
        raise NotImplementedError


def sniff_image_type(data: bytes) -> Optional[str]:
    for mime_type, signature, offset in IMAGE_SIGNATURES:
        if data[offset:offset + len(signature)] == signature:
            if mime_type == "image/webp" and not data.startswith(b"RIFF"):
                continue
            return mime_type
    return None


def _image_dimensions(data: bytes, mime_type: str) -> Tuple[Optional[int], Optional[int]]:
    """Read width/height from PNG and GIF headers; other formats return (None, None)."""
    if mime_type == "image/png" and len(data) >= 24:
        width, height = struct.unpack(">II", data[16:24])
        return width, height
    if mime_type == "image/gif" and len(data) >= 10:
        width, height = struct.unpack("<HH", data[6:10])
        return width, height
    return None, None


class ImagePageFactory(PageFactory):
    """Recognizes common image formats by signature and plain-text notes by extension."""

    async def create_page(self, data: bytes, filename: str) -> Page:
        if not data:
            raise PageConstructionError(filename, "entry is empty")

        mime_type = sniff_image_type(data)
        if mime_type:
            width, height = _image_dimensions(data, mime_type)
            return ImagePage(filename=filename, data=data, mime_type=mime_type, width=width, height=height)

        if PurePosixPath(filename).suffix.lower() in TEXT_EXTENSIONS:
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise PageConstructionError(filename, f"text is not valid UTF-8: {e}") from e
            return TextPage(filename=filename, data=data, mime_type="text/plain", text=text)

        raise PageConstructionError(filename, "unknown file type")
