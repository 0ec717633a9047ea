"""TAR (cbt) extraction, streamed as bytes arrive."""

import tarfile

from bookbinder.archive import Unarchiver, is_safe_entry_name, register_unarchiver
from bookbinder.core.errors import CorruptedArchiveError
from bookbinder.core.logger import setup_logger

logger = setup_logger(__name__)


class _IncrementalReader:
    """File-like view over an unarchiver's growing buffer."""

    def __init__(self, unarchiver: "TarUnarchiver"):
        self._unarchiver = unarchiver

    def read(self, size: int = -1) -> bytes:
        return self._unarchiver._read(size)


@register_unarchiver("tar", signatures=(b"ustar",), offset=257)
class TarUnarchiver(Unarchiver):
    """Extracts TAR archives entry by entry without waiting for the full buffer.

    The number of entries is unknown until the end of the stream, so the
    reported total grows as members are encountered.
    """

    def extract(self) -> None:
        entries_seen = 0
        try:
            with tarfile.open(fileobj=_IncrementalReader(self), mode="r|") as tf:
                for member in tf:
                    if not member.isfile():
                        continue
                    entries_seen += 1
                    if not is_safe_entry_name(member.name):
                        self._emit_progress(entries_seen, self._bytes_consumed)
                        continue
                    src = tf.extractfile(member)
                    content = src.read() if src is not None else b""
                    logger.debug(f"Extracted: {member.name}")
                    self._emit_progress(entries_seen, self._bytes_consumed)
                    self._emit_entry(member.name, content)
        except tarfile.TarError as e:
            raise CorruptedArchiveError(f"Invalid or corrupted TAR: {e}") from e
