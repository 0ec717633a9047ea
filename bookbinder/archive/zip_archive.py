"""ZIP (cbz) extraction."""

import zipfile
from io import BytesIO

from bookbinder.archive import Unarchiver, is_safe_entry_name, register_unarchiver
from bookbinder.core.errors import ArchiveExtractionError, CorruptedArchiveError, PasswordProtectedError
from bookbinder.core.logger import setup_logger

logger = setup_logger(__name__)


@register_unarchiver("zip", signatures=(b"PK\x03\x04", b"PK\x05\x06"))
class ZipUnarchiver(Unarchiver):
    """Extracts ZIP archives once the whole buffer is available.

    The central directory sits at the end of a ZIP file, so nothing can be
    listed before finish_input().
    """

    def extract(self) -> None:
        data = self._wait_for_complete_input()
        try:
            with zipfile.ZipFile(BytesIO(data), "r") as zf:
                entries = [info for info in zf.infolist() if not info.is_dir()]

                # Check for password protection
                for info in entries:
                    if info.flag_bits & 0x1:  # Encrypted flag
                        raise PasswordProtectedError("ZIP archive is password protected")

                self._emit_progress(len(entries), 0)
                compressed_read = 0
                for info in entries:
                    compressed_read += info.compress_size
                    if not is_safe_entry_name(info.filename):
                        self._emit_progress(len(entries), compressed_read)
                        continue
                    with zf.open(info) as src:
                        content = src.read()
                    logger.debug(f"Extracted: {info.filename}")
                    self._emit_progress(len(entries), compressed_read)
                    self._emit_entry(info.filename, content)

        except zipfile.BadZipFile as e:
            raise CorruptedArchiveError(f"Invalid or corrupted ZIP: {e}") from e
        except NotImplementedError as e:
            # Compression method not supported by zipfile
            raise ArchiveExtractionError(f"Unsupported ZIP compression: {e}") from e
