"""RAR (cbr) extraction via the rarfile library."""

from io import BytesIO

import rarfile

from bookbinder.archive import Unarchiver, is_safe_entry_name, register_unarchiver
from bookbinder.core.errors import ArchiveExtractionError, CorruptedArchiveError, PasswordProtectedError
from bookbinder.core.logger import setup_logger

logger = setup_logger(__name__)


@register_unarchiver("rar", signatures=(b"Rar!\x1a\x07\x00", b"Rar!\x1a\x07\x01\x00"))
class RarUnarchiver(Unarchiver):
    """Extracts RAR archives once the whole buffer is available.

    Compressed entries need the external `unrar` (or compatible) tool that
    rarfile drives.
    """

    def extract(self) -> None:
        data = self._wait_for_complete_input()
        try:
            with rarfile.RarFile(BytesIO(data), "r") as rf:
                # Check for password protection
                if rf.needs_password():
                    raise PasswordProtectedError("RAR archive is password protected")

                entries = [info for info in rf.infolist() if not info.is_dir()]
                self._emit_progress(len(entries), 0)
                compressed_read = 0
                for info in entries:
                    compressed_read += info.compress_size
                    if not is_safe_entry_name(info.filename):
                        self._emit_progress(len(entries), compressed_read)
                        continue
                    content = rf.read(info)
                    logger.debug(f"Extracted: {info.filename}")
                    self._emit_progress(len(entries), compressed_read)
                    self._emit_entry(info.filename, content)

        except rarfile.PasswordRequired as e:
            raise PasswordProtectedError("RAR archive is password protected") from e
        except rarfile.BadRarFile as e:
            raise CorruptedArchiveError(f"Invalid or corrupted RAR: {e}") from e
        except rarfile.RarCannotExec as e:
            raise ArchiveExtractionError("unrar binary not found - install unrar package") from e
        except rarfile.Error as e:
            raise ArchiveExtractionError(f"RAR extraction failed: {e}") from e
