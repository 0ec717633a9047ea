"""Environment-driven bootstrap values.

These are read once at import time. Runtime settings that may be changed
while the process runs live in `bookbinder.core.config`.
"""

import os
from pathlib import Path


def string_to_bool(s: str) -> bool:
    return s.strip().lower() in ["true", "yes", "1", "y", "on"]


DEBUG = string_to_bool(os.getenv("DEBUG", "false"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()
ENABLE_LOGGING = string_to_bool(os.getenv("ENABLE_LOGGING", "false"))
LOG_DIR = Path(os.getenv("LOG_DIR", "./logs"))
LOG_FILE_NAME = os.getenv("LOG_FILE_NAME", "bookbinder.log")
LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "3"))

# Prefix for runtime setting overrides, e.g. BOOKBINDER_CHUNK_SIZE=65536
SETTINGS_ENV_PREFIX = "BOOKBINDER_"
