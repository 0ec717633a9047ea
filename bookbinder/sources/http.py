"""HTTP byte source with retry on connect and transfer progress reporting."""

from __future__ import annotations

import asyncio
import random
import time
from typing import AsyncIterator, Dict, Iterator, Optional

import requests
from tqdm import tqdm

from bookbinder.core.config import config as app_config
from bookbinder.core.errors import LoadError
from bookbinder.core.logger import setup_logger
from bookbinder.sources import ByteSource, default_chunk_size

logger = setup_logger(__name__)

RETRYABLE_CODES = (429, 500, 502, 503, 504)
CONNECTION_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout,
                     requests.exceptions.SSLError, requests.exceptions.ChunkedEncodingError)
DOWNLOAD_HEADERS = {
    'Accept': 'application/zip,application/x-rar-compressed,application/x-tar,application/octet-stream,*/*;q=0.8',
    'Accept-Encoding': 'identity',
}


def _backoff_delay(attempt: int, base: float = 0.25, cap: float = 3.0) -> float:
    """Exponential backoff with jitter."""
    return min(cap, base * (2 ** (attempt - 1))) + random.random() * base


def _get_status_code(e: Exception) -> Optional[int]:
    """Extract HTTP status code from an exception, or None if not applicable."""
    if isinstance(e, requests.exceptions.HTTPError) and e.response is not None:
        return e.response.status_code
    return None


def _is_retryable_error(e: Exception) -> bool:
    """Check if error is retryable (connection error or retryable HTTP status)."""
    if isinstance(e, CONNECTION_ERRORS):
        return True
    status = _get_status_code(e)
    return status is not None and status in RETRYABLE_CODES


def _parse_content_length(response: requests.Response) -> Optional[int]:
    try:
        length = int(response.headers.get('content-length', 0))
    except (TypeError, ValueError):
        return None
    return length if length > 0 else None


class HttpByteSource(ByteSource):
    """Streams a book over HTTP(S).

    Only opening the transfer is retried; once bytes have been handed out a
    failure is final and surfaces as LoadError.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        streaming: bool = True,
        chunk_size: Optional[int] = None,
        max_retry: Optional[int] = None,
    ):
        super().__init__()
        self.locator = url
        self.streaming = streaming
        self.headers = {**DOWNLOAD_HEADERS, **(headers or {})}
        self.chunk_size = chunk_size or default_chunk_size()
        self.max_retry = max_retry if max_retry is not None else int(app_config.get("MAX_RETRY", 3))

    @property
    def url(self) -> str:
        return self.locator or ""

    def _timeout(self) -> tuple:
        return (
            float(app_config.get("REQUEST_TIMEOUT_CONNECT", 5.0)),
            float(app_config.get("REQUEST_TIMEOUT_READ", 10.0)),
        )

    def _open(self) -> requests.Response:
        """Issue the GET request, retrying transient failures (runs in a worker thread)."""
        attempts = max(1, self.max_retry)
        for attempt in range(1, attempts + 1):
            try:
                logger.info(f"Downloading: {self.url} (attempt {attempt}/{attempts})")
                response = requests.get(self.url, stream=True, timeout=self._timeout(), headers=self.headers)
                response.raise_for_status()
                return response
            except requests.exceptions.RequestException as e:
                status = _get_status_code(e)
                if not _is_retryable_error(e) or attempt >= attempts:
                    if status:
                        raise LoadError(f"Download failed ({status}): {self.url}") from e
                    raise LoadError(f"Download failed: {type(e).__name__}: {e}") from e
                logger.warning(f"Retry {attempt}/{attempts} for {self.url}: {type(e).__name__}: {e}")
                time.sleep(_backoff_delay(attempt))
        raise LoadError(f"Download failed after {attempts} attempts: {self.url}")

    async def chunks(self) -> AsyncIterator[bytes]:
        response = await asyncio.to_thread(self._open)
        self._total_size = _parse_content_length(response)
        pbar = tqdm(
            total=self._total_size,
            unit='B',
            unit_scale=True,
            desc='Downloading',
            disable=not app_config.get("SHOW_DOWNLOAD_PROGRESS", True),
        )
        bytes_downloaded = 0
        try:
            iterator: Iterator[bytes] = response.iter_content(chunk_size=self.chunk_size)
            while True:
                try:
                    chunk = await asyncio.to_thread(next, iterator, None)
                except requests.exceptions.RequestException as e:
                    raise LoadError(
                        f"Transfer interrupted after {bytes_downloaded} bytes: {type(e).__name__}: {e}"
                    ) from e
                if chunk is None:
                    break
                if not chunk:
                    continue
                bytes_downloaded += len(chunk)
                pbar.update(len(chunk))
                yield chunk
        finally:
            pbar.close()
            response.close()

        if self._total_size and bytes_downloaded < self._total_size:
            raise LoadError(
                f"Transfer ended early: received {bytes_downloaded} of {self._total_size} bytes from {self.url}"
            )
        logger.debug(f"Download completed: {bytes_downloaded} bytes")
