"""PDF loading from URLs or the local filesystem."""

import asyncio
from pathlib import Path
from typing import List, Optional, Sequence

import httpx

from takeoff.core.exceptions import DocumentDownloadError
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

_ACCEPTED_CONTENT_TYPES = ("application/pdf", "application/octet-stream", "binary/octet-stream")


class PdfLoader:
    """Fetches PDF bytes with bounded retries and a size limit.

    http(s) sources are downloaded with the injected client; anything else
    is treated as a local path.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        attempts: int = 3,
        retry_delays: Sequence[float] = (1.0, 2.0, 4.0),
        max_bytes: int = 500 * 1024 * 1024,
        timeout: int = 60,
    ):
        self.http_client = http_client
        self.attempts = max(1, attempts)
        self.retry_delays: List[float] = list(retry_delays) or [0.0]
        self.max_bytes = max_bytes
        self.timeout = timeout

    async def load(self, source: str) -> bytes:
        """Load a PDF.

        Raises:
            DocumentDownloadError: If the PDF cannot be fetched or is invalid
        """
        if source.startswith(("http://", "https://")):
            return await self._download(source)
        return self._read_local(source)

    def _read_local(self, source: str) -> bytes:
        LOGGER.debug(
            "Loading PDF from local filesystem",
            extra={"path": source, "source": "local"}
        )
        path = Path(source)
        if not path.is_file():
            raise DocumentDownloadError(f"PDF file not found: {source}", url=source)

        size = path.stat().st_size
        if size > self.max_bytes:
            raise DocumentDownloadError(
                f"PDF exceeds size limit ({size} > {self.max_bytes} bytes): {source}",
                url=source,
            )
        return self._check_pdf(path.read_bytes(), source)

    async def _download(self, url: str) -> bytes:
        last_error: Optional[Exception] = None

        for attempt in range(self.attempts):
            try:
                content = await self._fetch(url)
                LOGGER.info(
                    f"Downloaded PDF ({len(content)} bytes)",
                    extra={"url": url, "size_bytes": len(content), "attempt": attempt + 1}
                )
                return self._check_pdf(content, url)

            except DocumentDownloadError:
                # Size and content-type failures will not improve on retry
                raise

            except (httpx.HTTPError, OSError) as e:
                last_error = e
                LOGGER.warning(
                    f"PDF download failed (Attempt {attempt + 1}/{self.attempts}): {e}",
                    extra={"url": url, "error_type": type(e).__name__}
                )
                if attempt < self.attempts - 1:
                    delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
                    await asyncio.sleep(delay)

        raise DocumentDownloadError(
            f"Failed to download PDF from {url} after {self.attempts} attempts: {last_error}",
            url=url,
            original_error=last_error,
        )

    async def _fetch(self, url: str) -> bytes:
        if self.http_client is not None:
            return await self._stream(self.http_client, url)
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            return await self._stream(client, url)

    async def _stream(self, client: httpx.AsyncClient, url: str) -> bytes:
        async with client.stream("GET", url, headers={"Accept": "application/pdf, */*"}) as response:
            response.raise_for_status()

            content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
            if content_type and content_type not in _ACCEPTED_CONTENT_TYPES:
                raise DocumentDownloadError(
                    f"Unexpected content type '{content_type}' for {url}",
                    url=url,
                )

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                raise DocumentDownloadError(
                    f"PDF exceeds size limit ({declared} > {self.max_bytes} bytes): {url}",
                    url=url,
                )

            buffer = bytearray()
            async for block in response.aiter_bytes():
                buffer.extend(block)
                if len(buffer) > self.max_bytes:
                    raise DocumentDownloadError(
                        f"PDF exceeds size limit of {self.max_bytes} bytes: {url}",
                        url=url,
                    )
            return bytes(buffer)

    @staticmethod
    def _check_pdf(content: bytes, source: str) -> bytes:
        if not content.lstrip()[:5].startswith(b"%PDF"):
            raise DocumentDownloadError(f"Source is not a PDF document: {source}", url=source)
        return content
