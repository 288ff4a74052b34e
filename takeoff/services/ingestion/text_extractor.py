"""Text-layer extraction with pdfplumber.

pdfplumber is synchronous, so extraction runs in a worker thread and is
bounded by a wall-clock timeout.
"""

import asyncio
import time
from io import BytesIO
from typing import List

import pdfplumber
from pdfminer.pdfparser import PDFSyntaxError

from takeoff.core.exceptions import ExtractionError, ExtractionTimeoutError
from takeoff.models.chunk_models import ExtractedPage, TextItem
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class TextLayerExtractor:
    """Extracts per-page text and positioned words from the PDF text layer."""

    def __init__(self, timeout_seconds: int = 300):
        self.timeout_seconds = timeout_seconds

    async def extract(self, pdf_bytes: bytes) -> List[ExtractedPage]:
        """Extract every page of the document.

        Raises:
            ExtractionTimeoutError: If extraction exceeds the timeout
            ExtractionError: If the PDF cannot be parsed at all
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.extract_sync, pdf_bytes),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            LOGGER.error(
                f"Text extraction timed out after {self.timeout_seconds}s",
                extra={"timeout_seconds": self.timeout_seconds}
            )
            raise ExtractionTimeoutError(
                f"Stage 'extracting' timed out after {self.timeout_seconds}s",
                original_error=e,
            ) from e

    def extract_sync(self, pdf_bytes: bytes) -> List[ExtractedPage]:
        start_time = time.time()
        pages: List[ExtractedPage] = []

        try:
            with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
                total_pages = len(pdf.pages)
                for page_num, page in enumerate(pdf.pages, start=1):
                    pages.append(self._extract_page(page, page_num))

                    if page_num % 20 == 0 or page_num == total_pages:
                        LOGGER.debug(
                            f"Progress: {page_num}/{total_pages} pages extracted",
                            extra={"pages_extracted": page_num, "total_pages": total_pages}
                        )
        except (PDFSyntaxError, ValueError, KeyError) as e:
            LOGGER.error(f"Failed to parse PDF: {e}", exc_info=True)
            raise ExtractionError(f"Failed to parse PDF: {e}", original_error=e) from e

        LOGGER.info(
            f"Text layer extracted: {len(pages)} pages in {time.time() - start_time:.2f}s",
            extra={
                "total_pages": len(pages),
                "pages_with_text": sum(1 for p in pages if p.has_text_layer),
            }
        )
        return pages

    @staticmethod
    def _extract_page(page, page_num: int) -> ExtractedPage:
        text = page.extract_text() or ""
        words = page.extract_words(extra_attrs=["size"]) or []

        items = [
            TextItem(
                text=word["text"],
                x=float(word["x0"]),
                y=float(word["top"]),
                font_size=float(word["size"]) if word.get("size") is not None else None,
            )
            for word in words
        ]

        return ExtractedPage(
            page_number=page_num,
            text=text,
            text_items=items,
            width=float(page.width),
            height=float(page.height),
            rotation=int(getattr(page, "rotation", 0) or 0),
            has_text_layer=bool(text.strip()),
            has_image=bool(page.images),
            text_source="text_layer" if text.strip() else "none",
        )
