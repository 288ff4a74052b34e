"""OCR fallback for pages with a missing or sparse text layer.

Mistral OCR is tried first for all sparse pages in one call. Any page it
could not recognize, or every page when the call itself fails, gets an
independent vision-model transcription. A page that fails both is passed
through with empty text.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from takeoff.core.exceptions import APIClientError
from takeoff.core.unified_llm import UnifiedLLMClient
from takeoff.models.chunk_models import ExtractedPage
from takeoff.repositories.ocr_repository import MistralOCRRepository
from takeoff.services.ingestion.image_renderer import PageImageRenderer
from takeoff.services.takeoff.prompt_builder import VISION_OCR_PROMPT
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class OCRExtractor:
    """Fills in text for pages the text layer could not provide."""

    def __init__(
        self,
        ocr_repository: Optional[MistralOCRRepository] = None,
        vision_client: Optional[UnifiedLLMClient] = None,
        renderer: Optional[PageImageRenderer] = None,
        min_text_chars: int = 50,
    ):
        self.ocr_repository = ocr_repository
        self.vision_client = vision_client
        self.renderer = renderer or PageImageRenderer()
        self.min_text_chars = min_text_chars

    def pages_needing_ocr(self, pages: List[ExtractedPage], force_ocr: bool = False) -> List[int]:
        if force_ocr:
            return [page.page_number for page in pages]
        return [
            page.page_number
            for page in pages
            if len(page.text.strip()) < self.min_text_chars
        ]

    async def apply(
        self,
        pdf_bytes: bytes,
        pages: List[ExtractedPage],
        source_url: Optional[str] = None,
        force_ocr: bool = False,
    ) -> Tuple[List[ExtractedPage], List[str]]:
        """Run OCR for the pages that need it.

        Returns:
            The page list with OCR text merged in, and warnings for pages
            that could not be recognized
        """
        targets = self.pages_needing_ocr(pages, force_ocr)
        if not targets:
            return pages, []

        LOGGER.info(
            f"Running OCR on {len(targets)}/{len(pages)} pages",
            extra={"pages": targets, "force_ocr": force_ocr}
        )

        recognized = await self._mistral_pass(pdf_bytes, targets, source_url)

        remaining = [page_no for page_no in targets if page_no not in recognized]
        vision_results = await self._vision_pass(pdf_bytes, remaining)
        recognized.update({k: v for k, v in vision_results.items() if v[0]})

        warnings: List[str] = []
        updated: List[ExtractedPage] = []
        for page in pages:
            if page.page_number not in targets:
                updated.append(page)
                continue

            if page.page_number in recognized:
                text, source = recognized[page.page_number]
                updated.append(page.model_copy(update={"text": text, "text_source": source}))
            elif page.text.strip():
                # Sparse text layer is better than nothing
                updated.append(page)
            else:
                warnings.append(f"OCR failed for page {page.page_number}; passing through empty text")
                updated.append(page.model_copy(update={"text": "", "text_source": "none"}))

        if warnings:
            LOGGER.warning(
                f"OCR could not recognize {len(warnings)} page(s)",
                extra={"failed_pages": len(warnings)}
            )
        return updated, warnings

    async def _mistral_pass(
        self,
        pdf_bytes: bytes,
        targets: List[int],
        source_url: Optional[str],
    ) -> Dict[int, Tuple[str, str]]:
        if self.ocr_repository is None:
            return {}

        if source_url and source_url.startswith(("http://", "https://")):
            document_url = source_url
        else:
            document_url = MistralOCRRepository.pdf_data_url(pdf_bytes)

        try:
            texts = await self.ocr_repository.call_mistral_ocr_api(document_url, pages=targets)
        except APIClientError as e:
            LOGGER.warning(
                f"Mistral OCR failed, falling back to per-page vision: {e}",
                extra={"pages": len(targets)}
            )
            return {}

        return {
            page_no: (text, "mistral_ocr")
            for page_no, text in texts.items()
            if page_no in targets and text.strip()
        }

    async def _vision_pass(self, pdf_bytes: bytes, targets: List[int]) -> Dict[int, Tuple[str, str]]:
        if not targets or self.vision_client is None:
            return {}

        images = await self.renderer.render(pdf_bytes, targets)
        results = await asyncio.gather(
            *(self._transcribe_page(page_no, images.get(page_no)) for page_no in targets)
        )
        return dict(zip(targets, results))

    async def _transcribe_page(self, page_no: int, png_bytes: Optional[bytes]) -> Tuple[str, str]:
        if not png_bytes:
            return "", "none"

        try:
            text = await self.vision_client.generate_content(
                contents=[VISION_OCR_PROMPT, {"image_bytes": png_bytes, "mime_type": "image/png"}],
                generation_config={"temperature": 0.0},
            )
        except APIClientError as e:
            LOGGER.warning(
                f"Vision transcription failed for page {page_no}: {e}",
                extra={"page": page_no}
            )
            return "", "none"

        return (text or "").strip(), "vision_ocr"
