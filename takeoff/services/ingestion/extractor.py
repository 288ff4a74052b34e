"""Per-document extraction: text layer, OCR fallback and page images."""

from typing import List, Optional

from pydantic import BaseModel, Field

from takeoff.models.chunk_models import ExtractedPage
from takeoff.services.ingestion.image_renderer import PageImageRenderer, PageImageStore
from takeoff.services.ingestion.ocr_extractor import OCRExtractor
from takeoff.services.ingestion.text_extractor import TextLayerExtractor
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ExtractionResult(BaseModel):
    pages: List[ExtractedPage] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def has_any_text(self) -> bool:
        return any(page.text.strip() for page in self.pages)


class PlanExtractor:
    """Turns PDF bytes into ordered ExtractedPage records."""

    def __init__(
        self,
        text_extractor: TextLayerExtractor,
        ocr_extractor: Optional[OCRExtractor] = None,
        image_store: Optional[PageImageStore] = None,
        renderer: Optional[PageImageRenderer] = None,
    ):
        self.text_extractor = text_extractor
        self.ocr_extractor = ocr_extractor
        self.image_store = image_store
        self.renderer = renderer or PageImageRenderer()

    async def extract(
        self,
        pdf_bytes: bytes,
        plan_id: str,
        source_url: Optional[str] = None,
        include_images: bool = False,
        force_ocr: bool = False,
    ) -> ExtractionResult:
        """Extract every page of one PDF.

        Raises:
            ExtractionTimeoutError: If the text layer cannot be read in time
            ExtractionError: If the PDF cannot be parsed
        """
        pages = await self.text_extractor.extract(pdf_bytes)
        warnings: List[str] = []

        if self.ocr_extractor is not None:
            pages, ocr_warnings = await self.ocr_extractor.apply(
                pdf_bytes, pages, source_url=source_url, force_ocr=force_ocr
            )
            warnings.extend(ocr_warnings)

        if include_images and self.image_store is not None:
            pages = await self._attach_images(pdf_bytes, plan_id, pages, warnings)

        LOGGER.info(
            f"Extracted {len(pages)} pages for plan {plan_id}",
            extra={
                "plan_id": plan_id,
                "ocr_pages": sum(1 for p in pages if p.text_source in ("mistral_ocr", "vision_ocr")),
                "empty_pages": sum(1 for p in pages if not p.text.strip()),
                "warnings": len(warnings),
            }
        )
        return ExtractionResult(pages=pages, warnings=warnings)

    async def _attach_images(
        self,
        pdf_bytes: bytes,
        plan_id: str,
        pages: List[ExtractedPage],
        warnings: List[str],
    ) -> List[ExtractedPage]:
        images = await self.renderer.render(pdf_bytes, [page.page_number for page in pages])

        updated = []
        for page in pages:
            png = images.get(page.page_number)
            if png is None:
                warnings.append(f"Image rendering failed for page {page.page_number}")
                updated.append(page)
                continue
            ref = await self.image_store.put(plan_id, page.page_number, png)
            updated.append(page.model_copy(update={"image_ref": ref, "has_image": True}))
        return updated
