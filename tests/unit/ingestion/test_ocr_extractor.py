"""Unit tests for the OCR fallback."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from takeoff.core.exceptions import APIClientError
from takeoff.repositories.ocr_repository import MistralOCRRepository
from takeoff.services.ingestion.image_renderer import PageImageRenderer
from takeoff.services.ingestion.ocr_extractor import OCRExtractor

PDF_BYTES = b"%PDF-1.7 fake"


@pytest.fixture
def renderer():
    renderer = MagicMock(spec=PageImageRenderer)
    renderer.render = AsyncMock(side_effect=lambda pdf, pages: {p: b"png" for p in pages})
    return renderer


@pytest.fixture
def ocr_repository():
    repository = MagicMock(spec=MistralOCRRepository)
    repository.call_mistral_ocr_api = AsyncMock()
    return repository


class TestOCRExtractor:
    """Page selection and provider fallback."""

    def test_only_sparse_pages_need_ocr(self, page_factory):
        extractor = OCRExtractor(min_text_chars=50)
        pages = [page_factory(1), page_factory(2, text="A-102"), page_factory(3, text="")]

        assert extractor.pages_needing_ocr(pages) == [2, 3]
        assert extractor.pages_needing_ocr(pages, force_ocr=True) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_mistral_text_replaces_empty_pages(self, page_factory, ocr_repository, renderer):
        ocr_repository.call_mistral_ocr_api.return_value = {2: "A-102\nFLOOR PLAN\nWALL TYPE W1"}
        extractor = OCRExtractor(ocr_repository=ocr_repository, renderer=renderer)
        pages = [page_factory(1), page_factory(2, text="")]

        updated, warnings = await extractor.apply(PDF_BYTES, pages, source_url="https://plans.example.com/a.pdf")

        assert updated[0] is pages[0]
        assert updated[1].text.startswith("A-102")
        assert updated[1].text_source == "mistral_ocr"
        assert warnings == []
        document_url = ocr_repository.call_mistral_ocr_api.call_args.args[0]
        assert document_url == "https://plans.example.com/a.pdf"

    @pytest.mark.asyncio
    async def test_local_pdf_is_sent_as_data_url(self, page_factory, ocr_repository, renderer):
        ocr_repository.call_mistral_ocr_api.return_value = {1: "A-101 FLOOR PLAN"}
        extractor = OCRExtractor(ocr_repository=ocr_repository, renderer=renderer)

        await extractor.apply(PDF_BYTES, [page_factory(1, text="")], source_url="/tmp/plan.pdf")

        document_url = ocr_repository.call_mistral_ocr_api.call_args.args[0]
        assert document_url.startswith("data:application/pdf;base64,")

    @pytest.mark.asyncio
    async def test_vision_fallback_when_mistral_fails(self, page_factory, ocr_repository, renderer, llm_client_factory):
        ocr_repository.call_mistral_ocr_api.side_effect = APIClientError("OCR service unavailable")
        vision = llm_client_factory(replies="E-101\nELECTRICAL PLAN")
        extractor = OCRExtractor(ocr_repository=ocr_repository, vision_client=vision, renderer=renderer)

        updated, warnings = await extractor.apply(PDF_BYTES, [page_factory(1, text="")])

        assert updated[0].text == "E-101\nELECTRICAL PLAN"
        assert updated[0].text_source == "vision_ocr"
        assert warnings == []
        renderer.render.assert_awaited_once_with(PDF_BYTES, [1])

    @pytest.mark.asyncio
    async def test_unrecognized_page_passes_through_with_warning(self, page_factory, renderer, llm_client_factory):
        vision = llm_client_factory(replies=APIClientError("vision down"))
        extractor = OCRExtractor(vision_client=vision, renderer=renderer)

        updated, warnings = await extractor.apply(PDF_BYTES, [page_factory(1), page_factory(2, text="")])

        assert updated[1].text == ""
        assert updated[1].text_source == "none"
        assert warnings == ["OCR failed for page 2; passing through empty text"]

    @pytest.mark.asyncio
    async def test_sparse_text_layer_kept_when_ocr_finds_nothing(self, page_factory, renderer):
        extractor = OCRExtractor(renderer=renderer)
        sparse = page_factory(1, text="A-101")

        updated, warnings = await extractor.apply(PDF_BYTES, [sparse])

        assert updated == [sparse]
        assert warnings == []
