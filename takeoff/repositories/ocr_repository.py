import base64
from typing import Dict, List, Optional

import httpx

from takeoff.core.base_llm_client import BaseLLMClient
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class MistralOCRRepository(BaseLLMClient):
    """Repository for Mistral OCR API calls.

    Inherits from BaseLLMClient for standardized API interactions.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str,
        model: str = "mistral-ocr-latest",
        timeout: int = 120,
        max_retries: int = 3,
        retry_delay: int = 2,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize OCR repository.

        Args:
            api_key: Mistral API key
            api_url: Mistral OCR endpoint URL
            model: OCR model name
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            retry_delay: Base delay between retries in seconds
            http_client: Optional shared httpx client
        """
        super().__init__(
            api_key=api_key,
            base_url=api_url,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            http_client=http_client,
        )
        self.model = model

    @staticmethod
    def pdf_data_url(pdf_bytes: bytes) -> str:
        """Encode PDF bytes as a base64 data URL the OCR API accepts."""
        encoded = base64.b64encode(pdf_bytes).decode("ascii")
        return f"data:application/pdf;base64,{encoded}"

    async def call_mistral_ocr_api(
        self,
        document_url: str,
        pages: Optional[List[int]] = None,
        model: Optional[str] = None,
    ) -> Dict[int, str]:
        """Call Mistral OCR for selected pages of a document.

        Args:
            document_url: Public URL or base64 data URL of the PDF
            pages: 1-indexed page numbers to OCR; all pages when omitted
            model: Optional model override

        Returns:
            Mapping of 1-indexed page number to recognized text. Pages the
            API returned without content are omitted.
        """
        payload = {
            "model": model or self.model,
            "document": {
                "type": "document_url",
                "document_url": document_url,
            },
            "include_image_base64": False,
        }
        if pages:
            # API page indices are 0-based
            payload["pages"] = [page - 1 for page in pages]

        result = await self.call_api(endpoint="", method="POST", payload=payload)

        texts: Dict[int, str] = {}
        for position, page in enumerate(result.get("pages", [])):
            index = page.get("index")
            if index is None:
                page_number = pages[position] if pages and position < len(pages) else position + 1
            else:
                page_number = int(index) + 1

            text = page.get("markdown") or page.get("text") or ""
            if not text.strip():
                self.logger.warning(
                    f"Page {page_number} has no OCR content",
                    extra={"page_number": page_number}
                )
                continue
            texts[page_number] = text

        self.logger.debug(
            "Mistral OCR API call successful",
            extra={"requested_pages": len(pages) if pages else None, "pages_recognized": len(texts)}
        )
        return texts
