"""Page rasterization and the page image store."""

import asyncio
from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import Path
from typing import Dict, Iterable

import pdfplumber

from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class PageImageStore(ABC):
    """Read-many store for rendered page images, written once per artifact."""

    @abstractmethod
    async def put(self, plan_id: str, page_number: int, png_bytes: bytes) -> str:
        """Store an image and return its reference."""

    @abstractmethod
    async def get(self, ref: str) -> bytes:
        """Load an image by reference."""


class LocalPageImageStore(PageImageStore):
    """Stores page images as PNG files under a root directory."""

    def __init__(self, root_dir: str):
        self.root = Path(root_dir)

    def _path(self, plan_id: str, page_number: int) -> Path:
        return self.root / plan_id / f"page_{page_number:04d}.png"

    async def put(self, plan_id: str, page_number: int, png_bytes: bytes) -> str:
        path = self._path(plan_id, page_number)
        if path.exists():
            return str(path)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(png_bytes)
            tmp.replace(path)

        await asyncio.to_thread(_write)
        LOGGER.debug(f"Stored page image {path}", extra={"plan_id": plan_id, "page": page_number})
        return str(path)

    async def get(self, ref: str) -> bytes:
        return await asyncio.to_thread(Path(ref).read_bytes)


class PageImageRenderer:
    """Renders PDF pages to PNG bytes with pdfplumber."""

    def __init__(self, dpi: int = 150):
        self.dpi = dpi

    async def render(self, pdf_bytes: bytes, page_numbers: Iterable[int]) -> Dict[int, bytes]:
        return await asyncio.to_thread(self.render_sync, pdf_bytes, list(page_numbers))

    def render_sync(self, pdf_bytes: bytes, page_numbers: Iterable[int]) -> Dict[int, bytes]:
        """Render the given 1-indexed pages.

        Pages outside the document, or that fail to render, are left out of
        the result and logged.
        """
        images: Dict[int, bytes] = {}
        with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
            total = len(pdf.pages)
            for page_number in page_numbers:
                if not 1 <= page_number <= total:
                    LOGGER.warning(f"Page {page_number} out of range (1-{total})")
                    continue
                try:
                    page_image = pdf.pages[page_number - 1].to_image(resolution=self.dpi)
                    buffer = BytesIO()
                    page_image.original.save(buffer, format="PNG")
                    images[page_number] = buffer.getvalue()
                except (OSError, ValueError, RuntimeError) as e:
                    LOGGER.warning(
                        f"Failed to render page {page_number}: {e}",
                        extra={"page": page_number, "dpi": self.dpi}
                    )
        return images
