"""
PDF handling utilities for in-memory processing.
Reads linear text and page counts, and renders pages to PNG without
saving to disk.
"""
import logging
from typing import Optional, List, Tuple
from io import BytesIO
import requests
from pdf2image import convert_from_bytes
from PIL import Image
from pypdf import PdfReader

from maisoku_app.config import Config

logger = logging.getLogger(__name__)


class PDFHandler:
    """Handler for PDF processing in memory."""

    @staticmethod
    def download_pdf(url: str) -> Optional[bytes]:
        """Fetch a stored flyer. Returns None when the download fails."""
        try:
            logger.info(f"Fetching flyer from {url}")
            response = requests.get(url, timeout=30)
            response.raise_for_status()

            content_type = response.headers.get('Content-Type', '').lower()
            if 'pdf' not in content_type:
                # Still try to process it, might be a PDF with wrong headers
                logger.warning(f"URL {url} does not appear to be a PDF (Content-Type: {content_type})")

            pdf_bytes = response.content
            logger.info(f"Fetched {len(pdf_bytes)} bytes from {url}")
            return pdf_bytes

        except requests.RequestException as e:
            logger.error(f"Error downloading PDF from {url}: {e}")
            return None

    @staticmethod
    def extract_text(pdf_bytes: bytes) -> Tuple[str, int]:
        """
        Read the linear text content and page count of a PDF.

        Page texts are joined with newlines; no page markers are kept.

        Raises:
            pypdf.errors.PdfReadError: if the bytes are not a readable PDF
        """
        reader = PdfReader(BytesIO(pdf_bytes))
        page_texts = [page.extract_text() or '' for page in reader.pages]
        text = "\n".join(page_texts)
        logger.info(f"Extracted {len(text)} characters from {len(page_texts)} page(s)")
        return text, len(page_texts)

    @staticmethod
    def pdf_to_images(pdf_bytes: bytes, dpi: Optional[int] = None) -> List[Image.Image]:
        """
        Convert every PDF page to a PIL Image.

        Args:
            pdf_bytes: PDF file as bytes
            dpi: Render resolution (defaults to Config.RENDER_DPI)

        Returns:
            List of PIL Image objects, empty if conversion fails
        """
        try:
            images = convert_from_bytes(pdf_bytes, dpi=dpi or Config.RENDER_DPI)
            logger.info(f"Converted PDF to {len(images)} image(s)")
            return images

        except Exception as e:
            logger.error(f"Error converting PDF to images (poppler may not be installed): {e}")
            return []

    @staticmethod
    def fit_within(
        image: Image.Image,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None
    ) -> Image.Image:
        """Shrink an image to fit the bounding size, keeping aspect ratio. Never enlarges."""
        max_width = max_width or Config.RENDER_MAX_WIDTH
        max_height = max_height or Config.RENDER_MAX_HEIGHT
        if image.width <= max_width and image.height <= max_height:
            return image
        resized = image.copy()
        resized.thumbnail((max_width, max_height))
        return resized

    @staticmethod
    def image_to_bytes(image: Image.Image, format: str = 'PNG') -> bytes:
        """Encode an image (PNG by default)."""
        buffer = BytesIO()
        image.save(buffer, format=format, optimize=True)
        return buffer.getvalue()

    @classmethod
    def render_pages(cls, pdf_bytes: bytes) -> List[bytes]:
        """Render every page to a size-bounded PNG."""
        return [
            cls.image_to_bytes(cls.fit_within(image))
            for image in cls.pdf_to_images(pdf_bytes)
        ]
