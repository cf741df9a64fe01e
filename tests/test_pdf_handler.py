"""Tests for PDF reading and page rendering helpers."""
from io import BytesIO
from unittest.mock import MagicMock, patch

import requests
from PIL import Image

from maisoku_app.utils.pdf_handler import PDFHandler


def blank_pdf(pages=3):
    images = [Image.new('RGB', (200, 300), 'white') for _ in range(pages)]
    buffer = BytesIO()
    images[0].save(buffer, format='PDF', save_all=True, append_images=images[1:])
    return buffer.getvalue()


class TestExtractText:

    def test_page_count(self):
        text, page_count = PDFHandler.extract_text(blank_pdf(3))
        assert page_count == 3
        assert isinstance(text, str)


class TestFitWithin:

    def test_large_image_shrinks_keeping_aspect(self):
        resized = PDFHandler.fit_within(Image.new('RGB', (1600, 1200)), 800, 1200)
        assert resized.size == (800, 600)

    def test_small_image_is_not_enlarged(self):
        image = Image.new('RGB', (100, 100))
        assert PDFHandler.fit_within(image, 800, 1200) is image


class TestRenderPages:

    def test_renders_png_bytes(self):
        pages = [Image.new('RGB', (1000, 1000)), Image.new('RGB', (400, 400))]
        with patch.object(PDFHandler, 'pdf_to_images', return_value=pages):
            rendered = PDFHandler.render_pages(b"%PDF")
        assert len(rendered) == 2
        assert all(png.startswith(b"\x89PNG") for png in rendered)
        assert Image.open(BytesIO(rendered[0])).size == (800, 800)

    def test_conversion_failure_yields_nothing(self):
        with patch('maisoku_app.utils.pdf_handler.convert_from_bytes', side_effect=RuntimeError("no poppler")):
            assert PDFHandler.render_pages(b"%PDF") == []


class TestDownloadPdf:

    def test_download(self):
        response = MagicMock()
        response.content = b"%PDF-1.4"
        response.headers = {'Content-Type': 'application/pdf'}
        with patch('maisoku_app.utils.pdf_handler.requests.get', return_value=response):
            assert PDFHandler.download_pdf("https://example.com/a.pdf") == b"%PDF-1.4"

    def test_download_failure_is_none(self):
        with patch('maisoku_app.utils.pdf_handler.requests.get', side_effect=requests.Timeout("slow")):
            assert PDFHandler.download_pdf("https://example.com/a.pdf") is None
