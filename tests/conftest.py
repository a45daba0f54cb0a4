"""Pytest configuration and shared fixtures."""

import io
import pytest
import sys
from pathlib import Path

import fitz  # PyMuPDF
from PIL import Image

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from models.data_models import BoundingBox, StyleInfo, TextBlock, PageObject
from models.config import TranslationConfig


@pytest.fixture
def sample_style():
    """Create a sample text style."""
    return StyleInfo(font_name="Helvetica", font_size=12.0)


@pytest.fixture
def make_block(sample_style):
    """Factory for text blocks on page 1."""
    def _make(index: int, text: str, y: float = 100.0, page_number: int = 1) -> TextBlock:
        return TextBlock(
            block_id=f"p{page_number:04d}_txt{index:05d}",
            box=BoundingBox(x=10.0, y=y, width=200.0, height=20.0),
            original_text=text,
            style=sample_style,
        )
    return _make


@pytest.fixture
def make_page(make_block):
    """Factory for a page holding blocks with the given texts."""
    def _make(texts, page_number: int = 1) -> PageObject:
        blocks = [
            make_block(i, text, y=50.0 + 30.0 * i, page_number=page_number)
            for i, text in enumerate(texts, start=1)
        ]
        return PageObject(
            page_number=page_number,
            width=612.0,
            height=792.0,
            source_page_width=612.0,
            source_page_height=792.0,
            text_blocks=blocks,
        )
    return _make


@pytest.fixture
def sample_config(tmp_path):
    """Create a sample translation config writing checkpoints under tmp_path."""
    return TranslationConfig(
        target_language="French",
        checkpoint_dir=str(tmp_path / "checkpoints"),
        output_dir=str(tmp_path / "out"),
        max_retries=0,
        initial_retry_delay=0.0,
    )


@pytest.fixture
def png_bytes():
    """A small patterned PNG image."""
    buffer = io.BytesIO()
    pixels = bytes((i * 37 + i // 7) % 256 for i in range(60 * 40 * 3))
    Image.frombytes("RGB", (60, 40), pixels).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def sample_pdf(tmp_path, png_bytes):
    """Two-page PDF: text lines on page 1, text plus an image on page 2."""
    path = tmp_path / "sample.pdf"
    with fitz.open() as doc:
        page = doc.new_page(width=612, height=792)
        page.insert_text((72, 100), "Hello world", fontsize=12)
        page.insert_text((72, 130), "Second line", fontsize=12)

        page = doc.new_page(width=612, height=792)
        page.insert_text((72, 100), "Picture caption", fontsize=12)
        page.insert_image(fitz.Rect(72, 200, 272, 350), stream=png_bytes)

        doc.save(str(path))
    return str(path)
