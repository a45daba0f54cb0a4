"""Tests for rebuilding PDFs from translated page models."""

import fitz  # PyMuPDF
import pytest

from models.config import FontConfig
from models.data_models import BoundingBox, ImageBlock, PageObject, StyleInfo, TextBlock
from services.layout_reconstructor import LayoutReconstructor, from_pdf_space, to_page_rect, to_pdf_space


PAGE_HEIGHT = 792.0


def text_block(block_id, pdf_box, original, translated, style=None):
    return TextBlock(
        block_id=block_id,
        box=from_pdf_space(pdf_box, PAGE_HEIGHT),
        original_text=original,
        style=style or StyleInfo(font_name="Helvetica", font_size=12.0),
        translated_text=translated,
    )


@pytest.fixture
def translated_page(png_bytes):
    return PageObject(
        page_number=1,
        width=612.0,
        height=PAGE_HEIGHT,
        source_page_width=612.0,
        source_page_height=PAGE_HEIGHT,
        text_blocks=[
            text_block("p0001_txt00001", BoundingBox(10, 700, 100, 20), "Hello world", "Bonjour le monde"),
            text_block("p0001_txt00002", BoundingBox(10, 670, 100, 20), "Second line", "Deuxième ligne"),
        ],
        image_blocks=[
            ImageBlock(
                block_id="p0001_img00001",
                box=from_pdf_space(BoundingBox(10, 600, 200, 150), PAGE_HEIGHT),
                image_bytes=png_bytes,
                mime_type="image/png",
            ),
        ],
    )


def word_boxes(page):
    return {w[4]: fitz.Rect(w[:4]) for w in page.get_text("words")}


def test_pdf_space_conversion():
    box = BoundingBox(10, 700, 100, 20)
    top_down = from_pdf_space(box, PAGE_HEIGHT)
    assert top_down == BoundingBox(10, 72, 100, 20)
    assert to_pdf_space(top_down, PAGE_HEIGHT) == box


def test_page_rect_matches_layout_box():
    with fitz.open() as doc:
        page = doc.new_page(width=612, height=PAGE_HEIGHT)
        rect = to_page_rect(BoundingBox(10, 72, 100, 20), page, PAGE_HEIGHT)
    assert tuple(rect) == pytest.approx((10, 72, 110, 92))


def test_text_and_images_land_in_their_boxes(translated_page, tmp_path):
    output = str(tmp_path / "nested" / "out.pdf")
    LayoutReconstructor().reconstruct([translated_page], output)

    with fitz.open(output) as doc:
        assert doc.page_count == 1
        page = doc[0]
        assert (page.rect.width, page.rect.height) == (612, 792)

        words = word_boxes(page)
        assert "Hello" not in words
        first, second = words["Bonjour"], words["Deuxième"]
        assert 72 - 2 <= first.y0 and first.y1 <= 92 + 2
        assert 102 - 2 <= second.y0 and second.y1 <= 122 + 2
        assert first.x0 == pytest.approx(10, abs=1)

        images = page.get_image_info()
        assert len(images) == 1
        bbox = fitz.Rect(images[0]["bbox"])
        assert fitz.Rect(9, 41, 211, 193).contains(bbox)


def test_untranslated_block_keeps_original_text(tmp_path):
    page = PageObject(
        page_number=1, width=612.0, height=PAGE_HEIGHT,
        source_page_width=612.0, source_page_height=PAGE_HEIGHT,
        text_blocks=[text_block("p0001_txt00001", BoundingBox(10, 700, 100, 20), "Hello", "  ")],
    )
    output = str(tmp_path / "out.pdf")
    LayoutReconstructor().reconstruct([page], output)

    with fitz.open(output) as doc:
        assert "Hello" in doc[0].get_text()


def test_pages_are_written_in_order_with_rotation(tmp_path):
    pages = [
        PageObject(page_number=2, width=792.0, height=612.0, source_page_width=612.0,
                   source_page_height=792.0, rotation=90),
        PageObject(page_number=1, width=300.0, height=400.0, source_page_width=300.0,
                   source_page_height=400.0),
    ]
    output = str(tmp_path / "out.pdf")
    LayoutReconstructor().reconstruct(pages, output)

    with fitz.open(output) as doc:
        assert doc.page_count == 2
        assert doc[0].mediabox.width == 300
        assert doc[1].rotation == 90
        assert (doc[1].mediabox.width, doc[1].mediabox.height) == (612, 792)


def test_long_translation_is_shrunk_into_the_box(tmp_path):
    long_text = "Une traduction beaucoup plus longue que le texte original"
    page = PageObject(
        page_number=1, width=612.0, height=PAGE_HEIGHT,
        source_page_width=612.0, source_page_height=PAGE_HEIGHT,
        text_blocks=[text_block("p0001_txt00001", BoundingBox(10, 700, 120, 30), "Short", long_text)],
    )
    output = str(tmp_path / "out.pdf")
    LayoutReconstructor(FontConfig(min_auto_font_size=4.0)).reconstruct([page], output)

    with fitz.open(output) as doc:
        for rect in word_boxes(doc[0]).values():
            assert fitz.Rect(10 - 2, 62 - 2, 130 + 2, 92 + 2).contains(rect)


class TestFontSelection:
    def test_bold_wins_over_italic(self):
        reconstructor = LayoutReconstructor()
        style = StyleInfo(font_name="Arial", font_size=10, bold=True, italic=True)
        assert "Bold" in reconstructor.select_font(style).name

    def test_italic(self):
        style = StyleInfo(font_name="Arial", font_size=10, italic=True)
        assert "Oblique" in LayoutReconstructor().select_font(style).name

    def test_missing_font_file_falls_back(self):
        reconstructor = LayoutReconstructor(FontConfig(regular_font_file="/does/not/exist.ttf"))
        font = reconstructor.select_font(StyleInfo(font_name="Arial", font_size=10))
        assert font.name == "Helvetica"
        assert reconstructor.select_font(StyleInfo(font_name="Arial", font_size=10)) is font


def test_overflow_and_untranslated_blocks_are_logged(tmp_path, caplog):
    page = PageObject(
        page_number=1, width=612.0, height=PAGE_HEIGHT,
        source_page_width=612.0, source_page_height=PAGE_HEIGHT,
        text_blocks=[
            text_block("p0001_txt00001", BoundingBox(10, 700, 60, 12), "Short", "mot " * 200),
            text_block("p0001_txt00002", BoundingBox(10, 600, 100, 20), "Kept", "Kept"),
        ],
    )
    with caplog.at_level("INFO", logger="services.layout_reconstructor"):
        LayoutReconstructor(FontConfig(min_auto_font_size=8.0)).reconstruct([page], str(tmp_path / "out.pdf"))

    assert "p0001_txt00001 does not fit its box" in caplog.text
    assert "(1 untranslated)" in caplog.text
