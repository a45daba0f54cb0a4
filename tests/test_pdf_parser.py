"""Integration tests for the layout extractor on PDFs generated with PyMuPDF."""

import io
import random

import fitz  # PyMuPDF
import pytest
from PIL import Image

from models.config import LayoutConfig
from services.pdf_parser import PDFParser, PDFParseError, guess_mime_type


@pytest.fixture
def parser():
    return PDFParser(LayoutConfig())


def noise_png(width: int, height: int) -> bytes:
    rng = random.Random(0)
    pixels = bytes(rng.randrange(256) for _ in range(width * height * 3))
    buffer = io.BytesIO()
    Image.frombytes("RGB", (width, height), pixels).save(buffer, format="PNG")
    return buffer.getvalue()


class TestValidation:
    def test_missing_file(self, parser, tmp_path):
        is_valid, error = parser.validate_pdf(str(tmp_path / "missing.pdf"))
        assert not is_valid
        assert "not found" in error

    def test_garbage_file_raises(self, parser, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf")
        with pytest.raises(PDFParseError):
            parser.parse(str(path))

    def test_page_count(self, parser, sample_pdf):
        assert parser.page_count(sample_pdf) == 2


class TestParse:
    def test_text_blocks_are_extracted_in_reading_order(self, parser, sample_pdf):
        pages = parser.parse(sample_pdf)
        first = pages[0]

        assert first.page_number == 1
        assert (first.width, first.height) == (612, 792)
        assert [b.original_text for b in first.text_blocks] == ["Hello world", "Second line"]
        assert [b.block_id for b in first.text_blocks] == ["p0001_txt00001", "p0001_txt00002"]

        box = first.text_blocks[0].box
        assert box.x == pytest.approx(72, abs=1)
        # top-down: the baseline at y=100 lies inside the box
        assert box.y < 100 < box.top
        assert first.text_blocks[0].style.font_size == pytest.approx(12)

    def test_single_page_pdf_is_attached(self, parser, sample_pdf):
        page = parser.parse(sample_pdf)[0]
        assert page.source_page_pdf_bytes.startswith(b"%PDF")
        with fitz.open(stream=page.source_page_pdf_bytes, filetype="pdf") as single:
            assert single.page_count == 1

    def test_images_are_extracted(self, parser, sample_pdf):
        second = parser.parse(sample_pdf)[1]

        assert len(second.image_blocks) == 1
        image = second.image_blocks[0]
        assert image.block_id == "p0002_img00001"
        assert image.mime_type == "image/png"
        assert image.box.x == pytest.approx(72, abs=1)
        assert image.box.width == pytest.approx(200, abs=1)
        assert 200 - 1 <= image.box.y and image.box.top <= 350 + 1

    def test_images_can_be_disabled(self, sample_pdf):
        pages = PDFParser(LayoutConfig(include_images=False)).parse(sample_pdf)
        assert pages[1].image_blocks == []

    def test_page_subset(self, parser, sample_pdf):
        pages = parser.parse(sample_pdf, [2])
        assert [p.page_number for p in pages] == [2]
        assert pages[0].text_blocks[0].block_id == "p0002_txt00001"

    def test_rotated_page_keeps_unrotated_geometry(self, parser, tmp_path):
        path = tmp_path / "rotated.pdf"
        with fitz.open() as doc:
            page = doc.new_page(width=612, height=792)
            page.insert_text((72, 100), "Sideways", fontsize=12)
            page.set_rotation(90)
            doc.save(str(path))

        page = parser.parse(str(path))[0]
        assert page.rotation == 90
        assert (page.width, page.height) == (792, 612)
        assert (page.source_page_width, page.source_page_height) == (612, 792)
        assert page.text_blocks[0].original_text == "Sideways"
        assert page.text_blocks[0].box.x == pytest.approx(72, abs=1)


class FakeOcr:
    def __init__(self, text):
        self.text = text
        self.calls = []

    def extract_text(self, payloads):
        self.calls.append(payloads)
        return self.text


def test_ocr_fallback_replaces_text_image(tmp_path):
    path = tmp_path / "scan.pdf"
    with fitz.open() as doc:
        page = doc.new_page(width=612, height=792)
        page.insert_text((72, 100), "Caption", fontsize=12)
        page.insert_image(fitz.Rect(100, 300, 400, 500), stream=noise_png(120, 80))
        doc.save(str(path))

    ocr = FakeOcr("Scanned words that should become translatable text")
    page = PDFParser(LayoutConfig(), ocr_engine=ocr).parse(str(path))[0]

    assert len(ocr.calls) == 1
    assert page.image_blocks == []
    assert [b.block_id for b in page.text_blocks] == ["p0001_txt00001", "p0001_txt00002"]
    assert page.text_blocks[1].original_text.startswith("Scanned words")


def test_ocr_blocks_are_sorted_with_native_text(tmp_path):
    path = tmp_path / "scan.pdf"
    with fitz.open() as doc:
        page = doc.new_page(width=612, height=792)
        page.insert_image(fitz.Rect(100, 80, 400, 280), stream=noise_png(120, 80))
        page.insert_text((72, 600), "Caption below", fontsize=12)
        doc.save(str(path))

    ocr = FakeOcr("Scanned words that should become translatable text")
    page = PDFParser(LayoutConfig(), ocr_engine=ocr).parse(str(path))[0]

    assert [b.block_id for b in page.text_blocks] == ["p0001_txt00002", "p0001_txt00001"]
    assert page.text_blocks[0].original_text.startswith("Scanned words")
    assert page.text_blocks[1].original_text == "Caption below"
    ys = [b.box.y for b in page.text_blocks]
    assert ys == sorted(ys)


def test_failed_ocr_keeps_the_image(tmp_path):
    class BrokenOcr:
        def extract_text(self, payloads):
            raise RuntimeError("model crashed")

    path = tmp_path / "scan.pdf"
    with fitz.open() as doc:
        page = doc.new_page(width=612, height=792)
        page.insert_image(fitz.Rect(100, 300, 400, 500), stream=noise_png(120, 80))
        doc.save(str(path))

    page = PDFParser(LayoutConfig(), ocr_engine=BrokenOcr()).parse(str(path))[0]
    assert len(page.image_blocks) == 1
    assert page.text_blocks == []


def test_weak_ocr_text_keeps_the_image(tmp_path):
    path = tmp_path / "scan.pdf"
    with fitz.open() as doc:
        page = doc.new_page(width=612, height=792)
        page.insert_image(fitz.Rect(100, 300, 400, 500), stream=noise_png(120, 80))
        doc.save(str(path))

    page = PDFParser(LayoutConfig(), ocr_engine=FakeOcr("1234 5678")).parse(str(path))[0]
    assert len(page.image_blocks) == 1
    assert page.text_blocks == []


def test_guess_mime_type(png_bytes):
    assert guess_mime_type(png_bytes) == "image/png"
    assert guess_mime_type(b"not an image") == "application/octet-stream"
