"""PDF Parser component for extracting positioned text and image blocks."""

import io
import logging
import os
from typing import Dict, List, Optional, Tuple

import fitz  # PyMuPDF
from PIL import Image

from models.config import LayoutConfig
from models.data_models import (
    BoundingBox,
    StyleInfo,
    TextFragment,
    TextBlock,
    ImageBlock,
    PageObject,
)
from services.layout_analysis import (
    LAYER_INVISIBLE,
    ImagePlacement,
    LayerStats,
    add_or_replace_fragment,
    build_text_blocks,
    choose_text_layer,
    filter_background_images,
    image_block_id,
    is_decorative_image,
    is_likely_noise,
    is_ocr_candidate,
    looks_useful_ocr_text,
    merge_image_placements,
    select_ocr_candidates,
    text_block_id,
    to_layout_box,
)
from services.ocr_engine import OCREngine
from utils.error_handler import ErrorType, ProcessingError
from utils.text_utils import clean_pdf_artifacts


logger = logging.getLogger(__name__)

INVISIBLE_RENDER_TYPE = 3
MIN_FONT_SIZE = 6.0
OCR_FONT_SIZE = 11.0
NATIVE_IMAGE_EXTENSIONS = {"png", "jpeg", "jpg", "bmp", "tiff", "tif"}


class PDFParseError(Exception):
    """Exception raised when PDF parsing fails."""
    pass


class PDFParser:
    """Extracts a layout model from PDF documents using PyMuPDF."""

    def __init__(self, config: Optional[LayoutConfig] = None, ocr_engine: Optional[OCREngine] = None):
        """
        Initialize the parser.

        Args:
            config: Extraction heuristics
            ocr_engine: Optional OCR fallback for images that carry text
        """
        self.config = config or LayoutConfig()
        self.ocr_engine = ocr_engine

    def validate_pdf(self, pdf_path: str) -> Tuple[bool, Optional[str]]:
        """
        Validate PDF file and return (is_valid, error_message).

        Args:
            pdf_path: Path to the PDF file

        Returns:
            Tuple of (is_valid, error_message). error_message is None if valid.
        """
        if not pdf_path:
            return False, "PDF path is empty"

        if not os.path.exists(pdf_path):
            return False, f"File not found: {pdf_path}"

        if not pdf_path.lower().endswith('.pdf'):
            return False, f"File is not a PDF: {pdf_path}"

        try:
            with fitz.open(pdf_path) as doc:
                if doc.page_count == 0:
                    return False, "PDF has no pages"
            return True, None
        except fitz.FileDataError as e:
            return False, f"Corrupted or invalid PDF: {str(e)}"
        except Exception as e:
            return False, f"Error opening PDF: {str(e)}"

    def page_count(self, pdf_path: str) -> int:
        """Number of pages in the document."""
        is_valid, error_msg = self.validate_pdf(pdf_path)
        if not is_valid:
            raise PDFParseError(error_msg)

        with fitz.open(pdf_path) as doc:
            return doc.page_count

    def parse(self, pdf_path: str, page_numbers: Optional[List[int]] = None) -> List[PageObject]:
        """
        Build the layout model of a document.

        Args:
            pdf_path: Path to the PDF file
            page_numbers: 1-based pages to extract; all pages when None

        Returns:
            List of PageObject, in page order

        Raises:
            PDFParseError: If the PDF cannot be parsed
        """
        is_valid, error_msg = self.validate_pdf(pdf_path)
        if not is_valid:
            raise PDFParseError(error_msg)

        pages: List[PageObject] = []

        try:
            with fitz.open(pdf_path) as doc:
                wanted = set(page_numbers) if page_numbers else None

                for page_index in range(doc.page_count):
                    if wanted is not None and page_index + 1 not in wanted:
                        continue
                    pages.append(self._extract_page(doc, page_index))

        except PDFParseError:
            raise
        except Exception as e:
            raise PDFParseError(f"Error parsing PDF: {str(e)}")

        logger.info(f"Layout extraction completed: {len(pages)} page(s)")
        return pages

    def _extract_page(self, doc: fitz.Document, page_index: int) -> PageObject:
        """
        Extract text and image blocks from a single page.

        Args:
            doc: Open source document
            page_index: 0-based page index

        Returns:
            PageObject with blocks in top-down page coordinates
        """
        page = doc[page_index]
        page_number = page_index + 1

        source_width = page.cropbox.width
        source_height = page.cropbox.height
        rotation = page.rotation % 360
        view_width, view_height = (source_height, source_width) if rotation in (90, 270) else (source_width, source_height)

        # extraction coordinates are rotated; undo that before leaving MuPDF space
        to_pdf = page.derotation_matrix * ~page.transformation_matrix
        visible = page.rect * to_pdf
        crop_x, crop_y = visible.x0, visible.y0

        def to_layout(rect: fitz.Rect) -> Optional[BoundingBox]:
            raw = rect * to_pdf
            raw_box = BoundingBox.from_corners(raw.x0, raw.y0, raw.x1, raw.y1)
            return to_layout_box(raw_box, crop_x, crop_y, source_width, source_height)

        fragments = self._collect_fragments(page, page_number, to_layout)
        text_blocks, last_text_index = build_text_blocks(
            page_number, fragments, self.config.merge_lines_into_paragraphs
        )

        single_page_bytes = self._build_single_page_pdf(doc, page_index)

        images: List[ImagePlacement] = []
        if self.config.include_images:
            images = self._collect_images(page, page_number, to_layout, source_width, source_height)

            if self.ocr_engine is not None:
                ocr_blocks, suppressed = self._run_ocr_fallback(
                    page_number, images, single_page_bytes, last_text_index
                )
                text_blocks.extend(ocr_blocks)
                text_blocks.sort(key=lambda b: (b.box.y, b.box.x))
                images = [i for i in images if id(i) not in suppressed]

            images, dropped = filter_background_images(
                images, text_blocks, len(fragments), source_width, source_height, self.config
            )
            if dropped:
                logger.info(
                    f"Page {page_number}: suppressed {dropped} likely background image(s), kept {len(images)}"
                )

        image_blocks = [
            ImageBlock(
                block_id=image_block_id(page_number, index),
                box=image.box,
                image_bytes=image.image_bytes,
                mime_type=image.mime_type,
                is_ocr_candidate=image.is_ocr_candidate,
            )
            for index, image in enumerate(images, start=1)
        ]

        return PageObject(
            page_number=page_number,
            width=view_width,
            height=view_height,
            source_page_width=source_width,
            source_page_height=source_height,
            rotation=rotation,
            source_page_pdf_bytes=single_page_bytes,
            text_blocks=text_blocks,
            image_blocks=image_blocks,
        )

    def _collect_fragments(self, page: fitz.Page, page_number: int, to_layout) -> List[TextFragment]:
        """Capture glyph runs of both text layers and pick the layer to use."""
        visible: Dict[str, TextFragment] = {}
        invisible: Dict[str, TextFragment] = {}

        try:
            trace = page.get_texttrace()
        except Exception as e:
            logger.warning(f"Page {page_number}: text trace unavailable: {str(e)}")
            return []

        for span in trace:
            try:
                fragment = self._span_to_fragment(span, to_layout)
            except Exception as e:
                logger.debug(f"Page {page_number}: skipped unreadable text run: {str(e)}")
                continue

            if fragment is None:
                continue
            if fragment.is_invisible:
                if self.config.include_invisible_text_layer:
                    add_or_replace_fragment(invisible, fragment)
            else:
                add_or_replace_fragment(visible, fragment)

        visible_fragments = list(visible.values())
        invisible_fragments = list(invisible.values())

        layer = choose_text_layer(
            LayerStats.from_fragments(visible_fragments),
            LayerStats.from_fragments(invisible_fragments),
            self.config,
        )
        if layer == LAYER_INVISIBLE:
            logger.debug(f"Page {page_number}: using invisible text layer")
            return invisible_fragments
        return visible_fragments

    def _span_to_fragment(self, span: dict, to_layout) -> Optional[TextFragment]:
        chars = span.get("chars") or ()
        text = clean_pdf_artifacts("".join(chr(c[0]) for c in chars if c[0] >= 0))
        if not text:
            return None

        size = float(span.get("size") or 0.0)
        ascender = float(span.get("ascender", 1.0))
        descender = float(span.get("descender", -0.2))

        x0 = min(c[3][0] for c in chars)
        x1 = max(c[3][2] for c in chars)
        baseline = chars[0][2][1]
        rect = fitz.Rect(x0, baseline - ascender * size, x1, baseline - descender * size)
        if rect.is_empty:
            return None

        box = to_layout(rect)
        if box is None or box.is_empty:
            return None

        style = self._extract_style(span)
        if is_likely_noise(text, box, style):
            return None

        return TextFragment(
            text=text,
            box=box,
            style=style,
            is_invisible=span.get("type") == INVISIBLE_RENDER_TYPE,
        )

    def _extract_style(self, span: dict) -> StyleInfo:
        font_name = span.get("font") or "Unknown"
        color = tuple(min(1.0, max(0.0, float(c))) for c in (span.get("color") or ()))
        if len(color) >= 3:
            rgb = color[:3]
        elif len(color) == 1:
            rgb = (color[0],) * 3
        else:
            rgb = (0.0, 0.0, 0.0)

        lowered = font_name.lower()
        return StyleInfo(
            font_name=font_name,
            font_size=max(MIN_FONT_SIZE, float(span.get("size") or 0.0)),
            color=rgb,
            bold="bold" in lowered,
            italic="italic" in lowered or "oblique" in lowered,
        )

    def _collect_images(
        self,
        page: fitz.Page,
        page_number: int,
        to_layout,
        page_width: float,
        page_height: float,
    ) -> List[ImagePlacement]:
        """Collect image placements, classified and merged, in drawing order."""
        placements: List[ImagePlacement] = []

        for info in page.get_image_info(xrefs=True):
            try:
                placement = self._build_placement(page, info, to_layout, page_width, page_height)
            except Exception as e:
                logger.debug(f"Page {page_number}: skipped unreadable image: {str(e)}")
                continue
            if placement is not None:
                placements.append(placement)

        merged = merge_image_placements(placements, self.config)
        kept = [p for p in merged if not p.is_decorative]

        if len(kept) > self.config.max_images_per_page:
            logger.warning(
                f"Page {page_number}: {len(kept)} images exceed the limit, keeping {self.config.max_images_per_page}"
            )
            kept = kept[:self.config.max_images_per_page]

        return kept

    def _build_placement(
        self,
        page: fitz.Page,
        info: dict,
        to_layout,
        page_width: float,
        page_height: float,
    ) -> Optional[ImagePlacement]:
        xref = info.get("xref", 0)
        if not xref:
            return None

        transform = fitz.Matrix(info["transform"])
        display_width = abs(fitz.Point(transform.a, transform.b))
        display_height = abs(fitz.Point(transform.c, transform.d))
        if display_width < self.config.min_image_width or display_height < self.config.min_image_height:
            return None

        hull = fitz.Rect(0, 0, 1, 1) * transform
        box = to_layout(hull)
        if box is None or box.is_empty:
            return None

        image_bytes = self._read_image_bytes(page.parent, xref)
        if not image_bytes:
            return None

        stream_length = len(image_bytes)
        decorative = is_decorative_image(box, stream_length)
        return ImagePlacement(
            box=box,
            image_bytes=image_bytes,
            mime_type=guess_mime_type(image_bytes),
            is_decorative=decorative,
            is_ocr_candidate=not decorative and is_ocr_candidate(box, stream_length, page_width, page_height),
        )

    def _read_image_bytes(self, doc: fitz.Document, xref: int) -> bytes:
        """Image stream bytes, converted to PNG when not a common raster format."""
        extracted = doc.extract_image(xref)
        if not extracted:
            return b""

        data = extracted.get("image", b"")
        if data and extracted.get("ext", "").lower() in NATIVE_IMAGE_EXTENSIONS:
            return data

        pixmap = fitz.Pixmap(doc, xref)
        if pixmap.n - pixmap.alpha >= 4:
            pixmap = fitz.Pixmap(fitz.csRGB, pixmap)
        return pixmap.tobytes("png")

    def _run_ocr_fallback(
        self,
        page_number: int,
        images: List[ImagePlacement],
        page_pdf: bytes,
        last_text_index: int,
    ) -> Tuple[List[TextBlock], set]:
        """
        Replace text-like images with OCR text blocks.

        Returns:
            Tuple of (new text blocks, ids of the suppressed placements)
        """
        blocks: List[TextBlock] = []
        suppressed = set()
        candidates = select_ocr_candidates(images)
        if not candidates:
            return blocks, suppressed

        logger.info(f"Page {page_number}: OCR candidate regions={len(candidates)}")
        next_index = last_text_index

        for candidate in candidates:
            payloads = []
            if candidate.mime_type.startswith("image/"):
                payloads.append(candidate.image_bytes)
            if page_pdf:
                payloads.append(page_pdf)

            try:
                text = self.ocr_engine.extract_text(payloads)
            except Exception as e:
                logger.warning(str(ProcessingError(
                    ErrorType.OCR, f"OCR region failed: {str(e)}", page_number=page_number
                )))
                continue

            if not looks_useful_ocr_text(text):
                logger.info(f"Page {page_number}: OCR text rejected (weak or noisy)")
                continue

            next_index += 1
            blocks.append(TextBlock(
                block_id=text_block_id(page_number, next_index),
                box=candidate.box,
                original_text=clean_pdf_artifacts(text),
                style=StyleInfo(font_name="Helvetica", font_size=OCR_FONT_SIZE),
            ))
            suppressed.add(id(candidate))
            logger.info(f"Page {page_number}: OCR accepted, added {len(text)} chars and suppressed the image")

        return blocks, suppressed

    def _build_single_page_pdf(self, doc: fitz.Document, page_index: int) -> bytes:
        """Copy one page into a standalone PDF for provider uploads and OCR."""
        with fitz.open() as single:
            single.insert_pdf(doc, from_page=page_index, to_page=page_index)
            return single.tobytes()


def guess_mime_type(payload: bytes) -> str:
    """MIME type of an image payload as identified by Pillow."""
    try:
        with Image.open(io.BytesIO(payload)) as image:
            return Image.MIME.get(image.format, "application/octet-stream")
    except Exception:
        return "application/octet-stream"
