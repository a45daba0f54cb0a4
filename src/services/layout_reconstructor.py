"""Layout Reconstructor component for rebuilding PDFs with translated content."""

import logging
import os
from typing import Dict, List, Optional, Tuple

import fitz  # PyMuPDF

from models.config import FontConfig
from models.data_models import BoundingBox, ImageBlock, PageObject, StyleInfo, TextBlock
from services.font_adjuster import FontAdjuster
from utils.text_utils import clean_pdf_artifacts


logger = logging.getLogger(__name__)

# Base-14 fallbacks when no font file is configured
BASE_FONTS = {
    "regular": "helv",
    "bold": "hebo",
    "italic": "heit",
}

VALID_ROTATIONS = (0, 90, 180, 270)


class LayoutReconstructionError(Exception):
    """Exception raised when layout reconstruction fails."""
    pass


def to_pdf_space(box: BoundingBox, page_height: float) -> BoundingBox:
    """Convert a top-down page box into a bottom-up PDF-space box."""
    return BoundingBox(box.x, page_height - box.y - box.height, box.width, box.height)


def from_pdf_space(box: BoundingBox, page_height: float) -> BoundingBox:
    """Convert a bottom-up PDF-space box back into a top-down page box."""
    return BoundingBox(box.x, page_height - box.y - box.height, box.width, box.height)


def to_page_rect(box: BoundingBox, page: fitz.Page, page_height: float) -> fitz.Rect:
    """Rectangle in PyMuPDF page space for a top-down layout box."""
    pdf_box = to_pdf_space(box, page_height)
    rect = fitz.Rect(pdf_box.x, pdf_box.y, pdf_box.right, pdf_box.top)
    return rect * page.transformation_matrix


def _clamp_color(style: StyleInfo) -> Tuple[float, float, float]:
    return tuple(min(1.0, max(0.0, channel)) for channel in style.color)


class LayoutReconstructor:
    """Rebuilds a PDF from translated page models while preserving layout."""

    def __init__(self, font_config: Optional[FontConfig] = None):
        """
        Initialize the reconstructor.

        Args:
            font_config: Font files and sizing; defaults apply when None
        """
        self.font_config = font_config or FontConfig()
        self._font_adjuster = FontAdjuster(self.font_config)
        self._fonts: Dict[str, fitz.Font] = {}

    def _get_font(self, variant: str) -> fitz.Font:
        """Get the font for a variant, loading it once."""
        if variant in self._fonts:
            return self._fonts[variant]

        font_file = getattr(self.font_config, f"{variant}_font_file", None)
        font = None
        if font_file:
            try:
                font = fitz.Font(fontfile=font_file)
            except Exception as e:
                logger.warning(f"Cannot load {variant} font '{font_file}', using {BASE_FONTS[variant]}: {str(e)}")

        if font is None:
            font = fitz.Font(BASE_FONTS[variant])

        self._fonts[variant] = font
        return font

    def select_font(self, style: StyleInfo) -> fitz.Font:
        """Bold wins over italic; everything else is regular."""
        if style.bold:
            return self._get_font("bold")
        if style.italic:
            return self._get_font("italic")
        return self._get_font("regular")

    def reconstruct(self, pages: List[PageObject], output_path: str) -> None:
        """
        Write a new PDF with one page per page model.

        Args:
            pages: Page models carrying translated text
            output_path: Destination file

        Raises:
            LayoutReconstructionError: If the document cannot be written
        """
        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        doc = fitz.open()
        try:
            for page_obj in sorted(pages, key=lambda p: p.page_number):
                self._render_page(doc, page_obj)
            doc.save(output_path, garbage=3, deflate=True)
        except (RuntimeError, ValueError, OSError) as e:
            raise LayoutReconstructionError(f"Failed to write {output_path}: {str(e)}")
        finally:
            doc.close()

    def _render_page(self, doc: fitz.Document, page_obj: PageObject) -> None:
        width = page_obj.source_page_width if page_obj.source_page_width > 0 else page_obj.width
        height = page_obj.source_page_height if page_obj.source_page_height > 0 else page_obj.height

        page = doc.new_page(width=width, height=height)

        for image in page_obj.image_blocks:
            self._draw_image(page, image, height)

        for block in sorted(page_obj.text_blocks, key=lambda b: (b.box.y, b.box.x)):
            try:
                self._draw_text_block(page, block, height)
            except Exception as e:
                logger.warning(f"Failed to draw text block {block.block_id}: {str(e)}")

        # Drawing happens in unrotated space
        if page_obj.rotation in VALID_ROTATIONS and page_obj.rotation:
            page.set_rotation(page_obj.rotation)

        untranslated = sum(1 for b in page_obj.text_blocks if not b.is_translated)
        logger.info(
            f"Reconstructed page {page_obj.page_number}: "
            f"{len(page_obj.text_blocks)} text block(s) ({untranslated} untranslated), "
            f"{len(page_obj.image_blocks)} image(s)"
        )

    def _draw_image(self, page: fitz.Page, image: ImageBlock, page_height: float) -> None:
        try:
            rect = to_page_rect(image.box, page, page_height)
            page.insert_image(rect, stream=image.image_bytes, keep_proportion=True)
        except Exception as e:
            logger.warning(f"Failed to draw image block {image.block_id}: {str(e)}")

    def _draw_text_block(self, page: fitz.Page, block: TextBlock, page_height: float) -> None:
        if block.box.is_empty:
            return

        text = clean_pdf_artifacts(block.translated_text or "")
        if not text.strip():
            text = clean_pdf_artifacts(block.original_text)
        if not text.strip():
            return

        rect = to_page_rect(block.box, page, page_height)
        font = self.select_font(block.style)
        fit = self._font_adjuster.calculate_fit(text, font, rect.width, rect.height, block.style.font_size)
        if fit.is_truncated:
            logger.warning(
                f"Text block {block.block_id} does not fit its box at {fit.font_size:.1f}pt, "
                f"showing {len(fit.lines)} line(s)"
            )

        if self.font_config.clear_original_text_area:
            shape = page.new_shape()
            shape.draw_rect(rect)
            shape.finish(color=None, fill=(1, 1, 1))
            shape.commit()

        writer = fitz.TextWriter(page.rect)
        baseline = rect.y0 + fit.font_size
        for line in fit.lines:
            if baseline > rect.y1:
                break
            if line:
                writer.append((rect.x0, baseline), line, font=font, fontsize=fit.font_size)
            baseline += fit.line_height

        writer.write_text(page, color=_clamp_color(block.style))
