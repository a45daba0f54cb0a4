"""Font Adjuster component for fitting translated text within original text boxes."""

import logging
from dataclasses import dataclass
from typing import List, Optional

import fitz  # PyMuPDF

from models.config import FontConfig


logger = logging.getLogger(__name__)

MIN_LEADING = 1.05
MIN_FONT_SIZE_FLOOR = 4.0
MIN_SCALE_STEP = 0.1


@dataclass
class FontAdjustment:
    """Result of font adjustment calculation."""
    font_size: float
    lines: List[str]
    line_height: float
    is_truncated: bool = False


def break_long_word(font: fitz.Font, word: str, font_size: float, max_width: float) -> List[str]:
    """Break a word wider than max_width into pieces, character by character."""
    pieces: List[str] = []
    current = ""

    for char in word:
        candidate = current + char
        if current and font.text_length(candidate, fontsize=font_size) > max_width:
            pieces.append(current)
            current = char
        else:
            current = candidate

    if current:
        pieces.append(current)
    return pieces


def wrap_text(font: fitz.Font, text: str, font_size: float, max_width: float) -> List[str]:
    """
    Greedy word wrap by measured width.

    Explicit newlines start a new line; blank paragraphs are kept as
    empty lines. Never returns an empty list.
    """
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    lines: List[str] = []

    for paragraph in normalized.split("\n"):
        words = paragraph.split()
        if not words:
            lines.append("")
            continue

        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if font.text_length(candidate, fontsize=font_size) <= max_width:
                current = candidate
                continue

            if current:
                lines.append(current)

            if font.text_length(word, fontsize=font_size) <= max_width:
                current = word
                continue

            lines.extend(break_long_word(font, word, font_size, max_width))
            current = ""

        if current:
            lines.append(current)

    return lines or [""]


class FontAdjuster:
    """Calculates font sizes and line breaks that fit translated text in original boxes."""

    def __init__(self, font_config: Optional[FontConfig] = None):
        """
        Initialize the font adjuster.

        Args:
            font_config: Sizing settings; defaults apply when None
        """
        self.config = font_config or FontConfig()
        self.leading = max(MIN_LEADING, self.config.leading_multiplier)
        self.min_font_size = max(MIN_FONT_SIZE_FLOOR, self.config.min_auto_font_size)
        self.step = max(MIN_SCALE_STEP, self.config.font_scale_step)

    def find_fitting_font_size(
        self,
        font: fitz.Font,
        text: str,
        width: float,
        height: float,
        requested_size: float,
    ) -> float:
        """
        Largest size, stepping down from requested_size, whose wrapped lines fit the height.

        Returns:
            The fitting size, or the minimum size when nothing fits
        """
        steps = 0
        size = requested_size
        while size >= self.min_font_size:
            lines = wrap_text(font, text, size, width)
            if len(lines) * size * self.leading <= height:
                return size
            steps += 1
            # from the step count, not accumulated
            size = round(requested_size - steps * self.step, 6)

        return self.min_font_size

    def calculate_fit(
        self,
        text: str,
        font: fitz.Font,
        width: float,
        height: float,
        requested_size: Optional[float] = None,
    ) -> FontAdjustment:
        """
        Calculate font size and wrapped lines for a box.

        Args:
            text: Text to fit
            font: Font used for measuring
            width: Box width
            height: Box height
            requested_size: Preferred size; the configured default when missing

        Returns:
            FontAdjustment; lines beyond the box height are dropped
        """
        size = requested_size if requested_size and requested_size > 0 else self.config.default_font_size

        if self.config.enable_dynamic_font_scaling:
            size = self.find_fitting_font_size(font, text, width, height, size)

        lines = wrap_text(font, text, size, width)
        line_height = size * self.leading
        max_lines = max(1, int(height // line_height)) if line_height > 0 else 1

        truncated = len(lines) > max_lines
        if truncated:
            logger.debug(f"Text truncated to {max_lines} line(s) at size {size}")
            lines = lines[:max_lines]

        return FontAdjustment(
            font_size=size,
            lines=lines,
            line_height=line_height,
            is_truncated=truncated,
        )
