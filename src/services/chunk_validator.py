"""Sanity checks for translated flat-text chunks."""

import logging
from typing import Optional, Tuple

from services.language_detector import LanguageDetector, same_language


logger = logging.getLogger(__name__)

REPLACEMENT_CHAR = chr(0xFFFD)

COMMENTARY_PREFIXES = (
    "here is",
    "here's the translation",
    "translation:",
    "translated text:",
)


class ChunkValidator:
    """Rejects model output that cannot be a faithful translation of its input."""

    def __init__(
        self,
        target_language: str,
        min_output_chars: int = 1,
        min_output_to_input_ratio: float = 0.3,
        language_detector: Optional[LanguageDetector] = None,
    ):
        self.target_language = target_language
        self.min_output_chars = min_output_chars
        self.min_output_to_input_ratio = min_output_to_input_ratio
        self.language_detector = language_detector or LanguageDetector()

    def validate(self, source: str, output: str) -> Tuple[bool, Optional[str]]:
        """
        Validate a translated chunk.

        Args:
            source: Chunk text sent to the provider
            output: Sanitized provider output

        Returns:
            Tuple of (is_valid, reason); reason is None when valid
        """
        if not output or not output.strip():
            return False, "Empty output"

        if len(output) < self.min_output_chars:
            return False, f"Output too short (<{self.min_output_chars} chars)"

        ratio = len(output) / max(1, len(source))
        if ratio < self.min_output_to_input_ratio:
            return False, f"Output/input length ratio too small ({ratio:.2f} < {self.min_output_to_input_ratio:.2f})"

        if REPLACEMENT_CHAR in output:
            return False, "Output contains the Unicode replacement character"

        lowered = output.lstrip().lower()
        if lowered.startswith(COMMENTARY_PREFIXES):
            return False, "Output starts with commentary"

        return self._check_language(source, output)

    def _check_language(self, source: str, output: str) -> Tuple[bool, Optional[str]]:
        source_lang = self.language_detector.detect_confident_language(source)
        if source_lang is None or same_language(source_lang, self.target_language):
            return True, None

        output_lang = self.language_detector.detect_confident_language(output)
        if output_lang is not None and same_language(output_lang, source_lang):
            return False, f"Output is still in the source language ({output_lang})"

        return True, None
