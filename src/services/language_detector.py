"""Language Detector component used to check flat-text translations."""

import logging
from typing import List, Optional, Tuple

from langdetect import DetectorFactory, LangDetectException, detect_langs

from models.data_models import LanguageDetectionResult


logger = logging.getLogger(__name__)

# langdetect is randomized unless seeded
DetectorFactory.seed = 0

UNKNOWN_LANGUAGE = "unknown"

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "zh-cn": "Chinese (Simplified)",
    "zh-tw": "Chinese (Traditional)",
    "ja": "Japanese",
    "ko": "Korean",
    "ar": "Arabic",
    "hi": "Hindi",
    "nl": "Dutch",
    "pl": "Polish",
    "tr": "Turkish",
    "vi": "Vietnamese",
    "sv": "Swedish",
    "da": "Danish",
    "fi": "Finnish",
    "no": "Norwegian",
    "cs": "Czech",
    "el": "Greek",
    "he": "Hebrew",
    "hu": "Hungarian",
    "id": "Indonesian",
    "ro": "Romanian",
    "uk": "Ukrainian",
    "bg": "Bulgarian",
    "fa": "Persian",
}


class LanguageDetector:
    """Detects the language of a text sample."""

    MIN_TEXT_LENGTH: int = 20  # Minimum characters for reliable detection

    def __init__(self, confidence_threshold: float = 0.7):
        """
        Initialize the language detector.

        Args:
            confidence_threshold: Minimum confidence for reliable detection
        """
        self.confidence_threshold = confidence_threshold

    def detect_from_text(self, text: str) -> LanguageDetectionResult:
        """
        Detect language from raw text string.

        Args:
            text: Text string to analyze

        Returns:
            LanguageDetectionResult; primary_language is "unknown" for short
            or undetectable text
        """
        if not text or len(text.strip()) < self.MIN_TEXT_LENGTH:
            return LanguageDetectionResult(
                primary_language=UNKNOWN_LANGUAGE,
                confidence=0.0,
                sample_size=len(text) if text else 0,
            )

        try:
            detected_langs = detect_langs(text)
        except LangDetectException as e:
            logger.debug(f"Language detection failed: {str(e)}")
            detected_langs = []

        if not detected_langs:
            return LanguageDetectionResult(
                primary_language=UNKNOWN_LANGUAGE,
                confidence=0.0,
                sample_size=len(text),
            )

        primary = detected_langs[0]
        secondary_languages: List[Tuple[str, float]] = [
            (lang.lang, lang.prob)
            for lang in detected_langs[1:]
            if lang.prob > 0.1
        ]

        return LanguageDetectionResult(
            primary_language=primary.lang,
            confidence=primary.prob,
            secondary_languages=secondary_languages,
            sample_size=len(text),
        )

    def is_confident(self, result: LanguageDetectionResult) -> bool:
        """Check if the detection result meets the confidence threshold."""
        return (
            result.primary_language != UNKNOWN_LANGUAGE and
            result.confidence >= self.confidence_threshold
        )

    def detect_confident_language(self, text: str) -> Optional[str]:
        """Language code of the text, or None when detection is not confident."""
        result = self.detect_from_text(text)
        return result.primary_language if self.is_confident(result) else None


def normalize_language(language: str) -> str:
    """
    Map a language code or English name onto a langdetect code.

    Unknown values are returned lower-cased.
    """
    value = (language or "").strip().lower()
    if value in LANGUAGE_NAMES:
        return value
    for code, name in LANGUAGE_NAMES.items():
        if name.lower() == value or name.lower().split(" (")[0] == value:
            return code
    return value


def same_language(first: str, second: str) -> bool:
    """Compare two languages given as codes or names; zh variants count as one."""
    a = normalize_language(first)
    b = normalize_language(second)
    if a.startswith("zh") and b.startswith("zh"):
        return True
    return a == b
