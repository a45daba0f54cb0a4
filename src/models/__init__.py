# Models package
from .data_models import (
    BoundingBox,
    StyleInfo,
    TextFragment,
    TextBlock,
    ImageBlock,
    PageObject,
    TranslatedTextItem,
    PageStatus,
    PageCheckpoint,
    PageManifestItem,
    RunManifest,
    TranslationChunk,
    ChunkStatus,
    ChunkResult,
    LanguageDetectionResult,
)
from .config import (
    TranslationConfig,
    LayoutConfig,
    GeminiConfig,
    OpenAIConfig,
    FontConfig,
    OcrConfig,
    TranslationSummary,
)

__all__ = [
    "BoundingBox",
    "StyleInfo",
    "TextFragment",
    "TextBlock",
    "ImageBlock",
    "PageObject",
    "TranslatedTextItem",
    "PageStatus",
    "PageCheckpoint",
    "PageManifestItem",
    "RunManifest",
    "TranslationChunk",
    "ChunkStatus",
    "ChunkResult",
    "LanguageDetectionResult",
    "TranslationConfig",
    "LayoutConfig",
    "GeminiConfig",
    "OpenAIConfig",
    "FontConfig",
    "OcrConfig",
    "TranslationSummary",
]
