"""Configuration and summary models for the PDF translator."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class LayoutConfig:
    """Extraction heuristics for the layout extractor."""
    include_invisible_text_layer: bool = True
    use_invisible_text_as_fallback_only: bool = True
    min_visible_text_chars: int = 120
    min_visible_fragments: int = 12
    min_chars_per_fragment: float = 2.5
    merge_lines_into_paragraphs: bool = False

    include_images: bool = True
    deduplicate_images: bool = True
    max_images_per_page: int = 6
    min_image_width: float = 15.0
    min_image_height: float = 15.0
    overlay_merge_distance: float = 5.0

    suppress_background_images: bool = True
    background_min_page_coverage: float = 0.6
    max_kept_image_coverage_on_text_pages: float = 0.85
    background_min_text_blocks: int = 3
    background_min_text_chars: int = 80
    background_edge_tolerance: float = 6.0


@dataclass
class GeminiConfig:
    """Settings for the Gemini provider."""
    api_key: Optional[str] = None
    model: str = "gemini-1.5-pro"
    temperature: float = 0.0
    max_output_tokens: int = 8192
    enable_rate_limit: bool = False
    max_requests_per_second: float = 2.0
    max_blocks_per_request: int = 10
    max_input_chars_per_request: int = 6000


@dataclass
class OpenAIConfig:
    """Settings for the OpenAI provider."""
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_output_tokens: int = 8192
    enable_rate_limit: bool = False
    max_requests_per_second: float = 2.0
    max_blocks_per_request: int = 10
    max_input_chars_per_request: int = 6000


@dataclass
class FontConfig:
    """Font selection and fitting for reconstruction."""
    regular_font_file: Optional[str] = None
    bold_font_file: Optional[str] = None
    italic_font_file: Optional[str] = None
    default_font_size: float = 11.0
    leading_multiplier: float = 1.2
    enable_dynamic_font_scaling: bool = True
    min_auto_font_size: float = 7.0
    font_scale_step: float = 0.5
    clear_original_text_area: bool = True


@dataclass
class OcrConfig:
    """OCR fallback for text rendered as images."""
    enabled: bool = False
    use_gpu: bool = False
    lang: str = "en"
    min_confidence: float = 0.55


@dataclass
class TranslationConfig:
    """Configuration for a translation run."""
    target_language: str
    input_path: str = ""
    output_dir: Optional[str] = None
    provider: str = "gemini"
    mode: str = "layout"

    page_selection: Optional[str] = None
    force_retranslate_selected_pages: bool = False
    resume: bool = True
    concurrency: int = 4
    checkpoint_dir: str = ".checkpoints"
    fail_fast: bool = True
    max_retries: int = 3
    initial_retry_delay: float = 1.0

    max_chars_per_chunk: int = 3500
    max_attempts_per_chunk: int = 3
    min_output_chars: int = 1
    min_output_to_input_ratio: float = 0.3

    layout: LayoutConfig = field(default_factory=LayoutConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    font: FontConfig = field(default_factory=FontConfig)
    ocr: OcrConfig = field(default_factory=OcrConfig)


@dataclass
class TranslationSummary:
    """Summary of a document translation run."""
    input_file: str
    output_file: str
    pages_processed: int = 0
    pages_resumed: int = 0
    text_blocks_translated: int = 0
    images_processed: int = 0
    errors: List[str] = field(default_factory=list)
    processing_time_seconds: float = 0.0
    success: bool = True

    def add_error(self, error: str) -> None:
        """Add an error message to the summary."""
        self.errors.append(error)
        self.success = False
