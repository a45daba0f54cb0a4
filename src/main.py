#!/usr/bin/env python3
"""CLI interface for the PDF translator."""

import argparse
import sys
import os
import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

from models.config import TranslationConfig, TranslationSummary
from services.document_translator import DocumentTranslator
from services.text_translator import TextTranslator
from services.translation_service import PROVIDERS


API_KEY_ENV = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging."""
    if quiet:
        level = logging.ERROR
    else:
        level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        description="Translate PDF documents while preserving layout.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Translate a PDF to French with Gemini
  python main.py input.pdf --target French

  # Translate pages 1-3 and 7 only, forcing fresh translations
  python main.py input.pdf -t de --pages 1-3,7 --force-retranslate

  # Plain text output through OpenAI
  python main.py input.pdf -t es --mode text --provider openai
        """,
    )

    parser.add_argument("input", help="Input PDF file path")

    # Language and provider
    parser.add_argument(
        "--target", "-t",
        required=True,
        help="Target language (e.g., French, de, ja)",
    )
    parser.add_argument(
        "--provider",
        choices=sorted(PROVIDERS),
        default="gemini",
        help="Translation provider (default: gemini)",
    )
    parser.add_argument("--model", default=None, help="Provider model name")
    parser.add_argument(
        "--api-key", "-k",
        default=None,
        help="Provider API key (or set GEMINI_API_KEY / OPENAI_API_KEY)",
    )

    # Run options
    parser.add_argument(
        "--mode",
        choices=["layout", "text"],
        default="layout",
        help="layout: translated PDF; text: translated plain text (default: layout)",
    )
    parser.add_argument("--output-dir", default=None, help="Output directory (default: next to the input)")
    parser.add_argument("--pages", default=None, help="Page selection, e.g. 1,3,5-9")
    parser.add_argument("--no-resume", action="store_true", help="Ignore existing checkpoints")
    parser.add_argument(
        "--force-retranslate",
        action="store_true",
        help="Re-translate selected pages even when checkpointed",
    )
    parser.add_argument("--concurrency", type=int, default=4, help="Pages or chunks in flight (default: 4)")
    parser.add_argument("--checkpoint-dir", default=".checkpoints", help="Checkpoint directory")
    parser.add_argument(
        "--no-fail-fast",
        action="store_true",
        help="Keep going when a page fails and write the output anyway",
    )
    parser.add_argument("--max-retries", type=int, default=3, help="Retries of transient provider errors")
    parser.add_argument(
        "--max-blocks-per-request",
        type=int,
        default=10,
        help="Text blocks per translation request (default: 10)",
    )
    parser.add_argument(
        "--rate-limit",
        type=float,
        default=None,
        metavar="RPS",
        help="Maximum provider requests per second",
    )
    parser.add_argument(
        "--max-chars-per-chunk",
        type=int,
        default=3500,
        help="Chunk size in text mode (default: 3500)",
    )

    # Layout switches
    parser.add_argument("--merge-paragraphs", action="store_true", help="Merge lines into paragraphs")
    parser.add_argument("--no-images", action="store_true", help="Do not carry images over")
    parser.add_argument(
        "--keep-background-images",
        action="store_true",
        help="Do not suppress full-page background images",
    )
    parser.add_argument(
        "--no-invisible-text",
        action="store_true",
        help="Ignore the invisible (OCR) text layer",
    )

    # Font switches
    parser.add_argument("--font-regular", default=None, help="Regular font file")
    parser.add_argument("--font-bold", default=None, help="Bold font file")
    parser.add_argument("--font-italic", default=None, help="Italic font file")
    parser.add_argument(
        "--min-font-size",
        type=float,
        default=7.0,
        help="Minimum font size in points (default: 7.0)",
    )
    parser.add_argument("--no-font-scaling", action="store_true", help="Keep original font sizes")
    parser.add_argument(
        "--no-clear-text-area",
        action="store_true",
        help="Do not paint white under translated text",
    )

    # OCR
    parser.add_argument("--ocr", action="store_true", help="Run OCR on images that look like text")
    parser.add_argument("--gpu", action="store_true", help="Enable GPU acceleration for OCR")

    # Output options
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress non-error output")

    return parser


def validate_args(args: argparse.Namespace) -> bool:
    """Validate command-line arguments."""
    if not args.api_key:
        print(f"Error: API key is required. Use --api-key or set {API_KEY_ENV[args.provider]}.")
        return False

    if not os.path.exists(args.input):
        print(f"Error: Input file not found: {args.input}")
        return False

    if not args.input.lower().endswith(".pdf"):
        print(f"Error: Input file must be a PDF: {args.input}")
        return False

    if args.concurrency < 1:
        print("Error: --concurrency must be at least 1.")
        return False

    return True


def build_config(args: argparse.Namespace) -> TranslationConfig:
    """Create the run configuration from parsed arguments."""
    config = TranslationConfig(
        target_language=args.target,
        input_path=args.input,
        output_dir=args.output_dir,
        provider=args.provider,
        mode=args.mode,
        page_selection=args.pages,
        force_retranslate_selected_pages=args.force_retranslate,
        resume=not args.no_resume,
        concurrency=args.concurrency,
        checkpoint_dir=args.checkpoint_dir,
        fail_fast=not args.no_fail_fast,
        max_retries=args.max_retries,
        max_chars_per_chunk=args.max_chars_per_chunk,
    )

    provider_config = getattr(config, args.provider)
    provider_config.api_key = args.api_key
    provider_config.max_blocks_per_request = args.max_blocks_per_request
    if args.model:
        provider_config.model = args.model
    if args.rate_limit:
        provider_config.enable_rate_limit = True
        provider_config.max_requests_per_second = args.rate_limit

    config.layout.merge_lines_into_paragraphs = args.merge_paragraphs
    config.layout.include_images = not args.no_images
    config.layout.suppress_background_images = not args.keep_background_images
    config.layout.include_invisible_text_layer = not args.no_invisible_text

    config.font.regular_font_file = args.font_regular
    config.font.bold_font_file = args.font_bold
    config.font.italic_font_file = args.font_italic
    config.font.min_auto_font_size = args.min_font_size
    config.font.enable_dynamic_font_scaling = not args.no_font_scaling
    config.font.clear_original_text_area = not args.no_clear_text_area

    config.ocr.enabled = args.ocr
    config.ocr.use_gpu = args.gpu

    return config


def print_summary(summary: TranslationSummary, quiet: bool = False) -> None:
    """Print translation summary."""
    if quiet:
        return

    print("\n" + "=" * 60)
    print("TRANSLATION SUMMARY")
    print("=" * 60)

    status = "OK" if summary.success else "FAILED"
    print(f"\n[{status}] {summary.input_file} -> {summary.output_file}")
    print(f"  Pages: {summary.pages_processed} ({summary.pages_resumed} resumed)")
    print(f"  Text blocks: {summary.text_blocks_translated}")
    print(f"  Images processed: {summary.images_processed}")
    print(f"  Time: {summary.processing_time_seconds:.2f}s")

    if summary.errors:
        print(f"  Errors: {len(summary.errors)}")
        for error in summary.errors[:3]:  # Show first 3 errors
            print(f"    - {error}")
        if len(summary.errors) > 3:
            print(f"    ... and {len(summary.errors) - 3} more")

    print("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    if not args.api_key:
        args.api_key = os.environ.get(API_KEY_ENV[args.provider])

    setup_logging(args.verbose, args.quiet)

    if not validate_args(args):
        return 1

    config = build_config(args)

    if not args.quiet:
        print("PDF Translator")
        print(f"Target language: {config.target_language}")
        print(f"Provider: {config.provider} ({config.mode} mode)")
        if config.page_selection:
            print(f"Pages: {config.page_selection}")
        print()

    if config.mode == "text":
        translator = TextTranslator(config)
    else:
        translator = DocumentTranslator(config)

    summary = translator.translate_document()
    print_summary(summary, args.quiet)

    return 0 if summary.success else 1


if __name__ == "__main__":
    sys.exit(main())
