"""Document Translator orchestrator - main entry point for the layout translation pipeline."""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from models.config import TranslationConfig, TranslationSummary
from models.data_models import PageCheckpoint, PageObject, TextBlock, TranslatedTextItem
from services.checkpoint_store import CheckpointError, CheckpointStore
from services.layout_reconstructor import LayoutReconstructionError, LayoutReconstructor
from services.ocr_engine import OCREngine
from services.pdf_parser import PDFParser, PDFParseError
from services.translation_service import BlockFailure, TranslationService, create_translation_service
from utils.error_handler import ErrorType, ProcessingError, QuotaExhaustedError, TranslationError
from utils.page_selection import build_page_descriptor, parse_page_selection
from utils.text_utils import build_cache_key, clean_pdf_artifacts


logger = logging.getLogger(__name__)


class DocumentTranslationError(Exception):
    """Exception raised when document translation fails."""
    pass


@dataclass
class PageOutcome:
    """What happened to one page during a run."""
    page_number: int
    resumed: bool = False
    translated_blocks: int = 0
    failures: List[BlockFailure] = field(default_factory=list)
    error: Optional[str] = None


def build_page_fingerprint(page: PageObject) -> str:
    """Hash of the page's block ids and cleaned texts, independent of geometry."""
    parts = [f"page={page.page_number}|"]
    for block in sorted(page.text_blocks, key=lambda b: b.block_id):
        parts.append(f"txt|{block.block_id}|text={clean_pdf_artifacts(block.original_text)}|")
    return build_cache_key("".join(parts))


def _by_id(items: List[TranslatedTextItem]) -> Dict[str, TranslatedTextItem]:
    by_id: Dict[str, TranslatedTextItem] = {}
    for item in items:
        if item.block_id:
            by_id[item.block_id] = item
    return by_id


def _by_unique_original(items: List[TranslatedTextItem]) -> Dict[str, TranslatedTextItem]:
    """Items keyed by cleaned original text, for texts that occur exactly once."""
    grouped: Dict[str, List[TranslatedTextItem]] = {}
    for item in items:
        original = clean_pdf_artifacts(item.original_text)
        if original:
            grouped.setdefault(original, []).append(item)
    return {text: group[0] for text, group in grouped.items() if len(group) == 1}


def apply_translations(page: PageObject, items: List[TranslatedTextItem]) -> None:
    """
    Copy translated texts onto the page's blocks.

    An item with the block's id applies only while its cleaned original
    text still equals the block's. Otherwise a unique match on the cleaned
    original text is used, and a block with neither keeps its text.
    """
    usable = [i for i in items if i.translated_text and i.translated_text.strip()]
    by_id = _by_id(usable)
    by_original = _by_unique_original(usable)

    for block in page.text_blocks:
        current = clean_pdf_artifacts(block.original_text)
        hit = by_id.get(block.block_id)
        if hit is None or clean_pdf_artifacts(hit.original_text) != current:
            hit = by_original.get(current)
        if hit is not None:
            block.translated_text = hit.translated_text


def get_uncovered_blocks(page: PageObject, items: List[TranslatedTextItem]) -> List[TextBlock]:
    """
    Blocks that cached items do not account for.

    A block is covered when an item with its id carries the same cleaned
    original text, or when its text matches exactly one cached item.
    """
    by_id = _by_id(items)
    by_original = _by_unique_original(items)

    uncovered: List[TextBlock] = []
    for block in page.text_blocks:
        current = clean_pdf_artifacts(block.original_text)
        hit = by_id.get(block.block_id)
        if hit is not None and clean_pdf_artifacts(hit.original_text) == current:
            continue
        if current in by_original:
            continue
        uncovered.append(block)
    return uncovered


def merge_translated_items(
    cached: List[TranslatedTextItem],
    fresh: List[TranslatedTextItem],
) -> List[TranslatedTextItem]:
    """Union of cached and fresh items; the fresh item wins for a shared id."""
    merged = _by_id(list(cached) + list(fresh))
    return list(merged.values())


def select_pages(selection: Optional[str], page_count: int) -> Optional[List[int]]:
    """
    Resolve the page selection against the document.

    Returns:
        Sorted page numbers, or None when no selection is active

    Raises:
        DocumentTranslationError: If the selection is invalid or empty
    """
    if not selection or not selection.strip():
        return None

    try:
        pages = parse_page_selection(selection, page_count)
    except ValueError as e:
        raise DocumentTranslationError(f"Invalid page selection '{selection}': {str(e)}")

    if not pages:
        raise DocumentTranslationError("Page selection is set but no valid pages were resolved")
    return pages


def build_output_path(input_path: str, output_dir: Optional[str], page_numbers: Optional[List[int]]) -> str:
    """Output file path: {stem}_translated.pdf, or {stem}_translated_pages_{pages}.pdf."""
    stem = os.path.splitext(os.path.basename(input_path))[0]
    if page_numbers:
        name = f"{stem}_translated_pages_{build_page_descriptor(page_numbers)}.pdf"
    else:
        name = f"{stem}_translated.pdf"

    directory = output_dir if output_dir else (os.path.dirname(os.path.abspath(input_path)))
    return os.path.join(directory, name)


class DocumentTranslator:
    """Main orchestrator that coordinates extraction, translation and reconstruction."""

    def __init__(
        self,
        config: TranslationConfig,
        pdf_parser: Optional[PDFParser] = None,
        translation_service: Optional[TranslationService] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        reconstructor: Optional[LayoutReconstructor] = None,
    ):
        """
        Initialize translator with configuration.

        Components not passed in are built from the configuration.

        Args:
            config: TranslationConfig for the run
            pdf_parser: Layout extractor
            translation_service: Page translation client
            checkpoint_store: Per-page checkpoint store
            reconstructor: Output PDF writer
        """
        self.config = config

        if pdf_parser is None:
            ocr_engine = OCREngine(config.ocr) if config.ocr.enabled else None
            pdf_parser = PDFParser(config.layout, ocr_engine=ocr_engine)
        self.pdf_parser = pdf_parser
        self.translation_service = translation_service or create_translation_service(config)
        self.checkpoint_store = checkpoint_store or CheckpointStore(config.checkpoint_dir)
        self.reconstructor = reconstructor or LayoutReconstructor(config.font)

    def translate_document(self, input_path: Optional[str] = None, output_path: Optional[str] = None) -> TranslationSummary:
        """Synchronous wrapper around translate_document_async."""
        return asyncio.run(self.translate_document_async(input_path, output_path))

    async def translate_document_async(
        self,
        input_path: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> TranslationSummary:
        """
        Translate a PDF document page by page.

        Args:
            input_path: Path to input PDF; defaults to config.input_path
            output_path: Path for output PDF; derived from the input when None

        Returns:
            TranslationSummary with statistics and errors
        """
        start_time = time.time()
        input_path = input_path or self.config.input_path
        summary = TranslationSummary(input_file=input_path, output_file=output_path or "")

        try:
            page_count = self.pdf_parser.page_count(input_path)
            selected = select_pages(self.config.page_selection, page_count)
            if selected:
                logger.info(f"Page filter active: {build_page_descriptor(selected)} ({len(selected)} page(s))")

            logger.info(f"Parsing PDF: {input_path}")
            pages = self.pdf_parser.parse(input_path, selected)
            pages.sort(key=lambda p: p.page_number)

            output_path = output_path or build_output_path(input_path, self.config.output_dir, selected)
            summary.output_file = output_path

            await self.checkpoint_store.initialize(
                input_path, self.config.target_language, self.translation_service.provider_name
            )

            outcomes = await self._run_pages(pages)
            self._record_outcomes(summary, pages, outcomes)

            logger.info("Reconstructing PDF...")
            self.reconstructor.reconstruct(pages, output_path)
            logger.info(f"Translation complete: {output_path}")

        except PDFParseError as e:
            summary.add_error(str(ProcessingError(ErrorType.PDF_PARSE, str(e), recoverable=False)))
            logger.error(f"PDF parsing failed: {str(e)}")
        except CheckpointError as e:
            summary.add_error(str(ProcessingError(ErrorType.CHECKPOINT, str(e), recoverable=False)))
            logger.error(f"Checkpoint store failed: {str(e)}")
        except LayoutReconstructionError as e:
            summary.add_error(str(ProcessingError(ErrorType.LAYOUT_RECONSTRUCTION, str(e), recoverable=False)))
            logger.error(f"PDF reconstruction failed: {str(e)}")
        except QuotaExhaustedError as e:
            summary.add_error(str(ProcessingError(ErrorType.QUOTA, str(e), recoverable=False)))
            logger.error(f"Provider quota exhausted, run aborted: {str(e)}")
        except TranslationError as e:
            summary.add_error(str(ProcessingError(ErrorType.TRANSLATION, str(e), recoverable=False)))
            logger.error(f"Translation failed: {str(e)}")
        except DocumentTranslationError as e:
            summary.add_error(str(e))
            logger.error(str(e))
        except Exception as e:
            summary.add_error(str(ProcessingError(
                ErrorType.UNKNOWN, f"{type(e).__name__}: {str(e)}", recoverable=False
            )))
            logger.exception(f"Translation failed: {str(e)}")

        summary.processing_time_seconds = time.time() - start_time
        return summary

    async def _run_pages(self, pages: List[PageObject]) -> List[PageOutcome]:
        """
        Process pages concurrently, at most `concurrency` at a time.

        With fail_fast the first failure cancels the remaining pages and
        propagates. Otherwise failures are recorded per page. Quota
        exhaustion always propagates.
        """
        semaphore = asyncio.Semaphore(max(1, self.config.concurrency))

        async def worker(page: PageObject) -> PageOutcome:
            async with semaphore:
                try:
                    return await self.process_page(page)
                except QuotaExhaustedError:
                    raise
                except Exception as e:
                    if self.config.fail_fast:
                        raise
                    logger.error(f"Page {page.page_number} failed: {str(e)}")
                    return PageOutcome(page_number=page.page_number, error=str(e))

        tasks = [asyncio.create_task(worker(page)) for page in pages]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def process_page(self, page: PageObject) -> PageOutcome:
        """
        Translate one page, resuming from its checkpoint when possible.

        Args:
            page: Page to translate; its blocks receive the translations

        Returns:
            PageOutcome describing the page

        Raises:
            Exception: Any failure, after the page is checkpointed as failed
        """
        fingerprint = build_page_fingerprint(page)
        selection_active = bool(self.config.page_selection and self.config.page_selection.strip())
        bypass_resume = selection_active and self.config.force_retranslate_selected_pages

        try:
            if self.config.resume and not bypass_resume:
                cached = await self.checkpoint_store.read_page(page.page_number)
                if cached is not None:
                    return await self._resume_page(page, fingerprint, cached)
            elif bypass_resume:
                logger.info(f"Page {page.page_number}: checkpoint resume bypassed for forced re-translation")

            translation = await self.translation_service.translate_page(page, self.config.target_language)
            apply_translations(page, translation.items)
            await self.checkpoint_store.save_page_success(page.page_number, fingerprint, translation.items)

            logger.info(
                f"Page {page.page_number} translated: {len(page.text_blocks)} text block(s), "
                f"provider {self.translation_service.provider_name}"
            )
            return PageOutcome(
                page_number=page.page_number,
                translated_blocks=len(page.text_blocks) - len(translation.failures),
                failures=translation.failures,
            )

        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.checkpoint_store.save_page_failure(
                page.page_number, fingerprint, f"{type(e).__name__}: {str(e)}"
            )
            raise

    async def _resume_page(self, page: PageObject, fingerprint: str, cached: PageCheckpoint) -> PageOutcome:
        apply_translations(page, cached.items)
        uncovered = get_uncovered_blocks(page, cached.items)

        if not uncovered:
            logger.info(f"Page {page.page_number} resumed from checkpoint: {len(page.text_blocks)} text block(s)")
            return PageOutcome(page_number=page.page_number, resumed=True, translated_blocks=len(page.text_blocks))

        reused = len(page.text_blocks) - len(uncovered)
        logger.warning(
            f"Page {page.page_number}: checkpoint coverage is partial "
            f"(cached {reused}, missing {len(uncovered)}), translating only missing blocks"
        )

        translation = await self.translation_service.translate_page(
            page.subset(uncovered), self.config.target_language
        )
        apply_translations(page, translation.items)
        merged = merge_translated_items(cached.items, translation.items)
        await self.checkpoint_store.save_page_success(page.page_number, fingerprint, merged)

        logger.info(
            f"Page {page.page_number} resumed partially: reused {reused}, newly translated {len(translation.items)}"
        )
        return PageOutcome(
            page_number=page.page_number,
            resumed=True,
            translated_blocks=len(page.text_blocks) - len(translation.failures),
            failures=translation.failures,
        )

    def _record_outcomes(
        self,
        summary: TranslationSummary,
        pages: List[PageObject],
        outcomes: List[PageOutcome],
    ) -> None:
        summary.pages_processed = len(pages)
        summary.images_processed = sum(len(p.image_blocks) for p in pages)

        for outcome in outcomes:
            summary.text_blocks_translated += outcome.translated_blocks
            if outcome.resumed:
                summary.pages_resumed += 1
            if outcome.error:
                summary.add_error(str(ProcessingError(
                    ErrorType.TRANSLATION, outcome.error, page_number=outcome.page_number
                )))
            for failure in outcome.failures:
                summary.add_error(str(ProcessingError(
                    ErrorType.TRANSLATION,
                    failure.reason,
                    page_number=outcome.page_number,
                    block_id=failure.block_id,
                )))
