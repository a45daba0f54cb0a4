"""Flat-text translation mode: plain text in, chunked and checkpointed, text file out."""

import asyncio
import logging
import os
import time
from typing import List, Optional

import fitz  # PyMuPDF

from models.config import TranslationConfig, TranslationSummary
from models.data_models import ChunkResult, ChunkStatus, TranslationChunk
from services.checkpoint_store import ChunkCheckpointStore
from services.chunk_validator import ChunkValidator
from services.document_translator import DocumentTranslationError, build_output_path, select_pages
from services.pdf_parser import PDFParser, PDFParseError
from services.text_chunker import ParagraphTextChunker
from services.translation_service import TranslationService, create_translation_service
from utils.error_handler import (
    ErrorType,
    ProcessingError,
    QuotaExhaustedError,
    RequestRejectedError,
    TranslationError,
    ValidationError,
)
from utils.file_utils import atomic_write_text
from utils.text_utils import preprocess_pdf_text, sanitize_model_output


logger = logging.getLogger(__name__)

MAX_CHUNK_BACKOFF_SECONDS = 30.0


class TextTranslator:
    """Translates the plain text of a PDF chunk by chunk."""

    def __init__(
        self,
        config: TranslationConfig,
        translation_service: Optional[TranslationService] = None,
        checkpoint_store: Optional[ChunkCheckpointStore] = None,
        validator: Optional[ChunkValidator] = None,
    ):
        self.config = config
        self.pdf_parser = PDFParser(config.layout)
        self.translation_service = translation_service or create_translation_service(config)
        self.checkpoint_store = checkpoint_store or ChunkCheckpointStore(config.checkpoint_dir)
        self.chunker = ParagraphTextChunker(config.max_chars_per_chunk)
        self.validator = validator or ChunkValidator(
            config.target_language,
            min_output_chars=config.min_output_chars,
            min_output_to_input_ratio=config.min_output_to_input_ratio,
        )

    def extract_text(self, input_path: str, page_numbers: Optional[List[int]] = None) -> str:
        """
        Plain text of the selected pages, one page after another.

        Raises:
            PDFParseError: If the PDF cannot be read
        """
        is_valid, error_msg = self.pdf_parser.validate_pdf(input_path)
        if not is_valid:
            raise PDFParseError(error_msg)

        wanted = set(page_numbers) if page_numbers else None
        texts: List[str] = []
        with fitz.open(input_path) as doc:
            for page_index in range(doc.page_count):
                if wanted is not None and page_index + 1 not in wanted:
                    continue
                texts.append(doc[page_index].get_text("text"))

        return "\n\n".join(texts)

    def translate_document(self, input_path: Optional[str] = None, output_path: Optional[str] = None) -> TranslationSummary:
        """Synchronous wrapper around translate_document_async."""
        return asyncio.run(self.translate_document_async(input_path, output_path))

    async def translate_document_async(
        self,
        input_path: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> TranslationSummary:
        """
        Translate the text of a PDF into a .txt file.

        Args:
            input_path: Path to input PDF; defaults to config.input_path
            output_path: Path for the text output; derived from the input when None

        Returns:
            TranslationSummary; text_blocks_translated counts successful chunks
        """
        start_time = time.time()
        input_path = input_path or self.config.input_path
        summary = TranslationSummary(input_file=input_path, output_file=output_path or "")

        try:
            selected = select_pages(self.config.page_selection, self.pdf_parser.page_count(input_path))
            if output_path is None:
                pdf_path = build_output_path(input_path, self.config.output_dir, selected)
                output_path = os.path.splitext(pdf_path)[0] + ".txt"
            summary.output_file = output_path

            logger.info(f"Extracting PDF text: {input_path}")
            raw = await asyncio.to_thread(self.extract_text, input_path, selected)
            if not raw.strip():
                raise DocumentTranslationError("Extracted text is empty. If the PDF is scanned, OCR is required")

            chunks = self.chunker.chunk(preprocess_pdf_text(raw))
            summary.pages_processed = len(selected) if selected else self.pdf_parser.page_count(input_path)
            logger.info(
                f"Chunking done: {len(chunks)} chunk(s), max {self.config.max_chars_per_chunk} chars, "
                f"concurrency {self.config.concurrency}"
            )

            await self.checkpoint_store.initialize(
                input_path,
                self.config.target_language,
                self.translation_service.provider_name,
                self.config.max_chars_per_chunk,
            )

            results = await self._run_chunks(chunks)
            self._record_results(summary, results)

            review_path = await self.checkpoint_store.write_review_list(results)
            if review_path:
                logger.warning(f"Chunks needing review are listed in {review_path}")

            merged = "\n\n".join(
                r.output for r in sorted(results, key=lambda r: r.index)
                if r.status == ChunkStatus.SUCCESS and r.output and r.output.strip()
            )
            await asyncio.to_thread(atomic_write_text, output_path, merged)
            logger.info(f"Translation complete: {output_path}")

        except PDFParseError as e:
            summary.add_error(f"PDF parsing error: {str(e)}")
            logger.error(f"PDF parsing failed: {str(e)}")
        except QuotaExhaustedError as e:
            summary.add_error(str(ProcessingError(ErrorType.QUOTA, str(e), recoverable=False)))
            logger.error(f"Provider quota exhausted, run aborted: {str(e)}")
        except DocumentTranslationError as e:
            summary.add_error(str(e))
            logger.error(str(e))
        except Exception as e:
            summary.add_error(f"Unexpected error: {str(e)}")
            logger.exception(f"Translation failed: {str(e)}")

        summary.processing_time_seconds = time.time() - start_time
        return summary

    async def _run_chunks(self, chunks: List[TranslationChunk]) -> List[ChunkResult]:
        semaphore = asyncio.Semaphore(max(1, self.config.concurrency))

        async def worker(chunk: TranslationChunk) -> ChunkResult:
            async with semaphore:
                return await self.process_chunk(chunk)

        tasks = [asyncio.create_task(worker(chunk)) for chunk in chunks]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def process_chunk(self, chunk: TranslationChunk) -> ChunkResult:
        """
        Translate one chunk with validation and bounded attempts.

        Returns:
            ChunkResult with SUCCESS, FAILED (rejected) or QUARANTINED status

        Raises:
            QuotaExhaustedError: After recording the chunk as failed
        """
        if self.config.resume:
            previous = await self.checkpoint_store.read_resumable_output(chunk.index, chunk.text)
            if previous and previous.strip():
                output = sanitize_model_output(previous)
                is_valid, _ = self.validator.validate(chunk.text, output)
                if is_valid:
                    logger.info(f"Chunk {chunk.index} resumed from checkpoint")
                    result = ChunkResult(chunk.index, ChunkStatus.SUCCESS, output=output, attempts=0)
                    await self.checkpoint_store.record(result)
                    return result

        await self.checkpoint_store.save_input(chunk.index, chunk.text)

        max_attempts = max(1, self.config.max_attempts_per_chunk)
        last_error = "Unknown error"

        for attempt in range(1, max_attempts + 1):
            try:
                output = sanitize_model_output(
                    await self.translation_service.translate_text(chunk.text, self.config.target_language)
                )
                is_valid, reason = self.validator.validate(chunk.text, output)
                if not is_valid:
                    raise ValidationError(reason)

                result = ChunkResult(chunk.index, ChunkStatus.SUCCESS, output=output, attempts=attempt)
                await self.checkpoint_store.record(result)
                logger.info(f"Chunk {chunk.index} translated (attempt {attempt})")
                return result

            except QuotaExhaustedError as e:
                await self.checkpoint_store.record(
                    ChunkResult(chunk.index, ChunkStatus.FAILED, error=str(e), attempts=attempt)
                )
                raise
            except RequestRejectedError as e:
                result = ChunkResult(chunk.index, ChunkStatus.FAILED, error=str(e), attempts=attempt)
                await self.checkpoint_store.record(result)
                logger.error(f"Chunk {chunk.index} rejected by the provider: {str(e)}")
                return result
            except ValidationError as e:
                last_error = f"Validation failed: {str(e)}"
                logger.warning(f"Chunk {chunk.index} attempt {attempt}/{max_attempts}: {last_error}")
            except TranslationError as e:
                last_error = str(e)
                logger.warning(f"Chunk {chunk.index} attempt {attempt}/{max_attempts} failed: {last_error}")
                if attempt < max_attempts:
                    await asyncio.sleep(min(MAX_CHUNK_BACKOFF_SECONDS, 2.0 * attempt))

        result = ChunkResult(chunk.index, ChunkStatus.QUARANTINED, error=last_error, attempts=max_attempts)
        await self.checkpoint_store.record(result)
        logger.warning(f"Chunk {chunk.index} quarantined after {max_attempts} attempt(s)")
        return result

    def _record_results(self, summary: TranslationSummary, results: List[ChunkResult]) -> None:
        for result in results:
            if result.status == ChunkStatus.SUCCESS:
                summary.text_blocks_translated += 1
            else:
                summary.add_error(str(ProcessingError(
                    ErrorType.VALIDATION if result.status == ChunkStatus.QUARANTINED else ErrorType.TRANSLATION,
                    f"chunk {result.index:05d} {result.status.value}: {result.error}",
                )))
