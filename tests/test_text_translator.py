"""Tests for flat-text mode: chunk attempts, quarantine, resume and output."""

import asyncio
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.data_models import ChunkStatus, TranslationChunk
from services.chunk_validator import ChunkValidator
from services.text_translator import TextTranslator
from utils.error_handler import QuotaExhaustedError, RequestRejectedError, TransientTranslationError


def make_service(side_effect):
    service = MagicMock()
    service.provider_name = "fake"
    service.translate_text = AsyncMock(side_effect=side_effect)
    return service


def prefix_translation(text, target_language):
    return f"FR {text}"


def make_translator(config, service):
    detector = MagicMock()
    detector.detect_confident_language.return_value = None
    validator = ChunkValidator(config.target_language, language_detector=detector)
    return TextTranslator(config, translation_service=service, validator=validator)


async def initialized(translator):
    await translator.checkpoint_store.initialize("book.pdf", "French", "fake", 3500)
    return translator


class TestProcessChunk:
    @pytest.mark.asyncio
    async def test_invalid_output_is_retried(self, sample_config):
        service = make_service(["", "Bonjour le monde"])
        translator = await initialized(make_translator(sample_config, service))

        result = await translator.process_chunk(TranslationChunk(0, "Hello world"))

        assert result.status == ChunkStatus.SUCCESS
        assert result.output == "Bonjour le monde"
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_exhausted_attempts_quarantine_the_chunk(self, sample_config):
        service = make_service(lambda text, lang: "")
        translator = await initialized(make_translator(sample_config, service))

        result = await translator.process_chunk(TranslationChunk(4, "Hello world"))

        assert result.status == ChunkStatus.QUARANTINED
        assert result.attempts == sample_config.max_attempts_per_chunk
        assert result.error == "Validation failed: Empty output"
        assert os.path.exists(translator.checkpoint_store.error_path(4))
        assert service.translate_text.await_count == sample_config.max_attempts_per_chunk

    @pytest.mark.asyncio
    async def test_transient_errors_back_off(self, sample_config, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)
        service = make_service([TransientTranslationError("503"), "Bonjour le monde"])
        translator = await initialized(make_translator(sample_config, service))

        result = await translator.process_chunk(TranslationChunk(0, "Hello world"))

        assert result.status == ChunkStatus.SUCCESS
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_rejection_fails_without_retry(self, sample_config):
        service = make_service(RequestRejectedError("HTTP 400"))
        translator = await initialized(make_translator(sample_config, service))

        result = await translator.process_chunk(TranslationChunk(0, "Hello world"))

        assert result.status == ChunkStatus.FAILED
        assert result.attempts == 1
        assert service.translate_text.await_count == 1

    @pytest.mark.asyncio
    async def test_quota_is_recorded_then_raised(self, sample_config):
        service = make_service(QuotaExhaustedError("insufficient_quota"))
        translator = await initialized(make_translator(sample_config, service))

        with pytest.raises(QuotaExhaustedError):
            await translator.process_chunk(TranslationChunk(2, "Hello world"))
        assert translator.checkpoint_store.manifest["items"]["2"]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_model_output_is_sanitized(self, sample_config):
        service = make_service(lambda text, lang: "```\nBonjour le monde\n```")
        translator = await initialized(make_translator(sample_config, service))

        result = await translator.process_chunk(TranslationChunk(0, "Hello world"))
        assert result.output == "Bonjour le monde"


class TestTranslateDocument:
    def test_text_file_is_written(self, sample_config, sample_pdf):
        translator = make_translator(sample_config, make_service(prefix_translation))

        summary = translator.translate_document(sample_pdf)

        assert summary.success, summary.errors
        assert summary.output_file == os.path.join(sample_config.output_dir, "sample_translated.txt")
        with open(summary.output_file, encoding="utf-8") as f:
            content = f.read()
        assert content == "FR Hello world Second line\n\nPicture caption"
        assert summary.text_blocks_translated == 1
        assert summary.pages_processed == 2

    def test_second_run_resumes_all_chunks(self, sample_config, sample_pdf):
        sample_config.max_chars_per_chunk = 20
        make_translator(sample_config, make_service(prefix_translation)).translate_document(sample_pdf)

        service = make_service(prefix_translation)
        summary = make_translator(sample_config, service).translate_document(sample_pdf)

        assert summary.success, summary.errors
        service.translate_text.assert_not_called()
        with open(summary.output_file, encoding="utf-8") as f:
            assert f.read() == "FR Hello world Second line\n\nFR Picture caption"

    def test_failed_chunks_are_left_out_and_listed(self, sample_config, sample_pdf):
        sample_config.max_chars_per_chunk = 20

        def translate(text, target_language):
            return "" if "Picture" in text else f"FR {text}"

        translator = make_translator(sample_config, make_service(translate))
        summary = translator.translate_document(sample_pdf)

        assert not summary.success
        assert summary.text_blocks_translated == 1
        with open(summary.output_file, encoding="utf-8") as f:
            assert f.read() == "FR Hello world Second line"
        with open(translator.checkpoint_store.review_path, encoding="utf-8") as f:
            assert f.read().startswith("00001\tquarantined")

    def test_page_selection_names_the_output(self, sample_config, sample_pdf):
        sample_config.page_selection = "2"
        service = make_service(prefix_translation)
        summary = make_translator(sample_config, service).translate_document(sample_pdf)

        assert summary.output_file.endswith("sample_translated_pages_2.txt")
        service.translate_text.assert_awaited_once_with("Picture caption", "French")

    def test_quota_aborts_without_output(self, sample_config, sample_pdf):
        service = make_service(QuotaExhaustedError("insufficient_quota"))
        summary = make_translator(sample_config, service).translate_document(sample_pdf)

        assert not summary.success
        assert "quota" in summary.errors[0]
        assert not os.path.exists(summary.output_file)
