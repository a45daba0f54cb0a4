"""Tests for batching, adaptive splitting, retries and rate limiting."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from models.data_models import TranslatedTextItem
from services.translation_protocol import BatchResponse, parse_translation_items
from services.translation_service import (
    RateLimiter,
    TranslationService,
    build_initial_batches,
    create_translation_service,
)
from utils.error_handler import (
    MalformedResponseError,
    QuotaExhaustedError,
    RateLimitedError,
    RequestRejectedError,
    TransientTranslationError,
)


def echo_items(blocks, prefix="FR:"):
    return [TranslatedTextItem(b.block_id, b.original_text, f"{prefix}{b.original_text}") for b in blocks]


class FakeProvider:
    """Provider double that records every batch it receives."""

    name = "fake"

    def __init__(self, handler):
        self.handler = handler
        self.batches = []

    async def request_batch(self, blocks, target_language, context_pdf=None):
        self.batches.append([b.block_id for b in blocks])
        return self.handler(blocks)

    async def translate_text(self, text, target_language):
        return f"FR:{text}"


def make_service(provider, **kwargs):
    kwargs.setdefault("max_retries", 0)
    kwargs.setdefault("initial_retry_delay", 0.0)
    return TranslationService(provider, **kwargs)


class TestInitialBatches:
    def test_block_limit(self, make_page):
        page = make_page([f"text {i}" for i in range(25)])
        batches = build_initial_batches(page.text_blocks, max_blocks=10, max_chars=100000)
        assert [len(b) for b in batches] == [10, 10, 5]

    def test_char_limit(self, make_page):
        page = make_page(["a" * 40, "b" * 40, "c" * 40])
        batches = build_initial_batches(page.text_blocks, max_blocks=10, max_chars=90)
        assert [len(b) for b in batches] == [2, 1]

    def test_oversized_block_gets_own_batch(self, make_page):
        page = make_page(["x" * 500, "short"])
        batches = build_initial_batches(page.text_blocks, max_blocks=10, max_chars=100)
        assert [len(b) for b in batches] == [1, 1]


class TestTranslatePage:
    @pytest.mark.asyncio
    async def test_all_blocks_translated(self, make_page):
        page = make_page(["Hello", "World"])
        provider = FakeProvider(lambda blocks: BatchResponse(items=echo_items(blocks)))

        result = await make_service(provider).translate_page(page, "French")

        assert [i.translated_text for i in result.items] == ["FR:Hello", "FR:World"]
        assert result.failures == []
        assert provider.batches == [["p0001_txt00001", "p0001_txt00002"]]

    @pytest.mark.asyncio
    async def test_empty_page_makes_no_calls(self, make_page):
        provider = FakeProvider(lambda blocks: BatchResponse(items=echo_items(blocks)))
        result = await make_service(provider).translate_page(make_page([]), "French")
        assert result.items == []
        assert provider.batches == []

    @pytest.mark.asyncio
    async def test_truncation_splits_down_to_singletons(self, make_page):
        page = make_page(["A", "B", "C", "D"])

        def handler(blocks):
            if len(blocks) > 1:
                return BatchResponse(truncated=True)
            return BatchResponse(items=echo_items(blocks))

        provider = FakeProvider(handler)
        result = await make_service(provider).translate_page(page, "French")

        assert len(result.items) == 4
        assert result.failures == []
        assert provider.batches == [
            ["p0001_txt00001", "p0001_txt00002", "p0001_txt00003", "p0001_txt00004"],
            ["p0001_txt00001", "p0001_txt00002"],
            ["p0001_txt00001"],
            ["p0001_txt00002"],
            ["p0001_txt00003", "p0001_txt00004"],
            ["p0001_txt00003"],
            ["p0001_txt00004"],
        ]

    @pytest.mark.asyncio
    async def test_truncating_singleton_yields_one_failure(self, make_page):
        page = make_page(["A", "B"])

        def handler(blocks):
            if blocks[0].original_text == "B":
                return BatchResponse(truncated=True)
            return BatchResponse(items=echo_items(blocks))

        result = await make_service(FakeProvider(handler)).translate_page(page, "French")

        assert [i.block_id for i in result.items] == ["p0001_txt00001"]
        assert [f.block_id for f in result.failures] == ["p0001_txt00002"]

    @pytest.mark.asyncio
    async def test_partial_coverage_splits(self, make_page):
        page = make_page(["A", "B", "C"])

        def handler(blocks):
            # only ever translates the first block of a batch
            return BatchResponse(items=echo_items(blocks[:1]))

        provider = FakeProvider(handler)
        result = await make_service(provider).translate_page(page, "French")

        assert sorted(i.block_id for i in result.items) == [
            "p0001_txt00001", "p0001_txt00002", "p0001_txt00003",
        ]
        assert result.failures == []

    @pytest.mark.asyncio
    async def test_malformed_batch_splits(self, make_page):
        page = make_page(["A", "B"])

        def handler(blocks):
            if len(blocks) > 1:
                raise MalformedResponseError("not json")
            return BatchResponse(items=echo_items(blocks))

        result = await make_service(FakeProvider(handler)).translate_page(page, "French")
        assert len(result.items) == 2

    @pytest.mark.asyncio
    async def test_rejected_singleton_propagates(self, make_page):
        page = make_page(["A"])

        def handler(blocks):
            raise RequestRejectedError("bad request")

        with pytest.raises(RequestRejectedError):
            await make_service(FakeProvider(handler)).translate_page(page, "French")

    @pytest.mark.asyncio
    async def test_quota_is_never_split(self, make_page):
        page = make_page(["A", "B", "C", "D"])

        def handler(blocks):
            raise QuotaExhaustedError("no quota")

        provider = FakeProvider(handler)
        with pytest.raises(QuotaExhaustedError):
            await make_service(provider).translate_page(page, "French")
        assert len(provider.batches) == 1

    @pytest.mark.asyncio
    async def test_unknown_ids_are_ignored(self, make_page):
        page = make_page(["A"])

        def handler(blocks):
            return BatchResponse(items=[
                TranslatedTextItem("p9999_txt00001", "?", "stray"),
                *echo_items(blocks),
            ])

        result = await make_service(FakeProvider(handler)).translate_page(page, "French")
        assert [i.block_id for i in result.items] == ["p0001_txt00001"]


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, make_page, monkeypatch):
        monkeypatch.setattr(asyncio, "sleep", AsyncMock())
        page = make_page(["A"])
        attempts = []

        def handler(blocks):
            attempts.append(1)
            if len(attempts) < 3:
                raise TransientTranslationError("503")
            return BatchResponse(items=echo_items(blocks))

        service = make_service(FakeProvider(handler), max_retries=3)
        result = await service.translate_page(page, "French")

        assert len(attempts) == 3
        assert len(result.items) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_escalates_to_quota_after_retries(self, make_page, monkeypatch):
        monkeypatch.setattr(asyncio, "sleep", AsyncMock())
        page = make_page(["A"])

        def handler(blocks):
            raise RateLimitedError("429")

        with pytest.raises(QuotaExhaustedError):
            await make_service(FakeProvider(handler), max_retries=2).translate_page(page, "French")


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_requests_are_spaced(self, monkeypatch):
        now = [0.0]
        slept = []

        async def fake_sleep(delay):
            slept.append(delay)
            now[0] += delay

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        limiter = RateLimiter(2.0, clock=lambda: now[0])

        await limiter.wait()
        await limiter.wait()
        await limiter.wait()

        assert slept == [pytest.approx(0.5), pytest.approx(0.5)]

    @pytest.mark.asyncio
    async def test_disabled_limiter_never_sleeps(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)
        await RateLimiter(0).wait()
        sleep.assert_not_called()


def test_parse_translation_items_drops_incomplete_rows():
    items = parse_translation_items(
        '```json\n[{"block_id": "a", "original_text": "x", "translated_text": "y"},'
        ' {"block_id": "", "translated_text": "z"}, {"block_id": "b", "translated_text": ""}]\n```'
    )
    assert [(i.block_id, i.translated_text) for i in items] == [("a", "y")]


def test_parse_translation_items_rejects_non_json():
    with pytest.raises(MalformedResponseError):
        parse_translation_items("Sorry, I cannot help with that.")


def test_unknown_provider(sample_config):
    sample_config.provider = "nope"
    with pytest.raises(ValueError):
        create_translation_service(sample_config)


def test_provider_is_selected_from_registry(sample_config):
    sample_config.provider = "openai"
    sample_config.openai.enable_rate_limit = True
    service = create_translation_service(sample_config)
    assert service.provider_name == "openai"
    assert service.rate_limiter is not None
