"""Tests for the layout and flat-text checkpoint stores."""

import json
import os

import pytest

from models.data_models import ChunkResult, ChunkStatus, PageStatus, TranslatedTextItem
from services import checkpoint_store
from services.checkpoint_store import (
    CheckpointError,
    CheckpointStore,
    ChunkCheckpointStore,
    build_run_hash,
)


ITEMS = [TranslatedTextItem("p0001_txt00001", "Hello", "Bonjour")]


def test_run_hash_depends_on_identity(tmp_path):
    source = str(tmp_path / "book.pdf")
    base = build_run_hash(source, "French", "gemini")

    assert base == build_run_hash(source, "French", "gemini")
    assert base != build_run_hash(source, "German", "gemini")
    assert base != build_run_hash(source, "French", "openai")
    assert base != build_run_hash(source, "French", "gemini", mode="text")
    assert base.startswith("pdftr-")


class TestCheckpointStore:
    @pytest.mark.asyncio
    async def test_requires_initialize(self, tmp_path):
        store = CheckpointStore(str(tmp_path))
        with pytest.raises(CheckpointError):
            await store.read_page(1)

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, tmp_path, monkeypatch):
        store = CheckpointStore(str(tmp_path))
        await store.initialize("book.pdf", "French", "gemini")

        def fail_write(path, data):
            raise OSError("disk full")

        monkeypatch.setattr(checkpoint_store, "atomic_write_json", fail_write)
        with pytest.raises(CheckpointError, match="disk full"):
            await store.save_page_success(1, "fp-1", ITEMS)

    @pytest.mark.asyncio
    async def test_success_round_trip(self, tmp_path):
        store = CheckpointStore(str(tmp_path))
        run_hash = await store.initialize("book.pdf", "French", "gemini")

        assert await store.read_page(1) is None

        await store.save_page_success(1, "fp-1", ITEMS)
        cached = await store.read_page(1)

        assert cached.page_fingerprint == "fp-1"
        assert cached.items == ITEMS
        assert os.path.exists(os.path.join(tmp_path, "layout-runs", run_hash, "pages", "page-0001.json"))

    @pytest.mark.asyncio
    async def test_failed_page_is_a_miss(self, tmp_path):
        store = CheckpointStore(str(tmp_path))
        await store.initialize("book.pdf", "French", "gemini")

        await store.save_page_success(2, "fp", ITEMS)
        await store.save_page_failure(2, "fp", "TransientTranslationError: 503")

        assert await store.read_page(2) is None
        with open(store.manifest_path, encoding="utf-8") as f:
            manifest = json.load(f)
        assert manifest["pages"]["2"]["status"] == PageStatus.FAILED.value
        assert manifest["pages"]["2"]["error"] == "TransientTranslationError: 503"

    @pytest.mark.asyncio
    async def test_manifest_survives_reopen(self, tmp_path):
        store = CheckpointStore(str(tmp_path))
        await store.initialize("book.pdf", "French", "gemini")
        await store.save_page_success(3, "fp-3", ITEMS)

        reopened = CheckpointStore(str(tmp_path))
        await reopened.initialize("book.pdf", "French", "gemini")
        cached = await reopened.read_page(3)
        assert cached is not None
        assert cached.items[0].translated_text == "Bonjour"

    @pytest.mark.asyncio
    async def test_corrupt_page_file_is_a_miss(self, tmp_path):
        store = CheckpointStore(str(tmp_path))
        await store.initialize("book.pdf", "French", "gemini")
        await store.save_page_success(1, "fp", ITEMS)

        with open(store.page_path(1), "w", encoding="utf-8") as f:
            f.write("{ not json")

        assert await store.read_page(1) is None

    @pytest.mark.asyncio
    async def test_corrupt_manifest_starts_fresh(self, tmp_path):
        store = CheckpointStore(str(tmp_path))
        await store.initialize("book.pdf", "French", "gemini")
        with open(store.manifest_path, "w", encoding="utf-8") as f:
            f.write("garbage")

        reopened = CheckpointStore(str(tmp_path))
        await reopened.initialize("book.pdf", "French", "gemini")
        assert reopened.manifest.pages == {}


class TestChunkCheckpointStore:
    @pytest.mark.asyncio
    async def test_output_resumes_only_for_same_input(self, tmp_path):
        store = ChunkCheckpointStore(str(tmp_path))
        await store.initialize("book.pdf", "French", "gemini", 3500)

        await store.save_input(0, "Hello")
        await store.record(ChunkResult(0, ChunkStatus.SUCCESS, output="Bonjour", attempts=1))

        assert await store.read_resumable_output(0, "Hello") == "Bonjour"
        assert await store.read_resumable_output(0, "Hello, changed") is None
        assert await store.read_resumable_output(1, "Other") is None

    @pytest.mark.asyncio
    async def test_failures_write_error_file_and_review_list(self, tmp_path):
        store = ChunkCheckpointStore(str(tmp_path))
        await store.initialize("book.pdf", "French", "gemini", 3500)

        results = [
            ChunkResult(0, ChunkStatus.SUCCESS, output="ok", attempts=1),
            ChunkResult(1, ChunkStatus.QUARANTINED, error="validation", attempts=3),
        ]
        for result in results:
            await store.record(result)

        with open(store.error_path(1), encoding="utf-8") as f:
            assert json.load(f)["status"] == "quarantined"

        review_path = await store.write_review_list(results)
        with open(review_path, encoding="utf-8") as f:
            content = f.read()
        assert content.startswith("00001\tquarantined")
        assert store.manifest["items"]["1"]["attempts"] == 3

    @pytest.mark.asyncio
    async def test_no_review_list_when_all_succeed(self, tmp_path):
        store = ChunkCheckpointStore(str(tmp_path))
        await store.initialize("book.pdf", "French", "gemini", 3500)
        assert await store.write_review_list([ChunkResult(0, ChunkStatus.SUCCESS, output="ok")]) is None
