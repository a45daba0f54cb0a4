"""Durable, resumable checkpoints for layout and flat-text translation runs."""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from models.data_models import (
    ChunkResult,
    ChunkStatus,
    PageCheckpoint,
    PageManifestItem,
    PageStatus,
    RunManifest,
    TranslatedTextItem,
    utc_now,
)
from utils.file_utils import atomic_write_json, atomic_write_text, read_json, read_text
from utils.text_utils import build_cache_key


logger = logging.getLogger(__name__)


class CheckpointError(Exception):
    """Exception raised when the checkpoint store is misused or cannot be written."""
    pass


def build_run_hash(source_path: str, target_language: str, provider_name: str, mode: str = "layout") -> str:
    """Identity of a run: same source, language and provider resume each other."""
    source = os.path.abspath(source_path)
    return build_cache_key(f"{mode}|source={source}|lang={target_language}|provider={provider_name}")


class CheckpointStore:
    """
    Per-page checkpoints of a layout run.

    Layout on disk::

        {checkpoint_dir}/layout-runs/{run_hash}/manifest.json
        {checkpoint_dir}/layout-runs/{run_hash}/pages/page-NNNN.json

    The store is the only owner of the manifest; all access goes through
    one asyncio.Lock and file I/O runs in worker threads. Read failures
    count as cache misses, write failures propagate.
    """

    def __init__(self, checkpoint_dir: str):
        self.checkpoint_dir = checkpoint_dir
        self.run_root = ""
        self.pages_root = ""
        self.manifest_path = ""
        self.manifest = RunManifest()
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self, source_path: str, target_language: str, provider_name: str) -> str:
        """
        Open (or create) the run directory and its manifest.

        Returns:
            The run hash
        """
        async with self._lock:
            run_hash = build_run_hash(source_path, target_language, provider_name)
            self.run_root = os.path.join(os.path.abspath(self.checkpoint_dir), "layout-runs", run_hash)
            self.pages_root = os.path.join(self.run_root, "pages")
            self.manifest_path = os.path.join(self.run_root, "manifest.json")

            await asyncio.to_thread(os.makedirs, self.pages_root, exist_ok=True)

            manifest = await asyncio.to_thread(self._load_manifest)
            if manifest is None:
                manifest = RunManifest(
                    run_hash=run_hash,
                    source_path=os.path.abspath(source_path),
                    target_language=target_language,
                    provider=provider_name,
                )
                self.manifest = manifest
                await self._write(self.manifest_path, self.manifest.to_dict())
            else:
                self.manifest = manifest

            self._initialized = True
            logger.info(f"Checkpoint run {run_hash} at {self.run_root}")
            return run_hash

    async def read_page(self, page_number: int) -> Optional[PageCheckpoint]:
        """
        Cached checkpoint of a page that last ended in success.

        The fingerprint is not compared here; callers check block coverage.

        Returns:
            PageCheckpoint, or None on a miss or an unreadable file
        """
        async with self._lock:
            self._ensure_initialized()

            entry = self.manifest.pages.get(page_number)
            if entry is None or entry.status != PageStatus.SUCCESS:
                return None

            path = self.page_path(page_number)
            try:
                data = await asyncio.to_thread(read_json, path)
                return PageCheckpoint.from_dict(data)
            except FileNotFoundError:
                return None
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Page {page_number}: unreadable checkpoint {path}, treating as miss: {str(e)}")
                return None

    async def save_page_success(
        self,
        page_number: int,
        page_fingerprint: str,
        items: List[TranslatedTextItem],
    ) -> None:
        """Persist the translated items of a page and mark it successful."""
        async with self._lock:
            self._ensure_initialized()

            checkpoint = PageCheckpoint(
                page_number=page_number,
                page_fingerprint=page_fingerprint,
                items=list(items),
            )
            await self._write(self.page_path(page_number), checkpoint.to_dict())

            self.manifest.pages[page_number] = PageManifestItem(
                status=PageStatus.SUCCESS,
                page_fingerprint=page_fingerprint,
            )
            self.manifest.updated_at = utc_now()
            await self._write(self.manifest_path, self.manifest.to_dict())

    async def save_page_failure(self, page_number: int, page_fingerprint: str, error: str) -> None:
        """Mark a page as failed, keeping the error text."""
        async with self._lock:
            self._ensure_initialized()

            self.manifest.pages[page_number] = PageManifestItem(
                status=PageStatus.FAILED,
                page_fingerprint=page_fingerprint,
                error=error,
            )
            self.manifest.updated_at = utc_now()
            await self._write(self.manifest_path, self.manifest.to_dict())

    def page_path(self, page_number: int) -> str:
        return os.path.join(self.pages_root, f"page-{page_number:04d}.json")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise CheckpointError("Checkpoint store is not initialized")

    def _load_manifest(self) -> Optional[RunManifest]:
        if not os.path.exists(self.manifest_path):
            return None
        try:
            return RunManifest.from_dict(read_json(self.manifest_path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unreadable manifest {self.manifest_path}, starting fresh: {str(e)}")
            return None

    async def _write(self, path: str, data: dict) -> None:
        try:
            await asyncio.to_thread(atomic_write_json, path, data)
        except OSError as e:
            raise CheckpointError(f"Cannot write checkpoint {path}: {str(e)}") from e


class ChunkCheckpointStore:
    """
    Per-chunk checkpoints of a flat-text run.

    Layout on disk::

        {checkpoint_dir}/text-runs/{run_hash}/manifest.json
        {checkpoint_dir}/text-runs/{run_hash}/chunks/NNNNN.input.txt
        {checkpoint_dir}/text-runs/{run_hash}/chunks/NNNNN.output.txt
        {checkpoint_dir}/text-runs/{run_hash}/errors/NNNNN.error.json
    """

    def __init__(self, checkpoint_dir: str):
        self.checkpoint_dir = checkpoint_dir
        self.run_root = ""
        self.manifest_path = ""
        self.manifest: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def initialize(
        self,
        source_path: str,
        target_language: str,
        provider_name: str,
        max_chars_per_chunk: int,
    ) -> str:
        async with self._lock:
            run_hash = build_run_hash(source_path, target_language, provider_name, mode="text")
            self.run_root = os.path.join(os.path.abspath(self.checkpoint_dir), "text-runs", run_hash)
            self.manifest_path = os.path.join(self.run_root, "manifest.json")

            for sub in ("chunks", "errors"):
                await asyncio.to_thread(os.makedirs, os.path.join(self.run_root, sub), exist_ok=True)

            manifest = None
            if os.path.exists(self.manifest_path):
                try:
                    manifest = await asyncio.to_thread(read_json, self.manifest_path)
                except (OSError, ValueError) as e:
                    logger.warning(f"Unreadable manifest {self.manifest_path}, starting fresh: {str(e)}")

            if not isinstance(manifest, dict):
                manifest = {
                    "run_hash": run_hash,
                    "source_path": os.path.abspath(source_path),
                    "target_language": target_language,
                    "provider": provider_name,
                    "started_at": utc_now(),
                    "items": {},
                }
            manifest["max_chars_per_chunk"] = max_chars_per_chunk
            self.manifest = manifest
            await asyncio.to_thread(atomic_write_json, self.manifest_path, self.manifest)
            return run_hash

    def input_path(self, index: int) -> str:
        return os.path.join(self.run_root, "chunks", f"{index:05d}.input.txt")

    def output_path(self, index: int) -> str:
        return os.path.join(self.run_root, "chunks", f"{index:05d}.output.txt")

    def error_path(self, index: int) -> str:
        return os.path.join(self.run_root, "errors", f"{index:05d}.error.json")

    @property
    def review_path(self) -> str:
        return os.path.join(self.run_root, "TO_REVIEW.txt")

    async def read_resumable_output(self, index: int, current_input: str) -> Optional[str]:
        """
        Previous output of a chunk, if it was produced from the same input.

        Returns:
            The stored output, or None when the chunk must be translated again
        """
        def load() -> Optional[str]:
            if not os.path.exists(self.input_path(index)) or not os.path.exists(self.output_path(index)):
                return None
            if read_text(self.input_path(index)) != current_input:
                return None
            return read_text(self.output_path(index))

        try:
            return await asyncio.to_thread(load)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Chunk {index}: unreadable checkpoint, treating as miss: {str(e)}")
            return None

    async def save_input(self, index: int, text: str) -> None:
        await asyncio.to_thread(atomic_write_text, self.input_path(index), text)

    async def record(self, result: ChunkResult) -> None:
        """Persist a chunk outcome and update the manifest."""
        async with self._lock:
            if result.status == ChunkStatus.SUCCESS:
                await asyncio.to_thread(atomic_write_text, self.output_path(result.index), result.output or "")
            elif result.status in (ChunkStatus.FAILED, ChunkStatus.QUARANTINED):
                payload = {
                    "chunk_index": result.index,
                    "attempts": result.attempts,
                    "status": result.status.value,
                    "error": result.error,
                }
                await asyncio.to_thread(atomic_write_json, self.error_path(result.index), payload)

            self.manifest.setdefault("items", {})[str(result.index)] = {
                "status": result.status.value,
                "attempts": result.attempts,
                "last_error": result.error,
                "updated_at": utc_now(),
            }
            await asyncio.to_thread(atomic_write_json, self.manifest_path, self.manifest)

    async def write_review_list(self, results: List[ChunkResult]) -> Optional[str]:
        """
        List chunks that need a human look in TO_REVIEW.txt.

        Returns:
            Path of the review file, or None when every chunk succeeded
        """
        pending = [r for r in results if r.status != ChunkStatus.SUCCESS]
        if not pending:
            return None

        lines = [
            f"{r.index:05d}\t{r.status.value}\tattempts={r.attempts}\t{r.error or ''}"
            for r in sorted(pending, key=lambda r: r.index)
        ]
        await asyncio.to_thread(atomic_write_text, self.review_path, "\n".join(lines) + "\n")
        return self.review_path
