"""Translation Service component: page batching, adaptive splitting and rate limiting."""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from models.config import TranslationConfig
from models.data_models import PageObject, TextBlock, TranslatedTextItem
from services.gemini_provider import GeminiProvider
from services.openai_provider import OpenAIProvider
from services.translation_protocol import BatchResponse
from utils.error_handler import (
    MalformedResponseError,
    QuotaExhaustedError,
    RateLimitedError,
    TransientTranslationError,
    TranslationError,
    TruncatedResponseError,
    async_retry_with_backoff,
)
from utils.text_utils import clean_pdf_artifacts


logger = logging.getLogger(__name__)

PROVIDERS = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
}


@dataclass(frozen=True)
class BlockFailure:
    """A block the provider could not translate, even on its own."""
    block_id: str
    reason: str


@dataclass
class PageTranslation:
    """Outcome of translating the text blocks of one page."""
    items: List[TranslatedTextItem] = field(default_factory=list)
    failures: List[BlockFailure] = field(default_factory=list)


def build_initial_batches(
    blocks: List[TextBlock],
    max_blocks: int,
    max_chars: int,
) -> List[List[TextBlock]]:
    """
    Group blocks into request-sized batches, keeping their order.

    Args:
        blocks: Blocks of one page
        max_blocks: Maximum blocks per batch; non-positive means unbounded
        max_chars: Maximum cleaned input chars per batch; non-positive means unbounded

    Returns:
        List of non-empty batches
    """
    max_blocks = max_blocks if max_blocks > 0 else len(blocks) or 1
    max_chars = max_chars if max_chars > 0 else float("inf")

    batches: List[List[TextBlock]] = []
    current: List[TextBlock] = []
    current_chars = 0

    for block in blocks:
        block_chars = max(1, len(clean_pdf_artifacts(block.original_text)))
        overflow = len(current) >= max_blocks or (current and current_chars + block_chars > max_chars)
        if overflow:
            batches.append(current)
            current = []
            current_chars = 0

        current.append(block)
        current_chars += block_chars

    if current:
        batches.append(current)

    return batches


class RateLimiter:
    """Spaces out requests from all workers to a maximum rate."""

    def __init__(self, max_requests_per_second: float, clock: Callable[[], float] = time.monotonic):
        self.min_interval = 1.0 / max_requests_per_second if max_requests_per_second > 0 else 0.0
        self._clock = clock
        self._next_allowed = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        """Block until the caller may send its request."""
        if self.min_interval <= 0:
            return

        async with self._lock:
            delay = self._next_allowed - self._clock()
            if delay > 0:
                await asyncio.sleep(delay)
            self._next_allowed = max(self._clock(), self._next_allowed) + self.min_interval


class AdaptiveBatchSplitter:
    """
    Translates a batch, bisecting it whenever the provider cannot cope.

    Work is an explicit queue of index ranges. A range is halved when
    the response is truncated, malformed, incomplete, or the request
    fails with a non-fatal error. A single block that still cannot be
    translated becomes a BlockFailure, except for provider errors,
    which propagate. Quota exhaustion is never split.
    """

    def __init__(self, request: Callable[[List[TextBlock]], Awaitable[BatchResponse]], page_number: int):
        self._request = request
        self._page_number = page_number

    async def run(self, blocks: List[TextBlock]) -> Tuple[List[TranslatedTextItem], List[BlockFailure]]:
        items: List[TranslatedTextItem] = []
        failures: List[BlockFailure] = []
        queue = deque([(0, len(blocks))]) if blocks else deque()

        while queue:
            start, end = queue.popleft()
            chunk = blocks[start:end]

            try:
                response = await self._request(chunk)
            except QuotaExhaustedError:
                raise
            except (TruncatedResponseError, MalformedResponseError) as e:
                if self._split(queue, start, end, f"unusable response ({str(e)})"):
                    continue
                failures.append(BlockFailure(chunk[0].block_id, str(e)))
                continue
            except TranslationError as e:
                if self._split(queue, start, end, f"request failed ({str(e)})"):
                    continue
                raise

            if response.truncated:
                if self._split(queue, start, end, "response hit the output token limit"):
                    continue
                failures.append(BlockFailure(chunk[0].block_id, "response truncated at the output token limit"))
                continue

            expected = {b.block_id for b in chunk}
            by_id: Dict[str, TranslatedTextItem] = {}
            for item in response.items:
                if item.block_id in expected and item.translated_text.strip():
                    by_id[item.block_id] = item

            if len(by_id) < len(expected) and self._split(
                queue, start, end, f"partial block coverage ({len(by_id)}/{len(expected)})"
            ):
                continue

            for block in chunk:
                hit = by_id.get(block.block_id)
                if hit is None:
                    failures.append(BlockFailure(block.block_id, "missing from provider response"))
                    continue
                items.append(TranslatedTextItem(block.block_id, block.original_text, hit.translated_text))

        return items, failures

    def _split(self, queue: deque, start: int, end: int, reason: str) -> bool:
        if end - start <= 1:
            return False

        mid = start + (end - start) // 2
        queue.appendleft((mid, end))
        queue.appendleft((start, mid))
        logger.warning(
            f"Page {self._page_number}: {reason} for {end - start} block(s), splitting and retrying"
        )
        return True


def _escalate_rate_limit(error: BaseException) -> BaseException:
    if isinstance(error, RateLimitedError):
        return QuotaExhaustedError(f"Quota exhausted after retries: {str(error)}")
    return error


class TranslationService:
    """Translates pages and text chunks through a configured provider."""

    def __init__(
        self,
        provider,
        max_blocks_per_request: int = 10,
        max_input_chars_per_request: int = 6000,
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = 3,
        initial_retry_delay: float = 1.0,
    ):
        """
        Initialize the service.

        Args:
            provider: Object exposing request_batch and translate_text
            max_blocks_per_request: Block cap of an initial batch
            max_input_chars_per_request: Character cap of an initial batch
            rate_limiter: Limiter shared by all concurrent requests
            max_retries: Retries of a transient provider failure
            initial_retry_delay: First backoff delay in seconds
        """
        self.provider = provider
        self.max_blocks_per_request = max_blocks_per_request
        self.max_input_chars_per_request = max_input_chars_per_request
        self.rate_limiter = rate_limiter

        retry = async_retry_with_backoff(
            max_retries=max_retries,
            initial_delay=initial_retry_delay,
            retryable_exceptions=(TransientTranslationError,),
            on_exhausted=_escalate_rate_limit,
        )
        self._request_batch = retry(self._request_batch_once)
        self._translate_text = retry(self._translate_text_once)

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "name", type(self.provider).__name__)

    async def translate_page(self, page: PageObject, target_language: str) -> PageTranslation:
        """
        Translate every text block of a page.

        Args:
            page: Page (or page subset) to translate
            target_language: Language to translate into

        Returns:
            PageTranslation with translated items and per-block failures

        Raises:
            QuotaExhaustedError: If the provider is out of quota
            TranslationError: If a single block cannot be requested at all
        """
        if not page.text_blocks:
            return PageTranslation()

        batches = build_initial_batches(
            page.text_blocks, self.max_blocks_per_request, self.max_input_chars_per_request
        )
        logger.info(
            f"Page {page.page_number}: translating {len(page.text_blocks)} block(s) in {len(batches)} batch(es)"
        )

        context_pdf = page.source_page_pdf_bytes or None

        async def request(blocks: List[TextBlock]) -> BatchResponse:
            return await self._request_batch(blocks, target_language, context_pdf)

        splitter = AdaptiveBatchSplitter(request, page.page_number)
        result = PageTranslation()
        for batch in batches:
            items, failures = await splitter.run(batch)
            result.items.extend(items)
            result.failures.extend(failures)

        if result.failures:
            logger.warning(
                f"Page {page.page_number}: {len(result.failures)} block(s) left untranslated"
            )
        return result

    async def translate_text(self, text: str, target_language: str) -> str:
        """Translate a chunk of flat text, with retries."""
        return await self._translate_text(text, target_language)

    async def _request_batch_once(
        self,
        blocks: List[TextBlock],
        target_language: str,
        context_pdf: Optional[bytes],
    ) -> BatchResponse:
        if self.rate_limiter is not None:
            await self.rate_limiter.wait()
        return await self.provider.request_batch(blocks, target_language, context_pdf)

    async def _translate_text_once(self, text: str, target_language: str) -> str:
        if self.rate_limiter is not None:
            await self.rate_limiter.wait()
        return await self.provider.translate_text(text, target_language)


def create_translation_service(config: TranslationConfig) -> TranslationService:
    """
    Build the translation service for the configured provider.

    Raises:
        ValueError: If the provider name is unknown
    """
    provider_cls = PROVIDERS.get(config.provider)
    if provider_cls is None:
        raise ValueError(
            f"Unknown provider '{config.provider}'. Available: {', '.join(sorted(PROVIDERS))}"
        )

    provider_config = getattr(config, config.provider)
    rate_limiter = (
        RateLimiter(provider_config.max_requests_per_second)
        if provider_config.enable_rate_limit else None
    )

    return TranslationService(
        provider=provider_cls(provider_config),
        max_blocks_per_request=provider_config.max_blocks_per_request,
        max_input_chars_per_request=provider_config.max_input_chars_per_request,
        rate_limiter=rate_limiter,
        max_retries=config.max_retries,
        initial_retry_delay=config.initial_retry_delay,
    )
