"""Gemini translation provider backed by google-generativeai."""

import asyncio
import logging
from typing import Any, List, Optional, Tuple

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from models.config import GeminiConfig
from models.data_models import TextBlock
from services.translation_protocol import (
    BatchResponse,
    build_block_prompt,
    build_text_prompt,
    parse_translation_items,
)
from utils.error_handler import (
    MalformedResponseError,
    RateLimitedError,
    RequestRejectedError,
    TransientTranslationError,
    TranslationError,
    TruncatedResponseError,
)
from utils.text_utils import sanitize_model_output


logger = logging.getLogger(__name__)

TRUNCATED_FINISH_REASON = "MAX_TOKENS"


class GeminiProvider:
    """Sends block batches, together with the rendered page, to Gemini."""

    name = "gemini"

    def __init__(self, config: GeminiConfig):
        """
        Initialize with Gemini API settings. The client is created lazily.

        Args:
            config: Gemini model, key and generation settings
        """
        self.config = config
        self._model = None
        self._initialized = False

    def _initialize(self) -> None:
        """Initialize the Gemini API client."""
        if self._initialized:
            return

        if not self.config.api_key:
            raise RequestRejectedError("GEMINI_API_KEY is not set")

        try:
            genai.configure(api_key=self.config.api_key)
            self._model = genai.GenerativeModel(self.config.model)
            self._initialized = True
        except Exception as e:
            raise RequestRejectedError(f"Failed to initialize Gemini API: {str(e)}")

    async def request_batch(
        self,
        blocks: List[TextBlock],
        target_language: str,
        context_pdf: Optional[bytes] = None,
    ) -> BatchResponse:
        """
        Translate a batch of blocks in one request.

        Args:
            blocks: Blocks to translate
            target_language: Language to translate into
            context_pdf: Single-page PDF attached as visual context

        Returns:
            BatchResponse; items are empty when the response was truncated

        Raises:
            TranslationError: On provider failures or malformed output
        """
        self._initialize()

        contents: List[Any] = [build_block_prompt(blocks, target_language, bool(context_pdf))]
        if context_pdf:
            contents.append({"mime_type": "application/pdf", "data": context_pdf})

        response = await self._generate(contents, "application/json")
        text, finish_reason = self._read_candidate(response)
        logger.debug(f"Gemini batch of {len(blocks)} block(s) finished with {finish_reason}")

        if finish_reason == TRUNCATED_FINISH_REASON:
            return BatchResponse(items=[], truncated=True)

        if not text:
            raise MalformedResponseError("Gemini response does not contain candidate text")

        return BatchResponse(items=parse_translation_items(text), truncated=False)

    async def translate_text(self, text: str, target_language: str) -> str:
        """Translate a chunk of flat text."""
        self._initialize()

        response = await self._generate([build_text_prompt(text, target_language)], "text/plain")
        output, finish_reason = self._read_candidate(response)

        if finish_reason == TRUNCATED_FINISH_REASON:
            raise TruncatedResponseError("Gemini response was truncated at the output token limit")

        return sanitize_model_output(output)

    async def _generate(self, contents: List[Any], mime_type: str) -> Any:
        generation_config = genai.GenerationConfig(
            temperature=self.config.temperature,
            max_output_tokens=self.config.max_output_tokens,
            response_mime_type=mime_type,
        )

        try:
            return await self._model.generate_content_async(contents, generation_config=generation_config)
        except google_exceptions.ResourceExhausted as e:
            raise RateLimitedError(f"Gemini rate limit or quota hit: {str(e)}") from e
        except (
            google_exceptions.ServiceUnavailable,
            google_exceptions.DeadlineExceeded,
            google_exceptions.InternalServerError,
            asyncio.TimeoutError,
            ConnectionError,
        ) as e:
            raise TransientTranslationError(f"Gemini request failed: {str(e)}") from e
        except (google_exceptions.InvalidArgument, google_exceptions.PermissionDenied) as e:
            raise RequestRejectedError(f"Gemini rejected the request: {str(e)}") from e
        except google_exceptions.GoogleAPICallError as e:
            raise TranslationError(f"Gemini request failed: {str(e)}") from e

    def _read_candidate(self, response: Any) -> Tuple[str, Optional[str]]:
        """
        Extract the text and finish reason of the first usable candidate.

        Returns:
            Tuple of (text, finish reason name)
        """
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            feedback = getattr(response, "prompt_feedback", None)
            raise RequestRejectedError(f"Gemini returned no candidates: {feedback}")

        first_reason = None
        for candidate in candidates:
            reason = getattr(candidate, "finish_reason", None)
            reason_name = getattr(reason, "name", None) or (str(reason) if reason is not None else None)
            if first_reason is None:
                first_reason = reason_name

            content = getattr(candidate, "content", None)
            parts = getattr(content, "parts", None) or []
            text = "".join(getattr(part, "text", "") or "" for part in parts).strip()
            if text:
                return text, reason_name

        return "", first_reason

