"""OpenAI translation provider backed by the openai async client."""

import logging
from typing import Any, List, Optional, Tuple

from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    PermissionDeniedError,
    RateLimitError,
)

from models.config import OpenAIConfig
from models.data_models import TextBlock
from services.translation_protocol import (
    BatchResponse,
    build_block_prompt,
    build_text_prompt,
    parse_translation_items,
)
from utils.error_handler import (
    MalformedResponseError,
    QuotaExhaustedError,
    RequestRejectedError,
    TransientTranslationError,
    TranslationError,
    TruncatedResponseError,
)
from utils.text_utils import sanitize_model_output


logger = logging.getLogger(__name__)

TRUNCATED_FINISH_REASON = "length"
INSUFFICIENT_QUOTA = "insufficient_quota"


class OpenAIProvider:
    """Sends block batches to an OpenAI chat model. The page itself is not attached."""

    name = "openai"

    def __init__(self, config: OpenAIConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.config.api_key:
                raise RequestRejectedError("OPENAI_API_KEY is not set")
            # retries are handled by the translation service
            self._client = AsyncOpenAI(api_key=self.config.api_key, max_retries=0)
        return self._client

    async def request_batch(
        self,
        blocks: List[TextBlock],
        target_language: str,
        context_pdf: Optional[bytes] = None,
    ) -> BatchResponse:
        """
        Translate a batch of blocks in one chat completion.

        Args:
            blocks: Blocks to translate
            target_language: Language to translate into
            context_pdf: Ignored by this provider

        Returns:
            BatchResponse; items are empty when the response was truncated
        """
        text, finish_reason = await self._complete(build_block_prompt(blocks, target_language, False))

        if finish_reason == TRUNCATED_FINISH_REASON:
            return BatchResponse(items=[], truncated=True)

        if not text:
            raise MalformedResponseError("OpenAI response does not contain message content")

        return BatchResponse(items=parse_translation_items(text), truncated=False)

    async def translate_text(self, text: str, target_language: str) -> str:
        """Translate a chunk of flat text."""
        output, finish_reason = await self._complete(build_text_prompt(text, target_language))

        if finish_reason == TRUNCATED_FINISH_REASON:
            raise TruncatedResponseError("OpenAI response was truncated at the output token limit")

        return sanitize_model_output(output)

    async def _complete(self, prompt: str) -> Tuple[str, Optional[str]]:
        client = self._get_client()

        try:
            response: Any = await client.chat.completions.create(
                model=self.config.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.config.temperature,
                max_tokens=self.config.max_output_tokens,
            )
        except RateLimitError as e:
            if _error_code(e) == INSUFFICIENT_QUOTA:
                raise QuotaExhaustedError(f"OpenAI quota exhausted: {str(e)}") from e
            raise TransientTranslationError(f"OpenAI rate limited the request: {str(e)}") from e
        except (APITimeoutError, APIConnectionError, InternalServerError) as e:
            raise TransientTranslationError(f"OpenAI request failed: {str(e)}") from e
        except (BadRequestError, AuthenticationError, PermissionDeniedError) as e:
            raise RequestRejectedError(f"OpenAI rejected the request: {str(e)}") from e
        except APIError as e:
            raise TranslationError(f"OpenAI request failed: {str(e)}") from e

        if not response.choices:
            raise MalformedResponseError("OpenAI returned no choices")

        choice = response.choices[0]
        content = (choice.message.content or "").strip() if choice.message else ""
        return content, choice.finish_reason


def _error_code(error: APIError) -> Optional[str]:
    code = getattr(error, "code", None)
    if code:
        return code
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        return body.get("code") or (body.get("error") or {}).get("code")
    return None
