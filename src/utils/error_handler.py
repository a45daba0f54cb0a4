"""Error types and retry utilities for the translation pipeline."""

import asyncio
import logging
import time
from typing import Optional, Callable, Any, Tuple, Type
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps


logger = logging.getLogger(__name__)


class ErrorType(Enum):
    """Types of errors in the translation pipeline."""
    PDF_PARSE = "pdf_parse"
    OCR = "ocr"
    TRANSLATION = "translation"
    VALIDATION = "validation"
    CHECKPOINT = "checkpoint"
    LAYOUT_RECONSTRUCTION = "layout_reconstruction"
    QUOTA = "quota"
    UNKNOWN = "unknown"


@dataclass
class ProcessingError:
    """Represents an error that occurred during processing."""
    error_type: ErrorType
    message: str
    page_number: Optional[int] = None
    block_id: Optional[str] = None
    recoverable: bool = True
    original_exception: Optional[Exception] = None
    timestamp: float = field(default_factory=time.time)

    def __str__(self) -> str:
        location = ""
        if self.page_number is not None:
            location += f" (page {self.page_number})"
        if self.block_id:
            location += f" (block {self.block_id})"
        return f"[{self.error_type.value}]{location}: {self.message}"


class TranslationError(Exception):
    """Base class for errors raised by translation providers."""
    pass


class QuotaExhaustedError(TranslationError):
    """The provider account is out of quota. Fatal to the whole run."""
    pass


class TransientTranslationError(TranslationError):
    """A retryable failure (timeouts, 5xx, rate limiting) that outlived its retries."""
    pass


class RateLimitedError(TransientTranslationError):
    """The provider throttled the request. Escalates to quota exhaustion once retries run out."""
    pass


class RequestRejectedError(TranslationError):
    """The provider refused the request; retrying the same request cannot help."""
    pass


class TruncatedResponseError(TranslationError):
    """The provider stopped at its output-token ceiling."""
    pass


class MalformedResponseError(TranslationError):
    """The provider answered with output that could not be parsed."""
    pass


class ValidationError(Exception):
    """Translated output failed a structural, length or language check."""
    pass


# Retry configuration
RETRY_CONFIG = {
    "max_retries": 3,
    "initial_delay_seconds": 1.0,
    "exponential_base": 2.0,
    "max_delay_seconds": 30.0,
}


def async_retry_with_backoff(
    max_retries: int = RETRY_CONFIG["max_retries"],
    initial_delay: float = RETRY_CONFIG["initial_delay_seconds"],
    exponential_base: float = RETRY_CONFIG["exponential_base"],
    max_delay: float = RETRY_CONFIG["max_delay_seconds"],
    retryable_exceptions: Tuple[Type[BaseException], ...] = (TransientTranslationError,),
    on_exhausted: Optional[Callable[[BaseException], BaseException]] = None,
) -> Callable:
    """
    Decorator for retrying coroutines with exponential backoff.

    The delay is awaited with asyncio.sleep, so a cancelled task stops
    waiting immediately.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        exponential_base: Base for exponential backoff
        max_delay: Maximum delay between retries
        retryable_exceptions: Tuple of exception types to retry
        on_exhausted: Optional mapping from the last exception to the one raised

    Returns:
        Decorated coroutine function
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            delay = initial_delay
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_exception = e

                    if attempt < max_retries:
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_retries + 1} failed: {str(e)}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                        delay = min(delay * exponential_base, max_delay)
                    else:
                        logger.error(
                            f"All {max_retries + 1} attempts failed for {func.__name__}"
                        )

            if on_exhausted is not None:
                mapped = on_exhausted(last_exception)
                if mapped is not last_exception:
                    raise mapped from last_exception
            raise last_exception

        return wrapper
    return decorator
