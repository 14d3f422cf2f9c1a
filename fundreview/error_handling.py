"""Error handling and retry configuration for the fund review pipeline.

Provides the exception taxonomy, the caller-side retry policy, and the
error conversion decorator used at tool boundaries.
"""

import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

from loguru import logger
from msgspec import Struct


# Custom Exception Classes

class FundReviewError(Exception):
    """Base exception for all fund review errors."""

    user_message = "The request could not be completed."

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or self.user_message)
        self.cause = cause


class InputValidationError(FundReviewError):
    """Raised when required request fields are missing or malformed."""

    user_message = "Invalid request"


class DocumentParsingError(FundReviewError):
    """Raised when document text extraction fails."""

    user_message = "Failed to parse document"


class UnsupportedFormatError(DocumentParsingError):
    """Raised when a document type cannot be parsed."""

    user_message = "Unsupported file type. Only PDF, DOCX, and TXT files are allowed."


class EmptyContentError(DocumentParsingError):
    """Raised when a parsed document contains no text."""

    user_message = "Document appears to be empty"


class ModelInvocationError(FundReviewError):
    """Raised when the generative model call fails, times out or is rate-limited."""

    user_message = "The analysis service is temporarily unavailable"


class ResponseParseError(FundReviewError):
    """Raised when no valid JSON object can be found in a model response."""

    user_message = "The analysis service returned an unreadable response"


class ClassificationParseError(ResponseParseError):
    """Raised when the classification response carries no usable JSON."""

    user_message = "Classification failed"


class AnalysisParseError(ResponseParseError):
    """Raised when the analysis response carries no usable JSON."""

    user_message = "Analysis failed"


class SchemaViolationError(FundReviewError):
    """Raised when parsed JSON cannot be coerced into the result schema."""

    user_message = "The analysis result did not match the expected structure"


class SessionError(FundReviewError):
    """Raised when a client session snapshot is invalid or expired."""

    user_message = "Session expired or invalid"


# Retry policy

class RetryConfig(Struct, frozen=True, kw_only=True):
    """How often a failed model call is attempted and how long to wait between tries.

    ``attempts`` counts the first call, so the default of 2 means one retry.
    """
    attempts: int = 2
    exp_base: int = 2
    initial_delay: float = 1.0
    max_delay: float = 10.0

    def calculate_delay(self, attempt: int) -> float:
        """Backoff before retrying after failed attempt ``attempt`` (0-indexed)."""
        return min(self.initial_delay * self.exp_base ** attempt, self.max_delay)


# Model failures are retried at most once. Parse failures are never retried:
# the same prompt reproduces the same failure.
MODEL_RETRY_CONFIG = RetryConfig()


def retry_with_backoff(
    config: RetryConfig = MODEL_RETRY_CONFIG,
    exceptions: Tuple[Type[Exception], ...] = (ModelInvocationError,)
) -> Callable:
    """Decorator that re-invokes a call when it raises one of ``exceptions``.

    Any other exception propagates on the first occurrence. When every
    attempt fails, the last error is raised unchanged.

    Args:
        config: Retry policy
        exceptions: Exception types worth another attempt

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, config.attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == config.attempts:
                        logger.error(
                            f"{func.__name__} gave up after {attempt} attempt(s)",
                            error_type=type(e).__name__,
                            error=str(e)
                        )
                        raise
                    delay = config.calculate_delay(attempt - 1)
                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{config.attempts} failed; retrying in {delay}s",
                        error_type=type(e).__name__,
                        error=str(e)
                    )
                    time.sleep(delay)

        return wrapper
    return decorator


def handle_errors(error_type: Type[FundReviewError]) -> Callable:
    """Decorator that converts library exceptions into ``error_type``.

    Errors already in the FundReviewError hierarchy pass through untouched;
    anything else is wrapped, keeping the original as ``cause``.

    Args:
        error_type: Project exception to raise in place of foreign ones

    Returns:
        Decorated function with error conversion
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except FundReviewError:
                raise
            except Exception as e:
                raise error_type(f"{func.__name__} failed: {e}", cause=e) from e

        return wrapper
    return decorator
