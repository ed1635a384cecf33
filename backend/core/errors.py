"""
Story generation errors, timeouts and retries.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_BACKOFF_SECONDS = 0.3
NON_RETRYABLE_STATUSES = frozenset({401, 403, 404})
NON_RETRYABLE_CODES = frozenset({"VALIDATION_ERROR", "INVALID_REQUEST"})

INSUFFICIENT_CREDITS_MESSAGE = (
    "You don't have enough credits to create a story. Please purchase more credits."
)
SLOW_GENERATION_MESSAGE = (
    "Story generation is taking longer than expected. Please try again in a few moments."
)
SERVICE_UNAVAILABLE_MESSAGE = "Service temporarily unavailable. Please try again later."
GENERIC_FAILURE_MESSAGE = "Failed to generate story. Please try again."
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


class StoryGenerationError(Exception):
    """Failure in the story generation pipeline."""

    def __init__(
        self,
        message: str,
        status: int = 500,
        code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details or {}
        self.retryable = retryable
        self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "status": self.status,
            "code": self.code,
            "details": self.details,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }


def user_message_for(error: StoryGenerationError) -> tuple[int, str]:
    """
    Map a pipeline error to the HTTP status and message shown to the user.

    Returns:
        Tuple of (http_status, message)
    """
    code = error.code
    if code in ("INSUFFICIENT_CREDITS", "INSUFFICIENT_CREDITS_FOR_DEDUCT"):
        return 402, INSUFFICIENT_CREDITS_MESSAGE
    if code == "RATE_LIMITED":
        retry_after = error.details.get("retry_after") or 60
        return 429, (
            f"You're creating stories too quickly. Please wait {retry_after} "
            "seconds and try again."
        )
    if code in ("TIMEOUT_ERROR", "STORY_GENERATION_FAILED", "IMAGE_GENERATION_FAILED"):
        return 504, SLOW_GENERATION_MESSAGE
    if code == "CONFIGURATION_ERROR":
        return 503, SERVICE_UNAVAILABLE_MESSAGE
    status = error.status if 400 <= error.status < 600 else 500
    return status, error.message or GENERIC_FAILURE_MESSAGE


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation_name: str) -> T:
    """Await with a deadline, converting expiry to a retryable TIMEOUT_ERROR."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoryGenerationError(
            f"Operation '{operation_name}' timed out after {int(timeout * 1000)}ms",
            status=408,
            code="TIMEOUT_ERROR",
            details={"timeout_ms": int(timeout * 1000), "operation": operation_name},
            retryable=True,
        ) from e


def _default_should_retry(error: Exception) -> bool:
    if isinstance(error, StoryGenerationError):
        return error.retryable or error.status >= 500 or error.code == "TIMEOUT_ERROR"
    return False


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    operation_name: str,
    should_retry: Callable[[Exception], bool] | None = None,
) -> T:
    """
    Run an async operation with linear backoff between attempts.

    Waits ``0.3s * attempt`` after each failed attempt. Errors with status
    401/403/404 or code VALIDATION_ERROR/INVALID_REQUEST are never retried.

    Args:
        operation: Zero-argument factory producing a fresh awaitable per attempt
        max_attempts: Total attempts, including the first
        operation_name: Label used in log messages
        should_retry: Optional predicate overriding the default retry decision

    Returns:
        The operation's result
    """
    predicate = should_retry or _default_should_retry
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            status = getattr(e, "status", None)
            code = getattr(e, "code", None)
            stop = (
                not predicate(e)
                or attempt >= max_attempts
                or status in NON_RETRYABLE_STATUSES
                or code in NON_RETRYABLE_CODES
            )
            if stop:
                raise
            logger.warning(
                "%s failed (attempt %d/%d), retrying: %s",
                operation_name,
                attempt,
                max_attempts,
                e,
            )
            await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)
    raise RuntimeError(f"{operation_name}: max_attempts must be at least 1")
