"""
Tests for generation error mapping, timeouts and retries.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from core.errors import (
    INSUFFICIENT_CREDITS_MESSAGE,
    SERVICE_UNAVAILABLE_MESSAGE,
    SLOW_GENERATION_MESSAGE,
    StoryGenerationError,
    run_with_retry,
    user_message_for,
    with_timeout,
)


class TestUserMessageFor:
    """Tests for mapping pipeline errors to user-facing responses."""

    @pytest.mark.parametrize("code", ["INSUFFICIENT_CREDITS", "INSUFFICIENT_CREDITS_FOR_DEDUCT"])
    def test_insufficient_credits(self, code):
        assert user_message_for(StoryGenerationError("x", 403, code)) == (402, INSUFFICIENT_CREDITS_MESSAGE)

    def test_rate_limited_includes_wait(self):
        error = StoryGenerationError("x", 429, "RATE_LIMITED", details={"retry_after": 42})
        status, message = user_message_for(error)

        assert status == 429
        assert "42 seconds" in message

    def test_timeout_is_gateway_timeout(self):
        assert user_message_for(StoryGenerationError("x", 408, "TIMEOUT_ERROR")) == (504, SLOW_GENERATION_MESSAGE)

    def test_configuration_error(self):
        assert user_message_for(StoryGenerationError("x", 500, "CONFIGURATION_ERROR")) == (
            503,
            SERVICE_UNAVAILABLE_MESSAGE,
        )

    def test_other_errors_keep_status_and_message(self):
        error = StoryGenerationError("User not found", 404, "USER_NOT_FOUND")
        assert user_message_for(error) == (404, "User not found")

    def test_to_dict(self):
        data = StoryGenerationError("boom", code="X", retryable=True).to_dict()

        assert data["message"] == "boom"
        assert data["retryable"] is True
        assert "timestamp" in data


class TestWithTimeout:
    """Tests for deadline enforcement."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def quick():
            return 7

        assert await with_timeout(quick(), 1.0, "quick") == 7

    @pytest.mark.asyncio
    async def test_timeout_raises_retryable_error(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(StoryGenerationError) as exc_info:
            await with_timeout(slow(), 0.01, "slow op")

        assert exc_info.value.code == "TIMEOUT_ERROR"
        assert exc_info.value.status == 408
        assert exc_info.value.retryable is True
        assert exc_info.value.details["operation"] == "slow op"


class TestRunWithRetry:
    """Tests for the retry loop."""

    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self):
        operation = AsyncMock(
            side_effect=[StoryGenerationError("flaky", 500, "DATABASE_ERROR", retryable=True), "ok"]
        )

        with patch("core.errors.RETRY_BACKOFF_SECONDS", 0):
            result = await run_with_retry(operation, 3, "op")

        assert result == "ok"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        operation = AsyncMock(side_effect=StoryGenerationError("down", 500, "DATABASE_ERROR"))

        with patch("core.errors.RETRY_BACKOFF_SECONDS", 0):
            with pytest.raises(StoryGenerationError):
                await run_with_retry(operation, 3, "op")

        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_never_retries_not_found(self):
        operation = AsyncMock(side_effect=StoryGenerationError("missing", 404, "USER_NOT_FOUND", retryable=True))

        with pytest.raises(StoryGenerationError):
            await run_with_retry(operation, 3, "op")

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_custom_predicate(self):
        operation = AsyncMock(side_effect=StoryGenerationError("no credits", 500, "INSUFFICIENT_CREDITS"))

        with pytest.raises(StoryGenerationError):
            await run_with_retry(operation, 3, "op", should_retry=lambda e: False)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_plain_exceptions_not_retried(self):
        operation = AsyncMock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            await run_with_retry(operation, 3, "op")

        assert operation.await_count == 1
