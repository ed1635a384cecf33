"""
Anthropic Claude adapter for story text generation.
"""

import logging

import anthropic

from core.errors import StoryGenerationError
from infrastructure.config.settings import settings

from .replicate_adapter import mock_story_text

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert children's storyteller and language teacher. "
    "You always answer with a single valid JSON object and nothing else."
)


class AnthropicStoryService:
    """Story text generation using the Anthropic Messages API directly."""

    def __init__(self, api_key: str | None = None):
        key = api_key if api_key is not None else settings.anthropic_api_key
        if key:
            self._client = anthropic.AsyncAnthropic(
                api_key=key,
                timeout=float(settings.anthropic_timeout),
                max_retries=0,
            )
        else:
            logger.warning("ANTHROPIC_API_KEY not set, story generation will use mock mode")
            self._client = None
        self._model = settings.anthropic_model
        self._max_tokens = settings.anthropic_max_tokens

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def generate_story_text(self, prompt: str) -> str:
        """
        Generate the story JSON text for a prompt.

        Raises:
            StoryGenerationError: STORY_GENERATION_FAILED; retryable for rate
                limits, overload and connection problems
        """
        if not self._client:
            return mock_story_text(prompt)

        try:
            message = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=0.7,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            logger.error("Anthropic story generation failed (%s): %s", e.status_code, e)
            raise StoryGenerationError(
                f"Story generation failed: {e}",
                status=e.status_code if e.status_code >= 500 else 502,
                code="STORY_GENERATION_FAILED",
                details={"provider_status": e.status_code},
                retryable=e.status_code in (429, 529) or e.status_code >= 500,
            ) from e
        except anthropic.APIError as e:
            logger.error("Anthropic story generation failed: %s", e)
            raise StoryGenerationError(
                f"Story generation failed: {e}",
                status=500,
                code="STORY_GENERATION_FAILED",
                details={"original_error": str(e)},
                retryable=True,
            ) from e

        text = "".join(block.text for block in message.content if getattr(block, "type", "") == "text")
        logger.debug("Generated story text (%d chars)", len(text))
        return text.strip()


# Singleton instance
anthropic_story_service = AnthropicStoryService()
