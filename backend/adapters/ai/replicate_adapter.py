"""
Replicate adapter for story text and cover image generation.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import replicate

from core.errors import StoryGenerationError
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class GeneratedCover:
    """Generated cover image result."""

    url: str
    prompt: str
    model: str


def mock_story_text(prompt: str) -> str:
    """
    Development stand-in for a model response.

    The story prompt embeds the exact JSON layout the model must return, so
    echoing that block yields a structurally valid story.
    """
    start = prompt.find("{")
    end = prompt.rfind("}")
    return prompt[start : end + 1] if start != -1 and end > start else prompt


def _extract_image_url(output: Any) -> str | None:
    """Pull a URL out of the shapes Replicate returns (str, list, FileOutput, dict)."""
    if isinstance(output, list):
        if not output:
            return None
        output = output[0]

    if isinstance(output, str):
        return output

    url = getattr(output, "url", None)
    if callable(url):
        url = url()
    if url is not None:
        return str(url)

    if isinstance(output, dict):
        for key in ("url", "image_url", "image", "output"):
            if isinstance(output.get(key), str):
                return output[key]
    return None


class ReplicateStoryService:
    """Story text and cover image generation via Replicate-hosted models."""

    def __init__(self, api_token: str | None = None):
        self._text_model = settings.replicate_text_model
        self._image_model = settings.replicate_image_model
        token = api_token if api_token is not None else settings.replicate_api_token
        if not token:
            logger.warning("REPLICATE_API_TOKEN not set, story generation will use mock mode")
            self._client = None
        else:
            self._client = replicate.Client(api_token=token)
            logger.info(
                "Replicate client initialized with text model %s and image model %s",
                self._text_model,
                self._image_model,
            )

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def generate_story_text(self, prompt: str) -> str:
        """
        Run the text model once and return its joined output.

        Raises:
            StoryGenerationError: STORY_GENERATION_FAILED (retryable) on provider errors
        """
        if not self._client:
            return mock_story_text(prompt)

        try:
            output = await asyncio.to_thread(
                self._client.run,
                self._text_model,
                input={
                    "prompt": prompt,
                    "max_tokens": 8192,
                    "temperature": 0.7,
                    "top_p": 0.9,
                    "top_k": 50,
                },
            )
        except Exception as e:
            logger.error("Replicate story generation failed: %s", e)
            raise StoryGenerationError(
                f"Story generation failed: {e}",
                status=500,
                code="STORY_GENERATION_FAILED",
                details={"original_error": str(e)},
                retryable=True,
            ) from e

        if isinstance(output, (list, tuple)):
            return "".join(str(part) for part in output).strip()
        return str(output or "").strip()

    async def generate_cover_image(self, prompt: str) -> GeneratedCover:
        """
        Run the image model once and return the hosted image URL.

        Raises:
            StoryGenerationError: EMPTY_IMAGE_PROMPT, IMAGE_GENERATION_FAILED or
                INVALID_IMAGE_URL_RETURNED
        """
        if not prompt or not prompt.strip():
            raise StoryGenerationError("Empty image prompt", status=400, code="EMPTY_IMAGE_PROMPT")

        if not self._client:
            return GeneratedCover(url="https://picsum.photos/1024/1024", prompt=prompt, model=self._image_model)

        try:
            output = await asyncio.to_thread(
                self._client.run,
                self._image_model,
                input={
                    "prompt": prompt.strip(),
                    "aspect_ratio": "1:1",
                    "output_format": "webp",
                    "output_quality": 90,
                    "num_inference_steps": 4,
                    "guidance_scale": 7.5,
                },
            )
        except Exception as e:
            logger.error("Replicate image generation failed: %s", e)
            raise StoryGenerationError(
                f"Image generation failed: {e}",
                status=500,
                code="IMAGE_GENERATION_FAILED",
                details={"original_error": str(e)},
                retryable=True,
            ) from e

        image_url = _extract_image_url(output)
        if not image_url or not image_url.startswith("http"):
            raise StoryGenerationError(
                "Invalid image URL returned",
                status=500,
                code="INVALID_IMAGE_URL_RETURNED",
                details={"output_type": type(output).__name__},
                retryable=True,
            )

        logger.info("Generated cover image URL: %s", image_url)
        return GeneratedCover(url=image_url, prompt=prompt, model=self._image_model)


# Singleton instance
story_ai_service = ReplicateStoryService()
