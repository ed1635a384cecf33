# AI Adapters
# Replicate (story text and covers) and Anthropic (story text) integrations

from infrastructure.config.settings import settings

from .anthropic_adapter import AnthropicStoryService, anthropic_story_service
from .replicate_adapter import (
    GeneratedCover,
    ReplicateStoryService,
    mock_story_text,
    story_ai_service,
)


def get_story_text_service():
    """Text provider selected by STORY_TEXT_PROVIDER."""
    if settings.story_text_provider.lower() == "anthropic":
        return anthropic_story_service
    return story_ai_service


__all__ = [
    "AnthropicStoryService",
    "anthropic_story_service",
    "ReplicateStoryService",
    "story_ai_service",
    "GeneratedCover",
    "mock_story_text",
    "get_story_text_service",
]
