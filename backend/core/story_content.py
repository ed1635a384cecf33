"""
Helpers for reading and validating generated story documents.

A story document is the JSON object returned by the text model and stored in
``story.output``. Bilingual fields are objects keyed by language name; older
documents may store plain strings instead.
"""

import json
import re
from typing import Any

from .errors import StoryGenerationError
from .story_prompt import REQUIRED_CHAPTERS

UNTITLED_STORY = "Untitled Story"

_CODE_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def extract_difficult_words(chapters: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Collect vocabulary across chapters.

    ``vocabulary`` entries are converted to the ``difficultWords`` shape
    (``translation`` becomes ``meaning``). Words are deduplicated
    case-insensitively, keeping the first occurrence.
    """
    all_words: list[dict[str, Any]] = []
    for chapter in chapters or []:
        all_words.extend(chapter.get("difficultWords") or [])
        for vocab in chapter.get("vocabulary") or []:
            all_words.append(
                {
                    "word": vocab.get("word", ""),
                    "meaning": vocab.get("translation", ""),
                    "pronunciation": vocab.get("pronunciation"),
                }
            )

    seen: set[str] = set()
    unique: list[dict[str, Any]] = []
    for word in all_words:
        key = str(word.get("word", "")).lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(word)
    return unique


def get_text_for_language(text: str | dict[str, str] | None, preferred_language: str | None = None) -> str:
    """Text in the preferred language, falling back to the first available one."""
    if text is None:
        return ""
    if isinstance(text, str):
        return text
    if preferred_language and text.get(preferred_language):
        return text[preferred_language]
    return next(iter(text.values()), "")


def get_moral_for_language(moral: str | dict[str, str] | None, preferred_language: str | None = None) -> str:
    if not moral:
        return ""
    return get_text_for_language(moral, preferred_language)


def extract_book_title(book_title: str | dict[str, str] | None, preferred_language: str | None = None) -> str:
    """Display title for a story, ``Untitled Story`` when none is available."""
    if isinstance(book_title, str):
        return book_title
    if not book_title:
        return UNTITLED_STORY
    if preferred_language and book_title.get(preferred_language):
        return book_title[preferred_language]
    first_value = next(iter(book_title.values()), None)
    return first_value or UNTITLED_STORY


def normalize_book_title(book_title: Any, language1: str, language2: str) -> dict[str, str]:
    """
    Convert a stored title to ``{"language1": ..., "language2": ...}``.

    A string title is used for both languages. For an object title each side
    prefers its own language, then the other language, then the first value.
    """
    if isinstance(book_title, str):
        return {"language1": book_title, "language2": book_title}
    if isinstance(book_title, dict):
        first_value = next(iter(book_title.values()), "") or ""
        return {
            "language1": book_title.get(language1) or book_title.get(language2) or first_value,
            "language2": book_title.get(language2) or book_title.get(language1) or first_value,
        }
    return {"language1": "", "language2": ""}


def extract_story_json(raw_text: str) -> dict[str, Any]:
    """
    Parse the JSON object out of a model response.

    Strips markdown code fences and anything outside the outermost braces.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    cleaned = _CODE_FENCE_RE.sub("", raw_text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ValueError("Response doesn't contain valid JSON structure")

    parsed = json.loads(cleaned[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Response JSON is not an object")
    return parsed


def _invalid(message: str, code: str, **details: Any) -> StoryGenerationError:
    return StoryGenerationError(message, status=500, code=code, details=details)


def validate_story_structure(story: Any) -> dict[str, Any]:
    """
    Check a parsed story document has the shape the viewer expects.

    Raises:
        StoryGenerationError: With a specific code for the first problem found
    """
    if not isinstance(story, dict):
        raise _invalid(
            "Invalid story format: not an object",
            "INVALID_STORY_OBJECT",
            story_type=type(story).__name__,
        )

    missing = [f for f in ("bookTitle", "cover", "chapters", "moralOfTheStory") if not story.get(f)]
    if missing:
        raise _invalid(
            f"Story missing required fields: {', '.join(missing)}",
            "MISSING_STORY_FIELDS",
            missing_fields=missing,
        )

    chapters = story["chapters"]
    if not isinstance(chapters, list):
        raise _invalid("Invalid chapters format: must be array", "INVALID_CHAPTERS_FORMAT")

    if len(chapters) != REQUIRED_CHAPTERS:
        raise _invalid(
            f"Invalid chapter count: expected {REQUIRED_CHAPTERS}, got {len(chapters)}",
            "INVALID_CHAPTER_COUNT",
            expected=REQUIRED_CHAPTERS,
            actual=len(chapters),
        )

    cover = story["cover"]
    cover_prompt = cover.get("imagePrompt") if isinstance(cover, dict) else None
    if not cover_prompt or not isinstance(cover_prompt, str):
        raise _invalid("Cover missing or invalid image prompt", "MISSING_COVER_PROMPT")

    for index, chapter in enumerate(chapters):
        number = index + 1
        if not isinstance(chapter, dict):
            raise _invalid(
                f"Chapter {number} missing fields: chapterTitle, storyText, imagePrompt",
                "INVALID_CHAPTER_STRUCTURE",
                chapter_number=number,
            )

        missing_fields = [f for f in ("chapterTitle", "storyText", "imagePrompt") if not chapter.get(f)]
        if missing_fields:
            raise _invalid(
                f"Chapter {number} missing fields: {', '.join(missing_fields)}",
                "INVALID_CHAPTER_STRUCTURE",
                chapter_number=number,
                missing_fields=missing_fields,
            )

        if not isinstance(chapter["chapterTitle"], dict) or not isinstance(chapter["storyText"], dict):
            raise _invalid(
                f"Chapter {number} must have bilingual content structure",
                "INVALID_BILINGUAL_STRUCTURE",
                chapter_number=number,
            )

        if len(chapter["chapterTitle"]) < 2 or len(chapter["storyText"]) < 2:
            raise _invalid(
                f"Chapter {number} must have bilingual content",
                "INSUFFICIENT_BILINGUAL_CONTENT",
                chapter_number=number,
            )

    return story
