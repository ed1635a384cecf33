"""
Bilingual story prompt builder.
"""

import json

from .errors import StoryGenerationError

REQUIRED_CHAPTERS = 5
MAX_PROMPT_LENGTH = 10000


def _chapter_template(index: int, language1: str, language2: str, image_style: str, age_group: str) -> dict:
    number = index + 1
    return {
        "chapterNumber": number,
        "chapterTitle": {
            language1: f"Chapter {number} title in {language1}",
            language2: f"Chapter {number} title in {language2}",
        },
        "storyText": {
            language1: (
                f"2-3 clear, engaging sentences in {language1} for chapter {number}. "
                f"Make it educational and appropriate for {age_group}."
            ),
            language2: (
                f"2-3 clear, engaging sentences in {language2} for chapter {number}. "
                f"Make it educational and appropriate for {age_group}."
            ),
        },
        "imagePrompt": (
            f"Detailed {image_style} style illustration for chapter {number} scene, "
            f"showing key story elements, colorful and engaging for {age_group}"
        ),
        "imageText": f"Accessibility description for chapter {number} image",
        "difficultWords": [
            {
                "word": f"challenging vocabulary word from {language2} text",
                "meaning": f"simple explanation in {language1}",
                "pronunciation": "phonetic guide if helpful",
            }
        ],
    }


def build_story_prompt(
    story_subject: str,
    story_type: str,
    age_group: str,
    image_style: str,
    language1: str,
    language2: str,
    genre: str,
) -> str:
    """
    Build the prompt asking the model for a bilingual story as JSON.

    ``language1`` is the reader's known language and ``language2`` the
    language being learned.

    Raises:
        StoryGenerationError: PROMPT_TOO_LONG when the prompt exceeds
            MAX_PROMPT_LENGTH characters
    """
    template = {
        "bookTitle": {
            language1: f"Engaging title in {language1}",
            language2: f"Same title translated to {language2}",
        },
        "cover": {
            "imagePrompt": (
                f"Professional {image_style} style book cover illustration depicting "
                f"the main theme of '{story_subject}', suitable for {age_group}, "
                "vibrant and engaging"
            ),
            "imageText": "Cover description for accessibility",
        },
        "chapters": [
            _chapter_template(i, language1, language2, image_style, age_group)
            for i in range(REQUIRED_CHAPTERS)
        ],
        "moralOfTheStory": {
            "moral": {
                language1: f"Positive, educational lesson or message in {language1}",
                language2: f"Same positive, educational lesson or message in {language2}",
            }
        },
    }

    prompt = f"""You are an expert storyteller and language learning specialist. Create an educational bilingual story for language learners.

STORY SPECIFICATIONS:
- Subject: {story_subject}
- Type: {story_type}
- Genre: {genre}
- Target Audience: {age_group}
- Known Language: {language1}
- Learning Language: {language2}
- Visual Style: {image_style}

STRUCTURE REQUIREMENTS:
- Create exactly {REQUIRED_CHAPTERS} chapters
- Each chapter should have 2-3 sentences per language
- Include educational vocabulary for language learning
- Ensure age-appropriate content
- Maintain engaging storytelling throughout

CRITICAL: Respond with ONLY valid JSON in this exact format (no markdown, no extra text):

{json.dumps(template, ensure_ascii=False, indent=1)}

IMPORTANT: Return only the JSON object above, with no additional formatting or text."""

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise StoryGenerationError(
            "Generated prompt too long",
            status=400,
            code="PROMPT_TOO_LONG",
            details={"prompt_length": len(prompt), "max_length": MAX_PROMPT_LENGTH},
        )

    return prompt


def build_cover_prompt(cover_image_prompt: str, image_style: str, age_group: str) -> str:
    """Prompt for the cover illustration derived from the story's cover description."""
    return (
        f"{cover_image_prompt}. Professional {image_style} style, high quality, "
        f"vibrant colors, no text overlay, suitable for {age_group}."
    )
