"""
Story wizard option catalog.

This module is the single source of truth for the choices offered by the
story-creation wizard and for the client-side validation of each field.
It lives in core/ so the form controller, the API schemas and the prompt
builder can all import from it.
"""

from dataclasses import dataclass

SUBJECT_MIN_LENGTH = 10
SUBJECT_MAX_LENGTH = 500


@dataclass(frozen=True)
class StoryOption:
    """A selectable wizard option with its card description."""

    label: str
    description: str
    image_url: str | None = None
    is_free: bool = True


STORY_TYPES: tuple[StoryOption, ...] = (
    StoryOption(
        label="Poetic",
        image_url="/story-type/Poetic.webp",
        description=(
            "A narrative told through rhythmic, expressive, and artistic language. "
            "Uses poetic devices like rhyme, meter, and imagery to evoke emotions "
            "and create a lyrical storytelling experience."
        ),
    ),
    StoryOption(
        label="Bed Story",
        image_url="/story-type/bed.webp",
        description=(
            "Gentle, calming tales meant to be read before sleep, often with soothing "
            "themes, simple plots, and comforting endings to help children relax."
        ),
    ),
    StoryOption(
        label="Educational",
        image_url="/story-type/educational.webp",
        description=(
            "Engaging narratives designed to teach specific lessons, skills, or "
            "knowledge, blending entertainment with learning to make concepts "
            "easier to understand."
        ),
    ),
    StoryOption(
        label="Folk & Cultural Tales",
        image_url="/story-type/folk.webp",
        description=(
            "Traditional stories passed down through generations, reflecting the "
            "values, beliefs, and heritage of a culture. Often feature moral "
            "lessons, myths, or historical legends."
        ),
    ),
)

AGE_GROUPS: tuple[StoryOption, ...] = (
    StoryOption(
        label="0-5 Years",
        description=(
            "Bright and playful stories with simple words and sounds, perfect for "
            "early learners to explore and enjoy"
        ),
    ),
    StoryOption(
        label="5-10 Years",
        description=(
            "Fun and imaginative stories with simple words that inspire curiosity "
            "and help build early language skills."
        ),
    ),
    StoryOption(
        label="10-15 Years",
        description=(
            "Discover fun adventures and educational tales designed to expand "
            "vocabulary, improve understanding, and spark creativity in kids."
        ),
    ),
    StoryOption(
        label="15-18 Years",
        description=(
            "Dive into challenging and captivating stories that spark critical "
            "thinking and creativity, nurturing a lifelong passion for reading "
            "and exploration."
        ),
    ),
    StoryOption(
        label="18+ Years",
        description=(
            "Diverse short stories and cultural tales thoughtfully crafted for "
            "adults to enhance fluency, deepen empathy, and broaden global "
            "understanding."
        ),
    ),
    StoryOption(
        label="Beginner Language Learners",
        description=(
            "Engaging multi linguist stories designed to help beginners learn and "
            "use a new language with ease and confidence."
        ),
    ),
    StoryOption(
        label="Intermediate Language Learners",
        description=(
            "Multi linguist and graded stories that build vocabulary, improve "
            "grammar, and deepen cultural understanding for confident learning."
        ),
    ),
    StoryOption(
        label="Advanced Language Learners",
        description=(
            "Immerse in rich, culturally diverse stories designed to advance "
            "fluency, foster natural expression, and master nuanced communication "
            "skills."
        ),
    ),
)

IMAGE_STYLES: tuple[StoryOption, ...] = (
    StoryOption(
        label="3D Cartoon",
        description="Vibrant and lively 3D animated illustrations with rich colors and depth.",
    ),
    StoryOption(
        label="Paper Cut",
        description="Unique paper-cut style illustrations with layered textures and artistic charm.",
    ),
    StoryOption(
        label="Water Color",
        description="Soft and dreamy watercolor paintings with gentle, flowing artistic strokes.",
    ),
    StoryOption(
        label="Pixel Style",
        description="Nostalgic pixel-art illustrations with retro gaming charm and character.",
    ),
)

GENRES: tuple[str, ...] = (
    "Adventure",
    "Fantasy",
    "Mystery",
    "Science Fiction",
    "Fairy Tale",
    "Animal Stories",
    "Friendship",
    "Family",
    "Comedy",
    "Historical",
    "Superhero",
)

LANGUAGES: tuple[str, ...] = (
    "English",
    "Spanish",
    "French",
    "Mandarin",
    "German",
    "Arabic",
    "Russian",
    "Portuguese",
    "Italian",
    "Japanese",
    "Hindi",
    "Bengali",
    "Tamil",
    "Telugu",
    "Marathi",
    "Gujarati",
    "Kannada",
    "Malayalam",
    "Punjabi",
    "Odia",
)


def _labels(options: tuple[StoryOption, ...]) -> frozenset[str]:
    return frozenset(option.label for option in options)


_ALLOWED_VALUES: dict[str, frozenset[str]] = {
    "storyType": _labels(STORY_TYPES),
    "ageGroup": _labels(AGE_GROUPS),
    "imageStyle": _labels(IMAGE_STYLES),
    "genre": frozenset(GENRES),
    "language1": frozenset(LANGUAGES),
    "language2": frozenset(LANGUAGES),
}


def validate_subject(value: str) -> str | None:
    """Return an error message for an invalid story subject, else None."""
    length = len(value.strip())
    if length < SUBJECT_MIN_LENGTH:
        return f"Story subject must be at least {SUBJECT_MIN_LENGTH} characters."
    if length > SUBJECT_MAX_LENGTH:
        return f"Story subject must be under {SUBJECT_MAX_LENGTH} characters."
    return None


def validate_field(field_name: str, value: str) -> str | None:
    """
    Validate a single wizard field.

    Args:
        field_name: Wizard field name (camelCase, as submitted by the form)
        value: Raw field value

    Returns:
        Error message if the value is not acceptable, None otherwise.
        Unknown field names are always accepted.
    """
    if field_name == "storySubject":
        return validate_subject(value)

    allowed = _ALLOWED_VALUES.get(field_name)
    if allowed is None:
        return None
    if value not in allowed:
        return f"Invalid value. Expected one of: {', '.join(sorted(allowed))}"
    return None


def option_catalog() -> dict:
    """Serializable catalog of every wizard choice."""

    def _dump(options: tuple[StoryOption, ...]) -> list[dict]:
        return [
            {
                "label": o.label,
                "description": o.description,
                "image_url": o.image_url,
                "is_free": o.is_free,
            }
            for o in options
        ]

    return {
        "story_types": _dump(STORY_TYPES),
        "age_groups": _dump(AGE_GROUPS),
        "image_styles": _dump(IMAGE_STYLES),
        "genres": list(GENRES),
        "languages": list(LANGUAGES),
        "subject_min_length": SUBJECT_MIN_LENGTH,
        "subject_max_length": SUBJECT_MAX_LENGTH,
    }
