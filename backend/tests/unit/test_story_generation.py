"""
Tests for the story generation pipeline.

External services (text model, image model, downloader, storage) are
replaced by in-memory fakes; the database is the test SQLite session.
"""

import json
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from adapters.storage import StorageError
from core.errors import INSUFFICIENT_CREDITS_MESSAGE
from core.security import SessionClaims
from infrastructure.database.models import CompensationEvent, Story
from services.dashboard import DashboardService
from services.generation_rate_limiter import GenerationRateLimiter
from services.story_generation import StoryGenerationService, validate_story_request

COVER_URL = "https://replicate.delivery/pbxt/cover.webp"


class FakeTextService:
    def __init__(self, text: str):
        self.text = text
        self.prompts: list[str] = []

    async def generate_story_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.text


class FakeImageService:
    def __init__(self):
        self.prompts: list[str] = []

    async def generate_cover_image(self, prompt: str):
        self.prompts.append(prompt)
        return SimpleNamespace(url=COVER_URL)


class FakeStorage:
    def __init__(self, error: Exception | None = None, on_save=None):
        self.error = error
        self.on_save = on_save
        self.saved: dict[str, bytes] = {}

    async def save_image(self, image_data: bytes, key: str, content_type: str | None = None) -> str:
        if self.on_save:
            await self.on_save()
        if self.error:
            raise self.error
        self.saved[key] = image_data
        return f"/uploads/{key}"


async def fake_downloader(url: str) -> tuple[bytes, str]:
    return b"webp-bytes", "image/webp"


def _claims(sub: str = "user_test_123") -> SessionClaims:
    now = datetime.now(UTC)
    return SessionClaims(
        sub=sub,
        exp=now + timedelta(hours=1),
        iat=now,
        email="test@example.com",
        name="Test User",
    )


def _form(**overrides) -> dict:
    form = {
        "storySubject": "A brave fox who learns to share",
        "storyType": "Bed Story",
        "ageGroup": "5-10 Years",
        "imageStyle": "Water Color",
        "language1": "English",
        "language2": "Spanish",
        "genre": "Adventure",
    }
    form.update(overrides)
    return form


async def _events(db_session) -> list[CompensationEvent]:
    result = await db_session.execute(select(CompensationEvent).order_by(CompensationEvent.id))
    return list(result.scalars().all())


@pytest.fixture
def fakes(story_output):
    return SimpleNamespace(
        text=FakeTextService(json.dumps(story_output)),
        image=FakeImageService(),
        storage=FakeStorage(),
        limiter=GenerationRateLimiter(max_requests=5, window_seconds=60, min_interval_seconds=0),
    )


def _service(db_session, fakes) -> StoryGenerationService:
    return StoryGenerationService(
        db_session,
        text_service=fakes.text,
        image_service=fakes.image,
        storage=fakes.storage,
        rate_limiter=fakes.limiter,
        downloader=fake_downloader,
    )


class TestValidateStoryRequest:
    """Tests for form validation."""

    def test_valid_form(self):
        request, errors = validate_story_request(_form(storySubject="  Owls  "))

        assert errors == {}
        assert request.story_subject == "Owls"

    def test_missing_fields(self):
        request, errors = validate_story_request({"storySubject": "x"})

        assert request is None
        assert errors["storySubject"] == ["Story subject must be at least 2 characters"]
        assert errors["genre"] == ["Genre is required"]
        assert errors["language2"] == ["Target language is required"]

    def test_subject_too_long(self):
        _, errors = validate_story_request(_form(storySubject="x" * 501))

        assert errors["storySubject"] == ["Story subject too long"]


class TestStoryGenerationService:
    """Tests for StoryGenerationService.generate."""

    @pytest.mark.asyncio
    async def test_successful_generation(self, db_session, test_user, fakes):
        result = await _service(db_session, fakes).generate(_claims(), _form())

        assert result.success is True
        assert result.status_code == 200
        assert result.credits_remaining == 2

        story = (await db_session.execute(select(Story).where(Story.story_id == result.story_id))).scalar_one()
        assert story.language2 == "Spanish"
        assert story.output["bookTitle"]["Spanish"] == "El Pequeño Zorro Valiente"
        assert story.cover_image.startswith("/uploads/images/")
        assert story.cover_image.endswith(".webp")
        assert story.user_email == "test@example.com"

        assert "A brave fox who learns to share" in fakes.text.prompts[0]
        assert "Water Color" in fakes.image.prompts[0]
        assert list(fakes.storage.saved.values()) == [b"webp-bytes"]

        await db_session.refresh(test_user)
        assert test_user.credits == 2
        assert test_user.total_stories_created == 1
        assert test_user.language_streaks["Spanish"]["totalStories"] == 1
        assert await _events(db_session) == []

    @pytest.mark.asyncio
    async def test_validation_failure(self, db_session, test_user, fakes):
        result = await _service(db_session, fakes).generate(_claims(), _form(genre=""))

        assert result.success is False
        assert result.status_code == 422
        assert "genre" in result.errors
        assert fakes.text.prompts == []

    @pytest.mark.asyncio
    async def test_same_languages_rejected(self, db_session, test_user, fakes):
        result = await _service(db_session, fakes).generate(_claims(), _form(language2="English"))

        assert result.status_code == 422
        assert result.message == "Please select different languages for learning."

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, fakes):
        result = await _service(db_session, fakes).generate(_claims("user_missing"), _form())

        assert result.success is False
        assert result.status_code == 404
        assert result.code == "USER_NOT_FOUND"

        events = await _events(db_session)
        assert [e.event_type for e in events] == ["STORY_GENERATION_FAILED"]
        assert events[0].reason == "USER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_no_credits(self, db_session, test_user, fakes):
        test_user.credits = 0
        await db_session.commit()

        result = await _service(db_session, fakes).generate(_claims(), _form())

        assert result.status_code == 402
        assert result.message == INSUFFICIENT_CREDITS_MESSAGE
        assert fakes.text.prompts == []

    @pytest.mark.asyncio
    async def test_rate_limited(self, db_session, test_user, fakes):
        fakes.limiter = GenerationRateLimiter(max_requests=1, window_seconds=60, min_interval_seconds=0)
        service = _service(db_session, fakes)

        first = await service.generate(_claims(), _form())
        second = await service.generate(_claims(), _form())

        assert first.success is True
        assert second.status_code == 429
        assert second.code == "RATE_LIMITED"

    @pytest.mark.asyncio
    async def test_unparseable_story_keeps_credits(self, db_session, test_user, fakes):
        fakes.text = FakeTextService("Once upon a time " * 20)

        result = await _service(db_session, fakes).generate(_claims(), _form())

        assert result.status_code == 500
        assert result.code == "STORY_PARSE_ERROR"
        assert fakes.image.prompts == []

        await db_session.refresh(test_user)
        assert test_user.credits == 3

    @pytest.mark.asyncio
    async def test_short_text_is_retried(self, db_session, test_user, fakes):
        fakes.text = FakeTextService("{}")

        with patch("core.errors.RETRY_BACKOFF_SECONDS", 0):
            result = await _service(db_session, fakes).generate(_claims(), _form())

        assert result.code == "INSUFFICIENT_CONTENT"
        assert len(fakes.text.prompts) == 3

    @pytest.mark.asyncio
    async def test_upload_failure(self, db_session, test_user, fakes):
        fakes.storage = FakeStorage(error=StorageError("disk full"))

        with patch("core.errors.RETRY_BACKOFF_SECONDS", 0):
            result = await _service(db_session, fakes).generate(_claims(), _form())

        assert result.success is False
        assert result.code == "IMAGE_UPLOAD_FAILED"

        await db_session.refresh(test_user)
        assert test_user.credits == 3
        stories = (await db_session.execute(select(Story))).scalars().all()
        assert stories == []

    @pytest.mark.asyncio
    async def test_save_failure_records_orphaned_cover(self, db_session, test_user, fakes):
        async def spend_last_credit():
            test_user.credits = 0
            await db_session.commit()

        fakes.storage = FakeStorage(on_save=spend_last_credit)

        result = await _service(db_session, fakes).generate(_claims(), _form())

        assert result.status_code == 402
        assert result.code == "INSUFFICIENT_CREDITS_FOR_DEDUCT"

        events = await _events(db_session)
        assert [e.event_type for e in events] == ["ORPHANED_COVER_IMAGE", "STORY_GENERATION_FAILED"]
        assert events[0].status == "pending_review"
        assert events[0].payload["cover_image"].startswith("/uploads/images/")

    @pytest.mark.asyncio
    async def test_streak_failure_does_not_fail_generation(self, db_session, test_user, fakes):
        with patch.object(
            DashboardService, "update_language_streak", new=AsyncMock(side_effect=RuntimeError("db gone"))
        ):
            result = await _service(db_session, fakes).generate(_claims(), _form())

        assert result.success is True
        events = await _events(db_session)
        assert [e.event_type for e in events] == ["STREAK_UPDATE_FAILED"]
        assert events[0].story_id == result.story_id
