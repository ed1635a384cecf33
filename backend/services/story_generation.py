"""
Story generation pipeline.

Validates the wizard form, checks rate limits and credits, asks the text
model for a bilingual story, renders and stores a cover image, then deducts
one credit and saves the story in a single transaction.

Each external step runs under its own timeout and retry budget. Failures
after validation leave a compensation event for manual review.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.ai import get_story_text_service, story_ai_service
from adapters.storage import StorageAdapter, StorageError, download_image, storage_adapter
from core.errors import (
    UNEXPECTED_ERROR_MESSAGE,
    StoryGenerationError,
    run_with_retry,
    user_message_for,
    with_timeout,
)
from core.security import SessionClaims
from core.story_content import extract_story_json, validate_story_structure
from core.story_prompt import build_cover_prompt, build_story_prompt
from infrastructure.config.settings import settings
from infrastructure.database.models import (
    CompensationEventType,
    CompensationStatus,
    Story,
    User,
)
from services.compensation import CompensationService
from services.dashboard import DashboardService
from services.generation_rate_limiter import GenerationRateLimiter, generation_rate_limiter

logger = logging.getLogger(__name__)

GENERATION_MAX_ATTEMPTS = 3
MIN_STORY_LENGTH = 100
GENERATION_SUBJECT_MIN_LENGTH = 2
GENERATION_SUBJECT_MAX_LENGTH = 500

VALIDATION_FAILED_MESSAGE = "Please fix the errors and try again."
SAME_LANGUAGE_MESSAGE = "Please select different languages for learning."
SUCCESS_MESSAGE = "Story created successfully!"

REQUIRED_FIELD_MESSAGES = {
    "storyType": "Story type is required",
    "ageGroup": "Age group is required",
    "imageStyle": "Image style is required",
    "language1": "Known language is required",
    "language2": "Target language is required",
    "genre": "Genre is required",
}


@dataclass
class StoryRequest:
    story_subject: str
    story_type: str
    age_group: str
    image_style: str
    language1: str
    language2: str
    genre: str


@dataclass
class GenerationResult:
    success: bool
    message: str
    status_code: int = 200
    story_id: Optional[str] = None
    credits_remaining: Optional[int] = None
    processing_time_ms: Optional[int] = None
    code: Optional[str] = None
    errors: dict[str, list[str]] = field(default_factory=dict)


def validate_story_request(form: dict[str, Any]) -> tuple[Optional[StoryRequest], dict[str, list[str]]]:
    """
    Validate the submitted form fields.

    Returns:
        Tuple of (request, errors); request is None when errors is non-empty
    """
    values = {name: str(form.get(name) or "").strip() for name in (
        "storySubject", *REQUIRED_FIELD_MESSAGES.keys()
    )}
    errors: dict[str, list[str]] = {}

    subject = values["storySubject"]
    if len(subject) < GENERATION_SUBJECT_MIN_LENGTH:
        errors.setdefault("storySubject", []).append("Story subject must be at least 2 characters")
    elif len(subject) > GENERATION_SUBJECT_MAX_LENGTH:
        errors.setdefault("storySubject", []).append("Story subject too long")

    for name, message in REQUIRED_FIELD_MESSAGES.items():
        if not values[name]:
            errors.setdefault(name, []).append(message)

    if errors:
        return None, errors

    return StoryRequest(
        story_subject=subject,
        story_type=values["storyType"],
        age_group=values["ageGroup"],
        image_style=values["imageStyle"],
        language1=values["language1"],
        language2=values["language2"],
        genre=values["genre"],
    ), {}


def _is_retryable_except(*codes: str) -> Callable[[Exception], bool]:
    def predicate(error: Exception) -> bool:
        if isinstance(error, StoryGenerationError):
            if error.code in codes:
                return False
            return error.retryable or error.status >= 500 or error.code == "TIMEOUT_ERROR"
        return False

    return predicate


class StoryGenerationService:
    """Runs one story generation request end to end."""

    def __init__(
        self,
        db: AsyncSession,
        text_service=None,
        image_service=None,
        storage: Optional[StorageAdapter] = None,
        rate_limiter: Optional[GenerationRateLimiter] = None,
        downloader: Callable[[str], Awaitable[tuple[bytes, str]]] = download_image,
    ):
        self.db = db
        self.text_service = text_service or get_story_text_service()
        self.image_service = image_service or story_ai_service
        self.storage = storage or storage_adapter
        self.rate_limiter = rate_limiter or generation_rate_limiter
        self.downloader = downloader
        self.compensation = CompensationService(db)

    async def generate(self, identity: SessionClaims, form: dict[str, Any]) -> GenerationResult:
        started = time.monotonic()
        request_id = uuid.uuid4().hex[:8]

        request, errors = validate_story_request(form)
        if request is None:
            return GenerationResult(
                success=False,
                message=VALIDATION_FAILED_MESSAGE,
                status_code=422,
                errors=errors,
            )

        if request.language1 == request.language2:
            return GenerationResult(
                success=False,
                message=SAME_LANGUAGE_MESSAGE,
                status_code=422,
                errors={"language2": ["Target language must be different from known language"]},
            )

        logger.info(
            "[%s] Story generation started: user=%s type=%s languages=%s->%s",
            request_id,
            identity.sub,
            request.story_type,
            request.language1,
            request.language2,
        )

        try:
            story_id, credits_remaining = await self._run_pipeline(identity, request, request_id)
        except StoryGenerationError as e:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.error(
                "[%s] Story generation failed: code=%s status=%s message=%s time=%dms",
                request_id,
                e.code,
                e.status,
                e.message,
                elapsed,
            )
            await self._record_failure(request_id, identity.sub, request, e.code, e.message)
            status_code, message = user_message_for(e)
            return GenerationResult(
                success=False,
                message=message,
                status_code=status_code,
                code=e.code,
                processing_time_ms=elapsed,
            )
        except Exception as e:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.exception("[%s] Unexpected story generation error", request_id)
            await self._record_failure(request_id, identity.sub, request, "INTERNAL_ERROR", str(e))
            return GenerationResult(
                success=False,
                message=UNEXPECTED_ERROR_MESSAGE,
                status_code=500,
                code="INTERNAL_ERROR",
                processing_time_ms=elapsed,
            )

        await self._update_streak(request_id, identity.sub, request.language2, story_id)

        elapsed = int((time.monotonic() - started) * 1000)
        logger.info(
            "[%s] Story generation completed: story_id=%s credits_remaining=%s time=%dms",
            request_id,
            story_id,
            credits_remaining,
            elapsed,
        )
        return GenerationResult(
            success=True,
            message=SUCCESS_MESSAGE,
            story_id=story_id,
            credits_remaining=credits_remaining,
            processing_time_ms=elapsed,
        )

    async def _run_pipeline(
        self, identity: SessionClaims, request: StoryRequest, request_id: str
    ) -> tuple[str, int]:
        decision = await self.rate_limiter.check(identity.sub)
        if not decision.allowed:
            raise StoryGenerationError(
                "Rate limit exceeded",
                status=429,
                code="RATE_LIMITED",
                details={"retry_after": decision.retry_after},
            )

        user = await run_with_retry(
            lambda: with_timeout(
                self._load_user(identity.sub),
                settings.database_operation_timeout,
                f"User validation [{request_id}]",
            ),
            GENERATION_MAX_ATTEMPTS,
            f"User validation for request {request_id}",
            should_retry=_is_retryable_except("USER_NOT_FOUND", "INSUFFICIENT_CREDITS"),
        )
        logger.info("[%s] User validated with %d credits", request_id, user.credits)

        prompt = build_story_prompt(
            story_subject=request.story_subject,
            story_type=request.story_type,
            age_group=request.age_group,
            image_style=request.image_style,
            language1=request.language1,
            language2=request.language2,
            genre=request.genre,
        )

        raw_text = await run_with_retry(
            lambda: with_timeout(
                self._generate_text(prompt),
                settings.story_generation_timeout,
                f"Story generation [{request_id}]",
            ),
            GENERATION_MAX_ATTEMPTS,
            f"Story generation for request {request_id}",
        )

        story = self._parse_story(raw_text, request_id)

        cover_prompt = build_cover_prompt(
            story["cover"]["imagePrompt"], request.image_style, request.age_group
        )
        cover = await run_with_retry(
            lambda: with_timeout(
                self.image_service.generate_cover_image(cover_prompt),
                settings.image_generation_timeout,
                f"Image generation [{request_id}]",
            ),
            GENERATION_MAX_ATTEMPTS,
            f"Image generation for request {request_id}",
        )

        image_data, _ = await run_with_retry(
            lambda: with_timeout(
                self.downloader(cover.url),
                settings.image_download_timeout,
                f"Image download [{request_id}]",
            ),
            GENERATION_MAX_ATTEMPTS,
            f"Image download for request {request_id}",
        )

        key = f"images/{int(time.time() * 1000)}-{request_id}.webp"
        cover_image_url = await run_with_retry(
            lambda: with_timeout(
                self._upload_cover(image_data, key),
                settings.image_upload_timeout,
                f"Image upload [{request_id}]",
            ),
            GENERATION_MAX_ATTEMPTS,
            f"Image upload for request {request_id}",
        )
        logger.info("[%s] Cover image stored at %s", request_id, key)

        story_id = str(uuid.uuid4())
        try:
            credits_remaining = await run_with_retry(
                lambda: with_timeout(
                    self._save_story(identity, request, story_id, story, cover_image_url),
                    settings.database_operation_timeout,
                    f"Story save and credit deduction [{request_id}]",
                ),
                GENERATION_MAX_ATTEMPTS,
                f"Story save and credit deduction for request {request_id}",
                should_retry=_is_retryable_except("INSUFFICIENT_CREDITS_FOR_DEDUCT"),
            )
        except Exception as e:
            await self._record_orphaned_cover(request_id, identity.sub, story_id, key, cover_image_url, e)
            raise

        return story_id, credits_remaining

    async def _load_user(self, identity_user_id: str) -> User:
        try:
            result = await self.db.execute(
                select(User).where(User.identity_user_id == identity_user_id)
            )
            user = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoryGenerationError(
                f"Database error during user validation: {e}",
                status=500,
                code="DATABASE_ERROR",
                retryable=True,
            ) from e

        if not user:
            raise StoryGenerationError(
                "User not found. Please complete your onboarding first.",
                status=404,
                code="USER_NOT_FOUND",
            )
        if user.credits is None or user.credits <= 0:
            raise StoryGenerationError(
                "Insufficient credits. Please purchase more credits to continue.",
                status=403,
                code="INSUFFICIENT_CREDITS",
                details={"current_credits": user.credits},
            )
        return user

    async def _generate_text(self, prompt: str) -> str:
        text = await self.text_service.generate_story_text(prompt)
        if not text or not text.strip():
            raise StoryGenerationError(
                "Empty response from story model",
                status=500,
                code="EMPTY_STORY_RESPONSE",
                retryable=True,
            )
        if len(text.strip()) < MIN_STORY_LENGTH:
            raise StoryGenerationError(
                "Story model returned insufficient content",
                status=500,
                code="INSUFFICIENT_CONTENT",
                details={"length": len(text.strip())},
                retryable=True,
            )
        return text

    def _parse_story(self, raw_text: str, request_id: str) -> dict[str, Any]:
        try:
            return validate_story_structure(extract_story_json(raw_text))
        except (ValueError, StoryGenerationError) as e:
            logger.error("[%s] Story parsing/validation error: %s", request_id, e)
            raise StoryGenerationError(
                "Failed to parse story content. Please try again.",
                status=500,
                code="STORY_PARSE_ERROR",
                details={
                    "original_error": str(e),
                    "response_preview": raw_text[:200],
                },
            ) from e

    async def _upload_cover(self, image_data: bytes, key: str) -> str:
        try:
            return await self.storage.save_image(image_data, key, "image/webp")
        except StorageError as e:
            raise StoryGenerationError(
                f"Failed to upload cover image: {e}",
                status=500,
                code="IMAGE_UPLOAD_FAILED",
                retryable=True,
            ) from e

    async def _save_story(
        self,
        identity: SessionClaims,
        request: StoryRequest,
        story_id: str,
        story: dict[str, Any],
        cover_image_url: str,
    ) -> int:
        """Deduct one credit and insert the story; returns the remaining balance."""
        try:
            result = await self.db.execute(
                select(User).where(User.identity_user_id == identity.sub).with_for_update()
            )
            user = result.scalar_one_or_none()
            if not user or user.credits <= 0:
                raise StoryGenerationError(
                    "Insufficient credits. Please purchase more credits to continue.",
                    status=403,
                    code="INSUFFICIENT_CREDITS_FOR_DEDUCT",
                )

            user.credits -= 1
            self.db.add(
                Story(
                    story_id=story_id,
                    story_subject=request.story_subject,
                    story_type=request.story_type,
                    age_group=request.age_group,
                    image_style=request.image_style,
                    language1=request.language1,
                    language2=request.language2,
                    genre=request.genre,
                    output=story,
                    cover_image=cover_image_url,
                    identity_user_id=identity.sub,
                    user_email=user.user_email or identity.email or "",
                    user_name=user.user_name or identity.name or "Anonymous",
                    user_image=user.user_image or identity.picture or "",
                )
            )
            await self.db.commit()
            return user.credits
        except StoryGenerationError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoryGenerationError(
                f"Database error during story save: {e}",
                status=500,
                code="DATABASE_ERROR",
                retryable=True,
            ) from e

    async def _update_streak(self, request_id: str, identity_user_id: str, language: str, story_id: str) -> None:
        try:
            await DashboardService(self.db).update_language_streak(identity_user_id, language)
        except Exception as e:
            await self.db.rollback()
            logger.warning("[%s] Language streak update failed: %s", request_id, e)
            await self._safe_record(
                request_id=request_id,
                identity_user_id=identity_user_id,
                event_type=CompensationEventType.STREAK_UPDATE_FAILED,
                status=CompensationStatus.FAILED,
                reason="Language streak update failed after story save",
                error=str(e),
                payload={"language": language},
                story_id=story_id,
            )

    async def _record_failure(
        self, request_id: str, identity_user_id: str, request: StoryRequest, code: str, message: str
    ) -> None:
        await self._safe_record(
            request_id=request_id,
            identity_user_id=identity_user_id,
            event_type=CompensationEventType.STORY_GENERATION_FAILED,
            status=CompensationStatus.FAILED,
            reason=code,
            error=message,
            payload={
                "story_type": request.story_type,
                "language1": request.language1,
                "language2": request.language2,
                "genre": request.genre,
            },
        )

    async def _record_orphaned_cover(
        self,
        request_id: str,
        identity_user_id: str,
        story_id: str,
        key: str,
        cover_image_url: str,
        error: Exception,
    ) -> None:
        await self._safe_record(
            request_id=request_id,
            identity_user_id=identity_user_id,
            event_type=CompensationEventType.ORPHANED_COVER_IMAGE,
            status=CompensationStatus.PENDING_REVIEW,
            reason="Cover image uploaded but story could not be saved",
            error=str(error),
            payload={"key": key, "cover_image": cover_image_url},
            story_id=story_id,
        )

    async def _safe_record(self, **kwargs: Any) -> None:
        try:
            # Drop whatever the failed step left in the session
            await self.db.rollback()
            await self.compensation.record(**kwargs)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Failed to record compensation event %s for request %s: %s",
                kwargs.get("event_type"),
                kwargs.get("request_id"),
                e,
            )
