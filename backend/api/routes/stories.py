"""
Story routes: listing, viewing, vocabulary, morals and generation.
"""

import logging
from collections import defaultdict
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import CurrentIdentity, CurrentSession
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.story import (
    BookTitle,
    DifficultWord,
    GenerateStoryResponse,
    MoralResponse,
    StoryAccessResponse,
    StoryHistoryResponse,
    StoryListItem,
    StoryListResponse,
    StoryMetadataResponse,
    StoryOptionsResponse,
    StoryOwnershipResponse,
    StoryResponse,
    VocabularyResponse,
)
from core.story_content import (
    extract_book_title,
    extract_difficult_words,
    get_moral_for_language,
    normalize_book_title,
)
from core.story_options import option_catalog
from infrastructure.database.connection import get_db
from infrastructure.database.models import Story
from services.dashboard import DashboardService
from services.story_generation import StoryGenerationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stories", tags=["Stories"])

STORY_NOT_FOUND = "Story not found"


def get_story_generation_service(db: AsyncSession = Depends(get_db)) -> StoryGenerationService:
    return StoryGenerationService(db)


async def _find_story(db: AsyncSession, story_id: str) -> Optional[Story]:
    if not story_id or not story_id.strip():
        return None
    result = await db.execute(select(Story).where(Story.story_id == story_id.strip()))
    return result.scalar_one_or_none()


async def _get_complete_story(db: AsyncSession, story_id: str) -> Story:
    """Story with generated content and cover, or 404."""
    story = await _find_story(db, story_id)
    if not story or not story.output or not story.cover_image:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=STORY_NOT_FOUND)
    return story


def _moral_text(output: dict[str, Any], language: Optional[str]) -> str:
    moral = output.get("moralOfTheStory")
    if isinstance(moral, dict) and "moral" in moral:
        moral = moral["moral"]
    return get_moral_for_language(moral, language)


@router.get("", response_model=StoryListResponse)
async def get_user_stories(
    claims: CurrentIdentity,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """The signed-in user's stories, newest first."""
    result = await db.execute(
        select(Story)
        .where(Story.user_email == claims.email)
        .order_by(Story.created_at.desc(), Story.id.desc())
        .limit(limit)
    )
    stories = result.scalars().all()

    items = []
    for story in stories:
        output = story.output or {}
        items.append(
            StoryListItem(
                story_id=story.story_id,
                story_subject=story.story_subject,
                story_type=story.story_type,
                age_group=story.age_group,
                image_style=story.image_style,
                genre=story.genre,
                language1=story.language1,
                language2=story.language2,
                cover_image=story.cover_image,
                book_title=BookTitle(
                    **normalize_book_title(output.get("bookTitle"), story.language1, story.language2)
                ),
                output=story.output,
                created_at=story.created_at,
            )
        )
    return StoryListResponse(stories=items, total=len(items))


@router.get("/options", response_model=StoryOptionsResponse)
async def get_story_options(claims: CurrentSession):
    """Choices offered by the story creation wizard."""
    return option_catalog()


@router.get("/history", response_model=StoryHistoryResponse)
async def get_user_story_history(
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    data = await DashboardService(db).get_dashboard_data(claims.sub)
    if not data:
        return StoryHistoryResponse(total_stories=0, this_month_stories=0, language_breakdown={})

    breakdown: dict[str, int] = defaultdict(int)
    for entry in data.stories_by_language:
        if entry["language"]:
            breakdown[entry["language"]] += entry["count"]

    return StoryHistoryResponse(
        total_stories=data.total_stories_created,
        this_month_stories=data.monthly_stories_created,
        language_breakdown=dict(breakdown),
    )


@router.post("/generate", response_model=GenerateStoryResponse)
@limiter.limit(get_rate_limit("story_generation"))
async def generate_story(
    request: Request,
    claims: CurrentSession,
    storySubject: Annotated[str, Form()] = "",
    storyType: Annotated[str, Form()] = "",
    ageGroup: Annotated[str, Form()] = "",
    imageStyle: Annotated[str, Form()] = "",
    language1: Annotated[str, Form()] = "",
    language2: Annotated[str, Form()] = "",
    genre: Annotated[str, Form()] = "",
    service: StoryGenerationService = Depends(get_story_generation_service),
):
    """
    Generate a bilingual story from the wizard's form payload.

    Failures return the same body shape with ``success`` false and an HTTP
    status matching the failure.
    """
    form = {
        "storySubject": storySubject,
        "storyType": storyType,
        "ageGroup": ageGroup,
        "imageStyle": imageStyle,
        "language1": language1,
        "language2": language2,
        "genre": genre,
    }
    result = await service.generate(claims, form)

    body = GenerateStoryResponse(
        success=result.success,
        message=result.message,
        story_id=result.story_id,
        credits_remaining=result.credits_remaining,
        processing_time_ms=result.processing_time_ms,
        errors=result.errors,
    )
    if result.success:
        return body
    return JSONResponse(status_code=result.status_code, content=body.model_dump())


@router.get("/{story_id}", response_model=StoryResponse)
async def get_story_by_id(
    story_id: str,
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    story = await _get_complete_story(db, story_id)
    return StoryResponse.model_validate(story)


@router.get("/{story_id}/metadata", response_model=StoryMetadataResponse)
async def get_story_metadata(
    story_id: str,
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    story = await _get_complete_story(db, story_id)
    output = story.output or {}
    chapters = output.get("chapters")
    return StoryMetadataResponse(
        story_id=story.story_id,
        title=extract_book_title(output.get("bookTitle"), story.language1),
        story_type=story.story_type,
        age_group=story.age_group,
        genre=story.genre,
        image_style=story.image_style,
        language1=story.language1,
        language2=story.language2,
        chapter_count=len(chapters) if isinstance(chapters, list) else 0,
        author_name=story.user_name,
        created_at=story.created_at,
    )


@router.get("/{story_id}/access", response_model=StoryAccessResponse)
async def validate_story_access(
    story_id: str,
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    story = await _find_story(db, story_id)
    return StoryAccessResponse(allowed=story is not None)


@router.get("/{story_id}/ownership", response_model=StoryOwnershipResponse)
async def check_story_ownership(
    story_id: str,
    claims: CurrentIdentity,
    db: AsyncSession = Depends(get_db),
):
    story = await _find_story(db, story_id)
    return StoryOwnershipResponse(is_owner=bool(story and story.user_email == claims.email))


@router.get("/{story_id}/vocabulary", response_model=VocabularyResponse)
async def get_story_vocabulary(
    story_id: str,
    claims: CurrentSession,
    db: AsyncSession = Depends(get_db),
):
    story = await _get_complete_story(db, story_id)
    chapters = story.output.get("chapters")
    words = extract_difficult_words(chapters if isinstance(chapters, list) else [])
    return VocabularyResponse(
        story_id=story.story_id,
        words=[
            DifficultWord(
                word=str(w.get("word") or ""),
                meaning=str(w.get("meaning") or ""),
                pronunciation=w.get("pronunciation"),
            )
            for w in words
        ],
    )


@router.get("/{story_id}/moral", response_model=MoralResponse)
async def get_story_moral(
    story_id: str,
    claims: CurrentSession,
    language: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    story = await _get_complete_story(db, story_id)
    return MoralResponse(story_id=story.story_id, moral=_moral_text(story.output, language))
