"""
Pytest configuration and shared fixtures for backend tests.
"""

import os
import sys
import tempfile
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Point settings at throwaway resources before anything reads them
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STORAGE_LOCAL_PATH", tempfile.mkdtemp(prefix="storiesontips-uploads-"))
os.environ["REDIS_URL"] = ""

import pytest
from typing import AsyncGenerator
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from api.dependencies import session_token_service
from infrastructure.database.connection import get_db
from infrastructure.database.models import Base, Story, User


# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_IDENTITY_ID = "user_test_123"
TEST_EMAIL = "test@example.com"


def make_story_output(language1: str = "English", language2: str = "Spanish") -> dict:
    """A valid five-chapter story document."""
    return {
        "bookTitle": {language1: "The Brave Little Fox", language2: "El Pequeño Zorro Valiente"},
        "cover": {
            "imagePrompt": "A small orange fox standing on a hill at sunrise",
            "imageText": "A fox on a hill",
        },
        "chapters": [
            {
                "chapterNumber": n,
                "chapterTitle": {language1: f"Chapter {n}", language2: f"Capítulo {n}"},
                "storyText": {
                    language1: f"The fox walked through the forest on day {n}.",
                    language2: f"El zorro caminó por el bosque el día {n}.",
                },
                "imagePrompt": f"Fox in the forest, scene {n}",
                "imageText": f"Scene {n}",
                "difficultWords": [
                    {"word": "bosque", "meaning": "forest", "pronunciation": "BOS-keh"},
                ],
            }
            for n in range(1, 6)
        ],
        "moralOfTheStory": {
            "moral": {language1: "Courage grows when you share it.", language2: "El valor crece cuando lo compartes."}
        },
    }


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user with the default three credits."""
    user = User(
        identity_user_id=TEST_IDENTITY_ID,
        user_email=TEST_EMAIL,
        user_name="Test User",
        user_image="https://img.example.com/avatar.png",
        credits=3,
        onboarding_completed=True,
        first_name="Test",
        last_name="User",
        mother_tongue="English",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def test_story(db_session: AsyncSession, test_user: User) -> Story:
    """Create a complete story owned by the test user."""
    story = Story(
        story_id=str(uuid4()),
        story_subject="A brave fox who learns to share",
        story_type="Bed Story",
        age_group="5-10 Years",
        image_style="Water Color",
        genre="Adventure",
        language1="English",
        language2="Spanish",
        output=make_story_output(),
        cover_image="/uploads/images/1700000000000-abcd1234.webp",
        identity_user_id=test_user.identity_user_id,
        user_email=test_user.user_email,
        user_name=test_user.user_name,
        user_image=test_user.user_image,
    )
    db_session.add(story)
    await db_session.commit()
    await db_session.refresh(story)
    return story


def make_auth_headers(identity_user_id: str = TEST_IDENTITY_ID, email: str | None = TEST_EMAIL, name: str = "Test User") -> dict:
    token = session_token_service.create_session_token(identity_user_id, email=email, name=name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user."""
    return make_auth_headers(test_user.identity_user_id, test_user.user_email, test_user.user_name)


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    # Reset rate limiter state between tests to prevent cross-test 429s
    app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def story_output() -> dict:
    """A valid English/Spanish story document."""
    return make_story_output()


@pytest.fixture
def other_auth_headers() -> dict:
    """Headers for a signed-in identity with no user row."""
    return make_auth_headers("user_other_456", "other@example.com", "Other Person")
