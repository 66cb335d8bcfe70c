"""
Pytest fixtures for the Academy Progress Service.

Each test gets its own SQLite file database (aiosqlite), a fresh schema,
an in-memory aiocache and a seeded catalog:

    path "python-basics"
      chapter 0 "Foundations": variables (10 XP), loops (20 XP)
      chapter 1 "Functions":   functions (30 XP)

    challenges: two-sum (easy, 50 XP), lru-cache (medium, 120 XP),
                median-stream (hard, 300 XP)
"""

import os

# Settings are read at import time
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./academy-test.db")
os.environ.setdefault("LOG_FORMAT", "plain")
os.environ.setdefault("ENABLE_METRICS", "false")
os.environ.setdefault("REDIS_URL", "memory://")

from datetime import datetime

import pytest
import pytest_asyncio
from aiocache import Cache

from academy.core.database import configure_engine, dispose_db, get_session_factory, init_db
from academy.core.dependencies import reset_dependencies
from academy.models.content import Difficulty, LessonType
from academy.schemas.content import ChallengeIn, ChapterIn, LearningPathIn, LessonIn
from academy.schemas.gamification import ProfileCreate
from academy.schemas.submissions import JudgedOutcome
from academy.services.catalog_service import CatalogService
from academy.services.progression_service import ProgressionService


PYTHON_BASICS = LearningPathIn(
    id="python-basics",
    title="Python Basics",
    slug="python-basics",
    chapters=[
        ChapterIn(
            id="ch-foundations",
            title="Foundations",
            order=0,
            lessons=[
                LessonIn(id="variables", title="Variables", order=0, xp_reward=10),
                LessonIn(id="loops", title="Loops", order=1, type=LessonType.EXERCISE, xp_reward=20),
            ],
        ),
        ChapterIn(
            id="ch-functions",
            title="Functions",
            order=1,
            lessons=[
                LessonIn(id="functions", title="Functions", order=0, type=LessonType.QUIZ, xp_reward=30),
            ],
        ),
    ],
)

OTHER_PATH = LearningPathIn(
    id="rust-basics",
    title="Rust Basics",
    chapters=[
        ChapterIn(
            id="ch-ownership",
            title="Ownership",
            order=0,
            lessons=[LessonIn(id="borrowing", title="Borrowing", order=0, xp_reward=15)],
        ),
    ],
)

CHALLENGES = [
    ChallengeIn(id="two-sum", title="Two Sum", difficulty=Difficulty.EASY, xp_reward=50),
    ChallengeIn(id="lru-cache", title="LRU Cache", difficulty=Difficulty.MEDIUM, xp_reward=120),
    ChallengeIn(id="median-stream", title="Median of a Stream", difficulty=Difficulty.HARD, xp_reward=300),
]


def outcome(status="accepted", language="python", **kwargs) -> JudgedOutcome:
    defaults = {"test_cases_passed": 5, "total_test_cases": 5}
    if status == "accepted":
        defaults.update(runtime_ms=42.0, memory_mb=12.5, runtime_percentile=80.0)
    else:
        defaults["test_cases_passed"] = 2
    defaults.update(kwargs)
    return JudgedOutcome(status=status, language=language, **defaults)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'academy.db'}"


@pytest_asyncio.fixture
async def session_factory(database_url):
    configure_engine(database_url)
    await init_db()
    yield get_session_factory()
    await dispose_db()
    reset_dependencies()


@pytest_asyncio.fixture
async def catalog(session_factory):
    async with session_factory() as session:
        catalog = CatalogService(session)
        for challenge in CHALLENGES:
            await catalog.upsert_challenge(challenge)
        await catalog.upsert_path(PYTHON_BASICS)
        await catalog.upsert_path(OTHER_PATH)
    return session_factory


@pytest_asyncio.fixture
async def cache():
    # The memory backend keeps its store at class level
    cache = Cache(Cache.MEMORY)
    await cache.clear()
    yield cache
    await cache.clear()


@pytest_asyncio.fixture
async def service(catalog, cache):
    return ProgressionService(session_factory=catalog, cache=cache)


@pytest_asyncio.fixture
async def learner(service):
    return await service.create_profile(
        ProfileCreate(learner_id="alice", display_name="Alice", username="alice", country="NL")
    )


@pytest.fixture
def day():
    """Fixed activity timestamps so streak arithmetic is deterministic."""
    def at(n: int, hour: int = 12) -> datetime:
        return datetime(2024, 3, 1 + n, hour, 0, 0)
    return at
