"""
Async test configuration and fixtures for pytest.

Each test gets its own temporary-file SQLite database (via aiosqlite) with
all tables created from the ORM metadata, a scripted text generator standing
in for the language model, and a factory for orchestrators wired to both.
"""

from datetime import date
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.base_class import Base
import app.models  # noqa
from app.models.user import User
from app.models.user_profile import GenderType, UserProfile
from app.schemas.plan_generation import PlanPreferences, UserBiometrics
from app.services.eligibility import AsyncEligibilityService
from app.services.plan_orchestrator import PlanGenerationOrchestrator
from tests.async_test_utils import FakeTextGenerator, create_user


@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """Create an async SQLAlchemy engine on a fresh SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test_async.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def test_user(async_db_session) -> User:
    user = await create_user(async_db_session, "client")
    # Detach so later expire_all()/rollback() calls don't expire its loaded
    # attributes (a sync lazy refresh is impossible on an async session).
    async_db_session.expunge(user)
    return user


@pytest_asyncio.fixture
async def test_user_with_profile(async_db_session) -> User:
    user = await create_user(async_db_session, "profiled")
    today = date.today()
    async_db_session.add(UserProfile(
        user_id=user.id,
        gender=GenderType.male,
        height_cm=180,
        weight_kg=80,
        date_of_birth=date(today.year - 30, 1, 1),
    ))
    await async_db_session.commit()
    return user


@pytest.fixture
def preferences() -> PlanPreferences:
    return PlanPreferences(
        fitness_goal="maintenance",
        workout_days_per_week=3,
        diet_preferences=["high-protein"],
        restrictions=["peanuts"],
        weekly_budget=60,
        budget_currency="gbp",
        activity_level="moderate",
        workout_duration=50,
        fitness_level="intermediate",
    )


@pytest.fixture
def male_biometrics() -> UserBiometrics:
    return UserBiometrics(age=30, sex="male", height=180, weight=80)


@pytest.fixture
def text_generator() -> FakeTextGenerator:
    return FakeTextGenerator()


@pytest_asyncio.fixture
async def make_orchestrator(session_factory, text_generator):
    """Factory for orchestrators sharing the test database; all are shut down afterwards."""
    created: List[PlanGenerationOrchestrator] = []

    def factory(generator: Optional[FakeTextGenerator] = None, **kwargs) -> PlanGenerationOrchestrator:
        kwargs.setdefault("eligibility_checker", AsyncEligibilityService(default_frequency_days=0))
        kwargs.setdefault("auto_advance", True)
        kwargs.setdefault("max_retries", 1)
        kwargs.setdefault("retry_delay", 0)
        kwargs.setdefault("step_timeout", 5)
        kwargs.setdefault("seconds_per_step", 30)
        orchestrator = PlanGenerationOrchestrator(session_factory, generator or text_generator, **kwargs)
        created.append(orchestrator)
        return orchestrator

    yield factory

    for orchestrator in created:
        await orchestrator.shutdown()


@pytest.fixture
def orchestrator(make_orchestrator) -> PlanGenerationOrchestrator:
    return make_orchestrator()
