"""Shared test fixtures for all test groups.

Database tests run against a file-backed SQLite database per test (aiosqlite),
so concurrent sessions see one another's commits the way they would on
PostgreSQL.
"""

from datetime import UTC, datetime, timedelta

import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy import select

from codepolish.core.config import Settings
from codepolish.db.base import create_all, create_engine, create_session_factory
from codepolish.db.models.subscription import Subscription
from codepolish.db.models.user import User
from codepolish.polish.engine_fake import PolishEngineFake

TEST_SESSION_SECRET = "test-session-secret-0123456789abcdef"


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'codepolish_test.db'}"


@pytest.fixture
def settings(db_url) -> Settings:
    """Deterministic settings that ignore the developer's .env and environment."""
    return Settings(
        _env_file=None,
        debug=True,
        database_url=db_url,
        redis_url="",
        session_secret=TEST_SESSION_SECRET,
        polish_engine="heuristic",
        polish_timeout_seconds=5.0,
        stripe_secret_key="",
        stripe_webhook_secret="whsec_test_dummy",
        stripe_price_pro="",
        stripe_price_team="",
    )


@pytest.fixture
async def engine(db_url):
    engine = create_engine(db_url)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def redis():
    """Create a fake Redis instance for testing."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()


@pytest.fixture
def make_user(session_factory):
    """Factory: create a user with a subscription holding the given balance."""
    counter = {"n": 0}

    async def _make_user(
        credits: int = 5,
        total: int | None = None,
        plan: str = "free",
        status: str = "active",
        open_id: str | None = None,
        period_end: datetime | None = None,
        with_subscription: bool = True,
    ) -> User:
        counter["n"] += 1
        now = datetime.now(UTC)
        async with session_factory() as session:
            user = User(open_id=open_id or f"open-id-{counter['n']}", name=f"User {counter['n']}")
            session.add(user)
            await session.flush()
            if with_subscription:
                session.add(
                    Subscription(
                        user_id=user.id,
                        plan=plan,
                        status=status,
                        credits_remaining=credits,
                        credits_total=total if total is not None else max(credits, 5),
                        period_start=now,
                        period_end=period_end or now + timedelta(days=30),
                    )
                )
            await session.commit()
            return user

    return _make_user


@pytest.fixture
def get_balance(session_factory):
    async def _get_balance(user_id: int) -> int:
        async with session_factory() as session:
            result = await session.execute(
                select(Subscription.credits_remaining).where(Subscription.user_id == user_id)
            )
            return result.scalar_one()

    return _get_balance


@pytest.fixture
def engine_fake():
    """Fresh PolishEngineFake with happy_path scenario (default)."""
    return PolishEngineFake(scenario="happy_path")


@pytest.fixture
def engine_fake_malformed():
    """PolishEngineFake that fails analysis with a malformed response."""
    return PolishEngineFake(scenario="malformed_response")
