"""API-specific test fixtures.

The app under test gets a test lifespan that builds its AppContext around the
per-test SQLite database inside the TestClient's own event loop. Seeding and
inspection helpers run on that same loop through ``client.portal``.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import select

from codepolish.core.auth import create_session_token
from codepolish.core.context import AppContext, close_context
from codepolish.core.rate_limit import RateLimiter
from codepolish.db.base import create_all, create_engine, create_session_factory
from codepolish.db.models.polish import Polish
from codepolish.db.models.subscription import Subscription
from codepolish.db.models.user import User
from codepolish.polish.heuristic import HeuristicPolishEngine


@pytest.fixture
def api_client(settings):
    """FastAPI test client with a fresh context and test database."""
    from codepolish.api.routes import api_router
    from codepolish.main import register_exception_handlers
    from codepolish.middleware.correlation import setup_correlation_middleware

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        """Test lifespan - build the context in TestClient's event loop."""
        engine = create_engine(settings.database_url)
        await create_all(engine)
        context = AppContext(
            settings=settings,
            engine=engine,
            session_factory=create_session_factory(engine),
            rate_limiter=RateLimiter(),
            polish_engine=HeuristicPolishEngine(),
        )
        app.state.context = context
        app.state.shutting_down = False
        yield
        await close_context(context)

    app = FastAPI(title=settings.app_name, description="CodePolish - Test Client", lifespan=test_lifespan)

    setup_correlation_middleware(app)

    # Exception handlers (needed for code/debug_id testing)
    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    with TestClient(app) as client:
        yield client


@pytest.fixture
def api_context(api_client) -> AppContext:
    return api_client.app.state.context


@pytest.fixture
def run(api_client):
    """Run a coroutine function on the app's event loop and return its result."""

    def _run(fn, *args):
        return api_client.portal.call(fn, *args)

    return _run


@pytest.fixture
def seed_user(api_context, run):
    """Factory: create a user (and subscription) directly in the test database."""
    counter = {"n": 0}

    def _seed(
        credits: int = 5,
        total: int | None = None,
        plan: str = "free",
        status: str = "active",
        role: str = "user",
        with_subscription: bool = True,
    ) -> User:
        counter["n"] += 1
        n = counter["n"]

        async def _create() -> User:
            now = datetime.now(UTC)
            async with api_context.session_factory() as session:
                user = User(open_id=f"oauth|{n}", name=f"Test User {n}", email=f"user{n}@example.com", role=role)
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
                            period_end=now + timedelta(days=30),
                        )
                    )
                await session.commit()
                return user

        return run(_create)

    return _seed


@pytest.fixture
def auth_headers(settings):
    """Bearer session header for a seeded user."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_session_token(user.open_id, settings)}"}

    return _headers


@pytest.fixture
def balance_of(api_context, run):
    def _balance(user_id: int) -> int:
        async def _query() -> int:
            async with api_context.session_factory() as session:
                result = await session.execute(
                    select(Subscription.credits_remaining).where(Subscription.user_id == user_id)
                )
                return result.scalar_one()

        return run(_query)

    return _balance


@pytest.fixture
def load_polish(api_context, run):
    def _load(polish_id: int) -> Polish | None:
        async def _query() -> Polish | None:
            async with api_context.session_factory() as session:
                return await session.get(Polish, polish_id)

        return run(_query)

    return _load
