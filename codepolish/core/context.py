"""Application context: every long-lived resource, constructed once per app.

Built in the FastAPI lifespan, stored on ``app.state.context`` and handed to
route handlers through the ``get_context`` dependency. Tests build their own
context around a SQLite engine.
"""

from dataclasses import dataclass

import structlog
from fastapi import Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from codepolish.core.config import Settings
from codepolish.core.rate_limit import RateLimiter
from codepolish.db.base import create_engine, create_session_factory
from codepolish.db.redis import create_redis
from codepolish.polish.engine import PolishEngine, build_engine
from codepolish.polish.pipeline import PolishPipeline
from codepolish.services.api_key_service import ApiKeyService
from codepolish.services.polish_service import PolishService
from codepolish.services.subscription_service import SubscriptionService

logger = structlog.get_logger(__name__)


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    rate_limiter: RateLimiter
    polish_engine: PolishEngine
    redis: Redis | None = None

    @property
    def subscriptions(self) -> SubscriptionService:
        return SubscriptionService(self.session_factory, self.settings)

    @property
    def polishes(self) -> PolishService:
        return PolishService(self.session_factory, self.subscriptions, self.redis)

    @property
    def api_keys(self) -> ApiKeyService:
        return ApiKeyService(self.session_factory, self.subscriptions)

    @property
    def pipeline(self) -> PolishPipeline:
        return PolishPipeline(
            self.session_factory,
            self.polish_engine,
            self.redis,
            timeout_seconds=self.settings.polish_timeout_seconds,
            stall_minutes=self.settings.polish_stall_minutes,
        )


async def build_context(settings: Settings) -> AppContext:
    """Connect to the database (and Redis when configured) and assemble the context."""
    engine = create_engine(settings.database_url, echo=False)

    redis = None
    if settings.redis_url:
        redis = await create_redis(settings.redis_url)
        logger.info("redis_connected")

    return AppContext(
        settings=settings,
        engine=engine,
        session_factory=create_session_factory(engine),
        rate_limiter=RateLimiter(),
        polish_engine=build_engine(settings),
        redis=redis,
    )


async def close_context(context: AppContext) -> None:
    if context.redis is not None:
        await context.redis.aclose()
    await context.engine.dispose()


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the context built by the lifespan."""
    return request.app.state.context
