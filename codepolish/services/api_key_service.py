"""API key issuance and verification.

Keys look like ``cp_<43 url-safe chars>``; only the SHA-256 hex digest and a
short display prefix are stored.
"""

import hashlib
import secrets
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codepolish.core.exceptions import ForbiddenError, NotFoundError
from codepolish.db.models.api_key import ApiKey
from codepolish.domain.plans import API_ACCESS_PLANS, as_utc
from codepolish.services.subscription_service import SubscriptionService

logger = structlog.get_logger(__name__)

API_KEY_PREFIX = "cp_"
_DISPLAY_PREFIX_LENGTH = 10


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_urlsafe(32)


class ApiKeyService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], subscriptions: SubscriptionService):
        self.session_factory = session_factory
        self.subscriptions = subscriptions

    async def _require_api_plan(self, user_id: int) -> None:
        sub = await self.subscriptions.get_or_create(user_id)
        if sub.plan not in API_ACCESS_PLANS:
            raise ForbiddenError("API access requires the Team or Enterprise plan")

    async def create(self, user_id: int, name: str, expires_in_days: int | None = None) -> tuple[ApiKey, str]:
        """Issue a new key. The plaintext is returned once and never stored.

        Raises:
            ForbiddenError: Plan does not include API access
        """
        await self._require_api_plan(user_id)

        key = generate_api_key()
        expires_at = datetime.now(UTC) + timedelta(days=expires_in_days) if expires_in_days else None
        api_key = ApiKey(
            user_id=user_id,
            name=name,
            key_hash=hash_api_key(key),
            key_prefix=key[:_DISPLAY_PREFIX_LENGTH],
            expires_at=expires_at,
        )
        async with self.session_factory() as session:
            session.add(api_key)
            await session.commit()
            await session.refresh(api_key)

        logger.info("api_key_created", user_id=user_id, api_key_id=api_key.id)
        return api_key, key

    async def list_keys(self, user_id: int) -> list[ApiKey]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiKey).where(ApiKey.user_id == user_id).order_by(ApiKey.created_at.desc())
            )
            return list(result.scalars().all())

    async def revoke(self, user_id: int, api_key_id: int) -> None:
        async with self.session_factory() as session:
            api_key = await session.get(ApiKey, api_key_id)
            if api_key is None:
                raise NotFoundError("API key not found")
            if api_key.user_id != user_id:
                raise ForbiddenError("Access denied")
            await session.execute(delete(ApiKey).where(ApiKey.id == api_key_id))
            await session.commit()

        logger.info("api_key_revoked", user_id=user_id, api_key_id=api_key_id)

    async def authenticate(self, key: str, now: datetime | None = None) -> int | None:
        """Resolve a plaintext key to its owner's user id.

        Returns None for unknown or expired keys. Raises ForbiddenError when the
        owner's plan no longer includes API access.
        """
        now = now or datetime.now(UTC)
        if not key.startswith(API_KEY_PREFIX):
            return None

        async with self.session_factory() as session:
            result = await session.execute(select(ApiKey).where(ApiKey.key_hash == hash_api_key(key)))
            api_key = result.scalar_one_or_none()
            if api_key is None:
                return None
            if api_key.expires_at is not None and as_utc(api_key.expires_at) <= now:
                logger.info("api_key_expired", api_key_id=api_key.id)
                return None

            await session.execute(update(ApiKey).where(ApiKey.id == api_key.id).values(last_used=now))
            await session.commit()
            user_id = api_key.user_id

        await self._require_api_plan(user_id)
        return user_id
