"""User provisioning on OAuth login.

Idempotent upsert keyed by the provider's open_id. The configured owner is
granted the admin role. The subscription row is created lazily on first use.
"""

from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codepolish.db.models.user import User

logger = structlog.get_logger(__name__)


async def provision_user_on_login(
    session_factory: async_sessionmaker[AsyncSession],
    open_id: str,
    profile: dict,
    owner_open_id: str = "",
) -> User:
    """Create or refresh the user for open_id and stamp last_signed_in.

    Args:
        session_factory: Session factory from the app context
        open_id: Stable subject identifier from the OAuth provider
        profile: Userinfo claims; name, email and login_method are read when present
        owner_open_id: open_id that receives the admin role

    Returns:
        The persisted User
    """
    now = datetime.now(UTC)
    values = {
        "name": profile.get("name"),
        "email": profile.get("email"),
        "login_method": profile.get("login_method") or profile.get("loginMethod"),
    }

    async with session_factory() as session:
        user = (await session.execute(select(User).where(User.open_id == open_id))).scalar_one_or_none()
        if user is None:
            user = User(
                open_id=open_id,
                role="admin" if owner_open_id and open_id == owner_open_id else "user",
                last_signed_in=now,
                **values,
            )
            session.add(user)
            try:
                await session.commit()
                logger.info("user_provisioned", user_id=user.id, role=user.role)
                return user
            except IntegrityError:
                # Concurrent login created the row first, fall through to update it
                await session.rollback()
                user = (await session.execute(select(User).where(User.open_id == open_id))).scalar_one()

        for field, value in values.items():
            if value is not None:
                setattr(user, field, value)
        if owner_open_id and open_id == owner_open_id:
            user.role = "admin"
        user.last_signed_in = now
        await session.commit()
        return user
