"""Session authentication for FastAPI.

Callers authenticate with one of:
- the signed session cookie set by the OAuth callback
- the same session token sent as ``Authorization: Bearer <token>``
- an API key sent as ``Authorization: Bearer cp_...`` (team/enterprise plans)

Session tokens are HS256 JWTs whose ``sub`` is the user's open_id.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt as pyjwt
import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select

from codepolish.core.config import Settings
from codepolish.core.context import AppContext, get_context
from codepolish.core.exceptions import ForbiddenError, UnauthorizedError
from codepolish.db.models.user import User
from codepolish.services.api_key_service import API_KEY_PREFIX

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

SESSION_ALGORITHM = "HS256"


@dataclass(frozen=True)
class AuthUser:
    """Authenticated caller resolved from a session token or API key."""

    id: int
    open_id: str
    role: str
    name: str | None = None
    email: str | None = None
    via: str = "session"  # session | api_key

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_session_token(open_id: str, settings: Settings, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    payload = {
        "sub": open_id,
        "iat": now,
        "exp": now + timedelta(days=settings.session_ttl_days),
    }
    return pyjwt.encode(payload, settings.session_secret, algorithm=SESSION_ALGORITHM)


def decode_session_token(token: str, settings: Settings) -> str:
    """Verify a session token and return its open_id.

    Raises:
        UnauthorizedError: Expired, tampered or malformed token
    """
    try:
        payload = pyjwt.decode(
            token,
            settings.session_secret,
            algorithms=[SESSION_ALGORITHM],
            options={"require": ["sub", "exp", "iat"]},
        )
    except pyjwt.ExpiredSignatureError:
        raise UnauthorizedError("Session expired")
    except pyjwt.InvalidTokenError as exc:
        logger.info("session_token_invalid", error=str(exc))
        raise UnauthorizedError("Invalid session")

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise UnauthorizedError("Invalid session")
    return sub


def _to_auth_user(user: User, via: str) -> AuthUser:
    return AuthUser(id=user.id, open_id=user.open_id, role=user.role, name=user.name, email=user.email, via=via)


async def _load_user(context: AppContext, **filters) -> User | None:
    async with context.session_factory() as session:
        result = await session.execute(select(User).filter_by(**filters))
        return result.scalar_one_or_none()


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    context: AppContext = Depends(get_context),
) -> AuthUser | None:
    """Resolve the caller if any credential is present and valid, else None.

    Raises:
        ForbiddenError: A valid API key whose owner lost API access
    """
    settings = context.settings
    token = request.cookies.get(settings.session_cookie_name)
    if not token and credentials is not None:
        token = credentials.credentials
    if not token:
        return None

    if token.startswith(API_KEY_PREFIX):
        user_id = await context.api_keys.authenticate(token)
        if user_id is None:
            return None
        user = await _load_user(context, id=user_id)
        via = "api_key"
    else:
        try:
            open_id = decode_session_token(token, settings)
        except UnauthorizedError:
            return None
        user = await _load_user(context, open_id=open_id)
        via = "session"

    if user is None:
        return None

    # Set user_id on request state for downstream use (error handlers, audit logging)
    request.state.user_id = user.id
    return _to_auth_user(user, via)


async def require_auth(user: AuthUser | None = Depends(get_optional_user)) -> AuthUser:
    """FastAPI dependency for protected routes.

    Usage::

        @router.get("/protected")
        async def protected(user: AuthUser = Depends(require_auth)):
            ...
    """
    if user is None:
        raise UnauthorizedError()
    return user


async def require_admin(user: AuthUser = Depends(require_auth)) -> AuthUser:
    """FastAPI dependency for operator routes. Only the admin role passes."""
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user
