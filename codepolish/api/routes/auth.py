"""Auth routes: current user, logout and the OAuth callback."""

import httpx
import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse

from codepolish.api.deps import rate_limit
from codepolish.core.auth import AuthUser, create_session_token, require_auth
from codepolish.core.config import Settings
from codepolish.core.context import AppContext, get_context
from codepolish.core.exceptions import BadRequestError, UnauthorizedError
from codepolish.core.provisioning import provision_user_on_login
from codepolish.db.models.user import User
from codepolish.schemas.auth import MeResponse
from codepolish.schemas.polish import SuccessResponse

logger = structlog.get_logger(__name__)

router = APIRouter()

OAUTH_TIMEOUT_SECONDS = 10.0


def _cookie_options(settings: Settings) -> dict:
    return {
        "httponly": True,
        "secure": not settings.debug,
        "samesite": "lax",
        "path": "/",
    }


async def _exchange_code(settings: Settings, code: str) -> dict:
    """Trade an authorization code for the provider's userinfo claims.

    Raises:
        UnauthorizedError: Provider rejected the code or returned no subject
    """
    async with httpx.AsyncClient(timeout=OAUTH_TIMEOUT_SECONDS) as client:
        try:
            token_response = await client.post(
                settings.oauth_token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "client_id": settings.oauth_client_id,
                    "client_secret": settings.oauth_client_secret,
                    "redirect_uri": settings.oauth_redirect_uri,
                },
            )
            token_response.raise_for_status()
            access_token = token_response.json().get("access_token")
            if not access_token:
                raise UnauthorizedError("OAuth provider returned no access token")

            userinfo_response = await client.get(
                settings.oauth_userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            userinfo_response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("oauth_exchange_failed", error=str(exc), error_type=type(exc).__name__)
            raise UnauthorizedError("OAuth login failed")

    profile = userinfo_response.json()
    if not profile.get("openId") and not profile.get("sub"):
        raise UnauthorizedError("OAuth provider returned no subject")
    return profile


@router.get("/auth/me", response_model=MeResponse, dependencies=[Depends(rate_limit("query"))])
async def me(
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    async with context.session_factory() as session:
        record = await session.get(User, user.id)
    if record is None:
        raise UnauthorizedError()
    return MeResponse(
        id=record.id,
        open_id=record.open_id,
        name=record.name,
        email=record.email,
        login_method=record.login_method,
        role=record.role,
        last_signed_in=record.last_signed_in,
    )


@router.post("/auth/logout", response_model=SuccessResponse, dependencies=[Depends(rate_limit("auth"))])
async def logout(context: AppContext = Depends(get_context)):
    """Clear the session cookie. Safe to call when not logged in."""
    settings = context.settings
    response = JSONResponse(content=SuccessResponse().model_dump())
    response.delete_cookie(settings.session_cookie_name, **_cookie_options(settings))
    return response


@router.get("/oauth/callback", dependencies=[Depends(rate_limit("auth"))])
async def oauth_callback(
    code: str = Query(..., min_length=1),
    context: AppContext = Depends(get_context),
):
    """Complete the OAuth login: upsert the user, set the session cookie, redirect home."""
    settings = context.settings
    if not settings.oauth_token_url or not settings.oauth_userinfo_url:
        raise BadRequestError("OAuth login is not configured")

    profile = await _exchange_code(settings, code)
    open_id = profile.get("openId") or profile["sub"]

    user = await provision_user_on_login(
        context.session_factory,
        open_id,
        profile,
        owner_open_id=settings.owner_open_id,
    )
    logger.info("user_logged_in", user_id=user.id)

    response = RedirectResponse(url=settings.frontend_url, status_code=302)
    response.set_cookie(
        settings.session_cookie_name,
        create_session_token(open_id, settings),
        max_age=settings.session_ttl_days * 24 * 60 * 60,
        **_cookie_options(settings),
    )
    return response
