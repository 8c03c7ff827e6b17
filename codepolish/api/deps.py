"""Shared route dependencies."""

from collections.abc import Callable

from fastapi import Depends, Request

from codepolish.core.auth import AuthUser, get_optional_user
from codepolish.core.context import AppContext, get_context


def _client_identifier(request: Request, trusted_hops: int) -> str:
    """Client address for anonymous rate-limit keys.

    X-Forwarded-For is only read behind ``trusted_hops`` proxies, and then the
    entry appended by the outermost trusted proxy is used. Entries further
    left are client-supplied.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if trusted_hops > 0 and forwarded:
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        if len(hops) >= trusted_hops:
            return hops[-trusted_hops]
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


def rate_limit(kind: str) -> Callable:
    """Return a FastAPI dependency that counts the request against a rate class.

    Authenticated callers are keyed by user id, anonymous ones by client address.
    """

    async def _dependency(
        request: Request,
        user: AuthUser | None = Depends(get_optional_user),
        context: AppContext = Depends(get_context),
    ) -> None:
        if user is not None:
            identity = f"user:{user.id}"
        else:
            identity = f"ip:{_client_identifier(request, context.settings.trusted_proxy_hops)}"
        context.rate_limiter.check(kind, identity, request.url.path)

    return _dependency
