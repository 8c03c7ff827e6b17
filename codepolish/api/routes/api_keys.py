"""API key management. Issuing keys requires the team or enterprise plan."""

from fastapi import APIRouter, Depends

from codepolish.api.deps import rate_limit
from codepolish.core.auth import AuthUser, require_auth
from codepolish.core.context import AppContext, get_context
from codepolish.schemas.auth import (
    ApiKeyIdRequest,
    ApiKeyResponse,
    CreateApiKeyRequest,
    CreatedApiKeyResponse,
)
from codepolish.schemas.polish import SuccessResponse

router = APIRouter()


def _to_response(api_key) -> dict:
    return {
        "id": api_key.id,
        "name": api_key.name,
        "key_prefix": api_key.key_prefix,
        "last_used": api_key.last_used,
        "expires_at": api_key.expires_at,
        "created_at": api_key.created_at,
    }


@router.post("/create", response_model=CreatedApiKeyResponse, dependencies=[Depends(rate_limit("mutation"))])
async def create_api_key(
    body: CreateApiKeyRequest,
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    """Issue a key. The plaintext is only ever returned here.

    Raises:
        ForbiddenError(403): Plan does not include API access
    """
    api_key, key = await context.api_keys.create(user.id, body.name, body.expires_in_days)
    return CreatedApiKeyResponse(key=key, **_to_response(api_key))


@router.get("/list", response_model=list[ApiKeyResponse], dependencies=[Depends(rate_limit("query"))])
async def list_api_keys(
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    return [ApiKeyResponse(**_to_response(k)) for k in await context.api_keys.list_keys(user.id)]


@router.post("/revoke", response_model=SuccessResponse, dependencies=[Depends(rate_limit("mutation"))])
async def revoke_api_key(
    body: ApiKeyIdRequest,
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    await context.api_keys.revoke(user.id, body.api_key_id)
    return SuccessResponse()
