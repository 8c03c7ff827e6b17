"""Auth and API key Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class MeResponse(BaseModel):
    id: int
    open_id: str
    name: str | None
    email: str | None
    login_method: str | None
    role: str
    last_signed_in: datetime


class CreateApiKeyRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    expires_in_days: int | None = Field(default=None, ge=1, le=365)


class ApiKeyResponse(BaseModel):
    id: int
    name: str
    key_prefix: str
    last_used: datetime | None
    expires_at: datetime | None
    created_at: datetime


class CreatedApiKeyResponse(ApiKeyResponse):
    key: str  # shown once


class ApiKeyIdRequest(BaseModel):
    api_key_id: int = Field(..., gt=0)
