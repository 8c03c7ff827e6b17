"""Polish Pydantic schemas for API requests, responses and engine payloads."""

import json
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

MAX_CODE_LENGTH = 500_000


class Framework(str, Enum):
    REACT = "react"
    VUE = "vue"
    SVELTE = "svelte"


class PolishStatus(str, Enum):
    """Polish job lifecycle states."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    POLISHING = "polishing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChargeState(str, Enum):
    """Whether the credit for the current attempt is held, returned, or was never taken."""

    UNCHARGED = "uncharged"
    CHARGED = "charged"
    REFUNDED = "refunded"


IssueType = Literal["security", "performance", "accessibility", "maintainability", "style"]
Severity = Literal["low", "medium", "high", "critical"]


class Issue(BaseModel):
    """A single finding surfaced during analysis."""

    type: IssueType
    severity: Severity
    message: str
    suggestion: str | None = None
    line: int | None = None


class ImprovementSummary(BaseModel):
    """Fixed counters describing what the transform step changed."""

    tokens_extracted: int = Field(default=0, ge=0)
    components_created: int = Field(default=0, ge=0)
    types_added: int = Field(default=0, ge=0)
    accessibility_fixes: int = Field(default=0, ge=0)
    security_fixes: int = Field(default=0, ge=0)
    performance_improvements: int = Field(default=0, ge=0)
    documentation_added: bool = False
    tests_generated: bool = False


# ── Requests ────────────────────────────────────────────────────────


class CreatePolishRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    framework: Framework
    original_code: str = Field(..., min_length=1, max_length=MAX_CODE_LENGTH)


class PolishIdRequest(BaseModel):
    polish_id: int = Field(..., gt=0)


# ── Responses ───────────────────────────────────────────────────────


class PolishResponse(BaseModel):
    id: int
    user_id: int
    name: str
    framework: Framework
    original_code: str
    polished_code: str | None
    quality_score_before: int | None
    quality_score_after: int | None
    issues_found: list[Issue] | None
    improvements_summary: ImprovementSummary | None
    status: PolishStatus
    error_message: str | None
    processing_time: int | None
    credits_used: int
    attempt: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, polish) -> "PolishResponse":
        """Build a response from a Polish row, decoding the JSON text columns."""
        issues = json.loads(polish.issues_found) if polish.issues_found else None
        summary = json.loads(polish.improvements_summary) if polish.improvements_summary else None
        return cls(
            id=polish.id,
            user_id=polish.user_id,
            name=polish.name,
            framework=polish.framework,
            original_code=polish.original_code,
            polished_code=polish.polished_code,
            quality_score_before=polish.quality_score_before,
            quality_score_after=polish.quality_score_after,
            issues_found=issues,
            improvements_summary=summary,
            status=polish.status,
            error_message=polish.error_message,
            processing_time=polish.processing_time,
            credits_used=polish.credits_used,
            attempt=polish.attempt,
            created_at=polish.created_at,
            updated_at=polish.updated_at,
        )


class PolishListResponse(BaseModel):
    items: list[PolishResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None


class RecoveryResponse(BaseModel):
    redispatched: int
