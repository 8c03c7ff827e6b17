"""Subscription and billing Pydantic schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SubscriptionPlan(str, Enum):
    FREE = "free"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CheckoutRequest(BaseModel):
    plan: SubscriptionPlan


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class CurrentSubscriptionResponse(BaseModel):
    id: int
    plan: SubscriptionPlan
    plan_name: str
    status: SubscriptionStatus
    credits_remaining: int
    credits_total: int
    period_start: datetime
    period_end: datetime
    features: list[str]
    price: int | None
    is_active: bool
    will_renew: bool


class PlanResponse(BaseModel):
    id: SubscriptionPlan
    name: str
    price: int | None
    credits: int  # -1 = unlimited
    features: list[str]
    popular: bool


class UsageResponse(BaseModel):
    credits_used: int
    credits_remaining: int
    credits_total: int
    polishes_this_period: int
    polishes_all_time: int
    usage_percentage: int


class CheckoutResponse(BaseModel):
    checkout_url: str | None
    message: str | None = None
    requires_stripe_setup: bool = False


class CancelResponse(BaseModel):
    success: bool = True
    message: str
    access_until: datetime


class ReactivateResponse(BaseModel):
    success: bool = True
    message: str
