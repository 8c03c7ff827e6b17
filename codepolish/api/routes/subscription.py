"""Subscription routes: current plan, catalogue, usage, checkout, cancel and reactivate."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from codepolish.api.deps import rate_limit
from codepolish.core.auth import AuthUser, require_auth
from codepolish.core.context import AppContext, get_context
from codepolish.domain.plans import PLAN_TIERS, as_utc, get_plan
from codepolish.schemas.subscription import (
    CancelRequest,
    CancelResponse,
    CheckoutRequest,
    CheckoutResponse,
    CurrentSubscriptionResponse,
    PlanResponse,
    ReactivateResponse,
    SubscriptionStatus,
    UsageResponse,
)
from codepolish.services.subscription_service import CANCEL_MESSAGE, REACTIVATE_MESSAGE

router = APIRouter()


@router.get("/current", response_model=CurrentSubscriptionResponse, dependencies=[Depends(rate_limit("query"))])
async def current_subscription(
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    sub = await context.subscriptions.get_or_create(user.id)
    plan = get_plan(sub.plan)
    is_active = sub.status == SubscriptionStatus.ACTIVE.value and as_utc(sub.period_end) > datetime.now(UTC)
    return CurrentSubscriptionResponse(
        id=sub.id,
        plan=sub.plan,
        plan_name=plan.name,
        status=sub.status,
        credits_remaining=sub.credits_remaining,
        credits_total=sub.credits_total,
        period_start=sub.period_start,
        period_end=sub.period_end,
        features=list(plan.features),
        price=plan.price,
        is_active=is_active,
        will_renew=sub.status == SubscriptionStatus.ACTIVE.value,
    )


@router.get("/plans", response_model=list[PlanResponse], dependencies=[Depends(rate_limit("query"))])
async def list_plans():
    """Public plan catalogue."""
    return [
        PlanResponse(
            id=tier.slug,
            name=tier.name,
            price=tier.price,
            credits=tier.credits,
            features=list(tier.features),
            popular=tier.slug == "pro",
        )
        for tier in PLAN_TIERS.values()
    ]


@router.get("/usage", response_model=UsageResponse, dependencies=[Depends(rate_limit("query"))])
async def usage(
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    return await context.subscriptions.usage(user.id)


@router.post(
    "/create-checkout-session",
    response_model=CheckoutResponse,
    dependencies=[Depends(rate_limit("mutation"))],
)
async def create_checkout_session(
    body: CheckoutRequest,
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    """Start a Stripe Checkout for pro or team.

    Raises:
        BadRequestError(400): free or enterprise plan requested
    """
    return await context.subscriptions.create_checkout_session(user.id, body.plan, email=user.email)


@router.post("/cancel", response_model=CancelResponse, dependencies=[Depends(rate_limit("mutation"))])
async def cancel_subscription(
    body: CancelRequest | None = None,
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    sub = await context.subscriptions.cancel(user.id, reason=body.reason if body else None)
    return CancelResponse(message=CANCEL_MESSAGE, access_until=sub.period_end)


@router.post("/reactivate", response_model=ReactivateResponse, dependencies=[Depends(rate_limit("mutation"))])
async def reactivate_subscription(
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    await context.subscriptions.reactivate(user.id)
    return ReactivateResponse(message=REACTIVATE_MESSAGE)
