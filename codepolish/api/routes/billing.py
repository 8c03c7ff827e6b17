"""Stripe webhook: signature-verified, idempotent by event id."""

import stripe
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from codepolish.core.context import AppContext, get_context
from codepolish.db.models.stripe_event import StripeWebhookEvent
from codepolish.domain.plans import PLAN_TIERS
from codepolish.services.subscription_service import SubscriptionService

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _claim_event(context: AppContext, event_id: str, event_type: str) -> bool:
    """Return True if event is new (claimed). False if duplicate."""
    async with context.session_factory() as session:
        try:
            session.add(StripeWebhookEvent(event_id=event_id, event_type=event_type))
            await session.commit()
            return True
        except IntegrityError:
            await session.rollback()
            return False


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, context: AppContext = Depends(get_context)):
    """Handle Stripe webhook events with signature verification."""
    settings = context.settings
    if not settings.stripe_webhook_secret:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(status_code=503, detail="Stripe webhook endpoint is not configured")

    body = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    try:
        event = stripe.Webhook.construct_event(body, sig_header, settings.stripe_webhook_secret)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    event_type = event["type"]
    if not await _claim_event(context, event["id"], event_type):
        logger.info("stripe_duplicate_event_ignored", event_id=event["id"])
        return {"status": "ok"}

    data = event["data"]["object"]
    logger.info("stripe_webhook_received", event_type=event_type)

    subscriptions = context.subscriptions
    if event_type == "checkout.session.completed":
        await _handle_checkout_completed(subscriptions, data)
    elif event_type == "customer.subscription.deleted":
        await _handle_subscription_deleted(subscriptions, data)

    return {"status": "ok"}


async def _handle_checkout_completed(subscriptions: SubscriptionService, session_data: dict) -> None:
    """Upgrade the plan after a successful checkout."""
    metadata = session_data.get("metadata") or {}
    user_id = metadata.get("user_id")
    plan = metadata.get("plan")

    if not user_id or plan not in PLAN_TIERS:
        logger.warning("checkout_completed_missing_metadata", event_id=session_data.get("id"))
        return

    await subscriptions.upgrade_plan(
        int(user_id),
        plan,
        stripe_customer_id=session_data.get("customer"),
        stripe_subscription_id=session_data.get("subscription"),
    )


async def _handle_subscription_deleted(subscriptions: SubscriptionService, subscription: dict) -> None:
    """Downgrade to free when the Stripe subscription ends."""
    customer_id = subscription.get("customer")
    if not customer_id:
        return

    user_id = await subscriptions.find_user_by_stripe_customer(customer_id)
    if user_id is None:
        logger.warning("subscription_deleted_unknown_customer", customer_id=customer_id)
        return

    await subscriptions.downgrade_to_free(user_id)
