"""SubscriptionService: plan, period and credit-allocation management.

Subscriptions are created lazily on first access and their billing period is
rolled forward on read: an active subscription past ``period_end`` gets a fresh
credit allocation, a cancelled one expires and drops to the free plan.
"""

from datetime import UTC, datetime

import stripe
import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codepolish.core.config import Settings
from codepolish.core.exceptions import BadRequestError, SubscriptionNotFoundError
from codepolish.db.models.polish import Polish
from codepolish.db.models.subscription import Subscription
from codepolish.domain.plans import as_utc, get_plan, next_period, plan_credits, upgraded_balance
from codepolish.schemas.subscription import (
    CheckoutResponse,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageResponse,
)

logger = structlog.get_logger(__name__)

CANCEL_MESSAGE = "Subscription cancelled. You will retain access until the end of your billing period."
REACTIVATE_MESSAGE = "Subscription reactivated successfully"


def _configure_stripe(settings: Settings) -> None:
    """Configure the stripe module with the secret key."""
    stripe.api_key = settings.stripe_secret_key


class SubscriptionService:
    """Plan lifecycle for one user's subscription row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings):
        self.session_factory = session_factory
        self.settings = settings

    # ── Lookup and lazy creation ────────────────────────────────────

    async def _find(self, session: AsyncSession, user_id: int) -> Subscription | None:
        result = await session.execute(select(Subscription).where(Subscription.user_id == user_id))
        return result.scalar_one_or_none()

    async def _roll_period(self, session: AsyncSession, sub: Subscription, now: datetime) -> Subscription:
        """Advance an elapsed billing period. Guarded on the old period_end so concurrent readers roll once."""
        old_end = sub.period_end
        if as_utc(old_end) > now:
            return sub

        period_start, period_end = next_period(now)
        if sub.status == SubscriptionStatus.CANCELLED.value:
            plan = SubscriptionPlan.FREE.value
            status = SubscriptionStatus.EXPIRED.value
        else:
            plan = sub.plan
            status = sub.status

        credits = plan_credits(plan)
        result = await session.execute(
            update(Subscription)
            .where(Subscription.id == sub.id, Subscription.period_end == old_end)
            .values(
                plan=plan,
                status=status,
                credits_remaining=credits,
                credits_total=credits,
                period_start=period_start,
                period_end=period_end,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        if result.rowcount == 1:
            logger.info(
                "subscription_period_rolled",
                user_id=sub.user_id,
                plan=plan,
                status=status,
                credits=credits,
            )

        await session.refresh(sub)
        return sub

    async def get_or_create(self, user_id: int, now: datetime | None = None) -> Subscription:
        """Return the user's subscription, creating a free one if missing."""
        now = now or datetime.now(UTC)

        async with self.session_factory() as session:
            sub = await self._find(session, user_id)
            if sub is not None:
                return await self._roll_period(session, sub, now)

            period_start, period_end = next_period(now)
            credits = plan_credits(SubscriptionPlan.FREE.value)
            sub = Subscription(
                user_id=user_id,
                plan=SubscriptionPlan.FREE.value,
                status=SubscriptionStatus.ACTIVE.value,
                credits_remaining=credits,
                credits_total=credits,
                period_start=period_start,
                period_end=period_end,
            )
            session.add(sub)
            try:
                await session.commit()
            except IntegrityError:
                # Concurrent request created it first, re-query
                await session.rollback()
                sub = await self._find(session, user_id)
                if sub is None:
                    raise
                return sub

            logger.info("subscription_created", user_id=user_id, plan=sub.plan)
            return sub

    async def get(self, user_id: int) -> Subscription:
        async with self.session_factory() as session:
            sub = await self._find(session, user_id)
        if sub is None:
            raise SubscriptionNotFoundError("No subscription found")
        return sub

    # ── Plan changes ────────────────────────────────────────────────

    async def upgrade_plan(
        self,
        user_id: int,
        plan: str,
        *,
        stripe_customer_id: str | None = None,
        stripe_subscription_id: str | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        """Move to plan, carrying remaining credits over on top of the new allocation."""
        now = now or datetime.now(UTC)
        get_plan(plan)
        await self.get_or_create(user_id, now)

        async with self.session_factory() as session:
            sub = await self._find(session, user_id)
            remaining, total = upgraded_balance(sub.credits_remaining, plan)
            period_start, period_end = next_period(now)

            sub.plan = plan
            sub.status = SubscriptionStatus.ACTIVE.value
            sub.credits_remaining = remaining
            sub.credits_total = total
            sub.period_start = period_start
            sub.period_end = period_end
            if stripe_customer_id:
                sub.stripe_customer_id = stripe_customer_id
            if stripe_subscription_id:
                sub.stripe_subscription_id = stripe_subscription_id
            await session.commit()

        logger.info("plan_upgraded", user_id=user_id, plan=plan, credits_remaining=remaining)
        return sub

    async def downgrade_to_free(self, user_id: int, now: datetime | None = None) -> Subscription:
        """Drop to the free plan immediately, clearing the Stripe subscription."""
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            sub = await self._find(session, user_id)
            if sub is None:
                raise SubscriptionNotFoundError("No subscription found")

            credits = plan_credits(SubscriptionPlan.FREE.value)
            period_start, period_end = next_period(now)
            sub.plan = SubscriptionPlan.FREE.value
            sub.status = SubscriptionStatus.ACTIVE.value
            sub.credits_total = credits
            sub.credits_remaining = min(sub.credits_remaining, credits)
            sub.period_start = period_start
            sub.period_end = period_end
            sub.stripe_subscription_id = None
            await session.commit()

        logger.info("plan_downgraded_to_free", user_id=user_id)
        return sub

    async def find_user_by_stripe_customer(self, customer_id: str) -> int | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Subscription.user_id).where(Subscription.stripe_customer_id == customer_id)
            )
            return result.scalar_one_or_none()

    async def cancel(self, user_id: int, reason: str | None = None) -> Subscription:
        """Cancel at period end. Access and credits remain until period_end."""
        sub = await self.get_or_create(user_id)
        if sub.plan == SubscriptionPlan.FREE.value:
            raise BadRequestError("Cannot cancel free plan")
        if sub.status != SubscriptionStatus.ACTIVE.value:
            raise BadRequestError("Subscription is not active")

        if sub.stripe_subscription_id and self.settings.stripe_secret_key:
            _configure_stripe(self.settings)
            await stripe.Subscription.modify_async(sub.stripe_subscription_id, cancel_at_period_end=True)

        async with self.session_factory() as session:
            sub = await self._find(session, user_id)
            sub.status = SubscriptionStatus.CANCELLED.value
            await session.commit()

        logger.info("subscription_cancelled", user_id=user_id, plan=sub.plan, reason=reason)
        return sub

    async def reactivate(self, user_id: int, now: datetime | None = None) -> Subscription:
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            sub = await self._find(session, user_id)
            if sub is None:
                raise SubscriptionNotFoundError("No subscription found")
            if sub.status != SubscriptionStatus.CANCELLED.value:
                raise BadRequestError("Subscription is not cancelled")
            if as_utc(sub.period_end) <= now:
                raise BadRequestError("Billing period has expired. Please create a new subscription.")

            stripe_subscription_id = sub.stripe_subscription_id
            sub.status = SubscriptionStatus.ACTIVE.value
            await session.commit()

        if stripe_subscription_id and self.settings.stripe_secret_key:
            _configure_stripe(self.settings)
            await stripe.Subscription.modify_async(stripe_subscription_id, cancel_at_period_end=False)

        logger.info("subscription_reactivated", user_id=user_id)
        return sub

    # ── Usage and checkout ──────────────────────────────────────────

    async def usage(self, user_id: int) -> UsageResponse:
        sub = await self.get_or_create(user_id)

        async with self.session_factory() as session:
            all_time = (
                await session.execute(select(func.count(Polish.id)).where(Polish.user_id == user_id))
            ).scalar_one()

        credits_used = sub.credits_total - sub.credits_remaining
        percentage = round(credits_used / sub.credits_total * 100) if sub.credits_total > 0 else 0
        return UsageResponse(
            credits_used=credits_used,
            credits_remaining=sub.credits_remaining,
            credits_total=sub.credits_total,
            polishes_this_period=credits_used,
            polishes_all_time=all_time,
            usage_percentage=percentage,
        )

    def _price_id(self, plan: str) -> str:
        return {
            SubscriptionPlan.PRO.value: self.settings.stripe_price_pro,
            SubscriptionPlan.TEAM.value: self.settings.stripe_price_team,
        }.get(plan, "")

    async def _get_or_create_stripe_customer(self, user_id: int, email: str | None) -> str:
        """Return the Stripe customer ID, creating one if needed."""
        sub = await self.get_or_create(user_id)
        if sub.stripe_customer_id:
            return sub.stripe_customer_id

        customer = await stripe.Customer.create_async(email=email, metadata={"user_id": str(user_id)})

        async with self.session_factory() as session:
            try:
                sub = await self._find(session, user_id)
                sub.stripe_customer_id = customer.id
                await session.commit()
            except IntegrityError:
                # Concurrent request already set stripe_customer_id, re-query to get it
                await session.rollback()
                sub = await self._find(session, user_id)
                return sub.stripe_customer_id

        return customer.id

    async def create_checkout_session(self, user_id: int, plan: SubscriptionPlan, email: str | None = None) -> CheckoutResponse:
        if plan == SubscriptionPlan.FREE:
            raise BadRequestError("Cannot upgrade to free plan via checkout")
        if plan == SubscriptionPlan.ENTERPRISE:
            raise BadRequestError("Contact sales for enterprise plan")

        price_id = self._price_id(plan.value)
        if not price_id or not self.settings.stripe_secret_key:
            return CheckoutResponse(
                checkout_url=None,
                message="Stripe integration pending. Contact support to upgrade.",
                requires_stripe_setup=True,
            )

        _configure_stripe(self.settings)
        customer_id = await self._get_or_create_stripe_customer(user_id, email)
        checkout_session = await stripe.checkout.Session.create_async(
            customer=customer_id,
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{self.settings.frontend_url}/dashboard?checkout_success=true",
            cancel_url=f"{self.settings.frontend_url}/pricing",
            metadata={"user_id": str(user_id), "plan": plan.value},
        )
        logger.info("checkout_session_created", user_id=user_id, plan=plan.value)
        return CheckoutResponse(checkout_url=checkout_session.url)
