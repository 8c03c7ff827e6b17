"""Plan catalogue and billing-period arithmetic.

Pure domain functions, no DB access.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

UNLIMITED = -1
UNLIMITED_CREDITS = 999_999
PERIOD_DAYS = 30


@dataclass(frozen=True)
class PlanTier:
    slug: str
    name: str
    price: int | None  # USD per month, None = custom pricing
    credits: int  # per period, -1 = unlimited
    features: tuple[str, ...]


PLAN_TIERS: dict[str, PlanTier] = {
    "free": PlanTier(
        slug="free",
        name="Free",
        price=0,
        credits=5,
        features=(
            "5 code polishes per month",
            "Basic refactoring",
            "Quality score analysis",
            "Download as ZIP",
        ),
    ),
    "pro": PlanTier(
        slug="pro",
        name="Pro",
        price=19,
        credits=100,
        features=(
            "100 code polishes per month",
            "All refactoring features",
            "Test generation",
            "Documentation generation",
            "GitHub integration",
            "Priority processing",
        ),
    ),
    "team": PlanTier(
        slug="team",
        name="Team",
        price=49,
        credits=500,
        features=(
            "500 code polishes per month",
            "All Pro features",
            "Team workspace",
            "Shared component library",
            "Custom refactoring rules",
            "API access",
        ),
    ),
    "enterprise": PlanTier(
        slug="enterprise",
        name="Enterprise",
        price=None,
        credits=UNLIMITED,
        features=(
            "Unlimited polishes",
            "On-premise deployment",
            "Custom integrations",
            "Dedicated support",
            "SLA guarantees",
        ),
    ),
}

# Plans that include programmatic API access
API_ACCESS_PLANS = frozenset({"team", "enterprise"})


def get_plan(slug: str) -> PlanTier:
    """Return the plan tier for a slug.

    Raises:
        KeyError: If the slug is not a known plan
    """
    return PLAN_TIERS[slug]


def plan_credits(slug: str) -> int:
    """Credits granted per period, with unlimited expressed as a large finite number."""
    credits = get_plan(slug).credits
    return UNLIMITED_CREDITS if credits == UNLIMITED else credits


def upgraded_balance(credits_remaining: int, new_plan: str) -> tuple[int, int]:
    """Compute (credits_remaining, credits_total) after moving to new_plan.

    Remaining credits carry over on top of the new allocation, capped at the new
    total so the balance never exceeds it.
    """
    total = plan_credits(new_plan)
    if get_plan(new_plan).credits == UNLIMITED:
        return total, total
    return min(credits_remaining + total, total), total


def next_period(now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return (period_start, period_end) for a billing period starting now."""
    now = now or datetime.now(UTC)
    return now, now + timedelta(days=PERIOD_DAYS)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from drivers that drop the offset."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
