"""Re-export all models so Base.metadata sees them."""

from codepolish.db.models.api_key import ApiKey
from codepolish.db.models.credit_ledger import CreditLedgerEntry
from codepolish.db.models.generated_test import GeneratedTest
from codepolish.db.models.polish import Polish
from codepolish.db.models.stripe_event import StripeWebhookEvent
from codepolish.db.models.subscription import Subscription
from codepolish.db.models.team import Team, TeamMember
from codepolish.db.models.user import User
from codepolish.db.models.user_preference import UserPreference

__all__ = [
    "ApiKey",
    "CreditLedgerEntry",
    "GeneratedTest",
    "Polish",
    "StripeWebhookEvent",
    "Subscription",
    "Team",
    "TeamMember",
    "User",
    "UserPreference",
]
