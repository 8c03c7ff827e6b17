"""StripeWebhookEvent model for webhook idempotency."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String

from codepolish.db.base import Base


class StripeWebhookEvent(Base):
    """Processed Stripe event ids. A duplicate insert means the event was already handled."""

    __tablename__ = "stripe_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=True)
    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
