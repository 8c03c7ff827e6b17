"""Subscription model: one plan and credit balance per user."""

from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from codepolish.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "credits_remaining >= 0 AND credits_remaining <= credits_total",
            name="ck_subscriptions_credit_bounds",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)

    plan = Column(String(32), nullable=False, default="free")  # free, pro, team, enterprise
    status = Column(String(32), nullable=False, default="active")  # active, cancelled, expired

    credits_remaining = Column(Integer, nullable=False, default=5)
    credits_total = Column(Integer, nullable=False, default=5)

    # Stripe
    stripe_customer_id = Column(String(255), unique=True, nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)

    period_start = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    period_end = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))
