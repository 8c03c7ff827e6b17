"""UserPreference model: per-user defaults and UI settings."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from codepolish.db.base import Base


class UserPreference(Base):
    __tablename__ = "user_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)

    default_framework = Column(String(32), nullable=False, default="react")
    default_preset = Column(String(32), nullable=False, default="standard")
    custom_rules = Column(Text, nullable=True)  # JSON
    theme = Column(String(16), nullable=False, default="system")
    email_notifications = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))
