"""User model: identity record created on first OAuth login."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from codepolish.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    open_id = Column(String(64), unique=True, nullable=False, index=True)  # OAuth subject

    name = Column(Text, nullable=True)
    email = Column(String(320), nullable=True)
    login_method = Column(String(64), nullable=True)
    role = Column(String(16), nullable=False, default="user")  # user | admin

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))
    last_signed_in = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
