"""Polish model: one code polish job and its results."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from codepolish.db.base import Base


class Polish(Base):
    __tablename__ = "polishes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    framework = Column(String(32), nullable=False)  # react, vue, svelte
    original_code = Column(Text, nullable=False)

    # Results: written only by the state machine
    polished_code = Column(Text, nullable=True)
    quality_score_before = Column(Integer, nullable=True)
    quality_score_after = Column(Integer, nullable=True)
    issues_found = Column(Text, nullable=True)  # JSON array of issues
    improvements_summary = Column(Text, nullable=True)  # JSON object

    status = Column(String(32), nullable=False, default="pending", index=True)  # PolishStatus values
    error_message = Column(Text, nullable=True)
    processing_time = Column(Integer, nullable=True)  # milliseconds

    # Credit accounting
    credits_used = Column(Integer, nullable=False, default=1)
    charge_state = Column(String(16), nullable=False, default="uncharged")  # uncharged | charged | refunded
    attempt = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))
