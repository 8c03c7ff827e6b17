"""CreditLedgerEntry model: immutable audit trail of debits and refunds."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from codepolish.db.base import Base


class CreditLedgerEntry(Base):
    __tablename__ = "credit_ledger"
    # One debit and at most one refund per job attempt. NULL polish_id rows are not constrained.
    __table_args__ = (
        UniqueConstraint("polish_id", "attempt", "entry_type", name="uq_credit_ledger_polish_attempt_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    polish_id = Column(Integer, nullable=True, index=True)
    attempt = Column(Integer, nullable=True)

    entry_type = Column(String(16), nullable=False)  # debit | refund
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)
