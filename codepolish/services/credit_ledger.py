"""Credit ledger: atomic debit and refund against a subscription balance.

Both operations are a single conditional UPDATE evaluated by the database, so
concurrent callers can never push ``credits_remaining`` below zero or above
``credits_total``. They run inside the caller's session and do not commit;
callers compose them with other writes (job creation, retry, refund claim) in
one transaction.
"""

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from codepolish.core.exceptions import (
    InsufficientCreditsError,
    InvalidAmountError,
    SubscriptionNotFoundError,
)
from codepolish.db.models.credit_ledger import CreditLedgerEntry
from codepolish.db.models.subscription import Subscription

logger = structlog.get_logger(__name__)


def _validate_amount(amount: int) -> None:
    if amount <= 0:
        raise InvalidAmountError(amount)


async def _subscription_exists(session: AsyncSession, user_id: int) -> bool:
    result = await session.execute(select(Subscription.id).where(Subscription.user_id == user_id))
    return result.scalar_one_or_none() is not None


async def _current_balance(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(
        select(Subscription.credits_remaining).where(Subscription.user_id == user_id)
    )
    return result.scalar_one()


async def _record(
    session: AsyncSession,
    *,
    user_id: int,
    entry_type: str,
    amount: int,
    balance_after: int,
    polish_id: int | None,
    attempt: int | None,
) -> None:
    session.add(
        CreditLedgerEntry(
            user_id=user_id,
            polish_id=polish_id,
            attempt=attempt,
            entry_type=entry_type,
            amount=amount,
            balance_after=balance_after,
        )
    )
    await session.flush()


async def debit_credits(
    session: AsyncSession,
    user_id: int,
    amount: int,
    *,
    polish_id: int | None = None,
    attempt: int | None = None,
) -> int:
    """Atomically take ``amount`` credits from the user's subscription.

    Args:
        session: Open session; the caller owns the transaction
        user_id: Subscription owner
        amount: Credits to take, must be positive
        polish_id: Job this debit pays for, recorded on the ledger
        attempt: Job attempt number, recorded on the ledger

    Returns:
        Balance after the debit

    Raises:
        InvalidAmountError: amount <= 0
        InsufficientCreditsError: Subscription exists but holds fewer than amount
        SubscriptionNotFoundError: User has no subscription row
    """
    _validate_amount(amount)

    result = await session.execute(
        update(Subscription)
        .where(Subscription.user_id == user_id, Subscription.credits_remaining >= amount)
        .values(credits_remaining=Subscription.credits_remaining - amount)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        if await _subscription_exists(session, user_id):
            logger.info("credit_debit_rejected", user_id=user_id, amount=amount, reason="insufficient")
            raise InsufficientCreditsError()
        raise SubscriptionNotFoundError()

    balance = await _current_balance(session, user_id)
    await _record(
        session,
        user_id=user_id,
        entry_type="debit",
        amount=amount,
        balance_after=balance,
        polish_id=polish_id,
        attempt=attempt,
    )
    logger.info("credit_debited", user_id=user_id, amount=amount, balance_after=balance, polish_id=polish_id)
    return balance


async def refund_credits(
    session: AsyncSession,
    user_id: int,
    amount: int,
    *,
    polish_id: int | None = None,
    attempt: int | None = None,
) -> int:
    """Atomically return ``amount`` credits, clamped to ``credits_total``.

    Returns:
        Balance after the refund

    Raises:
        InvalidAmountError: amount <= 0
        SubscriptionNotFoundError: User has no subscription row
    """
    _validate_amount(amount)

    refunded = Subscription.credits_remaining + amount
    result = await session.execute(
        update(Subscription)
        .where(Subscription.user_id == user_id)
        .values(
            credits_remaining=case(
                (refunded > Subscription.credits_total, Subscription.credits_total),
                else_=refunded,
            )
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        raise SubscriptionNotFoundError()

    balance = await _current_balance(session, user_id)
    await _record(
        session,
        user_id=user_id,
        entry_type="refund",
        amount=amount,
        balance_after=balance,
        polish_id=polish_id,
        attempt=attempt,
    )
    logger.info("credit_refunded", user_id=user_id, amount=amount, balance_after=balance, polish_id=polish_id)
    return balance
