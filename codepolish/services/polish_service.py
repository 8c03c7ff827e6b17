"""PolishService: create, read, list, delete and retry polish jobs.

Job creation and retry each run the status change and the credit debit in a
single transaction, so a job is never pending without its credit held and a
failed debit leaves no trace.
"""

from datetime import UTC, datetime

import structlog
from redis.asyncio import Redis
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codepolish.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from codepolish.db.models.generated_test import GeneratedTest
from codepolish.db.models.polish import Polish
from codepolish.polish.events import publish_status
from codepolish.schemas.polish import ChargeState, CreatePolishRequest, PolishStatus
from codepolish.services.credit_ledger import debit_credits
from codepolish.services.subscription_service import SubscriptionService

logger = structlog.get_logger(__name__)

POLISH_COST = 1


def _check_owner(polish: Polish | None, user_id: int) -> Polish:
    if polish is None:
        raise NotFoundError("Polish not found")
    if polish.user_id != user_id:
        raise ForbiddenError("Access denied")
    return polish


class PolishService:
    """User-facing operations on polish jobs. Processing itself lives in PolishPipeline."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        subscriptions: SubscriptionService,
        redis: Redis | None = None,
    ):
        self.session_factory = session_factory
        self.subscriptions = subscriptions
        self.redis = redis

    async def create(self, user_id: int, request: CreatePolishRequest) -> Polish:
        """Insert a pending job and debit its credit atomically.

        Raises:
            InsufficientCreditsError: No credit left; no job is created
        """
        await self.subscriptions.get_or_create(user_id)

        async with self.session_factory() as session:
            polish = Polish(
                user_id=user_id,
                name=request.name,
                framework=request.framework.value,
                original_code=request.original_code,
                status=PolishStatus.PENDING.value,
                credits_used=POLISH_COST,
                charge_state=ChargeState.CHARGED.value,
                attempt=1,
            )
            session.add(polish)
            try:
                await session.flush()
                await debit_credits(session, user_id, POLISH_COST, polish_id=polish.id, attempt=1)
            except Exception:
                await session.rollback()
                raise
            await session.commit()

        logger.info("polish_created", polish_id=polish.id, user_id=user_id, framework=polish.framework)
        await publish_status(self.redis, polish.id, PolishStatus.PENDING.value)
        return polish

    async def get(self, user_id: int, polish_id: int) -> Polish:
        """Raises NotFoundError for unknown ids, ForbiddenError for other users' jobs."""
        async with self.session_factory() as session:
            return _check_owner(await session.get(Polish, polish_id), user_id)

    async def list_polishes(
        self,
        user_id: int,
        *,
        limit: int = 50,
        offset: int = 0,
        status: PolishStatus | None = None,
    ) -> tuple[list[Polish], int]:
        """Newest-first page of the user's jobs plus the total matching count."""
        conditions = [Polish.user_id == user_id]
        if status is not None:
            conditions.append(Polish.status == status.value)

        async with self.session_factory() as session:
            total = (await session.execute(select(func.count(Polish.id)).where(*conditions))).scalar_one()
            result = await session.execute(
                select(Polish)
                .where(*conditions)
                .order_by(Polish.created_at.desc(), Polish.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all()), total

    async def delete(self, user_id: int, polish_id: int) -> None:
        async with self.session_factory() as session:
            _check_owner(await session.get(Polish, polish_id), user_id)
            await session.execute(delete(GeneratedTest).where(GeneratedTest.polish_id == polish_id))
            await session.execute(delete(Polish).where(Polish.id == polish_id, Polish.user_id == user_id))
            await session.commit()

        logger.info("polish_deleted", polish_id=polish_id, user_id=user_id)

    async def retry(self, user_id: int, polish_id: int) -> Polish:
        """Put a failed job back to pending for a new attempt.

        Clears the previous results, bumps ``attempt`` and debits one credit in
        the same transaction. A failed job whose credit was never returned keeps
        that credit for the new attempt instead of paying twice.

        Raises:
            BadRequestError: Job is not failed
            InsufficientCreditsError: No credit left; job stays failed
        """
        await self.subscriptions.get_or_create(user_id)

        async with self.session_factory() as session:
            polish = _check_owner(await session.get(Polish, polish_id), user_id)
            if polish.status != PolishStatus.FAILED.value:
                raise BadRequestError("Only failed polishes can be retried")

            observed_charge = polish.charge_state
            new_attempt = polish.attempt + 1
            result = await session.execute(
                update(Polish)
                .where(
                    Polish.id == polish_id,
                    Polish.status == PolishStatus.FAILED.value,
                    Polish.charge_state == observed_charge,
                )
                .values(
                    status=PolishStatus.PENDING.value,
                    attempt=new_attempt,
                    charge_state=ChargeState.CHARGED.value,
                    polished_code=None,
                    quality_score_before=None,
                    quality_score_after=None,
                    issues_found=None,
                    improvements_summary=None,
                    error_message=None,
                    processing_time=None,
                    updated_at=datetime.now(UTC),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise BadRequestError("Polish is already being retried")

            if observed_charge != ChargeState.CHARGED.value:
                try:
                    await debit_credits(session, user_id, polish.credits_used, polish_id=polish_id, attempt=new_attempt)
                except Exception:
                    await session.rollback()
                    raise

            await session.commit()
            await session.refresh(polish)

        logger.info("polish_retried", polish_id=polish_id, user_id=user_id, attempt=new_attempt)
        await publish_status(self.redis, polish_id, PolishStatus.PENDING.value)
        return polish
