"""Polish job state machine backed by compare-and-set UPDATEs.

Every transition is ``UPDATE polishes SET ... WHERE id = :id AND status =
:expected``; a zero rowcount means another writer moved the job first and the
transition is reported as lost rather than applied. Result columns are written
in the same statement as the status flip that makes them visible.
"""

import json
from datetime import UTC, datetime

import structlog
from redis.asyncio import Redis
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codepolish.db.models.polish import Polish
from codepolish.polish.events import PolishEventType, publish_event, publish_status
from codepolish.schemas.polish import ChargeState, ImprovementSummary, Issue, PolishStatus
from codepolish.services.credit_ledger import refund_credits

logger = structlog.get_logger(__name__)


class PolishStateMachine:
    """Validated status transitions for polish jobs."""

    # Valid state transitions
    TRANSITIONS = {
        PolishStatus.PENDING: [PolishStatus.ANALYZING, PolishStatus.FAILED],
        PolishStatus.ANALYZING: [PolishStatus.POLISHING, PolishStatus.FAILED],
        PolishStatus.POLISHING: [PolishStatus.COMPLETED, PolishStatus.FAILED],
        PolishStatus.COMPLETED: [],  # Terminal state
        PolishStatus.FAILED: [PolishStatus.PENDING],  # Only via retry
    }

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], redis: Redis | None = None):
        self.session_factory = session_factory
        self.redis = redis

    @classmethod
    def can_transition(cls, current: PolishStatus, new: PolishStatus) -> bool:
        return new in cls.TRANSITIONS.get(current, [])

    async def _cas(
        self,
        session: AsyncSession,
        polish_id: int,
        expected: PolishStatus,
        new: PolishStatus,
        *conditions,
        **values,
    ) -> bool:
        if not self.can_transition(expected, new):
            raise ValueError(f"Invalid polish transition {expected.value} -> {new.value}")

        result = await session.execute(
            update(Polish)
            .where(Polish.id == polish_id, Polish.status == expected.value, *conditions)
            .values(status=new.value, updated_at=datetime.now(UTC), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition(
        self,
        polish_id: int,
        expected: PolishStatus,
        new: PolishStatus,
        *conditions,
        message: str = "",
        **values,
    ) -> bool:
        """Apply one transition in its own transaction. Publishes an event on success.

        Args:
            polish_id: Polish primary key
            expected: Status the row must currently hold
            new: Target status
            *conditions: Extra WHERE clauses the row must satisfy
            message: Optional status message for the event
            **values: Extra columns written in the same UPDATE

        Returns:
            True if this caller won the transition, False otherwise

        Raises:
            ValueError: expected -> new is not an allowed edge
        """
        async with self.session_factory() as session:
            won = await self._cas(session, polish_id, expected, new, *conditions, **values)
            if not won:
                await session.rollback()
                logger.info(
                    "polish_transition_lost",
                    polish_id=polish_id,
                    expected=expected.value,
                    target=new.value,
                )
                return False
            await session.commit()

        logger.info("polish_transitioned", polish_id=polish_id, from_status=expected.value, to_status=new.value)
        await publish_status(self.redis, polish_id, new.value, message)
        return True

    async def start_analysis(self, polish_id: int) -> bool:
        """pending -> analyzing, only while the attempt's credit is held."""
        return await self.transition(
            polish_id,
            PolishStatus.PENDING,
            PolishStatus.ANALYZING,
            Polish.charge_state == ChargeState.CHARGED.value,
        )

    async def record_analysis(self, polish_id: int, score: int, issues: list[Issue]) -> bool:
        """analyzing -> polishing, persisting the before-score and issues."""
        return await self.transition(
            polish_id,
            PolishStatus.ANALYZING,
            PolishStatus.POLISHING,
            quality_score_before=score,
            issues_found=json.dumps([issue.model_dump() for issue in issues]),
        )

    async def complete(
        self,
        polish_id: int,
        *,
        polished_code: str,
        score_after: int,
        summary: ImprovementSummary,
        processing_time: int,
    ) -> bool:
        """polishing -> completed, writing every result column atomically."""
        return await self.transition(
            polish_id,
            PolishStatus.POLISHING,
            PolishStatus.COMPLETED,
            polished_code=polished_code,
            quality_score_after=score_after,
            improvements_summary=summary.model_dump_json(),
            processing_time=processing_time,
            error_message=None,
        )

    async def fail(self, polish_id: int, error_message: str, processing_time: int | None = None) -> bool:
        """Move a non-terminal job to failed, then return its credit.

        The status write and the refund are separate transactions; the refund
        runs even when another writer already failed the job, and is guarded
        so it happens at most once per attempt.

        Returns:
            True if this caller moved the job to failed
        """
        error_message = error_message.strip() or "Polish failed"

        failed = False
        for expected in (PolishStatus.PENDING, PolishStatus.ANALYZING, PolishStatus.POLISHING):
            if await self.transition(
                polish_id,
                expected,
                PolishStatus.FAILED,
                message=error_message,
                error_message=error_message,
                processing_time=processing_time,
            ):
                failed = True
                break

        if failed:
            logger.warning("polish_failed", polish_id=polish_id, error=error_message)

        await self.refund_if_charged(polish_id)
        return failed

    async def refund_if_charged(self, polish_id: int) -> bool:
        """Claim charged -> refunded on a failed job and return the credit.

        The claim and the ledger refund commit together. If the refund raises,
        the claim rolls back with it, the charge stays ``charged`` and the error
        is logged rather than propagated.

        Returns:
            True if a credit was returned by this call
        """
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    update(Polish)
                    .where(
                        Polish.id == polish_id,
                        Polish.status == PolishStatus.FAILED.value,
                        Polish.charge_state == ChargeState.CHARGED.value,
                    )
                    .values(charge_state=ChargeState.REFUNDED.value, updated_at=datetime.now(UTC))
                    .returning(Polish.user_id, Polish.credits_used, Polish.attempt)
                    .execution_options(synchronize_session=False)
                )
                claimed = result.one_or_none()
                if claimed is None:
                    await session.rollback()
                    return False

                user_id, credits_used, attempt = claimed
                balance = await refund_credits(
                    session, user_id, credits_used, polish_id=polish_id, attempt=attempt
                )
                await session.commit()
        except Exception as e:
            logger.error(
                "credit_refund_failed",
                polish_id=polish_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False

        await publish_event(
            self.redis,
            polish_id,
            {"type": PolishEventType.CREDIT_REFUNDED, "amount": credits_used, "balance": balance},
        )
        return True
