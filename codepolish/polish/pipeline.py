"""PolishPipeline: drives one polish job from pending to a terminal state.

Called by FastAPI BackgroundTasks after polish.create / polish.retry, and at
startup to recover jobs interrupted by a restart.

Steps:
1. pending -> analyzing (only while the credit is held)
2. engine.analyze, then analyzing -> polishing with score and issues
3. engine.transform, then polishing -> completed with every result column
4. On any error: -> failed with the error message, then refund the credit
"""

import asyncio
import time
from datetime import UTC, datetime, timedelta

import structlog
from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codepolish.core.exceptions import PolishEngineError
from codepolish.db.models.polish import Polish
from codepolish.polish.engine import PolishEngine
from codepolish.polish.state_machine import PolishStateMachine
from codepolish.schemas.polish import ChargeState, PolishStatus

logger = structlog.get_logger(__name__)

INTERRUPTED_MESSAGE = "Processing was interrupted. Your credit has been refunded."


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _check_score(score: int, step: str) -> int:
    if not isinstance(score, int) or not 0 <= score <= 100:
        raise PolishEngineError(f"Polish engine returned an out-of-range {step} score: {score!r}")
    return score


def _describe_error(exc: Exception, timeout_seconds: float) -> str:
    if isinstance(exc, TimeoutError):
        return f"Polish timed out after {timeout_seconds:g} seconds"
    message = getattr(exc, "message", None) or str(exc)
    return message[:1000] if message else type(exc).__name__


class PolishPipeline:
    """Runs the polish engine for a job and records the outcome through the state machine."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: PolishEngine,
        redis: Redis | None = None,
        timeout_seconds: float = 120.0,
        stall_minutes: int = 15,
    ):
        self.session_factory = session_factory
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self.stall_minutes = stall_minutes
        self.state_machine = PolishStateMachine(session_factory, redis)

    async def _load(self, polish_id: int) -> Polish | None:
        async with self.session_factory() as session:
            return await session.get(Polish, polish_id)

    async def process(self, polish_id: int) -> PolishStatus | None:
        """Run one attempt of a pending job to completion or failure.

        Engine errors land the job in ``failed``. Cancellation also fails and
        refunds the job, then propagates.

        Returns:
            Terminal status reached by this call, or None if another worker owns the job
        """
        start = time.monotonic()

        polish = await self._load(polish_id)
        if polish is None:
            logger.error("polish_missing", polish_id=polish_id)
            return None

        if not await self.state_machine.start_analysis(polish_id):
            return None

        logger.info("polish_started", polish_id=polish_id, framework=polish.framework, attempt=polish.attempt)

        try:
            analysis = await asyncio.wait_for(
                self.engine.analyze(polish.original_code, polish.framework),
                timeout=self.timeout_seconds,
            )
            score_before = _check_score(analysis.score, "analysis")

            if not await self.state_machine.record_analysis(polish_id, score_before, analysis.issues):
                return None

            result = await asyncio.wait_for(
                self.engine.transform(polish.original_code, polish.framework, analysis.issues),
                timeout=self.timeout_seconds,
            )
            if not result.polished_code:
                raise PolishEngineError("Polish engine returned empty code")

            score_after = result.score_after
            if score_after is None:
                rescored = await asyncio.wait_for(
                    self.engine.analyze(result.polished_code, polish.framework),
                    timeout=self.timeout_seconds,
                )
                score_after = rescored.score
            score_after = _check_score(score_after, "polished")

            processing_time = _elapsed_ms(start)
            if not await self.state_machine.complete(
                polish_id,
                polished_code=result.polished_code,
                score_after=score_after,
                summary=result.summary,
                processing_time=processing_time,
            ):
                return None

            logger.info(
                "polish_completed",
                polish_id=polish_id,
                score_before=score_before,
                score_after=score_after,
                processing_time_ms=processing_time,
            )
            return PolishStatus.COMPLETED

        except asyncio.CancelledError:
            # Shutdown cancelled the job mid-flight: settle it before the task ends
            logger.warning("polish_cancelled", polish_id=polish_id)
            await asyncio.shield(
                self.state_machine.fail(polish_id, INTERRUPTED_MESSAGE, processing_time=_elapsed_ms(start))
            )
            raise
        except Exception as exc:
            logger.error(
                "polish_processing_error",
                polish_id=polish_id,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            await self.state_machine.fail(
                polish_id,
                _describe_error(exc, self.timeout_seconds),
                processing_time=_elapsed_ms(start),
            )
            return PolishStatus.FAILED

    async def recover(self, now: datetime | None = None) -> list[int]:
        """Clean up jobs left behind by a previous process or stalled in this one.

        - analyzing/polishing jobs untouched for POLISH_STALL_MINUTES are failed
          and refunded
        - failed jobs still holding their credit are refunded
        - pending jobs are returned for re-dispatch

        Returns:
            Ids of pending jobs the caller should process again
        """
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=self.stall_minutes)

        async with self.session_factory() as session:
            stalled = (
                await session.execute(
                    select(Polish.id).where(
                        Polish.status.in_([PolishStatus.ANALYZING.value, PolishStatus.POLISHING.value]),
                        Polish.updated_at < cutoff,
                    )
                )
            ).scalars().all()
            unrefunded = (
                await session.execute(
                    select(Polish.id).where(
                        Polish.status == PolishStatus.FAILED.value,
                        Polish.charge_state == ChargeState.CHARGED.value,
                    )
                )
            ).scalars().all()
            pending = (
                await session.execute(
                    select(Polish.id)
                    .where(Polish.status == PolishStatus.PENDING.value)
                    .order_by(Polish.created_at)
                )
            ).scalars().all()

        for polish_id in stalled:
            await self.state_machine.fail(polish_id, INTERRUPTED_MESSAGE)
        for polish_id in unrefunded:
            await self.state_machine.refund_if_charged(polish_id)

        if stalled or unrefunded or pending:
            logger.info(
                "polish_recovery_complete",
                stalled=len(stalled),
                refunded=len(unrefunded),
                pending=len(pending),
            )
        return list(pending)

    async def process_many(self, polish_ids: list[int]) -> None:
        for polish_id in polish_ids:
            await self.process(polish_id)


async def recover_periodically(pipeline: PolishPipeline, interval_seconds: float) -> None:
    """Background loop started from the app lifespan. Runs until cancelled.

    Fails and refunds jobs that stall while the process is running. Pending jobs
    are left to the task that created them.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await pipeline.recover()
        except Exception as e:
            logger.error("polish_recovery_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
