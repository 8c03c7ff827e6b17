"""End-to-end tests for PolishPipeline: engine outcomes, credit refunds and restart recovery."""

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import update

from codepolish.db.models.polish import Polish
from codepolish.polish.engine import AnalysisResult, TransformResult
from codepolish.polish.engine_fake import PolishEngineFake
from codepolish.polish.heuristic import HeuristicPolishEngine, score_code
from codepolish.polish.pipeline import INTERRUPTED_MESSAGE, PolishPipeline, recover_periodically
from codepolish.schemas.polish import CreatePolishRequest, ImprovementSummary, PolishStatus
from codepolish.services.polish_service import PolishService
from codepolish.services.subscription_service import SubscriptionService

pytestmark = pytest.mark.integration

REACT_CODE = """export default function Card(props: any) {
  console.log("render", props);
  return <div style={{ padding: 16 }}><img src={props.src} /></div>;
}
"""


@pytest.fixture
def polishes(session_factory, settings):
    return PolishService(session_factory, SubscriptionService(session_factory, settings))


@pytest.fixture
def create_job(polishes):
    async def _create(user_id: int, framework: str = "react", code: str = REACT_CODE) -> int:
        polish = await polishes.create(
            user_id, CreatePolishRequest(name="Card", framework=framework, original_code=code)
        )
        return polish.id

    return _create


async def _load(session_factory, polish_id: int) -> Polish:
    async with session_factory() as session:
        return await session.get(Polish, polish_id)


class OutOfRangeEngine:
    async def analyze(self, code, framework):
        return AnalysisResult(score=150)

    async def transform(self, code, framework, issues):
        return TransformResult(polished_code=code, summary=ImprovementSummary())


class HangingEngine:
    def __init__(self):
        self.started = asyncio.Event()

    async def analyze(self, code, framework):
        self.started.set()
        await asyncio.sleep(3600)

    async def transform(self, code, framework, issues):
        raise AssertionError("transform must not run")


# ============================================================================
# process()
# ============================================================================


async def test_happy_path_completes_and_keeps_credit(
    session_factory, engine_fake, make_user, create_job, get_balance
):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)
    pipeline = PolishPipeline(session_factory, engine_fake)

    status = await pipeline.process(polish_id)

    assert status == PolishStatus.COMPLETED
    assert engine_fake.calls == ["analyze", "transform"]

    polish = await _load(session_factory, polish_id)
    assert polish.status == "completed"
    assert polish.quality_score_before == 62
    assert polish.quality_score_after == 88
    assert polish.polished_code.startswith("/** Polished react component. */")
    assert json.loads(polish.issues_found)[0]["message"] == "Inline styles detected"
    assert json.loads(polish.improvements_summary)["tokens_extracted"] == 2
    assert polish.processing_time is not None
    assert polish.charge_state == "charged"
    assert await get_balance(user.id) == 4


async def test_heuristic_engine_rescores_polished_code(session_factory, make_user, create_job):
    user = await make_user()
    polish_id = await create_job(user.id)
    pipeline = PolishPipeline(session_factory, HeuristicPolishEngine())

    assert await pipeline.process(polish_id) == PolishStatus.COMPLETED

    polish = await _load(session_factory, polish_id)
    assert "console.log" not in polish.polished_code
    assert polish.quality_score_before == score_code(REACT_CODE)
    assert polish.quality_score_after == score_code(polish.polished_code)
    messages = [issue["message"] for issue in json.loads(polish.issues_found)]
    assert "Images missing alt text" in messages
    assert "Usage of 'any' type detected" in messages


async def test_malformed_engine_reply_fails_and_refunds(
    session_factory, engine_fake_malformed, make_user, create_job, get_balance
):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)
    assert await get_balance(user.id) == 4

    status = await PolishPipeline(session_factory, engine_fake_malformed).process(polish_id)

    assert status == PolishStatus.FAILED
    polish = await _load(session_factory, polish_id)
    assert polish.status == "failed"
    assert polish.error_message == "Polish engine returned malformed JSON: Expecting value"
    assert polish.charge_state == "refunded"
    assert polish.polished_code is None
    assert await get_balance(user.id) == 5


async def test_failure_during_transform_refunds(session_factory, make_user, create_job, get_balance):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)
    engine = PolishEngineFake(scenario="malformed_response", fail_at="transform")

    assert await PolishPipeline(session_factory, engine).process(polish_id) == PolishStatus.FAILED

    polish = await _load(session_factory, polish_id)
    assert engine.calls == ["analyze", "transform"]
    assert polish.quality_score_before == 62
    assert polish.polished_code is None
    assert await get_balance(user.id) == 5


async def test_engine_timeout_fails_and_refunds(session_factory, make_user, create_job, get_balance):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)
    pipeline = PolishPipeline(session_factory, PolishEngineFake(scenario="timeout"), timeout_seconds=0.05)

    assert await pipeline.process(polish_id) == PolishStatus.FAILED

    polish = await _load(session_factory, polish_id)
    assert polish.error_message == "Polish timed out after 0.05 seconds"
    assert await get_balance(user.id) == 5


async def test_out_of_range_score_fails_job(session_factory, make_user, create_job, get_balance):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)

    assert await PolishPipeline(session_factory, OutOfRangeEngine()).process(polish_id) == PolishStatus.FAILED

    polish = await _load(session_factory, polish_id)
    assert "out-of-range analysis score" in polish.error_message
    assert polish.quality_score_before is None
    assert await get_balance(user.id) == 5


async def test_process_skips_jobs_it_does_not_own(session_factory, engine_fake, make_user, create_job):
    user = await make_user()
    polish_id = await create_job(user.id)
    pipeline = PolishPipeline(session_factory, engine_fake)

    assert await pipeline.process(polish_id) == PolishStatus.COMPLETED
    assert await pipeline.process(polish_id) is None
    assert await pipeline.process(999_999) is None
    assert engine_fake.calls == ["analyze", "transform"]


async def test_retry_after_failure_runs_new_attempt(
    session_factory, polishes, make_user, create_job, get_balance
):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)
    await PolishPipeline(session_factory, PolishEngineFake(scenario="malformed_response")).process(polish_id)
    assert await get_balance(user.id) == 5

    retried = await polishes.retry(user.id, polish_id)
    assert retried.attempt == 2
    assert await get_balance(user.id) == 4

    assert await PolishPipeline(session_factory, PolishEngineFake()).process(polish_id) == PolishStatus.COMPLETED
    polish = await _load(session_factory, polish_id)
    assert polish.attempt == 2
    assert polish.error_message is None
    assert await get_balance(user.id) == 4


# ============================================================================
# recover()
# ============================================================================


async def _age(session_factory, polish_id: int, status: PolishStatus, minutes: int) -> None:
    async with session_factory() as session:
        await session.execute(
            update(Polish)
            .where(Polish.id == polish_id)
            .values(status=status.value, updated_at=datetime.now(UTC) - timedelta(minutes=minutes))
        )
        await session.commit()


async def test_recover_cleans_up_after_restart(session_factory, engine_fake, make_user, create_job, get_balance):
    user = await make_user(credits=5)
    stalled_id = await create_job(user.id)
    fresh_id = await create_job(user.id)
    unrefunded_id = await create_job(user.id)
    pending_id = await create_job(user.id)
    assert await get_balance(user.id) == 1

    await _age(session_factory, stalled_id, PolishStatus.POLISHING, minutes=30)
    await _age(session_factory, fresh_id, PolishStatus.ANALYZING, minutes=1)
    # Failed before the refund committed
    await _age(session_factory, unrefunded_id, PolishStatus.FAILED, minutes=1)

    pipeline = PolishPipeline(session_factory, engine_fake, stall_minutes=15)
    pending = await pipeline.recover()

    assert pending == [pending_id]

    stalled = await _load(session_factory, stalled_id)
    assert stalled.status == "failed"
    assert stalled.error_message == INTERRUPTED_MESSAGE
    assert stalled.charge_state == "refunded"

    assert (await _load(session_factory, fresh_id)).status == "analyzing"
    assert (await _load(session_factory, unrefunded_id)).charge_state == "refunded"
    assert await get_balance(user.id) == 3

    # A second pass finds nothing new to refund
    assert await pipeline.recover() == [pending_id]
    assert await get_balance(user.id) == 3


async def test_cancelled_job_fails_and_refunds(session_factory, engine_fake, make_user, create_job, get_balance):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)
    engine = HangingEngine()
    task = asyncio.create_task(PolishPipeline(session_factory, engine).process(polish_id))
    await engine.started.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    polish = await _load(session_factory, polish_id)
    assert polish.status == "failed"
    assert polish.error_message == INTERRUPTED_MESSAGE
    assert polish.charge_state == "refunded"
    assert await get_balance(user.id) == 5
    # Nothing left for the next startup to clean up
    assert await PolishPipeline(session_factory, engine_fake).recover() == []
    assert await get_balance(user.id) == 5


async def test_job_that_stalls_after_startup_is_failed_on_a_later_pass(
    session_factory, engine_fake, make_user, create_job, get_balance
):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)
    await _age(session_factory, polish_id, PolishStatus.POLISHING, minutes=1)
    pipeline = PolishPipeline(session_factory, engine_fake, stall_minutes=15)

    await pipeline.recover()
    assert (await _load(session_factory, polish_id)).status == "polishing"

    await pipeline.recover(now=datetime.now(UTC) + timedelta(minutes=20))

    polish = await _load(session_factory, polish_id)
    assert polish.status == "failed"
    assert polish.charge_state == "refunded"
    assert await get_balance(user.id) == 5


async def test_recover_periodically_fails_stalled_jobs(
    session_factory, engine_fake, make_user, create_job, get_balance
):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)
    await _age(session_factory, polish_id, PolishStatus.ANALYZING, minutes=1)
    pipeline = PolishPipeline(session_factory, engine_fake, stall_minutes=0)

    task = asyncio.create_task(recover_periodically(pipeline, 0.01))
    await asyncio.sleep(0.3)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    polish = await _load(session_factory, polish_id)
    assert polish.status == "failed"
    assert polish.error_message == INTERRUPTED_MESSAGE
    assert await get_balance(user.id) == 5


async def test_recover_periodically_keeps_running_after_errors():
    pipeline = MagicMock()
    pipeline.recover = AsyncMock(side_effect=RuntimeError("database unavailable"))

    task = asyncio.create_task(recover_periodically(pipeline, 0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert pipeline.recover.await_count >= 2


async def test_process_many_drains_recovered_jobs(session_factory, engine_fake, make_user, create_job):
    user = await make_user(credits=5)
    ids = [await create_job(user.id) for _ in range(2)]
    pipeline = PolishPipeline(session_factory, engine_fake)

    await pipeline.process_many(await pipeline.recover())

    for polish_id in ids:
        assert (await _load(session_factory, polish_id)).status == "completed"


# ============================================================================
# Terminal-state consistency
# ============================================================================


INLINE_STYLE_SNIPPET = 'export default function Hero() {\n  return <h1 style={{ fontSize: 48 }}>Hello</h1>;\n}\n'


async def test_inline_style_snippet_with_single_credit(session_factory, make_user, create_job, get_balance):
    user = await make_user(credits=1, total=5)
    polish_id = await create_job(user.id, code=INLINE_STYLE_SNIPPET)
    assert await get_balance(user.id) == 0

    status = await PolishPipeline(session_factory, HeuristicPolishEngine()).process(polish_id)

    polish = await _load(session_factory, polish_id)
    assert status == PolishStatus.COMPLETED
    assert polish.credits_used == 1
    issues = json.loads(polish.issues_found)
    assert {"type": "maintainability", "severity": "medium"}.items() <= issues[0].items()
    assert issues[0]["message"] == "Inline styles detected"
    assert "(): JSX.Element" in polish.polished_code
    assert await get_balance(user.id) == 0


@pytest.mark.parametrize(
    "engine_factory",
    [
        lambda: PolishEngineFake(),
        lambda: PolishEngineFake(scenario="malformed_response"),
        lambda: PolishEngineFake(scenario="malformed_response", fail_at="transform"),
        lambda: PolishEngineFake(scenario="timeout", fail_at="transform"),
        HeuristicPolishEngine,
        OutOfRangeEngine,
    ],
)
async def test_terminal_state_is_consistent(session_factory, make_user, create_job, get_balance, engine_factory):
    user = await make_user(credits=5)
    polish_id = await create_job(user.id)

    await PolishPipeline(session_factory, engine_factory(), timeout_seconds=0.05).process(polish_id)

    polish = await _load(session_factory, polish_id)
    if polish.status == "completed":
        assert polish.polished_code
        assert polish.quality_score_after is not None
        assert await get_balance(user.id) == 4
    else:
        assert polish.status == "failed"
        assert polish.error_message
        assert polish.charge_state == "refunded"
        assert await get_balance(user.id) == 5
