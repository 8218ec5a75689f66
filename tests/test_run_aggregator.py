from datetime import timedelta

import pytest

from attention.v1.infra.jobs.aggregator import RunAggregator
from attention.v1.infra.jobs.executor import (
    ActionType,
    ExecutorResult,
    InsightExplanation,
)
from attention.v1.infra.jobs.models import Run, RunStatus
from attention.v1.infra.jobs.service import EnqueueService

SHOP = "test-shop.myshopify.com"


@pytest.fixture
def service(test_settings) -> EnqueueService:
    return EnqueueService(test_settings)


async def _load_run(session_factory, run_id) -> Run:
    async with session_factory() as session:
        return await session.get(Run, run_id)


async def test_run_with_active_jobs_stays_running(db_session, service, session_factory, now):
    batch = await service.start_batch(db_session, SHOP, ["p-1", "p-2"])

    completed = await RunAggregator().reconcile(db_session, now)

    assert completed == []
    run = await _load_run(session_factory, batch.run_id)
    assert run.status == RunStatus.RUNNING.value
    assert run.completed_at is None


async def test_run_completes_once_children_finish(
    db_session, service, session_factory, now
):
    batch = await service.start_batch(db_session, SHOP, ["p-1", "p-2"])
    store = service.store
    result = ExecutorResult(
        output=InsightExplanation(summary="Refresh it.", action_type=ActionType.SEO),
        model="fake-model",
    )

    first = await store.claim_next(db_session, now)
    assert await store.mark_succeeded(db_session, first, result, now)
    assert await RunAggregator().reconcile(db_session, now) == []

    second = await store.claim_next(db_session, now)
    await store.mark_failed(db_session, second, "boom", now)

    completed = await RunAggregator().reconcile(db_session, now)

    assert completed == [batch.run_id]
    run = await _load_run(session_factory, batch.run_id)
    assert run.status == RunStatus.COMPLETED.value
    assert run.succeeded == 1
    assert run.failed == 1
    assert run.completed_at is not None


async def test_reconcile_is_idempotent(db_session, service, session_factory, now):
    batch = await service.start_batch(db_session, SHOP, ["p-1"])
    job = await service.store.claim_next(db_session, now)
    await service.store.mark_failed(db_session, job, "boom", now)

    aggregator = RunAggregator()
    assert await aggregator.reconcile(db_session, now) == [batch.run_id]
    first_completed_at = (await _load_run(session_factory, batch.run_id)).completed_at

    assert await aggregator.reconcile(db_session, now + timedelta(minutes=5)) == []
    run = await _load_run(session_factory, batch.run_id)
    assert run.status == RunStatus.COMPLETED.value
    assert run.completed_at == first_completed_at


async def test_reconcile_ignores_other_runs(db_session, service, session_factory, now):
    done = await service.start_batch(db_session, SHOP, ["p-1"])
    job = await service.store.claim_next(db_session, now)
    await service.store.mark_failed(db_session, job, "boom", now)
    pending = await service.start_batch(db_session, SHOP, ["p-2"])

    completed = await RunAggregator().reconcile(db_session, now)

    assert completed == [done.run_id]
    assert (await _load_run(session_factory, pending.run_id)).status == (
        RunStatus.RUNNING.value
    )
