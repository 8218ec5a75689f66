import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from attention.v1.core.exceptions import InvalidJobTransition
from attention.v1.infra.jobs.executor import ActionType, ExecutorResult, InsightExplanation
from attention.v1.infra.jobs.models import (
    InsightJob,
    JobStatus,
    Run,
    can_transition,
    ensure_transition,
)
from attention.v1.infra.jobs.store import (
    STALE_RUNNING_ERROR,
    SUPERSEDED_ERROR,
    JobStore,
    backoff_delay,
    truncate_error,
)
from attention.v1.insights.models import ProductInsight

SHOP = "test-shop.myshopify.com"


@pytest.fixture
def store(test_settings) -> JobStore:
    return JobStore(test_settings)


async def _load_job(session_factory, job_id) -> InsightJob:
    async with session_factory() as session:
        result = await session.execute(select(InsightJob).where(InsightJob.id == job_id))
        return result.scalar_one()


async def _load_insight(session_factory, product_id) -> ProductInsight:
    async with session_factory() as session:
        result = await session.execute(
            select(ProductInsight).where(ProductInsight.product_id == product_id)
        )
        return result.scalar_one()


def _result(summary: str = "Needs fresh photos.") -> ExecutorResult:
    return ExecutorResult(
        output=InsightExplanation(
            summary=summary,
            action_type=ActionType.IMAGERY,
            next_steps=["Shoot new photos."],
        ),
        model="fake-model",
    )


class TestStateMachine:
    def test_allowed_transitions(self):
        assert can_transition(JobStatus.QUEUED, JobStatus.RUNNING)
        assert can_transition(JobStatus.RUNNING, JobStatus.QUEUED)
        assert can_transition(JobStatus.RUNNING, JobStatus.SUCCEEDED)
        assert can_transition(JobStatus.QUEUED, JobStatus.FAILED)

    def test_terminal_states_have_no_exit(self):
        for target in JobStatus:
            assert not can_transition(JobStatus.SUCCEEDED, target)
            assert not can_transition(JobStatus.FAILED, target)

    def test_ensure_transition_raises_conflict(self):
        with pytest.raises(InvalidJobTransition) as exc_info:
            ensure_transition("SUCCEEDED", JobStatus.RUNNING)
        assert exc_info.value.status_code == 409
        assert exc_info.value.details == {"current": "SUCCEEDED", "target": "RUNNING"}


class TestHelpers:
    def test_backoff_schedule_clamps_to_last_entry(self):
        schedule = (2, 5, 10)
        assert backoff_delay(0, schedule) == timedelta(seconds=2)
        assert backoff_delay(1, schedule) == timedelta(seconds=5)
        assert backoff_delay(2, schedule) == timedelta(seconds=10)
        assert backoff_delay(7, schedule) == timedelta(seconds=10)
        assert backoff_delay(-1, schedule) == timedelta(seconds=2)

    def test_truncate_error_bounds_length(self):
        assert len(truncate_error("x" * 2000, 500)) == 500
        assert truncate_error(None) == ""

    def test_truncate_error_redacts_credentials(self):
        message = "OpenAI rejected key sk-abcdefghijklmnop1234 (Bearer abc.def)"
        redacted = truncate_error(message)
        assert "sk-abcdefghijklmnop1234" not in redacted
        assert "abc.def" not in redacted
        assert "[redacted]" in redacted


class TestCreateAndClaim:
    async def test_create_starts_queued(self, db_session, store):
        job = await store.create(db_session, SHOP, "p-1")

        assert job.status == JobStatus.QUEUED.value
        assert job.attempts == 0
        assert job.next_retry_at is None
        assert job.is_active()

    async def test_second_active_job_violates_unique_index(self, db_session, store):
        await store.create(db_session, SHOP, "p-1")

        with pytest.raises(IntegrityError):
            await store.create(db_session, SHOP, "p-1")

    async def test_claim_marks_running_and_mirrors_insight(
        self, db_session, store, session_factory, make_insight, now
    ):
        await make_insight(db_session, "p-1")
        job = await store.create(db_session, SHOP, "p-1")

        claimed = await store.claim_next(db_session, now)

        assert claimed is not None
        assert claimed.id == job.id
        assert claimed.status == JobStatus.RUNNING.value
        assert claimed.attempts == 1

        insight = await _load_insight(session_factory, "p-1")
        assert insight.ai_status == JobStatus.RUNNING.value
        assert insight.ai_error is None

    async def test_claim_returns_none_when_empty(self, db_session, store, now):
        assert await store.claim_next(db_session, now) is None

    async def test_claim_is_fifo_by_creation(self, db_session, store, now):
        first = await store.create(db_session, SHOP, "p-1")
        second = await store.create(db_session, SHOP, "p-2")

        assert (await store.claim_next(db_session, now)).id == first.id
        assert (await store.claim_next(db_session, now)).id == second.id
        assert await store.claim_next(db_session, now) is None

    async def test_claim_skips_jobs_waiting_for_retry(
        self, db_session, store, session_factory, now
    ):
        job = await store.create(db_session, SHOP, "p-1")
        claimed = await store.claim_next(db_session, now)
        await store.mark_retry_or_fail(db_session, claimed, "timeout", now)

        assert await store.claim_next(db_session, now + timedelta(seconds=1)) is None

        reclaimed = await store.claim_next(db_session, now + timedelta(seconds=2))
        assert reclaimed is not None
        assert reclaimed.id == job.id
        assert reclaimed.attempts == 2
        assert (await _load_job(session_factory, job.id)).next_retry_at is None

    @pytest.mark.parametrize("callers,jobs", [(8, 3), (3, 6), (5, 5)])
    async def test_concurrent_claims_never_share_a_job(
        self, session_factory, test_settings, now, callers, jobs
    ):
        """N concurrent callers against M jobs yield min(N, M) distinct claims."""
        store = JobStore(test_settings)
        async with session_factory() as session:
            for i in range(jobs):
                await store.create(session, SHOP, f"p-{i}")

        async def claim_once():
            async with session_factory() as session:
                job = await JobStore(test_settings).claim_next(session, now)
                return job.id if job else None

        results = await asyncio.gather(*(claim_once() for _ in range(callers)))
        claimed = [job_id for job_id in results if job_id is not None]

        assert len(claimed) == min(callers, jobs)
        assert len(set(claimed)) == len(claimed)

        async with session_factory() as session:
            result = await session.execute(select(InsightJob))
            for job in result.scalars().all():
                if job.id in claimed:
                    assert job.status == JobStatus.RUNNING.value
                    assert job.attempts == 1
                else:
                    assert job.status == JobStatus.QUEUED.value
                    assert job.attempts == 0


class TestCompletion:
    async def test_mark_succeeded_updates_job_insight_and_run(
        self, db_session, store, session_factory, make_insight, now
    ):
        await make_insight(db_session, "p-1")
        run = Run(shop=SHOP, products_queued=1)
        db_session.add(run)
        await db_session.commit()
        await store.create(db_session, SHOP, "p-1", run_id=run.id)
        job = await store.claim_next(db_session, now)

        assert await store.mark_succeeded(db_session, job, _result(), now)

        stored = await _load_job(session_factory, job.id)
        assert stored.status == JobStatus.SUCCEEDED.value
        assert stored.last_error is None

        insight = await _load_insight(session_factory, "p-1")
        assert insight.ai_status == JobStatus.SUCCEEDED.value
        assert insight.ai_explanation == "Needs fresh photos."
        assert insight.ai_action_type == "IMAGERY"
        assert insight.ai_model == "fake-model"
        assert insight.reasons_json == '["Shoot new photos."]'
        assert insight.ai_generated_at is not None

        async with session_factory() as session:
            stored_run = await session.get(Run, run.id)
            assert stored_run.succeeded == 1
            assert stored_run.failed == 0

    async def test_mark_succeeded_discards_result_for_superseded_job(
        self, db_session, store, session_factory, make_insight, now
    ):
        await make_insight(db_session, "p-1")
        await store.create(db_session, SHOP, "p-1")
        job = await store.claim_next(db_session, now)

        async with session_factory() as other:
            active = await store.find_active(other, SHOP, "p-1")
            assert await store.supersede(other, active)

        assert not await store.mark_succeeded(db_session, job, _result(), now)

        stored = await _load_job(session_factory, job.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.last_error == SUPERSEDED_ERROR
        insight = await _load_insight(session_factory, "p-1")
        assert insight.ai_explanation is None

    async def test_retry_then_terminal_failure(
        self, db_session, store, session_factory, make_insight, now
    ):
        await make_insight(db_session, "p-1")
        run = Run(shop=SHOP, products_queued=1)
        db_session.add(run)
        await db_session.commit()
        await store.create(db_session, SHOP, "p-1", run_id=run.id)

        current = now
        expected_delays = [2, 5]
        for attempt, delay in enumerate(expected_delays, start=1):
            job = await store.claim_next(db_session, current)
            assert job.attempts == attempt
            status = await store.mark_retry_or_fail(db_session, job, "upstream 503", current)
            assert status == JobStatus.QUEUED

            stored = await _load_job(session_factory, job.id)
            assert stored.status == JobStatus.QUEUED.value
            assert stored.last_error == "upstream 503"
            gap = stored.next_retry_at.replace(tzinfo=None) - current.replace(tzinfo=None)
            assert gap == timedelta(seconds=delay)

            insight = await _load_insight(session_factory, "p-1")
            assert insight.ai_status == JobStatus.QUEUED.value
            assert insight.ai_error is None

            current = current + timedelta(seconds=delay)

        job = await store.claim_next(db_session, current)
        assert job.attempts == 3
        status = await store.mark_retry_or_fail(db_session, job, "upstream 503", current)
        assert status == JobStatus.FAILED

        stored = await _load_job(session_factory, job.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.attempts == 3
        insight = await _load_insight(session_factory, "p-1")
        assert insight.ai_status == JobStatus.FAILED.value
        assert insight.ai_error == "upstream 503"

        async with session_factory() as session:
            stored_run = await session.get(Run, run.id)
            assert stored_run.failed == 1
            assert stored_run.succeeded == 0

    async def test_mark_failed_is_immediate(
        self, db_session, store, session_factory, now
    ):
        await store.create(db_session, SHOP, "p-1")
        job = await store.claim_next(db_session, now)

        assert await store.mark_failed(db_session, job, "ProductInsight not found", now)

        stored = await _load_job(session_factory, job.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.attempts == 1
        assert stored.last_error == "ProductInsight not found"

    async def test_supersede_counts_against_run(
        self, db_session, store, session_factory
    ):
        run = Run(shop=SHOP, products_queued=2)
        db_session.add(run)
        await db_session.commit()
        job = await store.create(db_session, SHOP, "p-1", run_id=run.id)

        assert await store.supersede(db_session, job)

        assert await store.find_active(db_session, SHOP, "p-1") is None
        async with session_factory() as session:
            stored_run = await session.get(Run, run.id)
            assert stored_run.failed == 1


class TestReclaimAndPurge:
    async def test_reclaim_stale_requeues_abandoned_job(
        self, db_session, store, session_factory, make_insight, now
    ):
        await make_insight(db_session, "p-1")
        await store.create(db_session, SHOP, "p-1")
        job = await store.claim_next(db_session, now)

        assert await store.reclaim_stale(db_session, now) == 0

        later = now + timedelta(seconds=store.settings.job_stale_after_s + 60)
        assert await store.reclaim_stale(db_session, later) == 1

        stored = await _load_job(session_factory, job.id)
        assert stored.status == JobStatus.QUEUED.value
        assert stored.last_error == STALE_RUNNING_ERROR
        insight = await _load_insight(session_factory, "p-1")
        assert insight.ai_status == JobStatus.QUEUED.value

    async def test_reclaim_stale_fails_exhausted_job(
        self, db_session, store, session_factory, now
    ):
        await store.create(db_session, SHOP, "p-1")
        current = now
        for _ in range(store.settings.job_max_attempts - 1):
            job = await store.claim_next(db_session, current)
            await store.mark_retry_or_fail(db_session, job, "timeout", current)
            current += timedelta(seconds=30)
        job = await store.claim_next(db_session, current)
        assert job.attempts == store.settings.job_max_attempts

        later = current + timedelta(seconds=store.settings.job_stale_after_s + 60)
        assert await store.reclaim_stale(db_session, later) == 1

        stored = await _load_job(session_factory, job.id)
        assert stored.status == JobStatus.FAILED.value

    async def test_late_worker_cannot_finish_a_reclaimed_job(
        self, db_session, store, session_factory, make_insight, now
    ):
        await make_insight(db_session, "p-1")
        await store.create(db_session, SHOP, "p-1")
        abandoned = await store.claim_next(db_session, now)

        later = now + timedelta(seconds=store.settings.job_stale_after_s + 60)
        async with session_factory() as other:
            assert await store.reclaim_stale(other, later) == 1
            current = await store.claim_next(other, later)
            assert current.id == abandoned.id
            assert current.attempts == 2

        assert await store.mark_retry_or_fail(db_session, abandoned, "timeout", later) is None
        assert not await store.mark_succeeded(db_session, abandoned, _result(), later)

        stored = await _load_job(session_factory, abandoned.id)
        assert stored.status == JobStatus.RUNNING.value
        assert stored.attempts == 2
        insight = await _load_insight(session_factory, "p-1")
        assert insight.ai_explanation is None

    async def test_bulk_delete_by_shop_spares_other_shops(self, db_session, store):
        db_session.add(Run(shop=SHOP, products_queued=1))
        await db_session.commit()
        await store.create(db_session, SHOP, "p-1")
        await store.create(db_session, "other.myshopify.com", "p-1")

        counts = await store.bulk_delete_by_shop(db_session, SHOP)

        assert counts == {"jobs": 1, "runs": 1}
        jobs, total = await store.list_jobs(db_session)
        assert total == 1
        assert jobs[0].shop == "other.myshopify.com"

    async def test_job_stats(self, db_session, store, now):
        await store.create(db_session, SHOP, "p-1")
        await store.create(db_session, SHOP, "p-2")
        job = await store.claim_next(db_session, now)
        await store.mark_retry_or_fail(db_session, job, "timeout", now)

        stats = await store.get_job_stats(db_session, shop=SHOP)

        assert stats["total_jobs"] == 2
        assert stats["by_status"] == {"QUEUED": 2}
        assert stats["queue_depth"] == 2
        assert stats["waiting_retry"] == 1
