"""Queue Commands - Worker loop and maintenance passes"""

import asyncio

import typer
from rich.console import Console

from attention.config.logging import setup_logging
from attention.config.settings import get_settings
from attention.v1.infra.jobs import registry_init  # noqa: F401
from attention.v1.infra.jobs.aggregator import RunAggregator
from attention.v1.infra.jobs.executor import get_executor
from attention.v1.infra.jobs.store import JobStore
from attention.v1.infra.jobs.worker import JobWorker

from ..utils import runtime
from ..utils.formatting import print_error, print_info, print_success, print_warning

console = Console()


def run_worker():
    """🛠 Run the insight job worker until interrupted"""
    settings = get_settings()
    setup_logging()
    print_info(
        f"Starting worker (executor: {settings.executor.value}, "
        f"poll every {settings.job_poll_interval_ms} ms)"
    )

    try:
        asyncio.run(_run_worker())
    except KeyboardInterrupt:
        print_warning("Worker interrupted")


async def _run_worker() -> None:
    settings = get_settings()
    database = runtime.open_database()
    worker = JobWorker(settings, database.SessionLocal, get_executor(settings))
    try:
        await worker.start()
    finally:
        await database.close()


def tick():
    """⏭ Claim and process at most one job"""
    try:
        processed = asyncio.run(_tick())
    except KeyError as e:
        print_error(f"Executor unavailable: {e}")
        raise typer.Exit(1) from None

    if processed:
        print_success("Processed one job")
    else:
        print_info("No job ready to run")


async def _tick() -> bool:
    settings = get_settings()
    database = runtime.open_database()
    try:
        worker = JobWorker(settings, database.SessionLocal, get_executor(settings))
        return await worker.tick()
    finally:
        await database.close()


def reconcile():
    """🧮 Complete runs whose jobs have all finished"""
    completed = asyncio.run(_reconcile())
    if completed:
        for run_id in completed:
            print_success(f"Run {run_id} completed")
    else:
        print_info("No runs ready to complete")


async def _reconcile() -> list:
    database = runtime.open_database()
    try:
        async with database.SessionLocal() as session:
            return await RunAggregator().reconcile(session)
    finally:
        await database.close()


def reclaim():
    """♻ Requeue RUNNING jobs abandoned by a stopped worker"""
    reclaimed = asyncio.run(_reclaim())
    if reclaimed:
        print_warning(f"Reclaimed {reclaimed} stale job(s)")
    else:
        print_info("No stale jobs")


async def _reclaim() -> int:
    database = runtime.open_database()
    try:
        async with database.SessionLocal() as session:
            return await JobStore(get_settings()).reclaim_stale(session)
    finally:
        await database.close()
