"""Run Commands - Batch runs and their jobs"""

import asyncio
from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from sqlalchemy import select

from attention.config.settings import get_settings
from attention.v1.infra.jobs.models import JobStatus
from attention.v1.infra.jobs.store import JobStore
from attention.v1.insights.models import ProductInsight

from ..utils import runtime
from ..utils.formatting import (
    create_jobs_table,
    create_run_panel,
    create_runs_table,
    print_error,
    print_info,
)

console = Console()


def list_runs(
    shop: Optional[str] = typer.Option(None, "--shop", help="Only runs of this shop"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum runs"),
):
    """📋 List the most recent runs"""
    runs = asyncio.run(_list_runs(shop, limit or get_settings().run_list_limit))
    if not runs:
        print_info("No runs found")
        return
    console.print(create_runs_table(runs))


async def _list_runs(shop: str | None, limit: int) -> list:
    database = runtime.open_database()
    try:
        async with database.SessionLocal() as session:
            return await JobStore(get_settings()).list_runs(session, shop=shop, limit=limit)
    finally:
        await database.close()


def show_run(run_id: str = typer.Argument(..., help="Run ID")):
    """🔎 Show a run with its jobs"""
    try:
        run_uuid = UUID(run_id)
    except ValueError:
        print_error(f"Invalid run id: {run_id}")
        raise typer.Exit(1) from None

    run, jobs, titles = asyncio.run(_show_run(run_uuid))
    if run is None:
        print_error(f"Run {run_id} not found")
        raise typer.Exit(1)

    console.print(create_run_panel(run))
    if jobs:
        console.print(create_jobs_table(jobs, titles, title="Run jobs"))


async def _show_run(run_id: UUID):
    settings = get_settings()
    database = runtime.open_database()
    try:
        async with database.SessionLocal() as session:
            store = JobStore(settings)
            run = await store.get_run(session, run_id)
            if run is None:
                return None, [], {}
            jobs, _ = await store.list_jobs(
                session, run_id=run.id, limit=settings.batch_max * 10
            )
            result = await session.execute(
                select(ProductInsight.product_id, ProductInsight.product_title).where(
                    ProductInsight.shop == run.shop,
                    ProductInsight.product_id.in_([j.product_id for j in jobs]),
                )
            )
            return run, jobs, dict(result.all())
    finally:
        await database.close()


def list_jobs(
    status: Optional[JobStatus] = typer.Option(
        None, "--status", "-s", help="Filter by job status"
    ),
    shop: Optional[str] = typer.Option(None, "--shop", help="Only jobs of this shop"),
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum jobs"),
):
    """📦 List insight jobs, newest first"""
    jobs, total = asyncio.run(_list_jobs(status, shop, limit))
    if not jobs:
        print_info("No jobs found")
        return
    console.print(create_jobs_table(jobs))
    print_info(f"Showing {len(jobs)} of {total} job(s)")


async def _list_jobs(status: JobStatus | None, shop: str | None, limit: int):
    database = runtime.open_database()
    try:
        async with database.SessionLocal() as session:
            return await JobStore(get_settings()).list_jobs(
                session,
                shop=shop,
                statuses=[status] if status else None,
                limit=limit,
            )
    finally:
        await database.close()
