"""Report export CLI commands."""

import asyncio
import json
import uuid
from pathlib import Path

import typer

reports_app = typer.Typer()


def _parse_filters(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        filters = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"--filters is not valid JSON: {exc}"
        raise typer.BadParameter(msg) from exc
    if not isinstance(filters, dict):
        msg = "--filters must be a JSON object"
        raise typer.BadParameter(msg)
    return filters


def _echo_job(job) -> None:  # noqa: ANN001
    typer.echo(f"  Job:        {job.id}")
    typer.echo(f"  Type:       {job.report_type} ({job.output_format})")
    typer.echo(f"  Status:     {job.status}")
    typer.echo(f"  Progress:   {job.processed_rows}/{job.total_rows or 0} rows ({job.progress_percent}%)")
    if job.error_message:
        typer.echo(f"  Error:      {job.error_message}")
    if job.file_path:
        typer.echo(f"  File:       {job.file_path} ({job.file_size_bytes or 0} bytes)")
    if job.expires_at:
        typer.echo(f"  Expires at: {job.expires_at.isoformat()}")


@reports_app.command("create")
def create(
    report_type: str = typer.Argument(..., help="detail, summary, top_n, exceptions or per_entity"),
    output_format: str = typer.Option("xlsx", "--format", help="Output format (pdf, xlsx)"),
    filters: str | None = typer.Option(None, "--filters", help="Report filters as a JSON object"),
    owner: str = typer.Option("cli", "--owner", help="Owner the job is admitted for"),
) -> None:
    """Queue a report export for the worker pool."""
    asyncio.run(_create(report_type, output_format, _parse_filters(filters), owner))


async def _create(report_type: str, output_format: str, filters: dict, owner: str) -> None:
    from analytics_exports.core.config import get_settings
    from analytics_exports.core.database import dispose_engine, get_session_factory, init_engine
    from analytics_exports.lib.errors import AdmissionRejectedError, FilterValidationError
    from analytics_exports.services.report_job_service import create_report_job

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        async with get_session_factory()() as session:
            job = await create_report_job(
                session,
                owner_id=owner,
                report_type=report_type,
                output_format=output_format,
                filters=filters,
                max_active_per_owner=settings.report_max_concurrent_exports_per_user,
            )
        typer.echo(f"Export job queued: {job.id}")
    except FilterValidationError as exc:
        typer.echo(f"Invalid filters: {exc.message}", err=True)
        for error in exc.errors:
            typer.echo(f"  {error}", err=True)
        raise typer.Exit(code=2) from exc
    except AdmissionRejectedError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    finally:
        await dispose_engine()


@reports_app.command("run")
def run(
    max_jobs: int | None = typer.Option(None, "--max-jobs", min=1, help="Stop after this many jobs"),
) -> None:
    """Process claimable export jobs in the foreground until the queue is empty."""
    asyncio.run(_run(max_jobs))


async def _run(max_jobs: int | None) -> None:
    from analytics_exports.core.background import ExportWorkerPool
    from analytics_exports.core.config import get_settings
    from analytics_exports.core.database import dispose_engine, get_session_factory, init_engine

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    pool = ExportWorkerPool.from_settings(get_session_factory(), settings)
    worker_id = f"cli-{uuid.uuid4().hex[:8]}"
    processed = 0
    try:
        while max_jobs is None or processed < max_jobs:
            if not await pool.run_once(worker_id):
                break
            processed += 1
    finally:
        await dispose_engine()
    typer.echo(f"Processed {processed} export job(s)")


@reports_app.command("status")
def status(
    job_id: uuid.UUID = typer.Argument(..., help="Export job id"),
) -> None:
    """Show the state of one export job."""
    asyncio.run(_status(job_id))


async def _status(job_id: uuid.UUID) -> None:
    from analytics_exports.core.config import get_settings
    from analytics_exports.core.database import dispose_engine, get_session_factory, init_engine
    from analytics_exports.services.report_job_service import get_report_job

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        async with get_session_factory()() as session:
            job = await get_report_job(session, job_id)
    finally:
        await dispose_engine()
    if job is None:
        typer.echo(f"Export job {job_id} not found", err=True)
        raise typer.Exit(code=1)
    _echo_job(job)


@reports_app.command("list")
def list_jobs(
    owner: str | None = typer.Option(None, "--owner", help="Only jobs of this owner"),
    status_filter: str | None = typer.Option(None, "--status", help="Only jobs in this status"),
    limit: int = typer.Option(20, "--limit", min=1, max=100, help="Number of jobs to show"),
) -> None:
    """List the most recent export jobs."""
    asyncio.run(_list(owner, status_filter, limit))


async def _list(owner: str | None, status_filter: str | None, limit: int) -> None:
    from analytics_exports.core.config import get_settings
    from analytics_exports.core.database import dispose_engine, get_session_factory, init_engine
    from analytics_exports.services.report_job_service import list_report_jobs

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        async with get_session_factory()() as session:
            jobs, total = await list_report_jobs(
                session, owner_id=owner, status_filter=status_filter, page=1, page_size=limit
            )
    finally:
        await dispose_engine()
    typer.echo(f"Showing {len(jobs)} of {total} export job(s)")
    for job in jobs:
        typer.echo(
            f"{job.id}  {job.status:<9}  {job.report_type:<10}  {job.output_format:<4}  "
            f"{job.progress_percent:>3}%  {job.owner_id}"
        )


@reports_app.command("cancel")
def cancel(
    job_id: uuid.UUID = typer.Argument(..., help="Export job id"),
) -> None:
    """Cancel a queued, running or retry-pending export job."""
    asyncio.run(_cancel(job_id))


async def _cancel(job_id: uuid.UUID) -> None:
    from analytics_exports.core.config import get_settings
    from analytics_exports.core.database import dispose_engine, get_session_factory, init_engine
    from analytics_exports.lib.errors import InvalidJobStateError
    from analytics_exports.services.report_job_service import cancel_report_job, get_report_job

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        async with get_session_factory()() as session:
            job = await get_report_job(session, job_id)
            if job is None:
                typer.echo(f"Export job {job_id} not found", err=True)
                raise typer.Exit(code=1)
            await cancel_report_job(session, job, work_dir=Path(settings.export_work_dir))
        typer.echo(f"Cancelled export job {job_id}")
    except InvalidJobStateError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    finally:
        await dispose_engine()


@reports_app.command("purge-expired")
def purge_expired() -> None:
    """Delete export files whose download window has closed."""
    asyncio.run(_purge_expired())


async def _purge_expired() -> None:
    from analytics_exports.core.config import get_settings
    from analytics_exports.core.database import dispose_engine, get_session_factory, init_engine
    from analytics_exports.services.report_job_service import purge_expired_exports

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        async with get_session_factory()() as session:
            purged = await purge_expired_exports(session)
    finally:
        await dispose_engine()
    typer.echo(f"Purged {purged} expired export(s)")
