"""Export runner: executes one claimed job from plan to recorded artifact."""

import uuid
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_exports.core.config import Settings
from analytics_exports.core.logging import job_logger
from analytics_exports.lib.errors import FilterValidationError, PlanningError
from analytics_exports.lib.pipeline.checkpoint import Checkpoint
from analytics_exports.lib.pipeline.engine import ChunkedExecutionEngine, EngineSettings
from analytics_exports.lib.pipeline.results import Cancelled, Completed, ExecutionOutcome, LeaseLost, PermanentFailure
from analytics_exports.lib.planner.planners import plan
from analytics_exports.lib.renderer.document import DocumentRenderer
from analytics_exports.services.report_job_service import JobStore, begin_run, get_report_job, mark_completed
from analytics_exports.services.row_source import SqlRowSource


def engine_settings(settings: Settings) -> EngineSettings:
    """Engine tuning taken from application settings."""
    return EngineSettings(
        tabular_window_size=settings.report_tabular_window_size,
        paginated_window_size=settings.report_paginated_window_size,
        checkpoint_interval_percent=settings.report_checkpoint_interval_percent,
        toc_entries_per_page=settings.report_toc_entries_per_page,
        author=settings.report_author,
    )


async def run_export_job(
    job_id: uuid.UUID,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    renderer: DocumentRenderer | None = None,
    worker_id: str | None = None,
) -> ExecutionOutcome:
    """Execute (or resume) a claimed job and record a finished artifact.

    Args:
        job_id: A job in ``running`` state leased to the caller.
        session_factory: Factory for async sessions.
        settings: Application settings.
        renderer: Optional document renderer override.
        worker_id: Worker holding the lease; progress writes renew it and
            every update requires it.

    Returns:
        The execution outcome.  A completed export that lost the race
        against a cancel is reported as ``Cancelled`` and its file removed;
        one whose job was reclaimed by another worker is ``LeaseLost``.
    """
    log = job_logger(job_id)
    async with session_factory() as session:
        job = await get_report_job(session, job_id)
        if job is None:
            log.warning("Job disappeared before execution")
            return Cancelled()
        run = await begin_run(session, job, settings)
        report_type, filters = job.report_type, job.filters

    store = JobStore(session_factory, job_id, worker_id=worker_id, lease_seconds=settings.worker_lease_seconds)
    try:
        dataset = plan(report_type, filters)
    except (FilterValidationError, PlanningError) as exc:
        await store.save_failure(Checkpoint(processed_rows=0, last_error=str(exc)))
        log.error(f"Stored filters cannot be planned: {exc}")
        return PermanentFailure(error=str(exc))

    engine = ChunkedExecutionEngine(
        SqlRowSource(session_factory),
        store,
        settings=engine_settings(settings),
        renderer=renderer,
    )
    log.info(f"Executing {report_type} export to {run.output_format}")
    outcome = await engine.execute(run, dataset)

    if isinstance(outcome, Completed):
        async with session_factory() as session:
            recorded = await mark_completed(
                session,
                job_id,
                outcome.artifact,
                ttl_hours=settings.report_download_ttl_hours,
                worker_id=worker_id,
            )
            job = None if recorded else await get_report_job(session, job_id)
        if not recorded:
            if worker_id is not None and job is not None and job.leased_by != worker_id:
                log.warning("Lease lost while finishing; leaving the artifact to the new holder")
                return LeaseLost(processed_rows=outcome.artifact.row_count)
            log.info("Job was cancelled while finishing; discarding artifact")
            Path(outcome.artifact.path).unlink(missing_ok=True)
            return Cancelled(processed_rows=outcome.artifact.row_count)
    return outcome
