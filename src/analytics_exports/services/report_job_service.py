"""Report job service: the job record state machine and job queries.

Transitions::

    queued ──claim──▶ running ──▶ completed
                         │
                         └──▶ failed ──(retry due)──▶ running
    queued/running/retry-pending ──cancel──▶ failed ("cancelled by user")

Completion and cancellation are compare-and-set updates on the status
column, so a cancel that lands while the last window is being written wins
and the finished artifact is discarded.  Updates made on behalf of a worker
also match on ``leased_by``, so a worker that lost its lease cannot change
the job.
"""

import shutil
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

from loguru import logger
from sqlalchemy import func, null, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_exports.core.config import Settings
from analytics_exports.lib.errors import (
    DownloadExpiredError,
    DownloadNotFoundError,
    InvalidJobStateError,
    LeaseLostError,
)
from analytics_exports.lib.pipeline.checkpoint import Checkpoint
from analytics_exports.lib.pipeline.engine import ExecutionRun
from analytics_exports.lib.pipeline.results import Artifact
from analytics_exports.lib.planner.planners import parse_filters
from analytics_exports.lib.planner.types import OutputFormat, ReportType
from analytics_exports.models.report_job import CANCELLED_MESSAGE, JobStatus, ReportJob, is_live
from analytics_exports.services.admission_service import admission_section, admit, ensure_admitted


async def create_report_job(
    session: AsyncSession,
    *,
    owner_id: str,
    report_type: ReportType | str,
    output_format: OutputFormat | str,
    filters: dict | None,
    max_active_per_owner: int,
) -> ReportJob:
    """Validate, admit and enqueue a new export job.

    Args:
        session: Database session.
        owner_id: Requesting owner.
        report_type: Report variant.
        output_format: ``pdf`` or ``xlsx``.
        filters: Raw filters for the report type.
        max_active_per_owner: Admission limit of queued+running jobs per owner.

    Returns:
        The created job in ``queued`` state.

    Raises:
        FilterValidationError: If the filters are invalid (no job is created).
        AdmissionRejectedError: If the owner already has too many active jobs.
    """
    report_type = ReportType(report_type)
    output_format = OutputFormat(output_format)
    validated = parse_filters(report_type, filters)

    async with admission_section(session, owner_id):
        ensure_admitted(await admit(session, owner_id, max_active_per_owner))
        job = ReportJob(
            owner_id=owner_id,
            report_type=report_type.value,
            output_format=output_format.value,
            filters=validated.model_dump(mode="json", exclude_none=True),
            status=JobStatus.QUEUED,
        )
        session.add(job)
        await session.commit()

    await session.refresh(job)
    logger.info(f"Created report job {job.id} (type={report_type}, format={output_format}, owner={owner_id})")
    return job


async def get_report_job(session: AsyncSession, job_id: uuid.UUID, owner_id: str | None = None) -> ReportJob | None:
    """Get a job by id, optionally restricted to one owner."""
    query = select(ReportJob).where(ReportJob.id == job_id)
    if owner_id is not None:
        query = query.where(ReportJob.owner_id == owner_id)
    result = await session.execute(query.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def list_report_jobs(
    session: AsyncSession,
    *,
    owner_id: str | None = None,
    status_filter: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[ReportJob], int]:
    """List jobs, newest first, with pagination.

    Args:
        session: Database session.
        owner_id: Restrict to one owner.
        status_filter: Restrict to one status.
        page: Page number (1-based).
        page_size: Items per page.

    Returns:
        Tuple of (jobs, total count).
    """
    query = select(ReportJob)
    count_query = select(func.count(ReportJob.id))
    if owner_id is not None:
        query = query.where(ReportJob.owner_id == owner_id)
        count_query = count_query.where(ReportJob.owner_id == owner_id)
    if status_filter:
        query = query.where(ReportJob.status == status_filter)
        count_query = count_query.where(ReportJob.status == status_filter)

    total = (await session.execute(count_query)).scalar_one()
    offset = (page - 1) * page_size
    query = query.order_by(ReportJob.created_at.desc(), ReportJob.id).offset(offset).limit(page_size)
    result = await session.execute(query)
    return list(result.scalars().all()), total


async def cancel_report_job(session: AsyncSession, job: ReportJob, work_dir: Path | None = None) -> ReportJob:
    """Cancel a queued, running or retry-pending job.

    The job is failed immediately with the cancellation message; a worker
    executing it observes ``cancel_requested`` before its next window.  A job
    awaiting a retry loses its scheduled attempt and, when ``work_dir`` is
    given, its partial work.

    Raises:
        InvalidJobStateError: If the job already reached a terminal state.
    """
    now = datetime.now(UTC)
    result = await session.execute(
        update(ReportJob)
        .where(ReportJob.id == job.id, is_live())
        .values(
            status=JobStatus.FAILED,
            error_message=CANCELLED_MESSAGE,
            cancel_requested=True,
            finished_at=now,
            next_attempt_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    await session.refresh(job)
    if result.rowcount != 1:
        msg = f"Job {job.id} is already {job.status} and cannot be cancelled"
        raise InvalidJobStateError(msg)
    if work_dir is not None and job.leased_by is None:
        shutil.rmtree(work_dir / str(job.id), ignore_errors=True)
    logger.info(f"Cancelled report job {job.id}")
    return job


async def delete_report_job(session: AsyncSession, job: ReportJob, work_dir: Path | None = None) -> None:
    """Delete a job, its artifact and any partial work."""
    if job.file_path:
        Path(job.file_path).unlink(missing_ok=True)
    if work_dir is not None:
        shutil.rmtree(work_dir / str(job.id), ignore_errors=True)
    await session.delete(job)
    await session.commit()
    logger.info(f"Deleted report job {job.id}")


def _held_by(worker_id: str | None) -> tuple:
    return () if worker_id is None else (ReportJob.leased_by == worker_id,)


def _may_resume(job: ReportJob, resume_max_retries: int) -> bool:
    return job.checkpoint_data is not None and job.retry_count < resume_max_retries and job.total_rows is not None


async def begin_run(session: AsyncSession, job: ReportJob, settings: Settings) -> ExecutionRun:
    """Prepare one execution attempt of a claimed job.

    A job resumes from its checkpoint when one exists, its failure count is
    below the resume limit and its total row count is known; otherwise it
    starts over with counters and partial state reset.

    Args:
        session: Database session.
        job: A job in ``running`` state leased to the caller.
        settings: Application settings.

    Returns:
        The execution attempt for the engine.
    """
    work_dir = Path(settings.export_work_dir) / str(job.id)
    output_format = OutputFormat(job.output_format)
    output_path = Path(settings.export_dir) / f"report_{job.report_type}_{job.id}.{output_format.extension}"

    if _may_resume(job, settings.report_resume_max_retries):
        logger.info(f"Job {job.id} resuming from checkpoint (retry {job.retry_count})")
        job.error_message = None
        await session.commit()
        return ExecutionRun(
            job_id=job.id,
            output_format=output_format,
            work_dir=work_dir,
            output_path=output_path,
            resume_record=job.checkpoint_data,
            total_rows=job.total_rows,
        )

    shutil.rmtree(work_dir, ignore_errors=True)
    job.started_at = datetime.now(UTC)
    job.total_rows = None
    job.processed_rows = 0
    job.progress_percent = 0
    job.current_section = None
    job.checkpoint_data = None
    job.error_message = None
    await session.commit()
    return ExecutionRun(job_id=job.id, output_format=output_format, work_dir=work_dir, output_path=output_path)


async def mark_completed(
    session: AsyncSession,
    job_id: uuid.UUID,
    artifact: Artifact,
    ttl_hours: int,
    *,
    worker_id: str | None = None,
) -> bool:
    """Record a finished artifact unless the job was cancelled meanwhile.

    Args:
        session: Database session.
        job_id: The finished job.
        artifact: The finished document.
        ttl_hours: Hours the download stays available.
        worker_id: When given, the job must still be leased to this worker.

    Returns:
        True if the job transitioned to ``completed``; False if it lost to a
        concurrent cancel, is no longer running, or is leased to another worker.
    """
    now = datetime.now(UTC)
    result = await session.execute(
        update(ReportJob)
        .where(
            ReportJob.id == job_id,
            ReportJob.status == JobStatus.RUNNING,
            ReportJob.cancel_requested.is_(False),
            *_held_by(worker_id),
        )
        .values(
            status=JobStatus.COMPLETED,
            file_path=str(artifact.path),
            file_size_bytes=artifact.size_bytes,
            page_count=artifact.page_count,
            total_rows=artifact.row_count,
            processed_rows=artifact.row_count,
            progress_percent=100,
            finished_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
            checkpoint_data=null(),
            error_message=None,
            next_attempt_at=None,
            leased_by=None,
            lease_expires_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def mark_failed(
    session: AsyncSession,
    job_id: uuid.UUID,
    error: str,
    *,
    next_attempt_at: datetime | None = None,
    worker_id: str | None = None,
) -> bool:
    """Fail a running job, optionally scheduling its retry.

    The failure checkpoint has already been written by the engine.

    Args:
        session: Database session.
        job_id: The failing job.
        error: Error message to record.
        next_attempt_at: When the job becomes claimable again, or None when
            the failure is final.
        worker_id: When given, the job must still be leased to this worker.

    Returns:
        True if the job transitioned (a job cancelled or reclaimed meanwhile
        stays as is).
    """
    result = await session.execute(
        update(ReportJob)
        .where(ReportJob.id == job_id, ReportJob.status == JobStatus.RUNNING, *_held_by(worker_id))
        .values(
            status=JobStatus.FAILED,
            error_message=error,
            finished_at=datetime.now(UTC),
            next_attempt_at=next_attempt_at,
            leased_by=None,
            lease_expires_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def get_download(
    session: AsyncSession,
    job_id: uuid.UUID,
    *,
    owner_id: str | None = None,
    now: datetime | None = None,
) -> ReportJob:
    """Resolve the downloadable artifact of a job.

    Raises:
        DownloadNotFoundError: If the job does not exist, is not completed, or its file is gone.
        DownloadExpiredError: If the download window has closed.
    """
    now = now or datetime.now(UTC)
    job = await get_report_job(session, job_id, owner_id)
    if job is None or job.status != JobStatus.COMPLETED or not job.file_path:
        msg = f"No downloadable export for job {job_id}"
        raise DownloadNotFoundError(msg)
    if job.has_expired(now):
        msg = f"Download link for job {job_id} has expired"
        raise DownloadExpiredError(msg)
    if not Path(job.file_path).exists():
        msg = f"Export file for job {job_id} is missing"
        raise DownloadNotFoundError(msg)
    return job


async def purge_expired_exports(session: AsyncSession, now: datetime | None = None) -> int:
    """Delete artifacts whose download window has closed and mark them expired.

    Returns:
        Number of jobs purged.
    """
    now = now or datetime.now(UTC)
    result = await session.execute(
        select(ReportJob).where(
            ReportJob.status == JobStatus.COMPLETED,
            ReportJob.download_expired.is_(False),
            ReportJob.expires_at <= now,
        )
    )
    jobs = list(result.scalars().all())
    for job in jobs:
        if job.file_path:
            Path(job.file_path).unlink(missing_ok=True)
        job.download_expired = True
    await session.commit()
    if jobs:
        logger.info(f"Purged {len(jobs)} expired exports")
    return len(jobs)


class JobStore:
    """Checkpoint and progress store for one job, one short session per call.

    With a ``worker_id`` every write only matches while that worker holds the
    job's lease, and renews the lease by ``lease_seconds``, so a job that is
    making progress is never reclaimed.

    Args:
        session_factory: Factory for async sessions.
        job_id: The job whose record is updated.
        worker_id: Worker holding the lease, or None for unleased access.
        lease_seconds: Lease length granted by each write.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        job_id: uuid.UUID,
        *,
        worker_id: str | None = None,
        lease_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.job_id = job_id
        self.worker_id = worker_id
        self.lease_seconds = lease_seconds

    def _lease_lost(self) -> LeaseLostError:
        return LeaseLostError(f"Worker {self.worker_id} no longer holds the lease on job {self.job_id}")

    async def _update(self, **values: object) -> None:
        if self.worker_id is not None and self.lease_seconds is not None:
            values["lease_expires_at"] = datetime.now(UTC) + timedelta(seconds=self.lease_seconds)
        async with self._session_factory() as session:
            result = await session.execute(
                update(ReportJob)
                .where(ReportJob.id == self.job_id, *_held_by(self.worker_id))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            matched = result.rowcount
        if self.worker_id is not None and matched != 1:
            raise self._lease_lost()

    async def record_total(self, total_rows: int) -> None:
        await self._update(total_rows=total_rows, processed_rows=0, progress_percent=0)

    async def record_progress(self, processed_rows: int, progress_percent: int, current_section: str | None) -> None:
        await self._update(
            processed_rows=processed_rows,
            progress_percent=progress_percent,
            current_section=current_section,
        )

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        await self._update(checkpoint_data=checkpoint.to_record())

    async def save_failure(self, checkpoint: Checkpoint) -> None:
        """Persist a failure checkpoint and count the failure."""
        await self._update(
            checkpoint_data=checkpoint.to_record(),
            retry_count=ReportJob.retry_count + 1,
        )

    async def clear_checkpoint(self) -> None:
        await self._update(checkpoint_data=null())

    async def is_cancel_requested(self) -> bool:
        """Whether the job was cancelled (or deleted) since the run started.

        Raises:
            LeaseLostError: If the job is now leased to another worker.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(ReportJob.cancel_requested, ReportJob.leased_by).where(ReportJob.id == self.job_id)
            )
            row = result.one_or_none()
        if row is None:
            return True
        if self.worker_id is not None and row.leased_by != self.worker_id:
            raise self._lease_lost()
        return row.cancel_requested
