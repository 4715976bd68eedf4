"""Queue service: leases claimable jobs from the durable job table.

A job is claimable when it is queued and due, when it failed with a retry
scheduled for now or earlier, or when it is running under a lease that has
expired (its worker died).  Claims are compare-and-set updates on the
lease columns, so two workers never hold the same job at once.  The holder
renews its lease while it makes progress; only a lease that is left to
expire (its worker died or stalled) is reclaimed, which makes execution
at-least-once.
"""

import uuid
from datetime import UTC, datetime, timedelta

from loguru import logger
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from analytics_exports.models.report_job import JobStatus, ReportJob, awaiting_retry

CLAIM_CANDIDATES = 5


def claimable(now: datetime) -> ColumnElement[bool]:
    """Predicate matching jobs a worker may claim at ``now``."""
    return and_(
        ReportJob.cancel_requested.is_(False),
        or_(
            and_(
                ReportJob.status == JobStatus.QUEUED,
                or_(ReportJob.next_attempt_at.is_(None), ReportJob.next_attempt_at <= now),
            ),
            and_(awaiting_retry(), ReportJob.next_attempt_at <= now),
            and_(
                ReportJob.status == JobStatus.RUNNING,
                ReportJob.lease_expires_at.is_not(None),
                ReportJob.lease_expires_at < now,
            ),
        ),
    )


async def claim_next_job(
    session: AsyncSession,
    *,
    worker_id: str,
    lease_seconds: int,
    now: datetime | None = None,
) -> ReportJob | None:
    """Lease the oldest claimable job to a worker.

    Args:
        session: Database session.
        worker_id: Identifier of the claiming worker.
        lease_seconds: How long the lease lasts before the job is reclaimable.
        now: Reference time (defaults to the current UTC time).

    Returns:
        The claimed job in ``running`` state with ``attempts`` incremented, or
        None if nothing is claimable.
    """
    now = now or datetime.now(UTC)
    result = await session.execute(
        select(ReportJob.id).where(claimable(now)).order_by(ReportJob.created_at, ReportJob.id).limit(CLAIM_CANDIDATES)
    )
    candidate_ids: list[uuid.UUID] = list(result.scalars().all())

    for job_id in candidate_ids:
        claimed = await session.execute(
            update(ReportJob)
            .where(ReportJob.id == job_id, claimable(now))
            .values(
                status=JobStatus.RUNNING,
                leased_by=worker_id,
                lease_expires_at=now + timedelta(seconds=lease_seconds),
                attempts=ReportJob.attempts + 1,
                next_attempt_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if claimed.rowcount == 1:
            job = await session.get(ReportJob, job_id, populate_existing=True)
            if job is not None:
                logger.info(f"Worker {worker_id} claimed job {job.id} (attempt {job.attempts})")
                return job
    return None


async def release_lease(session: AsyncSession, job_id: uuid.UUID, worker_id: str) -> None:
    """Give up a lease without changing the job's status."""
    await session.execute(
        update(ReportJob)
        .where(ReportJob.id == job_id, ReportJob.leased_by == worker_id)
        .values(leased_by=None, lease_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def renew_lease(
    session: AsyncSession,
    job_id: uuid.UUID,
    worker_id: str,
    lease_seconds: int,
    now: datetime | None = None,
) -> bool:
    """Extend the lease of a running job held by ``worker_id``.

    Returns:
        False if the worker no longer holds the lease.
    """
    now = now or datetime.now(UTC)
    result = await session.execute(
        update(ReportJob)
        .where(ReportJob.id == job_id, ReportJob.leased_by == worker_id, ReportJob.status == JobStatus.RUNNING)
        .values(lease_expires_at=now + timedelta(seconds=lease_seconds))
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1
