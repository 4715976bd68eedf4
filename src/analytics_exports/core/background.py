"""Background export workers.

``ExportWorkerPool`` runs N asyncio workers in the API process (or in the
standalone ``worker`` CLI command).  Each worker leases a claimable job from
the durable queue, hands it to ``ExportSupervisor``, and polls again.  The
supervisor applies the retry policy to the execution outcome: reschedule
with backoff, or fail permanently with exactly one failure notification.
"""

import asyncio
import contextlib
import shutil
import socket
import uuid
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_exports.core.config import Settings
from analytics_exports.core.logging import job_logger
from analytics_exports.lib.errors import LeaseLostError
from analytics_exports.lib.pipeline.results import (
    Cancelled,
    Completed,
    ExecutionOutcome,
    LeaseLost,
    PermanentFailure,
    TransientFailure,
)
from analytics_exports.lib.pipeline.retry import RetryPolicy
from analytics_exports.models.report_job import ReportJob
from analytics_exports.services.export_runner import run_export_job
from analytics_exports.services.notification_service import Notifier, get_notifier, send_notification
from analytics_exports.services.queue_service import claim_next_job, release_lease, renew_lease
from analytics_exports.services.report_job_service import get_report_job, mark_failed


def retry_policy(settings: Settings) -> RetryPolicy:
    """Retry policy taken from application settings."""
    return RetryPolicy(
        max_attempts=settings.report_max_attempts,
        backoff_seconds=tuple(settings.report_retry_backoff_list),
    )


class ExportSupervisor:
    """Runs claimed jobs and applies the retry decision to their outcome.

    Args:
        session_factory: Factory for async sessions.
        settings: Application settings.
        notifier: Notification channel (defaults from settings).
        policy: Retry policy (defaults from settings).
        heartbeat_seconds: Interval between lease renewals (defaults to a
            third of the lease length).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        notifier: Notifier | None = None,
        policy: RetryPolicy | None = None,
        heartbeat_seconds: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings
        self.notifier = notifier or get_notifier(settings)
        self.policy = policy or retry_policy(settings)
        self.heartbeat_seconds = heartbeat_seconds or settings.worker_lease_seconds / 3

    async def _heartbeat(self, job_id: uuid.UUID, worker_id: str) -> None:
        """Renew the lease periodically until cancelled or the lease is gone."""
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                async with self.session_factory() as session:
                    renewed = await renew_lease(session, job_id, worker_id, self.settings.worker_lease_seconds)
            except Exception:
                logger.exception(f"Failed to renew the lease on job {job_id}")
                continue
            if not renewed:
                job_logger(job_id, worker=worker_id).warning("Lease no longer held; heartbeat stopped")
                return

    async def process(self, job: ReportJob, worker_id: str) -> ExecutionOutcome:
        """Execute a leased job and settle its outcome.

        The lease is renewed by a heartbeat for as long as the execution runs,
        so a slow window or a long final merge does not let it expire.
        """
        heartbeat = asyncio.create_task(self._heartbeat(job.id, worker_id))
        try:
            outcome = await run_export_job(
                job.id, session_factory=self.session_factory, settings=self.settings, worker_id=worker_id
            )
        except LeaseLostError:
            outcome = LeaseLost()
        except Exception as exc:
            job_logger(job.id).exception("Export crashed outside the execution engine")
            outcome = TransientFailure(error=str(exc) or type(exc).__name__)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
        await self.settle(job.id, job.attempts, outcome, worker_id)
        return outcome

    async def settle(self, job_id: uuid.UUID, attempts: int, outcome: ExecutionOutcome, worker_id: str) -> None:
        """Apply the retry decision for one execution outcome.

        Args:
            job_id: The executed job.
            attempts: Executions started so far, this one included.
            outcome: What the execution returned.
            worker_id: The worker holding the lease.
        """
        log = job_logger(job_id, worker=worker_id)
        if isinstance(outcome, Completed):
            async with self.session_factory() as session:
                job = await get_report_job(session, job_id)
            if job is not None:
                await send_notification(self.notifier, "export.completed", job)
            return

        if isinstance(outcome, Cancelled):
            async with self.session_factory() as session:
                await release_lease(session, job_id, worker_id)
            return

        if isinstance(outcome, LeaseLost):
            log.warning("Job was reclaimed by another worker; leaving it to the new holder")
            return

        if self.policy.should_retry(outcome, attempts):
            next_attempt_at = self.policy.next_attempt_at(attempts, datetime.now(UTC))
            async with self.session_factory() as session:
                scheduled = await mark_failed(
                    session, job_id, outcome.error, next_attempt_at=next_attempt_at, worker_id=worker_id
                )
            if scheduled:
                log.warning(f"Attempt {attempts}/{self.policy.max_attempts} failed, retrying at {next_attempt_at}")
            else:
                log.info("Job was cancelled or reclaimed before its retry could be scheduled")
            return

        reason = "permanent error" if isinstance(outcome, PermanentFailure) else "retries exhausted"
        async with self.session_factory() as session:
            transitioned = await mark_failed(session, job_id, outcome.error, worker_id=worker_id)
            job = await get_report_job(session, job_id)
        if job is None or job.leased_by in (None, worker_id):
            shutil.rmtree(Path(self.settings.export_work_dir) / str(job_id), ignore_errors=True)
        log.error(f"Export failed after {attempts} attempt(s) ({reason}): {outcome.error}")
        if transitioned and job is not None:
            await send_notification(self.notifier, "export.failed", job)


class ExportWorkerPool:
    """Pool of asyncio workers draining the export queue.

    Args:
        supervisor: Executes claimed jobs.
        session_factory: Factory for async sessions.
        concurrency: Number of workers.
        poll_interval: Seconds an idle worker waits before polling again.
        lease_seconds: Lease length of a claimed job.
    """

    def __init__(
        self,
        supervisor: ExportSupervisor,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        concurrency: int = 2,
        poll_interval: float = 2.0,
        lease_seconds: int = 3600,
    ) -> None:
        self.supervisor = supervisor
        self.session_factory = session_factory
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.lease_seconds = lease_seconds
        self._name = f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @classmethod
    def from_settings(cls, session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> "ExportWorkerPool":
        return cls(
            ExportSupervisor(session_factory, settings),
            session_factory,
            concurrency=settings.worker_concurrency,
            poll_interval=settings.worker_poll_interval,
            lease_seconds=settings.worker_lease_seconds,
        )

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def run_once(self, worker_id: str) -> bool:
        """Claim and process at most one job.

        Returns:
            True if a job was processed.
        """
        async with self.session_factory() as session:
            job = await claim_next_job(session, worker_id=worker_id, lease_seconds=self.lease_seconds)
        if job is None:
            return False
        await self.supervisor.process(job, worker_id)
        return True

    async def _worker(self, worker_id: str) -> None:
        logger.info(f"Export worker {worker_id} started")
        while not self._stopping.is_set():
            try:
                processed = await self.run_once(worker_id)
            except Exception:
                logger.exception(f"Export worker {worker_id} failed to process the queue")
                processed = False
            if not processed:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
        logger.info(f"Export worker {worker_id} stopped")

    def start(self) -> None:
        """Start the workers on the running event loop."""
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._worker(f"{self._name}-{i}"), name=f"export-worker-{i}")
            for i in range(self.concurrency)
        ]

    async def stop(self) -> None:
        """Stop the workers, cancelling any job still executing.

        A cancelled job keeps its lease until it expires and is then
        reclaimed, resuming from its last checkpoint.
        """
        self._stopping.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []

    async def wait(self) -> None:
        """Block until all workers have exited."""
        await asyncio.gather(*self._tasks, return_exceptions=True)
