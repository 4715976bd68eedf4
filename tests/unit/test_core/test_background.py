"""Tests for the export worker pool and the retry decisions applied to outcomes."""

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_exports.core.background import ExportSupervisor, ExportWorkerPool, retry_policy
from analytics_exports.core.config import Settings
from analytics_exports.lib.errors import LeaseLostError
from analytics_exports.lib.pipeline.results import (
    Artifact,
    Cancelled,
    Completed,
    LeaseLost,
    PermanentFailure,
    TransientFailure,
)
from analytics_exports.lib.pipeline.retry import RetryPolicy
from analytics_exports.models.report_job import JobStatus, ReportJob
from analytics_exports.services.report_job_service import get_report_job

FILTERS = {"date_from": "2026-02-01", "date_to": "2026-02-28"}


async def _running_job(session_factory: async_sessionmaker[AsyncSession], attempts: int = 1) -> ReportJob:
    async with session_factory() as session:
        job = ReportJob(
            owner_id="alice",
            report_type="detail",
            output_format="xlsx",
            filters=FILTERS,
            status=JobStatus.RUNNING,
            attempts=attempts,
            leased_by="w1",
            lease_expires_at=datetime.now(UTC) + timedelta(minutes=10),
        )
        session.add(job)
        await session.commit()
        return job


async def _reload(session_factory: async_sessionmaker[AsyncSession], job: ReportJob) -> ReportJob:
    async with session_factory() as session:
        return await get_report_job(session, job.id)


class TestRetryPolicyFromSettings:
    def test_maps_settings(self, settings: Settings) -> None:
        policy = retry_policy(settings)
        assert policy.max_attempts == 3
        assert policy.backoff_seconds == (60, 300, 900)


class TestExportSupervisorSettle:
    """Tests for applying the retry decision to an execution outcome."""

    @pytest.mark.asyncio
    async def test_transient_failure_schedules_retry(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        notifier = AsyncMock()
        supervisor = ExportSupervisor(session_factory, settings, notifier=notifier)
        job = await _running_job(session_factory, attempts=1)
        before = datetime.now(UTC)

        await supervisor.settle(job.id, 1, TransientFailure(error="timeout"), "w1")

        job = await _reload(session_factory, job)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "timeout"
        assert job.next_attempt_at >= before + timedelta(seconds=60)
        assert job.leased_by is None
        notifier.notify_failed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_with_one_notification(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        notifier = AsyncMock()
        supervisor = ExportSupervisor(session_factory, settings, notifier=notifier)
        job = await _running_job(session_factory, attempts=3)
        work_dir = Path(settings.export_work_dir) / str(job.id)
        work_dir.mkdir(parents=True)

        await supervisor.settle(job.id, 3, TransientFailure(error="timeout"), "w1")

        job = await _reload(session_factory, job)
        assert job.status == JobStatus.FAILED
        assert job.next_attempt_at is None
        assert not work_dir.exists()
        notifier.notify_failed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        notifier = AsyncMock()
        supervisor = ExportSupervisor(session_factory, settings, notifier=notifier)
        job = await _running_job(session_factory, attempts=1)

        await supervisor.settle(job.id, 1, PermanentFailure(error="bad filters"), "w1")

        job = await _reload(session_factory, job)
        assert job.status == JobStatus.FAILED
        assert job.next_attempt_at is None
        notifier.notify_failed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_completion_notifies(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings, tmp_path: Path
    ) -> None:
        notifier = AsyncMock()
        supervisor = ExportSupervisor(session_factory, settings, notifier=notifier)
        job = await _running_job(session_factory)
        artifact = Artifact(path=tmp_path / "out.xlsx", size_bytes=10, row_count=3)

        await supervisor.settle(job.id, 1, Completed(artifact=artifact), "w1")

        notifier.notify_completed.assert_awaited_once()
        assert notifier.notify_completed.await_args.args[0].id == job.id

    @pytest.mark.asyncio
    async def test_cancellation_releases_lease_silently(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        notifier = AsyncMock()
        supervisor = ExportSupervisor(session_factory, settings, notifier=notifier)
        job = await _running_job(session_factory)

        await supervisor.settle(job.id, 1, Cancelled(processed_rows=10), "w1")

        job = await _reload(session_factory, job)
        assert job.leased_by is None
        notifier.notify_completed.assert_not_awaited()
        notifier.notify_failed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_lease_leaves_job_to_new_holder(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        notifier = AsyncMock()
        supervisor = ExportSupervisor(session_factory, settings, notifier=notifier)
        job = await _running_job(session_factory)
        work_dir = Path(settings.export_work_dir) / str(job.id)
        work_dir.mkdir(parents=True)

        await supervisor.settle(job.id, 1, LeaseLost(processed_rows=10), "w0")

        job = await _reload(session_factory, job)
        assert job.status == JobStatus.RUNNING
        assert job.leased_by == "w1"
        assert work_dir.exists()
        notifier.notify_failed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_final_failure_of_reclaimed_job_keeps_new_holder_work(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        notifier = AsyncMock()
        supervisor = ExportSupervisor(session_factory, settings, notifier=notifier)
        job = await _running_job(session_factory, attempts=3)
        work_dir = Path(settings.export_work_dir) / str(job.id)
        work_dir.mkdir(parents=True)

        await supervisor.settle(job.id, 3, TransientFailure(error="timeout"), "w0")

        job = await _reload(session_factory, job)
        assert job.status == JobStatus.RUNNING
        assert job.leased_by == "w1"
        assert work_dir.exists()
        notifier.notify_failed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_of_reclaimed_job_is_not_scheduled(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        supervisor = ExportSupervisor(session_factory, settings, notifier=AsyncMock())
        job = await _running_job(session_factory, attempts=1)

        await supervisor.settle(job.id, 1, TransientFailure(error="timeout"), "w0")

        job = await _reload(session_factory, job)
        assert job.status == JobStatus.RUNNING
        assert job.next_attempt_at is None

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_change_outcome(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        notifier = AsyncMock()
        notifier.notify_failed.side_effect = RuntimeError("webhook down")
        supervisor = ExportSupervisor(session_factory, settings, notifier=notifier)
        job = await _running_job(session_factory, attempts=3)

        await supervisor.settle(job.id, 3, TransientFailure(error="timeout"), "w1")

        assert (await _reload(session_factory, job)).status == JobStatus.FAILED


class TestExportSupervisorProcess:
    @pytest.mark.asyncio
    async def test_crash_outside_engine_counts_as_transient(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        supervisor = ExportSupervisor(session_factory, settings, notifier=AsyncMock())
        job = await _running_job(session_factory)

        with patch(
            "analytics_exports.core.background.run_export_job", AsyncMock(side_effect=RuntimeError("boom"))
        ):
            outcome = await supervisor.process(job, "w1")

        assert outcome == TransientFailure(error="boom")
        job = await _reload(session_factory, job)
        assert job.status == JobStatus.FAILED
        assert job.next_attempt_at is not None

    @pytest.mark.asyncio
    async def test_lost_lease_is_not_retried(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        supervisor = ExportSupervisor(session_factory, settings, notifier=AsyncMock())
        job = await _running_job(session_factory)

        with patch(
            "analytics_exports.core.background.run_export_job", AsyncMock(side_effect=LeaseLostError("reclaimed"))
        ):
            outcome = await supervisor.process(job, "w1")

        assert outcome == LeaseLost()
        job = await _reload(session_factory, job)
        assert job.status == JobStatus.RUNNING
        assert job.next_attempt_at is None

    @pytest.mark.asyncio
    async def test_heartbeat_renews_lease_during_execution(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        supervisor = ExportSupervisor(session_factory, settings, notifier=AsyncMock(), heartbeat_seconds=0.01)
        job = await _running_job(session_factory)
        leases = []

        async def slow_run(job_id, **kwargs) -> Cancelled:
            await asyncio.sleep(0.2)
            leases.append((await _reload(session_factory, job)).lease_expires_at)
            return Cancelled()

        with patch("analytics_exports.core.background.run_export_job", slow_run):
            await supervisor.process(job, "w1")

        assert leases[0] > datetime.now(UTC) + timedelta(seconds=settings.worker_lease_seconds / 2)
        assert (await _reload(session_factory, job)).leased_by is None


class TestExportWorkerPool:
    """Tests for draining the queue with the worker pool."""

    @pytest.mark.asyncio
    async def test_run_once_on_empty_queue(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        pool = ExportWorkerPool(ExportSupervisor(session_factory, settings, notifier=AsyncMock()), session_factory)
        assert await pool.run_once("w1") is False

    @pytest.mark.asyncio
    async def test_retries_are_bounded(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        """A job that always fails transiently runs max_attempts times and notifies once."""
        notifier = AsyncMock()
        supervisor = ExportSupervisor(
            session_factory, settings, notifier=notifier, policy=RetryPolicy(max_attempts=3, backoff_seconds=(0,))
        )
        pool = ExportWorkerPool(supervisor, session_factory)
        async with session_factory() as session:
            job = ReportJob(owner_id="alice", report_type="detail", output_format="xlsx", filters=FILTERS)
            session.add(job)
            await session.commit()

        with patch(
            "analytics_exports.core.background.run_export_job",
            AsyncMock(return_value=TransientFailure(error="timeout")),
        ) as run:
            processed = [await pool.run_once("w1") for _ in range(4)]

        assert processed == [True, True, True, False]
        assert run.await_count == 3
        job = await _reload(session_factory, job)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        notifier.notify_failed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_and_stop(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> None:
        pool = ExportWorkerPool(
            ExportSupervisor(session_factory, settings, notifier=AsyncMock()),
            session_factory,
            concurrency=2,
            poll_interval=0.01,
        )
        pool.start()
        assert pool.running is True

        await pool.stop()

        assert pool.running is False
