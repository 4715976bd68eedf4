"""Chunked execution engine.

Drives one export from a planned dataset to a finished artifact: count the
rows once, walk the dataset window by window in order, hand every window to
the output adapter, advance progress, and persist a checkpoint whenever
progress crosses the next boundary.  Any error is captured in a failure
checkpoint before it is classified, so the next attempt resumes from the
last fully written window.
"""

import asyncio
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from analytics_exports.core.logging import job_logger
from analytics_exports.lib.errors import JobCancelledError, LeaseLostError, is_permanent
from analytics_exports.lib.pipeline.checkpoint import Checkpoint, SectionPlan
from analytics_exports.lib.pipeline.outputs import ExportOutput, PaginatedOutput, Section, TabularOutput
from analytics_exports.lib.pipeline.progress import CheckpointCadence, progress_percent
from analytics_exports.lib.pipeline.results import (
    Artifact,
    Cancelled,
    Completed,
    ExecutionOutcome,
    LeaseLost,
    PermanentFailure,
    TransientFailure,
)
from analytics_exports.lib.pipeline.windows import partition
from analytics_exports.lib.planner.types import (
    BookletDescriptor,
    DatasetDescriptor,
    Entity,
    OutputFormat,
    PlannedDataset,
)
from analytics_exports.lib.renderer.document import DocumentRenderer


class RowSource(Protocol):
    """Reads counted, ordered windows of a planned dataset."""

    async def count(self, dataset: DatasetDescriptor) -> int: ...

    async def fetch_window(self, dataset: DatasetDescriptor, offset: int, limit: int) -> list[Mapping[str, Any]]: ...

    async def list_entities(self, booklet: BookletDescriptor) -> list[Entity]: ...


class CheckpointStore(Protocol):
    """Durable progress and checkpoint storage for one job.

    Implementations raise ``LeaseLostError`` once the job has been leased to
    another worker.
    """

    async def record_total(self, total_rows: int) -> None: ...

    async def record_progress(
        self, processed_rows: int, progress_percent: int, current_section: str | None
    ) -> None: ...

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None: ...

    async def save_failure(self, checkpoint: Checkpoint) -> None: ...

    async def is_cancel_requested(self) -> bool: ...


@dataclass(frozen=True)
class ExecutionRun:
    """One execution attempt of a job.

    Attributes:
        job_id: The job being executed.
        output_format: Target document format.
        work_dir: Per-job directory for spools and partial documents.
        output_path: Where the final artifact is written.
        resume_record: Stored checkpoint to resume from, or None for a fresh run.
        total_rows: Row count persisted by an earlier attempt (trusted on resume).
    """

    job_id: uuid.UUID
    output_format: OutputFormat
    work_dir: Path
    output_path: Path
    resume_record: dict[str, Any] | None = None
    total_rows: int | None = None


@dataclass(frozen=True)
class EngineSettings:
    tabular_window_size: int = 5000
    paginated_window_size: int = 1000
    checkpoint_interval_percent: int = 10
    toc_entries_per_page: int = 40
    author: str = "Analytics Exports"


class ChunkedExecutionEngine:
    """Executes planned datasets window by window with checkpointed resume.

    Args:
        row_source: Source of counts and row windows.
        store: Checkpoint and progress store of the job being executed.
        settings: Window sizes, checkpoint cadence and document settings.
        renderer: Document renderer for paginated output.
    """

    def __init__(
        self,
        row_source: RowSource,
        store: CheckpointStore,
        settings: EngineSettings | None = None,
        renderer: DocumentRenderer | None = None,
    ) -> None:
        self.row_source = row_source
        self.store = store
        self.settings = settings or EngineSettings()
        self.renderer = renderer or DocumentRenderer()

    def window_size(self, output_format: OutputFormat) -> int:
        if output_format.is_paginated:
            return self.settings.paginated_window_size
        return self.settings.tabular_window_size

    def _output_for(self, run: ExecutionRun) -> ExportOutput:
        if run.output_format.is_paginated:
            return PaginatedOutput(
                run.work_dir,
                self.renderer,
                author=self.settings.author,
                entries_per_page=self.settings.toc_entries_per_page,
            )
        return TabularOutput(run.work_dir)

    async def resolve_sections(self, dataset: PlannedDataset, checkpoint: Checkpoint | None) -> list[Section]:
        """Resolve the sections of a dataset and their row counts.

        A plain dataset is one section.  A booklet has one section per entity
        with at least one matching row.  On resume the counts stored in the
        checkpoint are reused instead of re-counting.
        """
        if isinstance(dataset, DatasetDescriptor):
            if checkpoint is not None and checkpoint.sections:
                return [Section(dataset=dataset, row_count=checkpoint.sections[0].row_count)]
            return [Section(dataset=dataset, row_count=await self.row_source.count(dataset))]

        if checkpoint is not None and checkpoint.sections:
            return [
                Section(
                    dataset=dataset.section_for(Entity(key=plan.key, label=plan.label or "")),
                    row_count=plan.row_count,
                    key=plan.key,
                    label=plan.label,
                )
                for plan in checkpoint.sections
            ]

        sections = []
        for entity in await self.row_source.list_entities(dataset):
            section_dataset = dataset.section_for(entity)
            rows = await self.row_source.count(section_dataset)
            if rows > 0:
                sections.append(Section(dataset=section_dataset, row_count=rows, key=entity.key, label=entity.label))
        return sections

    @staticmethod
    def _resumable(run: ExecutionRun, checkpoint: Checkpoint, output: ExportOutput) -> bool:
        if run.total_rows is None:
            return False
        if not checkpoint.sections and run.total_rows > 0:
            return False
        return output.can_resume(checkpoint)

    @staticmethod
    def _checkpoint(
        processed: int,
        current_section: str | None,
        sections: Sequence[Section],
        output: ExportOutput,
    ) -> Checkpoint:
        return Checkpoint(
            processed_rows=processed,
            current_section=current_section,
            sections=tuple(SectionPlan(key=s.key, label=s.label, row_count=s.row_count) for s in sections),
            **output.checkpoint_fields(),
        )

    async def execute(self, run: ExecutionRun, dataset: PlannedDataset) -> ExecutionOutcome:
        """Run (or resume) one export to completion, failure or cancellation.

        Args:
            run: The execution attempt.
            dataset: Planned dataset to export.

        Returns:
            The execution outcome; errors are returned, never raised, once a
            failure checkpoint has been written.
        """
        log = job_logger(run.job_id)
        output = self._output_for(run)
        sections: list[Section] = []
        processed = 0
        current_section: str | None = None

        try:
            checkpoint = Checkpoint.from_record(run.resume_record) if run.resume_record else None
            if checkpoint is not None and not self._resumable(run, checkpoint, output):
                log.warning("Checkpoint cannot be resumed, restarting export from the first row")
                checkpoint = None

            sections = await self.resolve_sections(dataset, checkpoint)
            total = sum(section.row_count for section in sections)
            if checkpoint is None:
                await self.store.record_total(total)
            else:
                processed = min(checkpoint.processed_rows, total)
                log.info(f"Resuming export at row {processed} of {total}")

            output.restore(checkpoint)
            cadence = CheckpointCadence(self.settings.checkpoint_interval_percent, progress_percent(processed, total))
            window_size = self.window_size(run.output_format)

            section_start = 0
            for index, section in enumerate(sections):
                section_end = section_start + section.row_count
                if processed < section_end:
                    current_section = section.label
                    for window in partition(section.row_count, window_size, start=processed - section_start):
                        if await self.store.is_cancel_requested():
                            raise JobCancelledError(str(run.job_id))
                        rows = await self.row_source.fetch_window(section.dataset, window.offset, window.limit)
                        await asyncio.to_thread(output.write, index, section, rows, window)

                        processed = section_start + window.end
                        percent = progress_percent(processed, total)
                        await self.store.record_progress(processed, percent, current_section)
                        if cadence.crossed(percent):
                            await self.store.save_checkpoint(
                                self._checkpoint(processed, current_section, sections, output)
                            )
                            log.debug(f"Checkpoint at {processed}/{total} rows ({percent}%)")
                section_start = section_end

            title = dataset.title
            result = await asyncio.to_thread(output.finalize, title, sections, run.output_path)
        except JobCancelledError:
            log.info(f"Export cancelled after {processed} rows")
            output.cleanup()
            return Cancelled(processed_rows=processed)
        except LeaseLostError:
            # the work directory now belongs to the worker holding the lease
            log.warning(f"Lease lost after {processed} rows; abandoning this attempt")
            return LeaseLost(processed_rows=processed)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            failure = self._checkpoint(processed, current_section, sections, output).with_error(error)
            await self.store.save_failure(failure)
            if is_permanent(exc):
                log.error(f"Export failed permanently after {processed} rows: {error}")
                return PermanentFailure(error=error, processed_rows=processed)
            log.warning(f"Export failed after {processed} rows, will retry: {error}")
            return TransientFailure(error=error, processed_rows=processed)

        output.cleanup()
        log.info(f"Export finished: {total} rows, {result.size_bytes} bytes")
        return Completed(
            artifact=Artifact(
                path=run.output_path,
                size_bytes=result.size_bytes,
                row_count=total,
                page_count=result.page_count,
            )
        )
