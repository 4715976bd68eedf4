"""Preview service: the first page(s) of a planned report, run synchronously."""

import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from analytics_exports.lib.pipeline.outputs import row_values
from analytics_exports.lib.planner.booklet import ContentsEntry, estimate_contents
from analytics_exports.lib.planner.planners import plan
from analytics_exports.lib.planner.types import BookletDescriptor, ColumnSpec, DatasetDescriptor, Entity, ReportType
from analytics_exports.services.row_source import clamp_window, count_statement, window_statement


@dataclass(frozen=True)
class PreviewResult:
    """One page of a report preview."""

    title: str
    columns: list[ColumnSpec]
    rows: list[list[Any]]
    total_rows: int
    page: int
    page_size: int
    query_time_ms: float
    contents: list[ContentsEntry] | None = None


def _previewable(dataset: DatasetDescriptor | BookletDescriptor) -> DatasetDescriptor:
    """Booklets preview their entity list; other reports preview their rows."""
    if isinstance(dataset, BookletDescriptor):
        return DatasetDescriptor(
            title=dataset.title,
            columns=(ColumnSpec("label", dataset.entity_noun),),
            statement=dataset.entities,
        )
    return dataset


async def estimate_booklet_contents(
    session: AsyncSession,
    booklet: BookletDescriptor,
    *,
    rows_per_page: int,
    entries_per_page: int,
) -> list[ContentsEntry]:
    """Estimated table of contents of a booklet from per-entity row counts."""
    result = await session.execute(booklet.entities)
    sections = []
    for row in result.all():
        section = booklet.section_for(Entity(key=row.key, label=row.label))
        rows = (await session.execute(count_statement(section))).scalar_one()
        sections.append((row.label, rows))
    return estimate_contents(sections, rows_per_page=rows_per_page, entries_per_page=entries_per_page)


async def preview_report(
    session: AsyncSession,
    report_type: ReportType | str,
    filters: dict | None,
    *,
    page: int = 1,
    page_size: int = 50,
    rows_per_page: int = 20,
    entries_per_page: int = 40,
) -> PreviewResult:
    """Plan a report and return one page of its rows.

    Args:
        session: Database session.
        report_type: Report variant.
        filters: Raw filters for the report type.
        page: Page number (1-based).
        page_size: Rows per page.
        rows_per_page: Rows assumed per booklet page when estimating contents.
        entries_per_page: Contents entries per booklet page.

    Returns:
        The preview page with the dataset's total row count and, for
        booklets, the estimated table of contents.

    Raises:
        FilterValidationError: If the filters are invalid.
    """
    planned = plan(report_type, filters)
    dataset = _previewable(planned)
    offset = (page - 1) * page_size
    started = time.perf_counter()

    total = (await session.execute(count_statement(dataset))).scalar_one()
    if dataset.row_limit is not None:
        total = min(total, dataset.row_limit)
    limit = clamp_window(dataset, offset, page_size)
    rows: list[list[Any]] = []
    if limit > 0:
        result = await session.execute(window_statement(dataset, offset, limit))
        rows = [row_values(dataset, row, offset + i + 1) for i, row in enumerate(result.mappings().all())]

    contents = None
    if isinstance(planned, BookletDescriptor):
        contents = await estimate_booklet_contents(
            session, planned, rows_per_page=rows_per_page, entries_per_page=entries_per_page
        )

    return PreviewResult(
        title=dataset.title,
        columns=list(dataset.output_columns),
        rows=rows,
        total_rows=total,
        page=page,
        page_size=page_size,
        query_time_ms=round((time.perf_counter() - started) * 1000, 2),
        contents=contents,
    )
