"""Core planner types: report and format enums, column specs and dataset descriptors."""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from sqlalchemy import Select


class ReportType(StrEnum):
    """Closed set of report variants."""

    DETAIL = "detail"
    SUMMARY = "summary"
    TOP_N = "top_n"
    EXCEPTIONS = "exceptions"
    PER_ENTITY = "per_entity"


class OutputFormat(StrEnum):
    """Output document formats."""

    PAGINATED_DOCUMENT = "pdf"
    TABULAR_SPREADSHEET = "xlsx"

    @property
    def is_paginated(self) -> bool:
        return self is OutputFormat.PAGINATED_DOCUMENT

    @property
    def extension(self) -> str:
        return self.value


@dataclass(frozen=True)
class ColumnSpec:
    """One output column: the row key it reads and the header it prints."""

    key: str
    header: str


RANK_COLUMN = ColumnSpec("rank", "Rank")


@dataclass(frozen=True)
class DatasetDescriptor:
    """A well-formed, ordered, filterable dataset.

    Attributes:
        title: Human-readable report title.
        columns: Output columns in display order.
        statement: Ordered SELECT without LIMIT/OFFSET; windows are applied by the row source.
        row_limit: Upper bound on rows (top-N), or None for unbounded.
        ranked: Whether a 1-based rank column is prepended at render time.
    """

    title: str
    columns: tuple[ColumnSpec, ...]
    statement: Select[Any]
    row_limit: int | None = None
    ranked: bool = False

    @property
    def output_columns(self) -> tuple[ColumnSpec, ...]:
        """Columns including the synthetic rank column when ranked."""
        if self.ranked:
            return (RANK_COLUMN, *self.columns)
        return self.columns


@dataclass(frozen=True)
class Entity:
    """One subject of a per-entity booklet."""

    key: int
    label: str


@dataclass(frozen=True)
class BookletDescriptor:
    """Dataset of repeated per-entity sub-reports.

    Attributes:
        title: Booklet title.
        entity_noun: What one section is about ("Customer", "Student", ...).
        entities: Ordered SELECT yielding ``key`` and ``label`` columns.
        section_for: Re-runs the base query with one entity pinned.
    """

    title: str
    entity_noun: str
    entities: Select[Any]
    section_for: Callable[[Entity], DatasetDescriptor] = field(compare=False)


PlannedDataset = DatasetDescriptor | BookletDescriptor
