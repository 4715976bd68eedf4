"""Output adapters used by the execution engine.

An output receives windows of rows in order, reports the part of its state
a checkpoint must capture, and turns what it has accumulated into the final
artifact.  Both adapters can be restored from a checkpoint so a resumed run
never re-renders a window that is already on disk.
"""

import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from analytics_exports.lib.pipeline.checkpoint import Checkpoint, PartialArtifact
from analytics_exports.lib.pipeline.windows import DatasetWindow
from analytics_exports.lib.planner.booklet import lay_out_contents, toc_pages
from analytics_exports.lib.planner.types import DatasetDescriptor
from analytics_exports.lib.renderer.document import DocumentRenderer
from analytics_exports.lib.renderer.merge import DocumentMetadata, merge_documents
from analytics_exports.lib.renderer.spreadsheet import SheetSpec, SpreadsheetWriter

SPOOL_FILE_NAME = "rows.jsonl"
CONTENTS_FILE_NAME = "contents.pdf"
EMPTY_FILE_NAME = "empty.pdf"


@dataclass(frozen=True)
class Section:
    """A resolved section: its dataset and, for booklets, the entity it covers."""

    dataset: DatasetDescriptor
    row_count: int
    key: int | None = None
    label: str | None = None

    @property
    def heading(self) -> str:
        return self.label or self.dataset.title


@dataclass(frozen=True)
class OutputResult:
    size_bytes: int
    page_count: int | None


def row_values(dataset: DatasetDescriptor, row: Mapping[str, Any], rank: int) -> list[Any]:
    """Project a result row onto the dataset's output columns."""
    values = [row.get(column.key) for column in dataset.columns]
    if dataset.ranked:
        values.insert(0, rank)
    return values


class ExportOutput(Protocol):
    """What the engine needs from an output format."""

    def can_resume(self, checkpoint: Checkpoint) -> bool: ...

    def restore(self, checkpoint: Checkpoint | None) -> None: ...

    def write(
        self,
        section_index: int,
        section: Section,
        rows: Sequence[Mapping[str, Any]],
        window: DatasetWindow,
    ) -> None: ...

    def checkpoint_fields(self) -> dict[str, Any]: ...

    def finalize(self, title: str, sections: Sequence[Section], output_path: Path) -> OutputResult: ...

    def cleanup(self) -> None: ...


class TabularOutput:
    """Spreadsheet output: rows spooled per window, workbook built at the end.

    Args:
        work_dir: Per-job directory holding the row spool.
    """

    def __init__(self, work_dir: Path) -> None:
        self.work_dir = work_dir
        self.writer = SpreadsheetWriter(work_dir / SPOOL_FILE_NAME)

    def can_resume(self, checkpoint: Checkpoint) -> bool:
        spool = self.writer.spool_path
        return spool.exists() and spool.stat().st_size >= checkpoint.spool_offset

    def restore(self, checkpoint: Checkpoint | None) -> None:
        self.writer.open(checkpoint.spool_offset if checkpoint else None)

    def write(
        self,
        section_index: int,
        section: Section,
        rows: Sequence[Mapping[str, Any]],
        window: DatasetWindow,
    ) -> None:
        self.writer.append_rows(
            section_index,
            (row_values(section.dataset, row, window.offset + i + 1) for i, row in enumerate(rows)),
        )

    def checkpoint_fields(self) -> dict[str, Any]:
        return {"spool_offset": self.writer.offset}

    def finalize(self, title: str, sections: Sequence[Section], output_path: Path) -> OutputResult:
        sheets = [
            SheetSpec(title=section.heading, headers=tuple(c.header for c in section.dataset.output_columns))
            for section in sections
        ] or [SheetSpec(title=title, headers=())]
        size = self.writer.finalize(sheets, output_path)
        return OutputResult(size_bytes=size, page_count=None)

    def cleanup(self) -> None:
        self.writer.close()
        shutil.rmtree(self.work_dir, ignore_errors=True)


class PaginatedOutput:
    """Document output: one partial PDF per window, merged in order at the end.

    Booklets (more than one keyed section) get a contents section whose page
    numbers come from the actual page counts of the rendered partials.

    Args:
        work_dir: Per-job directory holding the partial documents.
        renderer: Document renderer.
        author: Author stamped onto the final document.
        entries_per_page: Contents entries per page for booklets.
    """

    def __init__(self, work_dir: Path, renderer: DocumentRenderer, author: str, entries_per_page: int = 40) -> None:
        self.work_dir = work_dir
        self.renderer = renderer
        self.author = author
        self.entries_per_page = entries_per_page
        self.partials: list[PartialArtifact] = []

    def can_resume(self, checkpoint: Checkpoint) -> bool:
        return all((self.work_dir / partial.file_name).exists() for partial in checkpoint.partials)

    def restore(self, checkpoint: Checkpoint | None) -> None:
        self.partials = list(checkpoint.partials) if checkpoint else []
        self.work_dir.mkdir(parents=True, exist_ok=True)
        keep = {partial.file_name for partial in self.partials}
        for stale in self.work_dir.glob("part-*.pdf"):
            if stale.name not in keep:
                stale.unlink()

    def write(
        self,
        section_index: int,
        section: Section,
        rows: Sequence[Mapping[str, Any]],
        window: DatasetWindow,
    ) -> None:
        index = len(self.partials)
        file_name = f"part-{index:05d}.pdf"
        pages = self.renderer.render_window(
            [row_values(section.dataset, row, window.offset + i + 1) for i, row in enumerate(rows)],
            [column.header for column in section.dataset.output_columns],
            self.work_dir / file_name,
            heading=section.heading if window.offset == 0 else None,
        )
        self.partials.append(
            PartialArtifact(
                index=index,
                file_name=file_name,
                section_index=section_index,
                row_count=len(rows),
                page_count=pages,
            )
        )

    def checkpoint_fields(self) -> dict[str, Any]:
        return {"partials": tuple(self.partials)}

    def _render_contents(self, title: str, sections: Sequence[Section]) -> Path:
        section_pages = [0] * len(sections)
        for partial in self.partials:
            section_pages[partial.section_index] += partial.page_count
        pages = [(section.heading, section_pages[i]) for i, section in enumerate(sections)]

        path = self.work_dir / CONTENTS_FILE_NAME
        reserved = toc_pages(len(pages), self.entries_per_page)
        entries = lay_out_contents(pages, self.entries_per_page)
        rendered = self.renderer.render_contents(title, entries, path, self.entries_per_page)
        if rendered != reserved:
            logger.warning(f"Contents took {rendered} pages instead of {reserved}; renumbering")
            entries = lay_out_contents(pages, self.entries_per_page, contents_pages=rendered)
            self.renderer.render_contents(title, entries, path, self.entries_per_page)
        return path

    def finalize(self, title: str, sections: Sequence[Section], output_path: Path) -> OutputResult:
        metadata = DocumentMetadata(title=title, author=self.author, subject=title)
        if not self.partials:
            headers = [c.header for c in sections[0].dataset.output_columns] if sections else []
            paths = [self.work_dir / EMPTY_FILE_NAME]
            self.renderer.render_empty(title, headers, paths[0])
        else:
            paths = [self.work_dir / partial.file_name for partial in self.partials]
            if any(section.key is not None for section in sections):
                paths.insert(0, self._render_contents(title, sections))
        page_count = merge_documents(paths, output_path, metadata)
        return OutputResult(size_bytes=output_path.stat().st_size, page_count=page_count)

    def cleanup(self) -> None:
        shutil.rmtree(self.work_dir, ignore_errors=True)
