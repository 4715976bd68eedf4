"""Table-of-contents layout for per-entity booklets."""

import math
from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class ContentsEntry:
    """One table-of-contents line: an entity and the page its section starts on."""

    label: str
    start_page: int


def toc_pages(entry_count: int, entries_per_page: int) -> int:
    """Pages reserved for the table of contents itself (never less than one)."""
    return max(1, math.ceil(entry_count / entries_per_page))


def estimate_section_pages(row_count: int, rows_per_page: int) -> int:
    """Estimated page count of one section from its matched-row count."""
    return max(1, math.ceil(row_count / rows_per_page))


def lay_out_contents(
    sections: Iterable[tuple[str, int]],
    entries_per_page: int,
    contents_pages: int | None = None,
) -> list[ContentsEntry]:
    """Assign start pages from cumulative section page counts.

    The contents occupy the first pages of the booklet; the first section
    starts on the page after them.

    Args:
        sections: ``(label, page_count)`` pairs in booklet order.
        entries_per_page: Contents entries that fit on one page.
        contents_pages: Actual page count of the rendered contents, when it
            differs from the reserved estimate.

    Returns:
        One entry per section with strictly increasing start pages.
    """
    sections = list(sections)
    reserved = contents_pages or toc_pages(len(sections), entries_per_page)
    next_page = reserved + 1
    entries: list[ContentsEntry] = []
    for label, pages in sections:
        entries.append(ContentsEntry(label=label, start_page=next_page))
        next_page += max(1, pages)
    return entries


def estimate_contents(
    sections: Iterable[tuple[str, int]],
    *,
    rows_per_page: int,
    entries_per_page: int,
) -> list[ContentsEntry]:
    """Estimate the contents of a booklet before it is rendered.

    Entities with zero matching rows get no section and no entry.

    Args:
        sections: ``(label, row_count)`` pairs in booklet order.
        rows_per_page: Rows assumed to fit on one page.
        entries_per_page: Contents entries that fit on one page.
    """
    return lay_out_contents(
        ((label, estimate_section_pages(rows, rows_per_page)) for label, rows in sections if rows > 0),
        entries_per_page,
    )
