"""Paginated document output rendered with reportlab platypus.

Every window of rows becomes an independent PDF; the merge service stitches
them together afterwards.  Page counts are read back from the rendered file
rather than estimated.
"""

from collections.abc import Sequence
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from analytics_exports.lib.planner.booklet import ContentsEntry
from analytics_exports.lib.renderer.merge import page_count

EMPTY_DATASET_TEXT = "No rows matched the selected filters."

_TABLE_STYLE = TableStyle(
    [
        ("BACKGROUND", (0, 0), (-1, 0), colors.grey),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 7),
        ("ALIGN", (0, 0), (-1, -1), "LEFT"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.black),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.whitesmoke]),
    ]
)

_CONTENTS_STYLE = TableStyle(
    [
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGN", (1, 0), (1, -1), "RIGHT"),
        ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
    ]
)


def format_value(value: Any) -> str:
    """Render one row value as cell text."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal | float):
        return f"{value:,.2f}"
    return str(value)


class DocumentRenderer:
    """Renders row windows, contents pages and empty reports to PDF files.

    Args:
        pagesize: Page size for every rendered document.
        margin: Page margin in points.
    """

    def __init__(self, pagesize: tuple[float, float] = landscape(letter), margin: float = 0.5 * inch) -> None:
        self.pagesize = pagesize
        self.margin = margin
        self._styles = getSampleStyleSheet()

    def _build(self, path: Path, story: list) -> int:
        path.parent.mkdir(parents=True, exist_ok=True)
        doc = SimpleDocTemplate(
            str(path),
            pagesize=self.pagesize,
            leftMargin=self.margin,
            rightMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
        )
        doc.build(story)
        return page_count(path)

    def _table(self, headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> Table:
        data = [list(headers)] + [[format_value(v) for v in row] for row in rows]
        table = Table(data, repeatRows=1)
        table.setStyle(_TABLE_STYLE)
        return table

    def render_window(
        self,
        rows: Sequence[Sequence[Any]],
        headers: Sequence[str],
        path: Path,
        *,
        heading: str | None = None,
    ) -> int:
        """Render one window of rows as a standalone PDF.

        Args:
            rows: Row values in column order.
            headers: Column headers, repeated on every page.
            path: Destination PDF path.
            heading: Optional title printed above the table.

        Returns:
            Number of pages written.
        """
        story: list = []
        if heading:
            story.extend([Paragraph(escape(heading), self._styles["Heading2"]), Spacer(1, 6)])
        story.append(self._table(headers, rows))
        return self._build(path, story)

    def render_contents(self, title: str, entries: Sequence[ContentsEntry], path: Path, entries_per_page: int) -> int:
        """Render the table of contents of a booklet.

        A page break is forced after every ``entries_per_page`` entries so the
        contents occupy exactly the pages reserved for them.

        Returns:
            Number of pages written.
        """
        story: list = [Paragraph(escape(title), self._styles["Title"]), Paragraph("Contents", self._styles["Heading2"])]
        for start in range(0, len(entries), entries_per_page):
            if start:
                story.append(PageBreak())
            chunk = entries[start : start + entries_per_page]
            table = Table(
                [[entry.label, str(entry.start_page)] for entry in chunk],
                colWidths=[self.pagesize[0] - 2 * self.margin - inch, inch],
                rowHeights=10,
            )
            table.setStyle(_CONTENTS_STYLE)
            story.append(table)
        return self._build(path, story)

    def render_empty(self, title: str, headers: Sequence[str], path: Path) -> int:
        """Render a valid one-page document for a dataset with no rows."""
        story: list = [
            Paragraph(escape(title), self._styles["Title"]),
            Paragraph(EMPTY_DATASET_TEXT, self._styles["Normal"]),
        ]
        if headers:
            story.extend([Spacer(1, 12), self._table(headers, [])])
        return self._build(path, story)
