"""Tests for the reportlab document renderer."""

from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

from PyPDF2 import PdfReader

from analytics_exports.lib.planner.booklet import ContentsEntry
from analytics_exports.lib.renderer.document import EMPTY_DATASET_TEXT, DocumentRenderer, format_value


class TestFormatValue:
    def test_values(self) -> None:
        assert format_value(None) == ""
        assert format_value(Decimal("1234.5")) == "1,234.50"
        assert format_value(date(2026, 2, 1)) == "2026-02-01"
        assert format_value(datetime(2026, 2, 1, 9, 30, tzinfo=UTC)) == "2026-02-01 09:30"
        assert format_value(7) == "7"


class TestDocumentRenderer:
    """Tests for window, contents and empty rendering."""

    def test_render_window_returns_page_count(self, tmp_path: Path) -> None:
        path = tmp_path / "part.pdf"
        rows = [[i, f"Customer {i}", Decimal("10.00")] for i in range(200)]

        pages = DocumentRenderer().render_window(rows, ["#", "Customer", "Total"], path, heading="Acme & Sons")

        assert pages == len(PdfReader(str(path)).pages)
        assert pages > 1

    def test_render_contents_fits_reserved_pages(self, tmp_path: Path) -> None:
        path = tmp_path / "contents.pdf"
        entries = [ContentsEntry(label=f"Customer {i}", start_page=2 + i) for i in range(45)]

        pages = DocumentRenderer().render_contents("Booklet", entries, path, entries_per_page=40)

        assert pages == 2

    def test_render_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.pdf"

        pages = DocumentRenderer().render_empty("Order Detail Report", ["Order #", "Total"], path)

        assert pages == 1
        assert EMPTY_DATASET_TEXT in PdfReader(str(path)).pages[0].extract_text()

    def test_render_empty_without_columns(self, tmp_path: Path) -> None:
        assert DocumentRenderer().render_empty("Booklet", [], tmp_path / "empty.pdf") == 1
