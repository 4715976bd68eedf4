"""Tests for the PDF merge service."""

from pathlib import Path

import pytest
from PyPDF2 import PdfReader

from analytics_exports.lib.renderer.document import DocumentRenderer
from analytics_exports.lib.renderer.merge import DocumentMetadata, merge_documents, page_count


def _partial(tmp_path: Path, name: str, label: str) -> Path:
    path = tmp_path / name
    DocumentRenderer().render_window([[label]], ["Label"], path, heading=label)
    return path


class TestMergeDocuments:
    def test_single_input_is_passed_through(self, tmp_path: Path) -> None:
        source = _partial(tmp_path, "only.pdf", "only")
        output = tmp_path / "merged.pdf"

        assert merge_documents([source], output) == 1
        assert output.read_bytes() == source.read_bytes()

    def test_order_preserved(self, tmp_path: Path) -> None:
        paths = [_partial(tmp_path, f"part-{i}.pdf", f"Section {i}") for i in range(3)]
        output = tmp_path / "merged.pdf"

        assert merge_documents(paths, output) == 3
        texts = [page.extract_text() for page in PdfReader(str(output)).pages]
        assert [("Section 0" in t, "Section 1" in t, "Section 2" in t) for t in texts] == [
            (True, False, False),
            (False, True, False),
            (False, False, True),
        ]

    def test_metadata_stamped(self, tmp_path: Path) -> None:
        paths = [_partial(tmp_path, f"part-{i}.pdf", f"Section {i}") for i in range(2)]
        output = tmp_path / "merged.pdf"

        merge_documents(paths, output, DocumentMetadata(title="Orders", author="Analytics", subject="Orders"))

        info = PdfReader(str(output)).metadata
        assert info.title == "Orders"
        assert info.author == "Analytics"
        assert page_count(output) == 2

    def test_requires_input(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="at least one input"):
            merge_documents([], tmp_path / "merged.pdf")
