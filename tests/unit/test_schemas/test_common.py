"""Unit tests for common Pydantic schemas."""

from analytics_exports.schemas.common import PaginationMeta


class TestPaginationMeta:
    """Tests for PaginationMeta."""

    def test_construction(self) -> None:
        """PaginationMeta holds correct values."""
        meta = PaginationMeta(total=100, page=2, page_size=20, total_pages=5)
        assert meta.total == 100
        assert meta.total_pages == 5

    def test_build_exact_multiple(self) -> None:
        meta = PaginationMeta.build(total=40, page=2, page_size=20)
        assert meta.total_pages == 2

    def test_build_empty(self) -> None:
        meta = PaginationMeta.build(total=0, page=1, page_size=20)
        assert meta.total_pages == 0
