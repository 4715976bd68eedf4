"""Tests for booklet table-of-contents layout."""

from analytics_exports.lib.planner.booklet import (
    estimate_contents,
    estimate_section_pages,
    lay_out_contents,
    toc_pages,
)


class TestTocPages:
    def test_at_least_one_page(self) -> None:
        assert toc_pages(0, 40) == 1
        assert toc_pages(40, 40) == 1

    def test_rounds_up(self) -> None:
        assert toc_pages(41, 40) == 2


class TestEstimateSectionPages:
    def test_empty_section_still_takes_a_page(self) -> None:
        assert estimate_section_pages(0, 20) == 1

    def test_rounds_up(self) -> None:
        assert estimate_section_pages(40, 20) == 2
        assert estimate_section_pages(41, 20) == 3


class TestLayOutContents:
    """Tests for start-page assignment."""

    def test_first_section_starts_after_contents(self) -> None:
        entries = lay_out_contents([("Acme", 3), ("Bolt", 1)], entries_per_page=40)
        assert [e.start_page for e in entries] == [2, 5]

    def test_multi_page_contents_shift_start_pages(self) -> None:
        sections = [(f"Entity {i}", 1) for i in range(45)]
        entries = lay_out_contents(sections, entries_per_page=40)
        assert entries[0].start_page == 3
        assert entries[-1].start_page == 47

    def test_actual_contents_pages_override_estimate(self) -> None:
        entries = lay_out_contents([("Acme", 2), ("Bolt", 2)], entries_per_page=40, contents_pages=2)
        assert [e.start_page for e in entries] == [3, 5]

    def test_start_pages_strictly_increase(self) -> None:
        entries = lay_out_contents([("A", 0), ("B", 0), ("C", 4)], entries_per_page=40)
        pages = [e.start_page for e in entries]
        assert pages == sorted(set(pages))


class TestEstimateContents:
    def test_booklet_with_empty_entity(self) -> None:
        """Entities of 40, 5 and 0 rows produce two entries at pages 2 and 4."""
        entries = estimate_contents(
            [("Acme", 40), ("Bolt", 5), ("Corvid", 0)],
            rows_per_page=20,
            entries_per_page=40,
        )
        assert [(e.label, e.start_page) for e in entries] == [("Acme", 2), ("Bolt", 4)]

    def test_no_sections(self) -> None:
        assert estimate_contents([], rows_per_page=20, entries_per_page=40) == []
