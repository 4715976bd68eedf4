"""Tests for dataset window partitioning."""

import pytest

from analytics_exports.lib.pipeline.windows import DatasetWindow, partition


class TestPartition:
    def test_even_split(self) -> None:
        windows = list(partition(10000, 5000))
        assert [(w.offset, w.limit) for w in windows] == [(0, 5000), (5000, 5000)]

    def test_short_last_window(self) -> None:
        windows = list(partition(12500, 5000))
        assert [(w.offset, w.limit) for w in windows] == [(0, 5000), (5000, 5000), (10000, 2500)]
        assert windows[-1].end == 12500

    def test_resume_from_start_offset(self) -> None:
        assert list(partition(12500, 5000, start=10000)) == [DatasetWindow(offset=10000, limit=2500, total=12500)]

    def test_empty_dataset(self) -> None:
        assert list(partition(0, 5000)) == []

    def test_start_past_end(self) -> None:
        assert list(partition(100, 50, start=100)) == []

    def test_rejects_non_positive_window(self) -> None:
        with pytest.raises(ValueError, match="window_size must be positive"):
            list(partition(100, 0))
