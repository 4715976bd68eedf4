"""Tests for progress arithmetic and checkpoint cadence."""

import pytest

from analytics_exports.lib.pipeline.progress import CheckpointCadence, progress_percent


class TestProgressPercent:
    def test_rounds_to_whole_percent(self) -> None:
        assert progress_percent(1, 3) == 33
        assert progress_percent(2, 3) == 67

    def test_empty_dataset_is_zero(self) -> None:
        assert progress_percent(0, 0) == 0
        assert progress_percent(0, None) == 0

    def test_clamped_to_100(self) -> None:
        assert progress_percent(150, 100) == 100


class TestCheckpointCadence:
    """Tests for the 10% checkpoint boundaries."""

    def test_fires_once_per_boundary(self) -> None:
        cadence = CheckpointCadence(10)
        fired = [p for p in range(0, 101) if cadence.crossed(p)]
        assert fired == [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]

    def test_jump_over_several_boundaries_fires_once(self) -> None:
        cadence = CheckpointCadence(10)
        assert cadence.crossed(40) is True
        assert cadence.next_boundary == 50
        assert cadence.crossed(45) is False

    def test_resume_starts_after_reached_boundary(self) -> None:
        cadence = CheckpointCadence(10, start_percent=80)
        assert cadence.next_boundary == 90
        assert cadence.crossed(85) is False
        assert cadence.crossed(100) is True

    def test_rejects_invalid_interval(self) -> None:
        with pytest.raises(ValueError, match="interval_percent"):
            CheckpointCadence(0)
