"""Progress arithmetic and checkpoint cadence."""


def progress_percent(processed: int, total: int | None) -> int:
    """Whole-number completion percentage, clamped to 100 (0 for an empty or uncounted dataset)."""
    if not total:
        return 0
    return min(100, round(processed / total * 100))


class CheckpointCadence:
    """Decides when progress has crossed the next checkpoint boundary.

    With the default interval of 10, a checkpoint is due the first time
    progress reaches 10%, 20%, ... 100%.  Jumping several boundaries in one
    window yields a single checkpoint.

    Args:
        interval_percent: Distance between boundaries.
        start_percent: Progress already reached (non-zero when resuming).
    """

    def __init__(self, interval_percent: int = 10, start_percent: int = 0) -> None:
        if not 0 < interval_percent <= 100:
            msg = f"interval_percent must be in 1..100, got {interval_percent}"
            raise ValueError(msg)
        self.interval_percent = interval_percent
        self._next = (start_percent // interval_percent + 1) * interval_percent

    @property
    def next_boundary(self) -> int:
        return self._next

    def crossed(self, percent: int) -> bool:
        """Whether ``percent`` reaches a boundary not yet checkpointed."""
        if percent < self._next:
            return False
        self._next = (percent // self.interval_percent + 1) * self.interval_percent
        return True
