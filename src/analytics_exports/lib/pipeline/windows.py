"""Dataset windows: contiguous ordered slices of a counted dataset."""

from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class DatasetWindow:
    """One ``LIMIT``/``OFFSET`` slice of a dataset of ``total`` rows."""

    offset: int
    limit: int
    total: int

    @property
    def end(self) -> int:
        return self.offset + self.limit


def partition(total: int, window_size: int, start: int = 0) -> Iterator[DatasetWindow]:
    """Split ``[start, total)`` into consecutive windows.

    Args:
        total: Number of rows in the dataset.
        window_size: Maximum rows per window.
        start: First row offset (non-zero when resuming).

    Yields:
        Windows in order; the last one may be shorter.

    Raises:
        ValueError: If ``window_size`` is not positive.
    """
    if window_size <= 0:
        msg = f"window_size must be positive, got {window_size}"
        raise ValueError(msg)
    offset = max(0, start)
    while offset < total:
        limit = min(window_size, total - offset)
        yield DatasetWindow(offset=offset, limit=limit, total=total)
        offset += limit
