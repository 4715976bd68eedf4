"""Outcome types returned by the execution engine."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Artifact:
    """A finished export document on disk."""

    path: Path
    size_bytes: int
    row_count: int
    page_count: int | None = None


@dataclass(frozen=True)
class Completed:
    artifact: Artifact


@dataclass(frozen=True)
class TransientFailure:
    """A failure the retry policy may reschedule."""

    error: str
    processed_rows: int = 0


@dataclass(frozen=True)
class PermanentFailure:
    """A failure no retry can fix."""

    error: str
    processed_rows: int = 0


@dataclass(frozen=True)
class Cancelled:
    processed_rows: int = 0


@dataclass(frozen=True)
class LeaseLost:
    """The job was reclaimed by another worker; this attempt left it untouched."""

    processed_rows: int = 0


ExecutionOutcome = Completed | TransientFailure | PermanentFailure | Cancelled | LeaseLost
