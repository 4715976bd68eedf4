"""Retry policy applied to failed executions."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from analytics_exports.lib.pipeline.results import ExecutionOutcome, TransientFailure

DEFAULT_BACKOFF_SECONDS = (60, 300, 900)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with a per-attempt backoff schedule.

    Attributes:
        max_attempts: Total executions allowed, the first one included.
        backoff_seconds: Delay before the retry that follows attempt ``n``
            is ``backoff_seconds[n - 1]``; the last entry repeats.
    """

    max_attempts: int = 3
    backoff_seconds: tuple[int, ...] = DEFAULT_BACKOFF_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise ValueError(msg)

    def should_retry(self, outcome: ExecutionOutcome, attempts: int) -> bool:
        """Whether a job that has run ``attempts`` times gets another execution."""
        return isinstance(outcome, TransientFailure) and attempts < self.max_attempts

    def delay_for(self, attempts: int) -> timedelta:
        """Backoff before the execution following attempt number ``attempts``."""
        if not self.backoff_seconds:
            return timedelta(0)
        index = min(max(attempts, 1), len(self.backoff_seconds)) - 1
        return timedelta(seconds=self.backoff_seconds[index])

    def next_attempt_at(self, attempts: int, now: datetime) -> datetime:
        return now + self.delay_for(attempts)
