"""Versioned checkpoint record persisted on the job between windows."""

from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from analytics_exports.lib.errors import CheckpointVersionError

CHECKPOINT_VERSION = 1


@dataclass(frozen=True)
class PartialArtifact:
    """One rendered window of a paginated export.

    Attributes:
        index: Window sequence number within the whole export.
        file_name: File name inside the job's work directory.
        section_index: Section the window belongs to.
        row_count: Rows rendered into the partial.
        page_count: Pages the partial occupies.
    """

    index: int
    file_name: str
    section_index: int
    row_count: int
    page_count: int


@dataclass(frozen=True)
class SectionPlan:
    """One section of an export: the whole dataset, or one booklet entity."""

    key: int | None
    label: str | None
    row_count: int


@dataclass(frozen=True)
class Checkpoint:
    """Resumable progress of one export.

    Attributes:
        processed_rows: Rows fully written to the output so far.
        current_section: Label of the section being exported.
        recorded_at: When the checkpoint was taken.
        last_error: Error that triggered a failure checkpoint, if any.
        spool_offset: Byte offset of the tabular row spool.
        partials: Rendered partial documents, in window order.
        sections: Resolved sections with their row counts.
        version: Record layout version.
    """

    processed_rows: int
    current_section: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_error: str | None = None
    spool_offset: int = 0
    partials: tuple[PartialArtifact, ...] = ()
    sections: tuple[SectionPlan, ...] = ()
    version: int = CHECKPOINT_VERSION

    def with_error(self, error: str) -> "Checkpoint":
        return replace(self, last_error=error, recorded_at=datetime.now(UTC))

    def to_record(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible mapping."""
        record = asdict(self)
        record["recorded_at"] = self.recorded_at.isoformat()
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Checkpoint":
        """Load a checkpoint written by :meth:`to_record`.

        Raises:
            CheckpointVersionError: If the record was written by another layout version.
        """
        version = record.get("version")
        if version != CHECKPOINT_VERSION:
            msg = f"Unsupported checkpoint version {version!r} (expected {CHECKPOINT_VERSION})"
            raise CheckpointVersionError(msg)
        return cls(
            processed_rows=int(record["processed_rows"]),
            current_section=record.get("current_section"),
            recorded_at=datetime.fromisoformat(record["recorded_at"]),
            last_error=record.get("last_error"),
            spool_offset=int(record.get("spool_offset", 0)),
            partials=tuple(PartialArtifact(**p) for p in record.get("partials", [])),
            sections=tuple(SectionPlan(**s) for s in record.get("sections", [])),
            version=version,
        )
