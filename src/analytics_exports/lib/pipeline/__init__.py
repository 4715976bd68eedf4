"""Export pipeline library: chunked execution with checkpointed resume.

Public API:
    - ChunkedExecutionEngine: Runs a planned dataset window by window
    - ExecutionRun / EngineSettings: One execution attempt and engine tuning
    - RowSource / CheckpointStore: Protocols the engine depends on
    - Checkpoint: Versioned resumable progress record
    - Completed / TransientFailure / PermanentFailure / Cancelled / LeaseLost: Outcomes
    - RetryPolicy: Bounded retry with backoff
    - partition / progress_percent / CheckpointCadence: Window and progress arithmetic
"""

from analytics_exports.lib.pipeline.checkpoint import CHECKPOINT_VERSION, Checkpoint, PartialArtifact, SectionPlan
from analytics_exports.lib.pipeline.engine import (
    CheckpointStore,
    ChunkedExecutionEngine,
    EngineSettings,
    ExecutionRun,
    RowSource,
)
from analytics_exports.lib.pipeline.progress import CheckpointCadence, progress_percent
from analytics_exports.lib.pipeline.results import (
    Artifact,
    Cancelled,
    Completed,
    ExecutionOutcome,
    LeaseLost,
    PermanentFailure,
    TransientFailure,
)
from analytics_exports.lib.pipeline.retry import RetryPolicy
from analytics_exports.lib.pipeline.windows import DatasetWindow, partition

__all__ = [
    "CHECKPOINT_VERSION",
    "Artifact",
    "Cancelled",
    "Checkpoint",
    "CheckpointCadence",
    "CheckpointStore",
    "ChunkedExecutionEngine",
    "Completed",
    "DatasetWindow",
    "EngineSettings",
    "ExecutionOutcome",
    "ExecutionRun",
    "LeaseLost",
    "PartialArtifact",
    "PermanentFailure",
    "RetryPolicy",
    "RowSource",
    "SectionPlan",
    "TransientFailure",
    "partition",
    "progress_percent",
]
