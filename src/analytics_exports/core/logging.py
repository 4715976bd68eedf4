"""Loguru structured logging configuration.

Provides a human-readable stderr sink, an opt-in JSON sink for records
bound with ``json_output=True``, and an optional rotating log file.
Records bound to an export job (see :func:`job_logger`) carry the job id
in every line so interleaved worker output stays attributable.
"""

import sys
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger, Record

_LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} | {message}"
_JOB_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} | job={extra[job_id]} | {message}"
)


def _format_record(record: "Record") -> str:
    """Pick the line format depending on whether the record is job-bound."""
    fmt = _JOB_LOG_FORMAT if "job_id" in record["extra"] else _LOG_FORMAT
    return fmt + "\n{exception}"


def job_logger(job_id: uuid.UUID | str, **context: object) -> "Logger":
    """Return a logger bound to an export job.

    Args:
        job_id: The export job the log lines belong to.
        **context: Extra fields to bind (e.g. ``worker="worker-1"``).

    Returns:
        A bound Loguru logger.
    """
    return logger.bind(job_id=str(job_id), **context)


def setup_logging(log_level: str = "INFO", log_dir: str | None = None) -> None:
    """Configure Loguru sinks.

    Args:
        log_level: Minimum log level to emit.
        log_dir: Optional directory for log files.  When set, a rotating
            file sink is added (rotated every 24 hours, retained 7 days).
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level.upper(),
        format=_format_record,
        serialize=False,
    )
    logger.add(
        sys.stderr,
        level=log_level.upper(),
        serialize=True,
        filter=lambda record: record["extra"].get("json_output", False),
    )

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / "analytics-exports.log",
            level=log_level.upper(),
            format=_format_record,
            rotation="24h",
            retention="7 days",
        )
