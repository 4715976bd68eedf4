"""Admission control: bounds the number of active export jobs per owner.

The count of an owner's live jobs (queued, running, or failed with a retry
still scheduled) and the insert of a new job must happen inside one critical
section, otherwise two simultaneous requests can both see ``limit - 1`` and
both be admitted.  In-process callers are serialized by a per-owner
``asyncio.Lock``; on PostgreSQL a transaction-scoped advisory lock keyed by
the owner serializes callers across processes.
"""

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_exports.lib.errors import AdmissionRejectedError
from analytics_exports.models.report_job import ReportJob, is_live

_owner_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check."""

    allowed: bool
    current: int
    limit: int


def _owner_lock(owner_id: str) -> asyncio.Lock:
    lock = _owner_locks.get(owner_id)
    if lock is None:
        lock = asyncio.Lock()
        _owner_locks[owner_id] = lock
    return lock


async def count_active_jobs(session: AsyncSession, owner_id: str) -> int:
    """Number of the owner's live jobs.

    A job awaiting a retry counts: it re-enters ``running`` without another
    admission check.
    """
    result = await session.execute(
        select(func.count(ReportJob.id)).where(
            ReportJob.owner_id == owner_id,
            is_live(),
        )
    )
    return result.scalar_one()


async def _lock_owner_in_transaction(session: AsyncSession, owner_id: str) -> None:
    if session.get_bind().dialect.name == "postgresql":
        await session.execute(select(func.pg_advisory_xact_lock(func.hashtext(owner_id))))


@asynccontextmanager
async def admission_section(session: AsyncSession, owner_id: str) -> AsyncIterator[None]:
    """Critical section in which an owner's active jobs are counted and a new one inserted.

    The caller must commit inside the block so the advisory lock is held
    until the new job is visible to other transactions.
    """
    async with _owner_lock(owner_id):
        await _lock_owner_in_transaction(session, owner_id)
        yield


async def admit(session: AsyncSession, owner_id: str, limit: int) -> AdmissionDecision:
    """Decide whether the owner may start another export.

    Must be called inside :func:`admission_section`.

    Args:
        session: Database session of the admitting transaction.
        owner_id: Requesting owner.
        limit: Maximum concurrent active jobs per owner.

    Returns:
        The admission decision with the owner's current active count.
    """
    current = await count_active_jobs(session, owner_id)
    decision = AdmissionDecision(allowed=current < limit, current=current, limit=limit)
    if not decision.allowed:
        logger.info(f"Admission rejected for owner {owner_id}: {current}/{limit} exports in progress")
    return decision


def ensure_admitted(decision: AdmissionDecision) -> None:
    """Raise when an admission decision rejected the request.

    Raises:
        AdmissionRejectedError: With the owner's current count and the limit.
    """
    if not decision.allowed:
        raise AdmissionRejectedError(decision.current, decision.limit)
