"""Row source: counts and windows of planned datasets read from the warehouse."""

from collections.abc import Mapping
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_exports.lib.planner.types import BookletDescriptor, DatasetDescriptor, Entity


def count_statement(dataset: DatasetDescriptor):
    """``SELECT count(*)`` over the dataset's statement without its ordering."""
    return select(func.count()).select_from(dataset.statement.order_by(None).subquery())


def window_statement(dataset: DatasetDescriptor, offset: int, limit: int):
    """The dataset's ordered statement restricted to one window."""
    return dataset.statement.offset(offset).limit(limit)


def clamp_window(dataset: DatasetDescriptor, offset: int, limit: int) -> int:
    """Limit of a window after applying the dataset's row limit."""
    if dataset.row_limit is None:
        return limit
    return max(0, min(limit, dataset.row_limit - offset))


class SqlRowSource:
    """Reads datasets through short-lived sessions, one per call.

    Args:
        session_factory: Factory for async sessions on the warehouse database.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def count(self, dataset: DatasetDescriptor) -> int:
        """Number of rows in the dataset, capped by its row limit."""
        async with self._session_factory() as session:
            total = (await session.execute(count_statement(dataset))).scalar_one()
        if dataset.row_limit is not None:
            total = min(total, dataset.row_limit)
        return total

    async def fetch_window(self, dataset: DatasetDescriptor, offset: int, limit: int) -> list[Mapping[str, Any]]:
        """Rows ``[offset, offset + limit)`` of the dataset in its defined order."""
        limit = clamp_window(dataset, offset, limit)
        if limit == 0:
            return []
        async with self._session_factory() as session:
            result = await session.execute(window_statement(dataset, offset, limit))
            return [dict(row) for row in result.mappings().all()]

    async def list_entities(self, booklet: BookletDescriptor) -> list[Entity]:
        """Entities of a booklet in booklet order."""
        async with self._session_factory() as session:
            result = await session.execute(booklet.entities)
            return [Entity(key=row.key, label=row.label) for row in result.all()]
