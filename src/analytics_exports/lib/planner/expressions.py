"""Dialect-aware SQL expressions used by the planners."""

from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from sqlalchemy import String
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.compiler import SQLCompiler
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.functions import FunctionElement


class day_bucket(FunctionElement[str]):  # noqa: N801
    """``YYYY-MM-DD`` text bucket of a timestamp."""

    type = String()
    inherit_cache = True


class month_bucket(FunctionElement[str]):  # noqa: N801
    """``YYYY-MM`` text bucket of a timestamp."""

    type = String()
    inherit_cache = True


@compiles(day_bucket)
def _day_bucket_default(element: day_bucket, compiler: SQLCompiler, **kw: Any) -> str:
    return f"to_char({compiler.process(element.clauses, **kw)}, 'YYYY-MM-DD')"


@compiles(day_bucket, "sqlite")
def _day_bucket_sqlite(element: day_bucket, compiler: SQLCompiler, **kw: Any) -> str:
    return f"strftime('%Y-%m-%d', {compiler.process(element.clauses, **kw)})"


@compiles(month_bucket)
def _month_bucket_default(element: month_bucket, compiler: SQLCompiler, **kw: Any) -> str:
    return f"to_char({compiler.process(element.clauses, **kw)}, 'YYYY-MM')"


@compiles(month_bucket, "sqlite")
def _month_bucket_sqlite(element: month_bucket, compiler: SQLCompiler, **kw: Any) -> str:
    return f"strftime('%Y-%m', {compiler.process(element.clauses, **kw)})"


def day_start(day: date) -> datetime:
    """Midnight UTC at the start of ``day``."""
    return datetime.combine(day, time.min, tzinfo=UTC)


def within_days(column: ColumnElement[Any], date_from: date | None, date_to: date | None) -> list[ColumnElement[bool]]:
    """Predicates restricting a timestamp column to an inclusive day range.

    Args:
        column: Timestamp column to restrict.
        date_from: First included day, or None for no lower bound.
        date_to: Last included day, or None for no upper bound.

    Returns:
        Zero, one or two predicates.
    """
    predicates: list[ColumnElement[bool]] = []
    if date_from is not None:
        predicates.append(column >= day_start(date_from))
    if date_to is not None:
        predicates.append(column < day_start(date_to + timedelta(days=1)))
    return predicates
