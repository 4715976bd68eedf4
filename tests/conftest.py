"""Shared test fixtures for the async database, sessions, settings and seeded warehouse data."""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DOWNLOAD_SIGNING_KEY", "test-signing-key-not-for-production-use")

from analytics_exports.core.config import Settings  # noqa: E402
from analytics_exports.models import Base  # noqa: E402
from analytics_exports.models.commerce import Customer, Order, Refund, Region  # noqa: E402
from analytics_exports.models.learning import Course, CourseEvent, Student  # noqa: E402

SIGNING_KEY = "test-signing-key-not-for-production-use"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test application settings writing exports under a temporary directory."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        download_signing_key=SIGNING_KEY,
        export_dir=str(tmp_path / "exports"),
        export_work_dir=str(tmp_path / "work"),
        worker_enabled=False,
        report_retry_backoff="60,300,900",
    )


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Create a file-backed async SQLite engine so separate sessions share one database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Create a per-test async session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def commerce_data(async_session: AsyncSession) -> dict:
    """Two regions, three customers and a month of orders in February 2026.

    North has Acme (8 completed orders of 100.00) and Bolt (2 orders of
    50.00, one failed); South has Corvid (5 completed orders of 20.00) and
    one refund against Acme's first order.
    """
    north = Region(id=1, code="N", name="North")
    south = Region(id=2, code="S", name="South")
    acme = Customer(id=1, name="Acme", email="buyer@acme.test", account_type="enterprise", region_id=1)
    bolt = Customer(id=2, name="Bolt", email="ops@bolt.test", account_type="standard", region_id=1)
    corvid = Customer(id=3, name="Corvid", email=None, account_type="standard", region_id=2)
    async_session.add_all([north, south, acme, bolt, corvid])
    await async_session.flush()

    orders = []
    order_id = 1
    for day in range(8):
        orders.append(_order(order_id, acme, north, datetime(2026, 2, 1 + day, 9, tzinfo=UTC), "100.00"))
        order_id += 1
    orders.append(_order(order_id, bolt, north, datetime(2026, 2, 10, 9, tzinfo=UTC), "50.00"))
    order_id += 1
    orders.append(_order(order_id, bolt, north, datetime(2026, 2, 11, 9, tzinfo=UTC), "50.00", status="failed"))
    order_id += 1
    for day in range(5):
        orders.append(_order(order_id, corvid, south, datetime(2026, 2, 15 + day, 9, tzinfo=UTC), "20.00"))
        order_id += 1
    async_session.add_all(orders)
    async_session.add(
        Refund(
            id=1,
            order_id=1,
            amount=Decimal("25.00"),
            reason="damaged",
            refunded_at=datetime(2026, 2, 5, tzinfo=UTC),
        )
    )
    await async_session.commit()
    return {"regions": [north, south], "customers": [acme, bolt, corvid], "orders": orders}


def _order(order_id: int, customer: Customer, region: Region, when: datetime, amount: str, status: str = "completed"):
    return Order(
        id=order_id,
        order_number=f"ORD-{order_id:05d}",
        customer_id=customer.id,
        region_id=region.id,
        order_date=when,
        status=status,
        payment_method="card",
        category="hardware" if order_id % 2 else "software",
        total_amount=Decimal(amount),
        tax=Decimal("1.00"),
        shipping_cost=Decimal("0.50"),
    )


@pytest.fixture
async def learning_data(async_session: AsyncSession) -> dict:
    """Three students relative to ``NOW``.

    Ada was active yesterday, Ben last 20 days ago, and Cy never.
    """
    course = Course(id=1, course_code="CS101", course_name="Intro to Computing", department="CS")
    ada = Student(id=1, student_number="S001", first_name="Ada", last_name="Lovelace", program="CS")
    ben = Student(id=2, student_number="S002", first_name="Ben", last_name="Okafor", program="CS")
    cy = Student(id=3, student_number="S003", first_name="Cy", last_name="Young", program="Math")
    async_session.add_all([course, ada, ben, cy])
    await async_session.flush()
    events = [
        CourseEvent(id=1, student_id=1, course_id=1, event_type="login", occurred_at=NOW - timedelta(days=1)),
        CourseEvent(id=2, student_id=1, course_id=1, event_type="quiz", occurred_at=NOW - timedelta(days=2)),
        CourseEvent(id=3, student_id=2, course_id=1, event_type="login", occurred_at=NOW - timedelta(days=20)),
    ]
    async_session.add_all(events)
    await async_session.commit()
    return {"students": [ada, ben, cy], "course": course, "events": events}
