"""Tests for the per-variant query planners, executed against SQLite."""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_exports.lib.errors import FilterValidationError, PlanningError
from analytics_exports.lib.planner.expressions import day_bucket, month_bucket, within_days
from analytics_exports.lib.planner.filters import DetailFilters, SummaryFilters
from analytics_exports.lib.planner.planners import PLANNERS, parse_filters, plan
from analytics_exports.lib.planner.types import BookletDescriptor, DatasetDescriptor, ReportType
from analytics_exports.models.commerce import Order
from analytics_exports.services.row_source import SqlRowSource

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
FEBRUARY = {"date_from": "2026-02-01", "date_to": "2026-02-28"}


async def _rows(session: AsyncSession, dataset: DatasetDescriptor) -> list[dict]:
    result = await session.execute(dataset.statement)
    return [dict(row) for row in result.mappings().all()]


class TestPlanDispatch:
    """Tests for plan() and parse_filters()."""

    def test_every_report_type_has_a_planner(self) -> None:
        assert set(PLANNERS) == set(ReportType)

    def test_unknown_report_type(self) -> None:
        with pytest.raises(FilterValidationError, match="Unknown report type"):
            plan("pivot", {})

    def test_invalid_filters_raise_before_planning(self) -> None:
        with pytest.raises(FilterValidationError):
            plan(ReportType.DETAIL, {"date_from": "2026-02-01"})

    def test_prevalidated_filters_for_wrong_type(self) -> None:
        filters = SummaryFilters()
        with pytest.raises(PlanningError):
            plan(ReportType.DETAIL, filters)

    def test_parse_filters_returns_report_model(self) -> None:
        assert isinstance(parse_filters("detail", FEBRUARY), DetailFilters)

    def test_per_entity_plans_a_booklet(self) -> None:
        assert isinstance(plan("per_entity", {"entity_type": "region"}), BookletDescriptor)

    def test_top_n_is_ranked_and_limited(self) -> None:
        dataset = plan("top_n", {"top_type": "top_regions", "limit": 3})
        assert dataset.ranked is True
        assert dataset.row_limit == 3
        assert dataset.output_columns[0].key == "rank"


class TestExpressions:
    def test_day_bucket_compiles_per_dialect(self) -> None:
        pg = str(day_bucket(Order.order_date).compile(dialect=postgresql.dialect()))
        lite = str(day_bucket(Order.order_date).compile(dialect=sqlite.dialect()))
        assert "to_char" in pg
        assert "strftime('%Y-%m-%d'" in lite

    def test_month_bucket_compiles_for_sqlite(self) -> None:
        assert "strftime('%Y-%m'" in str(month_bucket(Order.order_date).compile(dialect=sqlite.dialect()))

    def test_within_days_without_bounds(self) -> None:
        assert within_days(Order.order_date, None, None) == []

    def test_within_days_is_inclusive_of_last_day(self) -> None:
        predicates = within_days(Order.order_date, date(2026, 2, 1), date(2026, 2, 1))
        assert len(predicates) == 2
        assert predicates[1].right.value.day == 2


class TestDetailPlanner:
    """Tests for row-level order detail."""

    @pytest.mark.asyncio
    async def test_returns_orders_in_range(self, async_session: AsyncSession, commerce_data: dict) -> None:
        rows = await _rows(async_session, plan("detail", FEBRUARY))
        assert len(rows) == 15

    @pytest.mark.asyncio
    async def test_last_day_is_inclusive(self, async_session: AsyncSession, commerce_data: dict) -> None:
        rows = await _rows(async_session, plan("detail", {"date_from": "2026-02-01", "date_to": "2026-02-01"}))
        assert [r["order_number"] for r in rows] == ["ORD-00001"]

    @pytest.mark.asyncio
    async def test_region_filter(self, async_session: AsyncSession, commerce_data: dict) -> None:
        rows = await _rows(async_session, plan("detail", {**FEBRUARY, "region_ids": [2]}))
        assert {r["customer_name"] for r in rows} == {"Corvid"}
        assert len(rows) == 5

    @pytest.mark.asyncio
    async def test_sort_is_deterministic(self, async_session: AsyncSession, commerce_data: dict) -> None:
        dataset = plan("detail", {**FEBRUARY, "sort_by": "total_amount", "sort_direction": "asc"})
        first = await _rows(async_session, dataset)
        second = await _rows(async_session, dataset)
        assert [r["order_number"] for r in first] == [r["order_number"] for r in second]
        assert first[0]["total_amount"] == Decimal("20.00")
        # ties on amount are broken by order id in the same direction
        assert [r["order_number"] for r in first[:5]] == [f"ORD-{i:05d}" for i in range(11, 16)]


class TestSummaryPlanner:
    @pytest.mark.asyncio
    async def test_group_by_region(self, async_session: AsyncSession, commerce_data: dict) -> None:
        rows = await _rows(async_session, plan("summary", {**FEBRUARY, "group_by": "region"}))
        assert [r["group_key"] for r in rows] == ["South", "North"]
        north = rows[1]
        assert north["total_orders"] == 10
        assert north["total_revenue"] == Decimal("900")

    @pytest.mark.asyncio
    async def test_group_by_date(self, async_session: AsyncSession, commerce_data: dict) -> None:
        rows = await _rows(async_session, plan("summary", {**FEBRUARY, "group_by": "date"}))
        assert len(rows) == 15
        assert rows[0]["group_key"] == "2026-02-19"

    @pytest.mark.asyncio
    async def test_group_by_month(self, async_session: AsyncSession, commerce_data: dict) -> None:
        rows = await _rows(async_session, plan("summary", {"group_by": "month"}))
        assert [(r["group_key"], r["total_orders"]) for r in rows] == [("2026-02", 15)]


class TestTopNPlanner:
    """Tests for ranked aggregations."""

    @pytest.mark.asyncio
    async def test_top_customers_respects_limit(
        self, session_factory: async_sessionmaker[AsyncSession], commerce_data: dict
    ) -> None:
        dataset = plan("top_n", {**FEBRUARY, "top_type": "top_customers", "limit": 2})
        source = SqlRowSource(session_factory)
        assert await source.count(dataset) == 2
        rows = await source.fetch_window(dataset, 0, 10)
        # Bolt and Corvid tie at 100.00; the lower customer id ranks first
        assert [r["customer_name"] for r in rows] == ["Acme", "Bolt"]

    @pytest.mark.asyncio
    async def test_top_regions(self, async_session: AsyncSession, commerce_data: dict) -> None:
        rows = await _rows(async_session, plan("top_n", {**FEBRUARY, "top_type": "top_regions", "limit": 5}))
        assert [(r["region_name"], r["unique_customers"]) for r in rows] == [("North", 2), ("South", 1)]

    @pytest.mark.asyncio
    async def test_inactive_students_lookback(self, async_session: AsyncSession, learning_data: dict) -> None:
        """With a 14-day lookback, a student active yesterday is excluded and one never active is included."""
        dataset = plan(
            "top_n",
            {"top_type": "inactive_students", "limit": 10, "inactivity_mode": "lookback", "inactivity_days": 14},
            now=NOW,
        )
        rows = await _rows(async_session, dataset)
        assert [r["first_name"] for r in rows] == ["Cy", "Ben"]
        assert rows[0]["last_activity_at"] is None

    @pytest.mark.asyncio
    async def test_inactive_students_threshold(self, async_session: AsyncSession, learning_data: dict) -> None:
        dataset = plan(
            "top_n",
            {
                "top_type": "inactive_students",
                "limit": 10,
                "inactivity_mode": "threshold",
                "min_events": 2,
                "date_from": "2026-02-01",
                "date_to": "2026-03-01",
            },
            now=NOW,
        )
        rows = await _rows(async_session, dataset)
        assert {r["first_name"]: r["total_events"] for r in rows} == {"Cy": 0, "Ben": 1}

    @pytest.mark.asyncio
    async def test_top_students(self, async_session: AsyncSession, learning_data: dict) -> None:
        rows = await _rows(async_session, plan("top_n", {"top_type": "top_students", "limit": 5}))
        assert [(r["first_name"], r["total_events"]) for r in rows] == [("Ada", 2), ("Ben", 1)]


class TestExceptionsPlanner:
    @pytest.mark.asyncio
    async def test_failed_orders(self, async_session: AsyncSession, commerce_data: dict) -> None:
        rows = await _rows(async_session, plan("exceptions", {**FEBRUARY, "exception_type": "failed_orders"}))
        assert [(r["customer_name"], r["status"]) for r in rows] == [("Bolt", "failed")]

    @pytest.mark.asyncio
    async def test_refunds(self, async_session: AsyncSession, commerce_data: dict) -> None:
        rows = await _rows(async_session, plan("exceptions", {**FEBRUARY, "exception_type": "refunds"}))
        assert len(rows) == 1
        assert rows[0]["refund_amount"] == Decimal("25.00")
        assert rows[0]["order_number"] == "ORD-00001"


class TestPerEntityPlanner:
    """Tests for per-entity booklets."""

    @pytest.mark.asyncio
    async def test_entities_in_label_order(
        self, session_factory: async_sessionmaker[AsyncSession], commerce_data: dict
    ) -> None:
        booklet = plan("per_entity", {**FEBRUARY, "entity_type": "customer"})
        entities = await SqlRowSource(session_factory).list_entities(booklet)
        assert [e.label for e in entities] == ["Acme", "Bolt", "Corvid"]

    @pytest.mark.asyncio
    async def test_section_pins_one_entity(
        self, session_factory: async_sessionmaker[AsyncSession], commerce_data: dict
    ) -> None:
        booklet = plan("per_entity", {**FEBRUARY, "entity_type": "customer", "statuses": ["failed"]})
        source = SqlRowSource(session_factory)
        counts = {e.label: await source.count(booklet.section_for(e)) for e in await source.list_entities(booklet)}
        assert counts == {"Acme": 0, "Bolt": 1, "Corvid": 0}

    @pytest.mark.asyncio
    async def test_student_labels(self, session_factory: async_sessionmaker[AsyncSession], learning_data: dict) -> None:
        booklet = plan("per_entity", {"entity_type": "student"})
        entities = await SqlRowSource(session_factory).list_entities(booklet)
        assert [e.label for e in entities] == ["Lovelace, Ada", "Okafor, Ben", "Young, Cy"]
