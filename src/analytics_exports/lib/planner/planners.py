"""Per-variant query planners.

Each report type maps to exactly one planner; each planner declares the
filter schema it accepts and turns a validated filter set into a dataset
descriptor.  Planners are stateless and deterministic for a given ``now``.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, ClassVar, Protocol

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.sql.elements import ColumnElement

from analytics_exports.lib.errors import FilterValidationError, PlanningError
from analytics_exports.lib.planner.expressions import day_bucket, month_bucket, within_days
from analytics_exports.lib.planner.filters import (
    DetailFilters,
    ExceptionsFilters,
    PerEntityFilters,
    ReportFilters,
    SummaryFilters,
    TopNFilters,
    validate_filters,
)
from analytics_exports.lib.planner.types import (
    BookletDescriptor,
    ColumnSpec,
    DatasetDescriptor,
    Entity,
    PlannedDataset,
    ReportType,
)
from analytics_exports.models.commerce import Customer, Order, Refund, Region
from analytics_exports.models.learning import Assignment, Course, CourseEvent, Student, Submission


class Planner(Protocol):
    """Capability implemented once per report type."""

    report_type: ClassVar[ReportType]
    filters_model: ClassVar[type[ReportFilters]]

    def build(self, filters: Any, now: datetime) -> PlannedDataset:
        """Turn validated filters into a dataset descriptor."""
        ...


ORDER_COLUMNS = (
    ColumnSpec("order_number", "Order #"),
    ColumnSpec("order_date", "Order Date"),
    ColumnSpec("customer_name", "Customer"),
    ColumnSpec("region_name", "Region"),
    ColumnSpec("category", "Category"),
    ColumnSpec("status", "Status"),
    ColumnSpec("payment_method", "Payment Method"),
    ColumnSpec("total_amount", "Total"),
    ColumnSpec("tax", "Tax"),
    ColumnSpec("shipping_cost", "Shipping"),
)


def _order_rows() -> Select[Any]:
    """Order facts joined to their customer and region."""
    return (
        select(
            Order.order_number.label("order_number"),
            Order.order_date.label("order_date"),
            Customer.name.label("customer_name"),
            Region.name.label("region_name"),
            Order.category.label("category"),
            Order.status.label("status"),
            Order.payment_method.label("payment_method"),
            Order.total_amount.label("total_amount"),
            Order.tax.label("tax"),
            Order.shipping_cost.label("shipping_cost"),
        )
        .join(Customer, Order.customer_id == Customer.id)
        .outerjoin(Region, Order.region_id == Region.id)
    )


def _in(column: ColumnElement[Any], values: list[Any] | None) -> list[ColumnElement[bool]]:
    return [column.in_(values)] if values else []


class DetailPlanner:
    """Row-level order detail."""

    report_type = ReportType.DETAIL
    filters_model = DetailFilters

    _SORT_COLUMNS: ClassVar[dict[str, ColumnElement[Any]]] = {
        "order_date": Order.order_date,
        "total_amount": Order.total_amount,
        "order_number": Order.order_number,
        "status": Order.status,
    }

    def build(self, filters: DetailFilters, now: datetime) -> DatasetDescriptor:
        predicates = [
            *within_days(Order.order_date, filters.date_from, filters.date_to),
            *_in(Order.customer_id, filters.customer_ids),
            *_in(Order.region_id, filters.region_ids),
            *_in(Order.category, filters.categories),
            *_in(Order.status, filters.statuses),
            *_in(Order.payment_method, filters.payment_methods),
        ]
        if filters.amount_min is not None:
            predicates.append(Order.total_amount >= filters.amount_min)
        if filters.amount_max is not None:
            predicates.append(Order.total_amount <= filters.amount_max)

        sort_column = self._SORT_COLUMNS[filters.sort_by]
        if filters.sort_direction == "asc":
            ordering = (sort_column.asc(), Order.id.asc())
        else:
            ordering = (sort_column.desc(), Order.id.desc())

        return DatasetDescriptor(
            title="Order Detail Report",
            columns=ORDER_COLUMNS,
            statement=_order_rows().where(*predicates).order_by(*ordering),
        )


class SummaryPlanner:
    """Orders aggregated by one allow-listed dimension."""

    report_type = ReportType.SUMMARY
    filters_model = SummaryFilters

    _GROUP_EXPRESSIONS: ClassVar[dict[str, Callable[[], ColumnElement[Any]]]] = {
        "date": lambda: day_bucket(Order.order_date),
        "month": lambda: month_bucket(Order.order_date),
        "region": lambda: Region.name,
        "category": lambda: Order.category,
        "status": lambda: Order.status,
        "payment_method": lambda: Order.payment_method,
    }

    _GROUP_HEADERS: ClassVar[dict[str, str]] = {
        "date": "Date",
        "month": "Month",
        "region": "Region",
        "category": "Category",
        "status": "Status",
        "payment_method": "Payment Method",
    }

    def build(self, filters: SummaryFilters, now: datetime) -> DatasetDescriptor:
        group_key = self._GROUP_EXPRESSIONS[filters.group_by]()
        statement = (
            select(
                group_key.label("group_key"),
                func.count(Order.id).label("total_orders"),
                func.sum(Order.total_amount).label("total_revenue"),
                func.avg(Order.total_amount).label("average_order_value"),
                func.sum(Order.tax).label("total_tax"),
                func.sum(Order.shipping_cost).label("total_shipping"),
            )
            .select_from(Order)
            .outerjoin(Region, Order.region_id == Region.id)
            .where(
                *within_days(Order.order_date, filters.date_from, filters.date_to),
                *_in(Order.region_id, filters.region_ids),
                *_in(Order.category, filters.categories),
                *_in(Order.status, filters.statuses),
                *_in(Order.payment_method, filters.payment_methods),
            )
            .group_by(group_key)
            .order_by(group_key.desc())
        )
        return DatasetDescriptor(
            title=f"Order Summary by {self._GROUP_HEADERS[filters.group_by]}",
            columns=(
                ColumnSpec("group_key", self._GROUP_HEADERS[filters.group_by]),
                ColumnSpec("total_orders", "Orders"),
                ColumnSpec("total_revenue", "Revenue"),
                ColumnSpec("average_order_value", "Avg Order Value"),
                ColumnSpec("total_tax", "Tax"),
                ColumnSpec("total_shipping", "Shipping"),
            ),
            statement=statement,
        )


class TopNPlanner:
    """Ranked aggregations: most valuable customers/regions, most and least engaged students."""

    report_type = ReportType.TOP_N
    filters_model = TopNFilters

    def build(self, filters: TopNFilters, now: datetime) -> DatasetDescriptor:
        builders = {
            "top_customers": self._top_customers,
            "top_regions": self._top_regions,
            "top_students": self._top_students,
            "inactive_students": self._inactive_students,
        }
        title, columns, statement = builders[filters.top_type](filters, now)
        return DatasetDescriptor(
            title=title,
            columns=columns,
            statement=statement,
            row_limit=filters.limit,
            ranked=True,
        )

    @staticmethod
    def _top_customers(filters: TopNFilters, now: datetime) -> tuple[str, tuple[ColumnSpec, ...], Select[Any]]:
        revenue = func.sum(Order.total_amount)
        statement = (
            select(
                Customer.name.label("customer_name"),
                Customer.email.label("email"),
                Customer.account_type.label("account_type"),
                func.count(Order.id).label("total_orders"),
                revenue.label("total_revenue"),
                func.avg(Order.total_amount).label("average_order_value"),
            )
            .join(Order, Order.customer_id == Customer.id)
            .where(
                *within_days(Order.order_date, filters.date_from, filters.date_to),
                *_in(Order.region_id, filters.region_ids),
            )
            .group_by(Customer.id, Customer.name, Customer.email, Customer.account_type)
            .order_by(revenue.desc(), Customer.id.asc())
        )
        columns = (
            ColumnSpec("customer_name", "Customer"),
            ColumnSpec("email", "Email"),
            ColumnSpec("account_type", "Account Type"),
            ColumnSpec("total_orders", "Orders"),
            ColumnSpec("total_revenue", "Revenue"),
            ColumnSpec("average_order_value", "Avg Order Value"),
        )
        return f"Top {filters.limit} Customers by Revenue", columns, statement

    @staticmethod
    def _top_regions(filters: TopNFilters, now: datetime) -> tuple[str, tuple[ColumnSpec, ...], Select[Any]]:
        revenue = func.sum(Order.total_amount)
        statement = (
            select(
                Region.code.label("region_code"),
                Region.name.label("region_name"),
                func.count(Order.id).label("total_orders"),
                func.count(func.distinct(Order.customer_id)).label("unique_customers"),
                revenue.label("total_revenue"),
            )
            .join(Order, Order.region_id == Region.id)
            .where(
                *within_days(Order.order_date, filters.date_from, filters.date_to),
                *_in(Region.id, filters.region_ids),
            )
            .group_by(Region.id, Region.code, Region.name)
            .order_by(revenue.desc(), Region.id.asc())
        )
        columns = (
            ColumnSpec("region_code", "Code"),
            ColumnSpec("region_name", "Region"),
            ColumnSpec("total_orders", "Orders"),
            ColumnSpec("unique_customers", "Customers"),
            ColumnSpec("total_revenue", "Revenue"),
        )
        return f"Top {filters.limit} Regions by Revenue", columns, statement

    @staticmethod
    def _student_columns() -> tuple[Any, ...]:
        return (
            Student.student_number.label("student_number"),
            Student.first_name.label("first_name"),
            Student.last_name.label("last_name"),
            Student.program.label("program"),
        )

    @staticmethod
    def _top_students(filters: TopNFilters, now: datetime) -> tuple[str, tuple[ColumnSpec, ...], Select[Any]]:
        total_events = func.count(CourseEvent.id)
        statement = (
            select(
                *TopNPlanner._student_columns(),
                total_events.label("total_events"),
                func.count(func.distinct(CourseEvent.course_id)).label("courses_engaged"),
                func.max(CourseEvent.occurred_at).label("last_activity_at"),
            )
            .join(CourseEvent, CourseEvent.student_id == Student.id)
            .where(
                *within_days(CourseEvent.occurred_at, filters.date_from, filters.date_to),
                *_in(CourseEvent.course_id, filters.course_ids),
                *([Student.program == filters.program] if filters.program else []),
            )
            .group_by(Student.id, Student.student_number, Student.first_name, Student.last_name, Student.program)
            .order_by(total_events.desc(), Student.id.asc())
        )
        columns = (
            ColumnSpec("student_number", "Student #"),
            ColumnSpec("first_name", "First Name"),
            ColumnSpec("last_name", "Last Name"),
            ColumnSpec("program", "Program"),
            ColumnSpec("total_events", "Events"),
            ColumnSpec("courses_engaged", "Courses"),
            ColumnSpec("last_activity_at", "Last Activity"),
        )
        return f"Top {filters.limit} Most Engaged Students", columns, statement

    @staticmethod
    def _inactive_students(filters: TopNFilters, now: datetime) -> tuple[str, tuple[ColumnSpec, ...], Select[Any]]:
        join_on = [CourseEvent.student_id == Student.id, *_in(CourseEvent.course_id, filters.course_ids)]
        if filters.inactivity_mode == "threshold":
            join_on.extend(within_days(CourseEvent.occurred_at, filters.date_from, filters.date_to))

        last_activity = func.max(CourseEvent.occurred_at)
        event_count = func.count(CourseEvent.id)
        statement = (
            select(
                *TopNPlanner._student_columns(),
                Student.email.label("email"),
                last_activity.label("last_activity_at"),
                event_count.label("total_events"),
            )
            .select_from(Student)
            .outerjoin(CourseEvent, and_(*join_on))
            .where(*([Student.program == filters.program] if filters.program else []))
            .group_by(
                Student.id,
                Student.student_number,
                Student.first_name,
                Student.last_name,
                Student.program,
                Student.email,
            )
            .order_by(last_activity.asc().nulls_first(), Student.id.asc())
        )
        if filters.inactivity_mode == "lookback":
            cutoff = now - timedelta(days=filters.effective_inactivity_days)
            statement = statement.having(or_(last_activity.is_(None), last_activity < cutoff))
            title = f"Students Inactive for {filters.effective_inactivity_days}+ Days"
        else:
            statement = statement.having(event_count < filters.effective_min_events)
            title = f"Students with Fewer than {filters.effective_min_events} Events"

        columns = (
            ColumnSpec("student_number", "Student #"),
            ColumnSpec("first_name", "First Name"),
            ColumnSpec("last_name", "Last Name"),
            ColumnSpec("program", "Program"),
            ColumnSpec("email", "Email"),
            ColumnSpec("last_activity_at", "Last Activity"),
            ColumnSpec("total_events", "Events"),
        )
        return title, columns, statement


class ExceptionsPlanner:
    """Rows matching an anomaly predicate."""

    report_type = ReportType.EXCEPTIONS
    filters_model = ExceptionsFilters

    def build(self, filters: ExceptionsFilters, now: datetime) -> DatasetDescriptor:
        if filters.exception_type in ("failed_orders", "cancelled_orders"):
            status = "failed" if filters.exception_type == "failed_orders" else "cancelled"
            statement = (
                _order_rows()
                .where(
                    Order.status == status,
                    *within_days(Order.order_date, filters.date_from, filters.date_to),
                    *_in(Order.region_id, filters.region_ids),
                )
                .order_by(Order.order_date.desc(), Order.id.desc())
            )
            return DatasetDescriptor(
                title=f"{status.capitalize()} Orders",
                columns=ORDER_COLUMNS,
                statement=statement,
            )

        if filters.exception_type == "refunds":
            statement = (
                select(
                    Order.order_number.label("order_number"),
                    Customer.name.label("customer_name"),
                    Order.total_amount.label("order_total"),
                    Refund.amount.label("refund_amount"),
                    Refund.reason.label("reason"),
                    Refund.refunded_at.label("refunded_at"),
                )
                .join(Order, Refund.order_id == Order.id)
                .join(Customer, Order.customer_id == Customer.id)
                .where(
                    *within_days(Refund.refunded_at, filters.date_from, filters.date_to),
                    *_in(Order.region_id, filters.region_ids),
                )
                .order_by(Refund.refunded_at.desc(), Refund.id.desc())
            )
            return DatasetDescriptor(
                title="Refunded Orders",
                columns=(
                    ColumnSpec("order_number", "Order #"),
                    ColumnSpec("customer_name", "Customer"),
                    ColumnSpec("order_total", "Order Total"),
                    ColumnSpec("refund_amount", "Refunded"),
                    ColumnSpec("reason", "Reason"),
                    ColumnSpec("refunded_at", "Refunded At"),
                ),
                statement=statement,
            )

        statement = (
            select(
                Student.student_number.label("student_number"),
                Student.first_name.label("first_name"),
                Student.last_name.label("last_name"),
                Course.course_code.label("course_code"),
                Assignment.title.label("assignment_title"),
                Assignment.due_date.label("due_date"),
                Submission.submitted_at.label("submitted_at"),
                Submission.final_score.label("final_score"),
                Assignment.max_points.label("max_points"),
            )
            .join(Assignment, Submission.assignment_id == Assignment.id)
            .join(Student, Submission.student_id == Student.id)
            .join(Course, Assignment.course_id == Course.id)
            .where(
                Submission.submitted_at > Assignment.due_date,
                *within_days(Submission.submitted_at, filters.date_from, filters.date_to),
                *_in(Assignment.course_id, filters.course_ids),
            )
            .order_by(Submission.submitted_at.desc(), Submission.id.desc())
        )
        return DatasetDescriptor(
            title="Late Submissions",
            columns=(
                ColumnSpec("student_number", "Student #"),
                ColumnSpec("first_name", "First Name"),
                ColumnSpec("last_name", "Last Name"),
                ColumnSpec("course_code", "Course"),
                ColumnSpec("assignment_title", "Assignment"),
                ColumnSpec("due_date", "Due"),
                ColumnSpec("submitted_at", "Submitted"),
                ColumnSpec("final_score", "Score"),
                ColumnSpec("max_points", "Max Points"),
            ),
            statement=statement,
        )


class PerEntityPlanner:
    """Booklet of one sub-report per customer, region or student."""

    report_type = ReportType.PER_ENTITY
    filters_model = PerEntityFilters

    def build(self, filters: PerEntityFilters, now: datetime) -> BookletDescriptor:
        if filters.entity_type == "student":
            return self._students(filters)
        if filters.entity_type == "region":
            entities = select(Region.id.label("key"), Region.name.label("label")).order_by(Region.name, Region.id)
            entities = entities.where(*_in(Region.id, filters.entity_ids))
            pin = Order.region_id
            noun = "Region"
        else:
            entities = select(Customer.id.label("key"), Customer.name.label("label")).order_by(
                Customer.name, Customer.id
            )
            entities = entities.where(*_in(Customer.id, filters.entity_ids))
            pin = Order.customer_id
            noun = "Customer"

        base = _order_rows().where(
            *within_days(Order.order_date, filters.date_from, filters.date_to),
            *_in(Order.status, filters.statuses),
        )

        def section_for(entity: Entity) -> DatasetDescriptor:
            return DatasetDescriptor(
                title=f"{noun}: {entity.label}",
                columns=ORDER_COLUMNS,
                statement=base.where(pin == entity.key).order_by(Order.order_date.desc(), Order.id.desc()),
            )

        return BookletDescriptor(
            title=f"Per-{noun} Order Report",
            entity_noun=noun,
            entities=entities,
            section_for=section_for,
        )

    @staticmethod
    def _students(filters: PerEntityFilters) -> BookletDescriptor:
        entities = (
            select(Student.id.label("key"), (Student.last_name + ", " + Student.first_name).label("label"))
            .where(*_in(Student.id, filters.entity_ids))
            .order_by(Student.last_name, Student.first_name, Student.id)
        )
        base = (
            select(
                CourseEvent.occurred_at.label("occurred_at"),
                CourseEvent.event_type.label("event_type"),
                Course.course_code.label("course_code"),
                Course.course_name.label("course_name"),
            )
            .join(Course, CourseEvent.course_id == Course.id)
            .where(*within_days(CourseEvent.occurred_at, filters.date_from, filters.date_to))
        )
        columns = (
            ColumnSpec("occurred_at", "Date"),
            ColumnSpec("event_type", "Event Type"),
            ColumnSpec("course_code", "Course"),
            ColumnSpec("course_name", "Course Name"),
        )

        def section_for(entity: Entity) -> DatasetDescriptor:
            return DatasetDescriptor(
                title=f"Student: {entity.label}",
                columns=columns,
                statement=base.where(CourseEvent.student_id == entity.key).order_by(
                    CourseEvent.occurred_at.desc(), CourseEvent.id.desc()
                ),
            )

        return BookletDescriptor(
            title="Per-Student Activity Report",
            entity_noun="Student",
            entities=entities,
            section_for=section_for,
        )


PLANNERS: dict[ReportType, Planner] = {
    planner.report_type: planner
    for planner in (DetailPlanner(), SummaryPlanner(), TopNPlanner(), ExceptionsPlanner(), PerEntityPlanner())
}


def parse_filters(report_type: ReportType | str, raw: dict | None) -> ReportFilters:
    """Validate raw filters against the schema of a report type.

    Raises:
        FilterValidationError: On unknown report type or invalid filters.
    """
    planner = _planner_for(report_type)
    return validate_filters(planner.filters_model, raw)


def plan(
    report_type: ReportType | str,
    filters: dict | ReportFilters | None,
    *,
    now: datetime | None = None,
) -> PlannedDataset:
    """Build the dataset descriptor for a report request.

    Args:
        report_type: Report variant.
        filters: Raw filter mapping or an already-validated filter model.
        now: Reference time for relative windows (defaults to the current UTC time).

    Returns:
        A ``DatasetDescriptor`` or, for per-entity reports, a ``BookletDescriptor``.

    Raises:
        FilterValidationError: If the filters are invalid for the report type.
        PlanningError: If a pre-validated filter model belongs to another report type.
    """
    planner = _planner_for(report_type)
    if not isinstance(filters, ReportFilters):
        filters = validate_filters(planner.filters_model, filters)
    elif not isinstance(filters, planner.filters_model):
        msg = f"{type(filters).__name__} cannot plan a {planner.report_type} report"
        raise PlanningError(msg)
    return planner.build(filters, now or datetime.now(UTC))


def _planner_for(report_type: ReportType | str) -> Planner:
    try:
        return PLANNERS[ReportType(report_type)]
    except ValueError as exc:
        msg = f"Unknown report type: {report_type}"
        raise FilterValidationError(msg, errors=[{"loc": ["report_type"], "msg": msg, "type": "enum"}]) from exc
