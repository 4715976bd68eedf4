"""Per-report-type filter schemas.

Every report variant validates its own filter set.  Sort columns, grouping
dimensions and sub-types are closed ``Literal`` sets so nothing a caller
types is ever interpolated into SQL.
"""

from datetime import date
from decimal import Decimal
from typing import Literal, Self, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from analytics_exports.lib.errors import FilterValidationError

DetailSortColumn = Literal["order_date", "total_amount", "order_number", "status"]
SortDirection = Literal["asc", "desc"]
SummaryGroupBy = Literal["date", "month", "region", "category", "status", "payment_method"]
TopNType = Literal["top_customers", "top_regions", "top_students", "inactive_students"]
InactivityMode = Literal["lookback", "threshold"]
ExceptionType = Literal["failed_orders", "cancelled_orders", "refunds", "late_submissions"]
EntityType = Literal["customer", "region", "student"]

F = TypeVar("F", bound="ReportFilters")

DEFAULT_INACTIVITY_DAYS = 14
DEFAULT_MIN_EVENTS = 5


class ReportFilters(BaseModel):
    """Base for all filter schemas: unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    date_from: date | None = None
    date_to: date | None = None

    @model_validator(mode="after")
    def _check_date_order(self) -> Self:
        if self.date_from and self.date_to and self.date_from > self.date_to:
            msg = "date_from must not be after date_to"
            raise ValueError(msg)
        return self

    @property
    def has_date_range(self) -> bool:
        return self.date_from is not None and self.date_to is not None


class DateRangeRequired(ReportFilters):
    """Filters whose report requires an explicit date range."""

    date_from: date
    date_to: date


class DetailFilters(DateRangeRequired):
    """Row-level order detail."""

    customer_ids: list[int] | None = None
    region_ids: list[int] | None = None
    categories: list[str] | None = None
    statuses: list[str] | None = None
    payment_methods: list[str] | None = None
    amount_min: Decimal | None = Field(default=None, ge=0)
    amount_max: Decimal | None = Field(default=None, ge=0)
    sort_by: DetailSortColumn = "order_date"
    sort_direction: SortDirection = "desc"


class SummaryFilters(ReportFilters):
    """Aggregated orders grouped by one allow-listed dimension."""

    group_by: SummaryGroupBy = "date"
    region_ids: list[int] | None = None
    categories: list[str] | None = None
    statuses: list[str] | None = None
    payment_methods: list[str] | None = None


class TopNFilters(ReportFilters):
    """Ranked aggregation limited to ``limit`` rows.

    ``inactive_students`` needs an explicit ``inactivity_mode``:

    * ``lookback``: no activity within the last ``inactivity_days``; no date range.
    * ``threshold``: fewer than ``min_events`` events inside a required date range.
    """

    top_type: TopNType
    limit: int = Field(ge=1, le=10000)
    region_ids: list[int] | None = None
    course_ids: list[int] | None = None
    program: str | None = None
    inactivity_mode: InactivityMode | None = None
    inactivity_days: int | None = Field(default=None, ge=1, le=3650)
    min_events: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_inactivity(self) -> Self:
        inactivity_fields = (self.inactivity_mode, self.inactivity_days, self.min_events)
        if self.top_type != "inactive_students":
            if any(v is not None for v in inactivity_fields):
                msg = "inactivity_mode, inactivity_days and min_events only apply to inactive_students"
                raise ValueError(msg)
            return self
        if self.inactivity_mode is None:
            msg = "inactive_students requires inactivity_mode ('lookback' or 'threshold')"
            raise ValueError(msg)
        if self.inactivity_mode == "lookback":
            if self.date_from is not None or self.date_to is not None:
                msg = "lookback mode does not take a date range"
                raise ValueError(msg)
            if self.min_events is not None:
                msg = "min_events only applies to threshold mode"
                raise ValueError(msg)
        else:
            if not self.has_date_range:
                msg = "threshold mode requires date_from and date_to"
                raise ValueError(msg)
            if self.inactivity_days is not None:
                msg = "inactivity_days only applies to lookback mode"
                raise ValueError(msg)
        return self

    @property
    def effective_inactivity_days(self) -> int:
        return self.inactivity_days or DEFAULT_INACTIVITY_DAYS

    @property
    def effective_min_events(self) -> int:
        return self.min_events or DEFAULT_MIN_EVENTS


class ExceptionsFilters(DateRangeRequired):
    """Rows matching one anomaly predicate."""

    exception_type: ExceptionType = "failed_orders"
    region_ids: list[int] | None = None
    course_ids: list[int] | None = None


class PerEntityFilters(ReportFilters):
    """One sub-report per customer, region or student."""

    entity_type: EntityType = "customer"
    entity_ids: list[int] | None = None
    statuses: list[str] | None = None

    @model_validator(mode="after")
    def _check_statuses(self) -> Self:
        if self.entity_type == "student" and self.statuses:
            msg = "statuses only apply to customer and region booklets"
            raise ValueError(msg)
        return self


def validate_filters(model: type[F], raw: dict | None) -> F:
    """Validate a raw filter mapping against a schema.

    Args:
        model: The filter schema for the report type.
        raw: Raw key-value filters as received from the caller.

    Returns:
        The validated filter model.

    Raises:
        FilterValidationError: If the filters do not match the schema.
    """
    try:
        return model.model_validate(raw or {})
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        summary = "; ".join(f"{'.'.join(str(p) for p in e['loc']) or 'filters'}: {e['msg']}" for e in errors)
        msg = f"Invalid filters: {summary}"
        details = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in errors]
        raise FilterValidationError(msg, errors=details) from exc
