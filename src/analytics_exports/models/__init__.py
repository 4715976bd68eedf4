"""ORM model registry: import all models so Alembic autogenerate discovers them."""

from analytics_exports.models.base import Base
from analytics_exports.models.commerce import Customer, Order, Refund, Region
from analytics_exports.models.learning import Assignment, Course, CourseEvent, Student, Submission
from analytics_exports.models.report_job import ReportJob

__all__ = [
    "Assignment",
    "Base",
    "Course",
    "CourseEvent",
    "Customer",
    "Order",
    "Refund",
    "Region",
    "ReportJob",
    "Student",
    "Submission",
]
