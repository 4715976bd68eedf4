"""Query planner library: public API for turning report requests into datasets.

Public API:
    - plan: Build the dataset descriptor for a report type and filter set
    - parse_filters: Validate raw filters against a report type's schema
    - ReportType / OutputFormat: Closed sets of report variants and formats
    - DatasetDescriptor / BookletDescriptor: Planned datasets
    - estimate_contents / lay_out_contents: Booklet table-of-contents layout
"""

from analytics_exports.lib.planner.booklet import (
    ContentsEntry,
    estimate_contents,
    estimate_section_pages,
    lay_out_contents,
    toc_pages,
)
from analytics_exports.lib.planner.filters import ReportFilters
from analytics_exports.lib.planner.planners import PLANNERS, Planner, parse_filters, plan
from analytics_exports.lib.planner.types import (
    BookletDescriptor,
    ColumnSpec,
    DatasetDescriptor,
    Entity,
    OutputFormat,
    PlannedDataset,
    ReportType,
)

__all__ = [
    "PLANNERS",
    "BookletDescriptor",
    "ColumnSpec",
    "ContentsEntry",
    "DatasetDescriptor",
    "Entity",
    "OutputFormat",
    "PlannedDataset",
    "Planner",
    "ReportFilters",
    "ReportType",
    "estimate_contents",
    "estimate_section_pages",
    "lay_out_contents",
    "parse_filters",
    "plan",
    "toc_pages",
]
