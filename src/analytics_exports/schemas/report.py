"""Report export Pydantic v2 request/response schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from analytics_exports.lib.planner.types import OutputFormat, ReportType
from analytics_exports.schemas.common import PaginationMeta


class ExportRequest(BaseModel):
    """Request to start an asynchronous report export.

    ``filters`` is validated against the schema of ``report_type`` when the
    job is created.
    """

    report_type: ReportType
    output_format: OutputFormat
    filters: dict[str, Any] = Field(default_factory=dict)


class ExportCreatedResponse(BaseModel):
    """Response for an accepted export request."""

    id: UUID
    status: str


class DownloadDescriptor(BaseModel):
    """Signed, time-limited link to a finished export."""

    url: str
    expires_at: datetime
    file_size_bytes: int
    page_count: int | None = None


class ExportJobResponse(BaseModel):
    """Status of an export job."""

    id: UUID
    report_type: str
    output_format: str
    filters: dict
    status: str
    progress_percent: int
    current_section: str | None = None
    total_rows: int | None = None
    processed_rows: int
    retry_count: int
    attempts: int
    error_message: str | None = None
    file_size_bytes: int | None = None
    page_count: int | None = None
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    expires_at: datetime | None = None
    is_expired: bool = False
    download: DownloadDescriptor | None = None

    model_config = {"from_attributes": True}


class PaginatedExportJobResponse(BaseModel):
    """Paginated list of export jobs."""

    items: list[ExportJobResponse]
    pagination: PaginationMeta


class AdmissionRejectedDetail(BaseModel):
    """Body of a 429 admission rejection."""

    message: str
    current: int
    limit: int


class PreviewRequest(BaseModel):
    """Request for a synchronous preview of a report."""

    report_type: ReportType
    filters: dict[str, Any] = Field(default_factory=dict)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1)


class PreviewColumn(BaseModel):
    key: str
    header: str


class PreviewContentsEntry(BaseModel):
    """Estimated table-of-contents line of a booklet."""

    label: str
    start_page: int


class PreviewResponse(BaseModel):
    """One page of a report preview."""

    title: str
    columns: list[PreviewColumn]
    rows: list[list[Any]]
    pagination: PaginationMeta
    query_time_ms: float
    contents: list[PreviewContentsEntry] | None = None
