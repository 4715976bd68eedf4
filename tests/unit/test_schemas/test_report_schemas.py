"""Tests for report export request and response schemas."""

import uuid
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from analytics_exports.lib.planner.types import OutputFormat, ReportType
from analytics_exports.models.report_job import JobStatus, ReportJob
from analytics_exports.schemas.common import PaginationMeta
from analytics_exports.schemas.report import ExportJobResponse, ExportRequest, PreviewRequest


class TestExportRequest:
    def test_valid_request(self) -> None:
        request = ExportRequest(report_type="detail", output_format="xlsx", filters={"date_from": "2026-02-01"})
        assert request.report_type == ReportType.DETAIL
        assert request.output_format == OutputFormat.TABULAR_SPREADSHEET

    def test_filters_default_to_empty(self) -> None:
        assert ExportRequest(report_type="summary", output_format="pdf").filters == {}

    def test_unknown_report_type(self) -> None:
        with pytest.raises(ValidationError):
            ExportRequest(report_type="custom_sql", output_format="pdf")

    def test_unknown_output_format(self) -> None:
        with pytest.raises(ValidationError):
            ExportRequest(report_type="detail", output_format="csv")


class TestPreviewRequest:
    def test_defaults(self) -> None:
        request = PreviewRequest(report_type="summary")
        assert (request.page, request.page_size) == (1, 50)

    def test_page_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            PreviewRequest(report_type="summary", page=0)


class TestExportJobResponse:
    def test_from_model(self) -> None:
        job = ReportJob(
            id=uuid.uuid4(),
            owner_id="alice",
            report_type="detail",
            output_format="xlsx",
            filters={"date_from": "2026-02-01"},
            status=JobStatus.RUNNING,
            progress_percent=40,
            processed_rows=5000,
            total_rows=12500,
            retry_count=0,
            attempts=1,
            created_at=datetime(2026, 3, 1, tzinfo=UTC),
        )

        response = ExportJobResponse.model_validate(job)

        assert response.status == "running"
        assert response.progress_percent == 40
        assert response.download is None
        assert response.is_expired is False


class TestPaginationMeta:
    def test_build_rounds_pages_up(self) -> None:
        meta = PaginationMeta.build(total=41, page=1, page_size=20)
        assert meta.total_pages == 3

    def test_build_empty(self) -> None:
        assert PaginationMeta.build(total=0, page=1, page_size=20).total_pages == 0
