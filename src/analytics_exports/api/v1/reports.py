"""Report export API endpoints: job control, download links and preview."""

import uuid
from datetime import UTC, datetime
from pathlib import Path

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_exports.core.config import Settings, get_settings
from analytics_exports.core.dependencies import get_async_session, get_owner_id
from analytics_exports.core.security import InvalidDownloadTokenError, create_download_token, decode_download_token
from analytics_exports.lib.errors import (
    AdmissionRejectedError,
    DownloadExpiredError,
    DownloadNotFoundError,
    FilterValidationError,
    InvalidJobStateError,
)
from analytics_exports.lib.planner.types import OutputFormat
from analytics_exports.models.report_job import JobStatus, ReportJob
from analytics_exports.schemas.common import PaginationMeta
from analytics_exports.schemas.report import (
    AdmissionRejectedDetail,
    DownloadDescriptor,
    ExportCreatedResponse,
    ExportJobResponse,
    ExportRequest,
    PaginatedExportJobResponse,
    PreviewColumn,
    PreviewContentsEntry,
    PreviewRequest,
    PreviewResponse,
)
from analytics_exports.services.preview_service import preview_report
from analytics_exports.services.report_job_service import (
    cancel_report_job,
    create_report_job,
    delete_report_job,
    get_download,
    get_report_job,
    list_report_jobs,
)

reports_router = APIRouter(prefix="/reports", tags=["reports"])

_MEDIA_TYPES = {
    OutputFormat.PAGINATED_DOCUMENT: "application/pdf",
    OutputFormat.TABULAR_SPREADSHEET: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _download_descriptor(job: ReportJob, settings: Settings, now: datetime) -> DownloadDescriptor | None:
    """Build a signed download link for a completed, unexpired job."""
    if job.status != JobStatus.COMPLETED or job.expires_at is None or job.has_expired(now):
        return None
    token = create_download_token(
        job.id,
        job.owner_id,
        job.expires_at,
        settings.download_signing_key,
        settings.download_signing_algorithm,
    )
    return DownloadDescriptor(
        url=f"{settings.api_v1_prefix}/reports/exports/{job.id}/download?token={token}",
        expires_at=job.expires_at,
        file_size_bytes=job.file_size_bytes or 0,
        page_count=job.page_count,
    )


def _job_to_response(job: ReportJob, settings: Settings) -> ExportJobResponse:
    """Convert a ReportJob to a response with expiry flag and download link."""
    now = datetime.now(UTC)
    response = ExportJobResponse.model_validate(job)
    response.is_expired = job.status == JobStatus.COMPLETED and job.has_expired(now)
    response.download = _download_descriptor(job, settings, now)
    return response


async def _get_owned_job(session: AsyncSession, job_id: uuid.UUID, owner_id: str) -> ReportJob:
    job = await get_report_job(session, job_id, owner_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export job not found")
    return job


def _validation_exception(exc: FilterValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"message": exc.message, "errors": exc.errors},
    )


@reports_router.post(
    "/exports",
    response_model=ExportCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_export(
    request: ExportRequest,
    session: AsyncSession = Depends(get_async_session),
    owner_id: str = Depends(get_owner_id),
    settings: Settings = Depends(get_settings),
) -> ExportCreatedResponse:
    """Request an asynchronous report export.

    Returns 429 when the owner already has the maximum number of exports in
    progress and 422 when the filters do not match the report type.
    """
    try:
        job = await create_report_job(
            session,
            owner_id=owner_id,
            report_type=request.report_type,
            output_format=request.output_format,
            filters=request.filters,
            max_active_per_owner=settings.report_max_concurrent_exports_per_user,
        )
    except FilterValidationError as exc:
        raise _validation_exception(exc) from exc
    except AdmissionRejectedError as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=AdmissionRejectedDetail(message=str(exc), current=exc.current, limit=exc.limit).model_dump(),
        ) from exc
    return ExportCreatedResponse(id=job.id, status=job.status)


@reports_router.get(
    "/exports",
    response_model=PaginatedExportJobResponse,
)
async def list_exports(
    status_filter: JobStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_async_session),
    owner_id: str = Depends(get_owner_id),
    settings: Settings = Depends(get_settings),
) -> PaginatedExportJobResponse:
    """List the caller's export jobs, newest first."""
    jobs, total = await list_report_jobs(
        session,
        owner_id=owner_id,
        status_filter=status_filter,
        page=page,
        page_size=page_size,
    )
    return PaginatedExportJobResponse(
        items=[_job_to_response(j, settings) for j in jobs],
        pagination=PaginationMeta.build(total, page, page_size),
    )


@reports_router.get(
    "/exports/{job_id}",
    response_model=ExportJobResponse,
)
async def get_export_status(
    job_id: uuid.UUID,
    session: AsyncSession = Depends(get_async_session),
    owner_id: str = Depends(get_owner_id),
    settings: Settings = Depends(get_settings),
) -> ExportJobResponse:
    """Get export job status, progress and download link."""
    job = await _get_owned_job(session, job_id, owner_id)
    return _job_to_response(job, settings)


@reports_router.post(
    "/exports/{job_id}/cancel",
    response_model=ExportJobResponse,
)
async def cancel_export(
    job_id: uuid.UUID,
    session: AsyncSession = Depends(get_async_session),
    owner_id: str = Depends(get_owner_id),
    settings: Settings = Depends(get_settings),
) -> ExportJobResponse:
    """Cancel a queued, running or retry-pending export (409 once it has finished)."""
    job = await _get_owned_job(session, job_id, owner_id)
    try:
        job = await cancel_report_job(session, job, work_dir=Path(settings.export_work_dir))
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _job_to_response(job, settings)


@reports_router.delete(
    "/exports/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_export(
    job_id: uuid.UUID,
    session: AsyncSession = Depends(get_async_session),
    owner_id: str = Depends(get_owner_id),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Delete an export job and its file."""
    job = await _get_owned_job(session, job_id, owner_id)
    await delete_report_job(session, job, work_dir=Path(settings.export_work_dir))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@reports_router.get(
    "/exports/{job_id}/download",
)
async def download_export(
    job_id: uuid.UUID,
    token: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> FileResponse:
    """Download a finished export through its signed link.

    The token is verified before the job is looked up, so a caller without a
    valid link cannot tell existing jobs from missing ones.  Returns 403 for
    a token that does not grant this download, 410 once the link has expired
    and 404 when there is nothing to download.
    """
    try:
        claims = decode_download_token(
            token, job_id, settings.download_signing_key, settings.download_signing_algorithm
        )
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="Download link has expired") from exc
    except InvalidDownloadTokenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        job = await get_download(session, job_id, owner_id=claims.get("owner"))
    except DownloadNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DownloadExpiredError as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(exc)) from exc

    file_path = Path(job.file_path)
    return FileResponse(
        path=file_path,
        media_type=_MEDIA_TYPES[OutputFormat(job.output_format)],
        filename=file_path.name,
    )


@reports_router.post(
    "/preview",
    response_model=PreviewResponse,
)
async def preview(
    request: PreviewRequest,
    session: AsyncSession = Depends(get_async_session),
    _owner_id: str = Depends(get_owner_id),
    settings: Settings = Depends(get_settings),
) -> PreviewResponse:
    """Preview one page of a report without creating a job."""
    if request.page_size > settings.preview_max_page_size:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"page_size must not exceed {settings.preview_max_page_size}",
        )
    try:
        result = await preview_report(
            session,
            request.report_type,
            request.filters,
            page=request.page,
            page_size=request.page_size,
            rows_per_page=settings.report_booklet_rows_per_page,
            entries_per_page=settings.report_toc_entries_per_page,
        )
    except FilterValidationError as exc:
        raise _validation_exception(exc) from exc
    return PreviewResponse(
        title=result.title,
        columns=[PreviewColumn(key=c.key, header=c.header) for c in result.columns],
        rows=result.rows,
        pagination=PaginationMeta.build(result.total_rows, result.page, result.page_size),
        query_time_ms=result.query_time_ms,
        contents=(
            [PreviewContentsEntry(label=e.label, start_page=e.start_page) for e in result.contents]
            if result.contents is not None
            else None
        ),
    )
