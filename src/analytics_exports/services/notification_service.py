"""Notification service: tells owners when their exports finish or fail.

Notifications are best effort: a failing notifier is logged and never
changes the outcome of the job it reports on.
"""

from datetime import datetime
from typing import Literal, Protocol

import httpx
from loguru import logger

from analytics_exports.core.config import Settings
from analytics_exports.models.report_job import ReportJob

NotificationEvent = Literal["export.completed", "export.failed"]


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def build_payload(event: NotificationEvent, job: ReportJob) -> dict:
    """JSON body describing a job event."""
    return {
        "event": event,
        "job_id": str(job.id),
        "owner_id": job.owner_id,
        "report_type": job.report_type,
        "output_format": job.output_format,
        "status": job.status,
        "total_rows": job.total_rows,
        "file_size_bytes": job.file_size_bytes,
        "page_count": job.page_count,
        "expires_at": _isoformat(job.expires_at),
        "error_message": job.error_message,
    }


class Notifier(Protocol):
    """Delivers job completion and failure events."""

    async def notify_completed(self, job: ReportJob) -> None: ...

    async def notify_failed(self, job: ReportJob) -> None: ...


class LoggingNotifier:
    """Writes notifications to the log only."""

    async def notify_completed(self, job: ReportJob) -> None:
        logger.bind(json_output=True).info(f"Export {job.id} for {job.owner_id} is ready ({job.file_size_bytes} bytes)")

    async def notify_failed(self, job: ReportJob) -> None:
        logger.bind(json_output=True).warning(f"Export {job.id} for {job.owner_id} failed: {job.error_message}")


class WebhookNotifier:
    """POSTs notifications as JSON to a webhook.

    Args:
        url: Webhook endpoint.
        timeout: Request timeout in seconds.
        client: Optional pre-configured client (tests inject a mock transport).
    """

    def __init__(self, url: str, timeout: float = 5.0, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _post(self, payload: dict) -> None:
        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()

    async def notify_completed(self, job: ReportJob) -> None:
        await self._post(build_payload("export.completed", job))

    async def notify_failed(self, job: ReportJob) -> None:
        await self._post(build_payload("export.failed", job))


def get_notifier(settings: Settings) -> Notifier:
    """Webhook notifier when a URL is configured, logging notifier otherwise."""
    if settings.notification_webhook_url:
        return WebhookNotifier(settings.notification_webhook_url, timeout=settings.notification_timeout)
    return LoggingNotifier()


async def send_notification(notifier: Notifier, event: NotificationEvent, job: ReportJob) -> bool:
    """Deliver one notification, logging instead of raising on failure.

    Returns:
        True if the notifier accepted the event.
    """
    try:
        if event == "export.completed":
            await notifier.notify_completed(job)
        else:
            await notifier.notify_failed(job)
    except Exception:
        logger.exception(f"Failed to deliver {event} notification for job {job.id}")
        return False
    return True
