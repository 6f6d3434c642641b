"""
Sync Job Service - create, resume, advance and retire resumable sync jobs
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from dateutil.relativedelta import relativedelta
import logging

from marketsync.core.config import settings
from marketsync.core.exceptions import ChunkAbortedError, SyncJobFailedError, SyncJobNotFoundError
from marketsync.integrations.base import BaseFetchClient
from marketsync.models.sync_job import (
    ACTIVE_STATUSES,
    DATE_FILTER_MONTHS,
    ENDPOINTS,
    TERMINAL_STATUSES,
    DataKind,
    DateFilterType,
    SyncJob,
    SyncJobStatus,
)
from marketsync.models.sync_log import SyncLog, SyncLogStatus
from marketsync.services.fetching import get_default_client
from marketsync.services.pagination import ChunkResult, PageFetchController
from marketsync.utils.date_utils import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class JobHandle:
    job_id: str
    should_process: bool
    current_page: int
    resumed: bool = False


def build_job_key(owner_id: str, data_kind: str, trigger_label: str, date_filter_type: str) -> str:
    return f"{owner_id}:{data_kind}:{trigger_label}:{date_filter_type}"


def resolve_date_window(
    data_kind: str,
    date_filter_type: str,
    custom_start: Optional[datetime] = None,
    custom_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    (start, end) of the date filter. Only sales jobs are filtered; presets
    look back whole calendar months from ``now``.
    """
    if data_kind != DataKind.SALES.value or date_filter_type == DateFilterType.NONE.value:
        return None, None

    now = as_utc(now) if now else utcnow()
    filter_type = DateFilterType(date_filter_type)

    if filter_type == DateFilterType.CUSTOM:
        if custom_start is None:
            raise ValueError("A custom date filter needs a start date")
        return as_utc(custom_start), as_utc(custom_end) if custom_end else now

    return now - relativedelta(months=DATE_FILTER_MONTHS[filter_type]), now


def log_sync_event(
    owner_id: str,
    job_id: str,
    event_type: str,
    message: str,
    metadata: Optional[Dict[str, Any]] = None,
):
    """Single place where job lifecycle events are logged"""
    line = f"[PaginatedSync] {event_type}: {message} (owner={owner_id}, job={job_id})"
    if metadata:
        line += f" {metadata}"
    if event_type == "error":
        logger.error(line)
    else:
        logger.info(line)


class SyncJobService:
    """
    Resumable job state manager. A scheduler calls ``process_job_chunk``
    repeatedly until the chunk reports ``reached_end``.
    """

    def __init__(
        self,
        db: Session,
        client: Optional[BaseFetchClient] = None,
        controller: Optional[PageFetchController] = None,
        page_size: Optional[int] = None,
    ):
        self.db = db
        self.page_size = page_size or settings.PAGE_SIZE
        if controller is None:
            controller = PageFetchController(db, client or get_default_client(), page_size=self.page_size)
        self.controller = controller

    # ========== Queries ==========

    def get_job(self, job_id: str) -> Optional[SyncJob]:
        return self.db.query(SyncJob).filter(SyncJob.id == job_id).first()

    def _require_job(self, job_id: str) -> SyncJob:
        job = self.get_job(job_id)
        if not job:
            raise SyncJobNotFoundError(job_id)
        return job

    def find_active_job(
        self,
        owner_id: str,
        data_kind: str,
        trigger_label: str,
        date_filter_type: str,
    ) -> Optional[SyncJob]:
        return self.db.query(SyncJob).filter(
            SyncJob.owner_id == owner_id,
            SyncJob.data_kind == data_kind,
            SyncJob.trigger_label == trigger_label,
            SyncJob.date_filter_type == date_filter_type,
            SyncJob.status.in_(ACTIVE_STATUSES),
        ).order_by(SyncJob.started_at.desc()).first()

    def get_active_sync_jobs(self, owner_id: Optional[str] = None) -> List[SyncJob]:
        """Pending and in-progress jobs, newest first"""
        query = self.db.query(SyncJob).filter(SyncJob.status.in_(ACTIVE_STATUSES))
        if owner_id:
            query = query.filter(SyncJob.owner_id == owner_id)
        return query.order_by(SyncJob.started_at.desc()).all()

    # ========== Create / Resume ==========

    def create_or_resume_sync_job(
        self,
        owner_id: str,
        data_kind: str,
        trigger_label: str,
        api_key: str,
        max_pages_to_fetch: Optional[int] = None,
        pages_per_chunk: Optional[int] = None,
        date_filter_type: str = DateFilterType.NONE.value,
        custom_start: Optional[datetime] = None,
        custom_end: Optional[datetime] = None,
    ) -> JobHandle:
        """
        Resume the active job for (owner, kind, label, filter) or create a new
        one at page 1. Safe to call repeatedly.
        """
        data_kind = DataKind(data_kind).value
        date_filter_type = DateFilterType(date_filter_type).value
        pages_per_chunk = pages_per_chunk or settings.DEFAULT_PAGES_PER_CHUNK

        existing = self.find_active_job(owner_id, data_kind, trigger_label, date_filter_type)
        if existing:
            return self._resume(existing)

        start, end = resolve_date_window(data_kind, date_filter_type, custom_start, custom_end)
        key = build_job_key(owner_id, data_kind, trigger_label, date_filter_type)
        now = utcnow()

        job = SyncJob(
            owner_id=owner_id,
            data_kind=data_kind,
            trigger_label=trigger_label,
            status=SyncJobStatus.PENDING.value,
            current_page=1,
            total_pages=None,
            pages_processed=0,
            total_items_processed=0,
            total_items_expected=None,
            items_created=0,
            items_updated=0,
            items_skipped=0,
            error_count=0,
            max_pages_to_fetch=max_pages_to_fetch,
            pages_per_chunk=pages_per_chunk,
            date_filter_type=date_filter_type,
            date_filter_start=start,
            date_filter_end=end,
            started_at=now,
            last_processed_at=now,
            api_key=api_key,
            base_endpoint=ENDPOINTS[data_kind],
            job_key=key,
            active_key=key,
        )
        self.db.add(job)
        try:
            self.db.commit()
        except IntegrityError:
            # Another invocation created the active job first
            self.db.rollback()
            winner = self.db.query(SyncJob).filter(SyncJob.active_key == key).first()
            if winner is None:
                raise
            return self._resume(winner)

        log_sync_event(
            owner_id, job.id, "start",
            f"New {data_kind} sync job created via {trigger_label}",
            {
                "max_pages_to_fetch": max_pages_to_fetch,
                "pages_per_chunk": pages_per_chunk,
                "date_filter_type": date_filter_type,
                "date_filter_start": start.isoformat() if start else None,
                "date_filter_end": end.isoformat() if end else None,
            },
        )
        return JobHandle(job_id=job.id, should_process=True, current_page=1)

    def _resume(self, job: SyncJob) -> JobHandle:
        job.status = SyncJobStatus.IN_PROGRESS.value
        job.last_processed_at = utcnow()
        self.db.commit()
        logger.info(f"[PaginatedSync] Resuming existing sync job {job.id} for {job.owner_id} ({job.data_kind})")
        return JobHandle(job_id=job.id, should_process=True, current_page=job.current_page, resumed=True)

    # ========== Chunk processing ==========

    async def process_job_chunk(self, job_id: str) -> ChunkResult:
        """
        Process one chunk of pages. Completed and cancelled jobs report
        ``reached_end`` without fetching; failed jobs raise SyncJobFailedError.
        """
        job = self._require_job(job_id)

        if job.status in (SyncJobStatus.COMPLETED.value, SyncJobStatus.CANCELLED.value):
            return ChunkResult(success=True, reached_end=True, next_page=job.current_page,
                               total_pages_discovered=job.total_pages)

        if job.status == SyncJobStatus.FAILED.value:
            raise SyncJobFailedError(job_id, job.last_error)

        log_sync_event(
            job.owner_id, job.id, "chunk_progress",
            f"Starting chunk processing from page {job.current_page}",
            {"total_pages": job.total_pages, "data_kind": job.data_kind, "trigger_label": job.trigger_label},
        )

        job.status = SyncJobStatus.IN_PROGRESS.value
        job.last_processed_at = utcnow()
        self.db.commit()

        try:
            result = await self.controller.fetch_chunk(job)
        except Exception as e:
            self.db.rollback()
            message = str(e)
            page_errors = e.partial.page_errors if isinstance(e, ChunkAbortedError) else 0
            log_sync_event(
                job.owner_id, job.id, "error",
                f"Chunk processing failed: {message}",
                {"current_page": job.current_page, "data_kind": job.data_kind, "page_errors": page_errors},
            )
            self.fail(job, message, page_errors=page_errors)
            return ChunkResult(
                success=False,
                reached_end=False,
                next_page=job.current_page,
                error_message=message,
            )

        self.advance(job, result)
        return result

    def advance(self, job: SyncJob, result: ChunkResult):
        """
        Record a chunk's progress and complete the job once the end was reached.
        A job cancelled while the chunk ran keeps its terminal status; only its
        counters and cursor move.
        """
        # Status may have changed in another session during the chunk
        self.db.refresh(job)
        already_terminal = job.is_terminal
        was_total_pages = job.total_pages
        job.current_page = result.next_page
        # SQL-side increments
        job.pages_processed = SyncJob.pages_processed + result.pages_processed
        job.total_items_processed = SyncJob.total_items_processed + result.items_processed
        job.items_created = SyncJob.items_created + result.tally.new
        job.items_updated = SyncJob.items_updated + result.tally.updated
        job.items_skipped = SyncJob.items_skipped + result.tally.skipped
        if result.page_errors:
            job.error_count = SyncJob.error_count + result.page_errors
            job.last_error = result.last_page_error

        if result.total_pages_discovered and result.total_pages_discovered != was_total_pages:
            job.total_pages = result.total_pages_discovered
            job.total_items_expected = result.total_pages_discovered * self.page_size

        if result.oldest_seen_date is not None:
            oldest = as_utc(job.oldest_processed_date)
            if oldest is None or result.oldest_seen_date < oldest:
                job.oldest_processed_date = result.oldest_seen_date

        job.last_processed_at = utcnow()

        if result.reached_end and not already_terminal:
            job.mark_completed()

        self.db.commit()

        if already_terminal:
            log_sync_event(
                job.owner_id, job.id, "chunk_complete",
                f"Chunk finished after job became {job.status}: {result.pages_processed} pages, "
                f"{result.items_processed} items",
                {"current_page": job.current_page},
            )
        elif result.reached_end:
            log_sync_event(
                job.owner_id, job.id, "complete", "Sync job completed successfully",
                {
                    "total_items_processed": job.total_items_processed,
                    "pages_processed": job.pages_processed,
                    "data_kind": job.data_kind,
                    "trigger_label": job.trigger_label,
                },
            )
        else:
            log_sync_event(
                job.owner_id, job.id, "chunk_complete",
                f"Chunk processed: {result.pages_processed} pages, {result.items_processed} items",
                {"current_page": job.current_page, "total_pages": job.total_pages},
            )

    def fail(self, job: SyncJob, error_message: str, page_errors: int = 0):
        """Fail the job, adding page errors seen before the failure; a cancelled job stays cancelled"""
        self.db.refresh(job)
        if job.is_terminal:
            job.error_count = (job.error_count or 0) + page_errors + 1
            job.last_error = error_message[:2000]
        else:
            job.mark_failed(error_message[:2000])
            job.error_count = job.error_count + page_errors
        self.db.commit()

    # ========== Cancel / Cleanup ==========

    def cancel_sync_job(self, job_id: str) -> bool:
        """
        Cancel an active job. Returns False when the job was already terminal.
        An in-flight chunk is not interrupted; the next chunk call sees the status.
        """
        job = self._require_job(job_id)
        if job.is_terminal:
            return False
        job.mark_cancelled()
        self.db.commit()
        log_sync_event(job.owner_id, job.id, "cancelled", "Sync job cancelled")
        return True

    def cleanup_old_jobs(self, days_old: Optional[int] = None) -> int:
        """Delete terminal jobs that finished more than ``days_old`` days ago"""
        days_old = days_old if days_old is not None else settings.JOB_RETENTION_DAYS
        cutoff = utcnow() - timedelta(days=days_old)

        deleted = self.db.query(SyncJob).filter(
            SyncJob.status.in_(TERMINAL_STATUSES),
            or_(SyncJob.completed_at < cutoff, SyncJob.failed_at < cutoff),
        ).delete(synchronize_session=False)
        self.db.commit()

        if deleted:
            logger.info(f"[PaginatedSync] Cleaned up {deleted} jobs older than {days_old} days")
        return deleted

    # ========== Stats ==========

    def get_sync_job_stats(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        """Dashboard counters over active jobs and the last 24 hours"""
        since = utcnow() - timedelta(hours=24)

        active = self.get_active_sync_jobs(owner_id)

        completed_query = self.db.query(SyncJob).filter(
            SyncJob.status == SyncJobStatus.COMPLETED.value,
            SyncJob.completed_at >= since,
        )
        logs_query = self.db.query(SyncLog).filter(SyncLog.started_at >= since)
        if owner_id:
            completed_query = completed_query.filter(SyncJob.owner_id == owner_id)
            logs_query = logs_query.filter(SyncLog.owner_id == owner_id)

        completed = completed_query.all()
        total_logs = logs_query.count()
        failed_logs = logs_query.filter(
            SyncLog.status.in_([SyncLogStatus.FAILED.value, SyncLogStatus.TIMEOUT.value])
        ).count()

        return {
            "active_jobs": len(active),
            "active_product_jobs": len([j for j in active if j.data_kind == DataKind.PRODUCTS.value]),
            "active_sales_jobs": len([j for j in active if j.data_kind == DataKind.SALES.value]),
            "completed_jobs_last_24h": len(completed),
            "total_items_processed_last_24h": sum(j.total_items_processed or 0 for j in completed),
            "error_rate": round(failed_logs / total_logs * 100) if total_logs else 0,
        }
