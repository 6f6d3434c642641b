"""
Paginated Fetch Controller - fetch one chunk of pages for a sync job
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
import logging

from marketsync.core.config import settings
from marketsync.core.exceptions import ChunkAbortedError, UpstreamFetchError
from marketsync.integrations.base import BaseFetchClient
from marketsync.models.sync_job import SyncJob, DataKind, DateFilterType
from marketsync.services.fetching import (
    discover_total_pages,
    extract_page_records,
    fetch_page_with_retry,
)
from marketsync.services.normalizer import NormalizedRecord, NormalizedSale, normalize_record
from marketsync.services.upsert_service import RecordUpsertService, UpsertTally
from marketsync.utils.date_utils import as_utc, format_api_date

logger = logging.getLogger(__name__)


@dataclass
class ChunkResult:
    """Outcome of one chunk invocation"""
    success: bool = True
    items_processed: int = 0
    pages_processed: int = 0
    reached_end: bool = False
    total_pages_discovered: Optional[int] = None
    next_page: int = 1
    page_errors: int = 0
    last_page_error: Optional[str] = None
    oldest_seen_date: Optional[datetime] = None
    error_message: Optional[str] = None
    tally: UpsertTally = field(default_factory=UpsertTally)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "items_processed": self.items_processed,
            "pages_processed": self.pages_processed,
            "reached_end": self.reached_end,
            "total_pages_discovered": self.total_pages_discovered,
            "next_page": self.next_page,
            "page_errors": self.page_errors,
            "error_message": self.error_message,
            "stats": self.tally.to_dict(),
        }


@dataclass
class DateWindow:
    start: datetime
    end: Optional[datetime] = None


@dataclass
class PageFilterResult:
    retained: List[NormalizedRecord]
    oldest: Optional[datetime] = None
    reached_cutoff: bool = False


def filter_sales_by_date(records: List[NormalizedSale], window: DateWindow) -> PageFilterResult:
    """
    Drop sales older than the window start (and newer than its end, when set).
    Every dated record feeds the oldest-date watermark; the cutoff is reached
    once the oldest sale on the page predates the window start.
    Sales without a parseable order date are kept.
    """
    result = PageFilterResult(retained=[])
    for sale in records:
        sale_date = sale.order_datetime()
        if sale_date is None:
            result.retained.append(sale)
            continue
        if result.oldest is None or sale_date < result.oldest:
            result.oldest = sale_date
        if sale_date < window.start:
            continue
        if window.end is not None and sale_date > window.end:
            continue
        result.retained.append(sale)

    if result.oldest is not None and result.oldest < window.start:
        result.reached_cutoff = True
    return result


class PageFetchController:
    """
    Drives sequential page fetches for a SyncJob, persisting each page as it
    arrives. Pages are fetched in increasing order; the date cutoff relies on
    the API returning sales newest first.
    """

    def __init__(
        self,
        db: Session,
        client: BaseFetchClient,
        upserter: Optional[RecordUpsertService] = None,
        page_size: Optional[int] = None,
        fetch_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
    ):
        self.db = db
        self.client = client
        self.upserter = upserter or RecordUpsertService(db)
        self.page_size = page_size or settings.PAGE_SIZE
        self.fetch_attempts = fetch_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    def _date_window(self, job: SyncJob) -> Optional[DateWindow]:
        if job.data_kind != DataKind.SALES.value:
            return None
        if job.date_filter_type in (None, DateFilterType.NONE.value) or not job.date_filter_start:
            return None
        return DateWindow(start=as_utc(job.date_filter_start), end=as_utc(job.date_filter_end))

    def _page_params(self, page: int, window: Optional[DateWindow]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page_number": page, "page_size": self.page_size}
        if window is not None:
            params["created_date_start"] = format_api_date(window.start)
        return params

    async def fetch_chunk(self, job: SyncJob) -> ChunkResult:
        """
        Fetch up to ``job.pages_per_chunk`` pages starting at ``job.current_page``.
        Page fetch failures are counted and skipped. Any other failure raises
        ChunkAbortedError with the progress made before it.
        """
        result = ChunkResult(next_page=job.current_page or 1, total_pages_discovered=job.total_pages)
        logger.info(f"[PaginatedSync] Processing chunk for job {job.id}, starting from page {result.next_page}")

        try:
            await self._fetch_pages(job, result)
        except Exception as e:
            raise ChunkAbortedError(e, result) from e
        return result

    async def _fetch_pages(self, job: SyncJob, result: ChunkResult):
        current_page = result.next_page
        total_pages = result.total_pages_discovered
        window = self._date_window(job)
        context = {
            "owner_id": job.owner_id,
            "data_kind": job.data_kind,
            "request_type": "cron",
            "job_id": job.id,
        }

        for _ in range(job.pages_per_chunk or 1):
            if job.max_pages_to_fetch and current_page > job.max_pages_to_fetch:
                result.reached_end = True
                break
            if total_pages and current_page > total_pages:
                result.reached_end = True
                break

            try:
                payload = await fetch_page_with_retry(
                    self.client,
                    job.base_endpoint,
                    job.api_key,
                    self._page_params(current_page, window),
                    context=context,
                    attempts=self.fetch_attempts,
                    base_delay=self.retry_base_delay,
                    max_delay=self.retry_max_delay,
                )
            except UpstreamFetchError as e:
                logger.error(f"[PaginatedSync] Error fetching page {current_page} for job {job.id}: {e}")
                result.page_errors += 1
                result.last_page_error = str(e)
                current_page += 1
                continue

            if current_page == 1:
                discovered = discover_total_pages(job.data_kind, payload, self.page_size)
                if discovered:
                    total_pages = discovered

            raw_records = extract_page_records(job.data_kind, payload)
            page_count = len(raw_records)
            records = [normalize_record(job.data_kind, raw, job.owner_id) for raw in raw_records]

            reached_cutoff = False
            if window is not None and records:
                filtered = filter_sales_by_date(records, window)
                records = filtered.retained
                reached_cutoff = filtered.reached_cutoff
                if filtered.oldest is not None and (
                    result.oldest_seen_date is None or filtered.oldest < result.oldest_seen_date
                ):
                    result.oldest_seen_date = filtered.oldest
                if reached_cutoff:
                    logger.info(
                        f"[PaginatedSync] Reached date limit for job {job.id}. "
                        f"Oldest date in page: {filtered.oldest.isoformat()}, "
                        f"filter start: {window.start.isoformat()}"
                    )

            if records:
                tally = self.upserter.upsert_records(job.data_kind, job.owner_id, records)
                result.tally.merge(tally)
                result.items_processed += len(records)

            result.pages_processed += 1
            processed_page = current_page
            current_page += 1

            if page_count < self.page_size or reached_cutoff:
                result.reached_end = True
                if not reached_cutoff:
                    total_pages = processed_page
                break

        result.next_page = current_page
        result.total_pages_discovered = total_pages
