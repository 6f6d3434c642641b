"""
Batch Fetch Service - bulk one-shot fetch with bounded concurrent page requests
"""
import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
import logging

from marketsync.core.config import settings
from marketsync.core.exceptions import SyncError, UpstreamFetchError
from marketsync.integrations.base import BaseFetchClient
from marketsync.models.sync_job import DataKind, ENDPOINTS
from marketsync.models.sync_log import SyncLogStatus
from marketsync.services.fetching import (
    discover_total_records,
    extract_page_records,
    fetch_page_with_retry,
    get_default_client,
)
from marketsync.services.normalizer import normalize_record
from marketsync.services.sync_log_service import complete_sync_log, start_sync_log
from marketsync.services.upsert_service import RecordUpsertService, UpsertTally
from marketsync.utils.date_utils import format_api_date, utcnow

logger = logging.getLogger(__name__)


@dataclass
class BatchFetchOptions:
    data_kind: str = DataKind.SALES.value
    limit: Optional[int] = None  # records
    days: Optional[int] = None  # sales only
    verify_existing: bool = True
    pages_per_batch: Optional[int] = None


@dataclass
class BatchFetchResult:
    data_kind: str
    tally: UpsertTally = field(default_factory=UpsertTally)
    total_fetched: int = 0
    pages: int = 0
    fetch_errors: int = 0
    estimated_total_records: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data_kind": self.data_kind,
            "total_fetched": self.total_fetched,
            "total_new": self.tally.new,
            "total_updated": self.tally.updated,
            "total_skipped": self.tally.skipped,
            "errors": self.tally.errors + self.fetch_errors,
            "pages": self.pages,
            "estimated_total_records": self.estimated_total_records,
            "duration_seconds": round(self.duration_seconds, 2),
        }


class BatchFetchService:
    """
    First page discovers the scope, remaining pages are fetched in batches
    with at most ``max_concurrency`` requests in flight. A failed page counts
    as an error and contributes no records.
    """

    def __init__(
        self,
        db: Session,
        client: Optional[BaseFetchClient] = None,
        upserter: Optional[RecordUpsertService] = None,
        page_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        fetch_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.db = db
        self.client = client or get_default_client()
        self.upserter = upserter or RecordUpsertService(db)
        self.page_size = page_size or settings.PAGE_SIZE
        self.max_concurrency = max_concurrency or settings.BATCH_FETCH_MAX_CONCURRENCY
        self.fetch_attempts = fetch_attempts
        self.retry_base_delay = retry_base_delay

    def _base_params(self, options: BatchFetchOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page_size": self.page_size}
        if options.data_kind == DataKind.SALES.value and options.days:
            params["created_date_start"] = format_api_date(utcnow() - timedelta(days=options.days))
        return params

    async def _fetch(self, api_key: str, options: BatchFetchOptions, params: Dict[str, Any], page: int,
                     context: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = await fetch_page_with_retry(
            self.client,
            ENDPOINTS[options.data_kind],
            api_key,
            dict(params, page_number=page),
            context=context,
            attempts=self.fetch_attempts,
            base_delay=self.retry_base_delay,
        )
        return extract_page_records(options.data_kind, payload)

    async def fetch_all(
        self,
        owner_id: str,
        api_key: str,
        options: BatchFetchOptions,
        result: BatchFetchResult,
    ) -> List[Dict[str, Any]]:
        """Raw records of every page in scope, in page order"""
        params = self._base_params(options)
        context = {"owner_id": owner_id, "data_kind": options.data_kind, "request_type": "batch"}

        # Page 1 failures are fatal
        first_payload = await fetch_page_with_retry(
            self.client,
            ENDPOINTS[options.data_kind],
            api_key,
            dict(params, page_number=1),
            context=context,
            attempts=self.fetch_attempts,
            base_delay=self.retry_base_delay,
        )
        records = extract_page_records(options.data_kind, first_payload)
        result.pages = 1

        estimated_total = discover_total_records(options.data_kind, first_payload) or len(records)
        result.estimated_total_records = estimated_total
        max_records = min(options.limit, estimated_total) if options.limit else estimated_total
        max_pages = max(1, math.ceil(max_records / self.page_size))
        pages_per_batch = options.pages_per_batch or settings.BATCH_FETCH_PAGES_PER_BATCH

        logger.info(
            f"[BatchFetch] {options.data_kind} for {owner_id}: ~{estimated_total} records, "
            f"fetching {max_pages} pages"
        )

        sem = asyncio.Semaphore(self.max_concurrency)

        async def fetch_page_safe(page: int) -> List[Dict[str, Any]]:
            async with sem:
                try:
                    return await self._fetch(api_key, options, params, page, context)
                except UpstreamFetchError as e:
                    logger.error(f"[BatchFetch] Error fetching page {page}: {e}")
                    result.fetch_errors += 1
                    return []

        current_page = 2
        while current_page <= max_pages and (not options.limit or len(records) < options.limit):
            batch_end = min(current_page + pages_per_batch - 1, max_pages)
            pages = list(range(current_page, batch_end + 1))
            logger.info(f"[BatchFetch] Fetching pages {current_page}-{batch_end}")

            tasks = [fetch_page_safe(page) for page in pages]
            batch_results = await asyncio.gather(*tasks)

            for page_records in batch_results:
                records.extend(page_records)
            result.pages += len(pages)

            if options.limit and len(records) >= options.limit:
                break
            current_page = batch_end + 1

        if options.limit:
            records = records[:options.limit]
        result.total_fetched = len(records)
        return records

    async def run(self, owner_id: str, api_key: str, options: BatchFetchOptions) -> BatchFetchResult:
        """
        Fetch and upsert. Raises UpstreamFetchError when page 1 fails and
        SyncError when nothing came back.
        """
        options.data_kind = DataKind(options.data_kind).value
        result = BatchFetchResult(data_kind=options.data_kind)
        sync_log = start_sync_log(
            self.db,
            job_name=f"batch-{options.data_kind}-fetch",
            owner_id=owner_id,
            trigger_type="manual",
            schedule="manual",
        )
        started = time.monotonic()

        try:
            raw_records = await self.fetch_all(owner_id, api_key, options, result)
            if not raw_records:
                raise SyncError("No records found in API response")

            normalized = [normalize_record(options.data_kind, raw, owner_id) for raw in raw_records]
            tally = self.upserter.upsert_records(
                options.data_kind, owner_id, normalized, verify_existing=options.verify_existing
            )
            result.tally.merge(tally)
        except Exception as e:
            self.db.rollback()
            result.duration_seconds = time.monotonic() - started
            logger.error(f"[BatchFetch] {options.data_kind} fetch failed for {owner_id}: {e}")
            stats = result.to_dict()
            stats["errors"] += 1
            complete_sync_log(self.db, sync_log, SyncLogStatus.FAILED, stats, str(e))
            raise

        result.duration_seconds = time.monotonic() - started
        complete_sync_log(self.db, sync_log, SyncLogStatus.SUCCESS, result.to_dict())
        logger.info(f"[BatchFetch] Completed: {result.to_dict()}")
        return result
