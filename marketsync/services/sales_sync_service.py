"""
Sales Sync Service - one-shot (non-resumable) sales sync by strategy

Strategies:
- Last 100       first page only
- Last 30 Days   created_date_start = today - 30 days
- Last 6 Months  created_date_start = today - 180 days
- All Data       every page
"""
import asyncio
import re
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
import logging

from marketsync.core.config import settings
from marketsync.core.exceptions import SyncTimeoutError
from marketsync.integrations.base import BaseFetchClient
from marketsync.models.sync_job import DataKind, ENDPOINTS
from marketsync.models.sync_log import SyncLogStatus
from marketsync.services.fetching import (
    discover_total_pages,
    extract_page_records,
    fetch_page_with_retry,
    get_default_client,
)
from marketsync.services.normalizer import normalize_sale
from marketsync.services.sync_log_service import complete_sync_log, start_sync_log
from marketsync.services.upsert_service import RecordUpsertService, UpsertTally
from marketsync.utils.date_utils import format_api_date, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStrategy:
    name: str
    schedule: str
    max_pages: Optional[int] = None
    lookback_days: Optional[int] = None

    @property
    def slug(self) -> str:
        return re.sub(r"\s+", "-", self.name.strip().lower())


STRATEGIES: Dict[str, SyncStrategy] = {
    s.name: s
    for s in [
        SyncStrategy("Last 100", schedule="0 * * * *", max_pages=1),
        SyncStrategy("Last 30 Days", schedule="0 2 * * *", lookback_days=30),
        SyncStrategy("Last 6 Months", schedule="0 3 * * 0", lookback_days=180),
        SyncStrategy("All Data", schedule="manual"),
    ]
}


def get_strategy(name: str) -> SyncStrategy:
    strategy = STRATEGIES.get(name)
    if strategy is None:
        raise ValueError(f"Unknown sync strategy '{name}'. Expected one of: {', '.join(STRATEGIES)}")
    return strategy


@dataclass
class SyncResult:
    strategy: str
    trigger_type: str
    tally: UpsertTally = field(default_factory=UpsertTally)
    pages_fetched: int = 0
    records_fetched: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "trigger_type": self.trigger_type,
            "total_processed": self.tally.processed,
            "total_new": self.tally.new,
            "total_updated": self.tally.updated,
            "total_skipped": self.tally.skipped,
            "total_errors": self.tally.errors,
            "pages_fetched": self.pages_fetched,
            "records_fetched": self.records_fetched,
            "duration_seconds": round(self.duration_seconds, 2),
        }


class SalesSyncService:
    """
    Fetches sales page by page and upserts each page as it arrives.
    A page that still fails after retries aborts the whole run.
    """

    def __init__(
        self,
        db: Session,
        client: Optional[BaseFetchClient] = None,
        upserter: Optional[RecordUpsertService] = None,
        page_size: Optional[int] = None,
        page_delay: Optional[float] = None,
        fetch_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.db = db
        self.client = client or get_default_client()
        self.upserter = upserter or RecordUpsertService(db)
        self.page_size = page_size or settings.PAGE_SIZE
        self.page_delay = settings.PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self.fetch_attempts = fetch_attempts
        self.retry_base_delay = retry_base_delay

    def timeout_for(self, trigger_type: str) -> float:
        if trigger_type == "cron":
            return settings.CRON_SYNC_TIMEOUT_SECONDS
        return settings.MANUAL_SYNC_TIMEOUT_SECONDS

    async def sync_sales(
        self,
        api_key: str,
        strategy: str,
        trigger_type: str = "manual",
        owner_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> SyncResult:
        """
        Run one strategy end to end under a wall-clock timeout.
        Raises SyncTimeoutError on timeout; other failures are re-raised after
        the sync log is closed.
        """
        preset = get_strategy(strategy)
        owner_id = owner_id or "default"
        timeout_seconds = timeout_seconds if timeout_seconds is not None else self.timeout_for(trigger_type)
        result = SyncResult(strategy=preset.name, trigger_type=trigger_type)

        logger.info(f"[SalesSync] Starting sales sync: {preset.name} ({trigger_type}) for {owner_id}")
        sync_log = start_sync_log(
            self.db,
            job_name=f"sales-sync-{preset.slug}",
            owner_id=owner_id,
            trigger_type=trigger_type,
            schedule=preset.schedule,
        )
        started = time.monotonic()

        try:
            await asyncio.wait_for(self._perform(api_key, preset, owner_id, result), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            result.duration_seconds = time.monotonic() - started
            error = SyncTimeoutError(timeout_seconds)
            logger.error(f"[SalesSync] Sales sync {preset.name} timed out after {result.duration_seconds:.1f}s")
            complete_sync_log(self.db, sync_log, SyncLogStatus.TIMEOUT, result.to_dict(), str(error))
            raise error
        except Exception as e:
            self.db.rollback()
            result.duration_seconds = time.monotonic() - started
            logger.error(f"[SalesSync] Sales sync failed: {e}")
            stats = result.to_dict()
            stats["total_errors"] = stats["total_errors"] + 1
            complete_sync_log(self.db, sync_log, SyncLogStatus.FAILED, stats, str(e))
            raise

        result.duration_seconds = time.monotonic() - started
        complete_sync_log(self.db, sync_log, SyncLogStatus.SUCCESS, result.to_dict())
        logger.info(f"[SalesSync] Sales sync completed: {result.to_dict()}")
        return result

    async def _perform(self, api_key: str, preset: SyncStrategy, owner_id: str, result: SyncResult):
        params: Dict[str, Any] = {"page_size": self.page_size}
        if preset.lookback_days:
            params["created_date_start"] = format_api_date(utcnow() - timedelta(days=preset.lookback_days))

        endpoint = ENDPOINTS[DataKind.SALES.value]
        context = {"owner_id": owner_id, "data_kind": DataKind.SALES.value, "request_type": "sync"}
        current_page = 1
        total_pages = 1

        while True:
            page_params = dict(params, page_number=current_page)
            payload = await fetch_page_with_retry(
                self.client, endpoint, api_key, page_params, context=context,
                attempts=self.fetch_attempts, base_delay=self.retry_base_delay,
            )

            raw_sales = extract_page_records(DataKind.SALES.value, payload)
            if not raw_sales:
                logger.info(f"[SalesSync] No sales records found on page {current_page}, stopping pagination")
                break

            discovered = discover_total_pages(DataKind.SALES.value, payload, self.page_size)
            if discovered:
                total_pages = discovered

            sales = [normalize_sale(raw, owner_id) for raw in raw_sales]
            tally = self.upserter.upsert_records(DataKind.SALES.value, owner_id, sales)
            result.tally.merge(tally)
            result.pages_fetched += 1
            result.records_fetched += len(raw_sales)

            logger.info(f"[SalesSync] Fetched page {current_page}/{total_pages}: {len(raw_sales)} records")

            if preset.max_pages and current_page >= preset.max_pages:
                break
            if current_page >= total_pages or len(raw_sales) < self.page_size:
                break

            current_page += 1
            if self.page_delay > 0:
                await asyncio.sleep(self.page_delay)
