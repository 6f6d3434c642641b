"""
Chunk Sync Scheduler - Periodically advances resumable sync jobs one chunk at a time
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from marketsync.core.config import settings
from marketsync.core.database import session_scope
from marketsync.core.exceptions import SyncError
from marketsync.integrations.base import BaseFetchClient
from marketsync.models.sync_job import DataKind
from marketsync.services import integration_service
from marketsync.services.fetching import get_default_client
from marketsync.services.sync_job_service import SyncJobService

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None

CRON_LABELS = {
    DataKind.PRODUCTS.value: "cron_products",
    DataKind.SALES.value: "cron_sales",
}


def ensure_cron_jobs(service: SyncJobService, db: Session) -> int:
    """Create or resume the cron product and sales jobs of every enabled integration"""
    count = 0
    for integration in integration_service.get_active_sync_integrations(db):
        for data_kind, label in CRON_LABELS.items():
            service.create_or_resume_sync_job(
                owner_id=integration.owner_id,
                data_kind=data_kind,
                trigger_label=label,
                api_key=integration.api_key,
                pages_per_chunk=settings.DEFAULT_PAGES_PER_CHUNK,
            )
            count += 1
    return count


async def run_chunk_cycle(db: Session, client: Optional[BaseFetchClient] = None) -> Dict[str, Any]:
    """
    One scheduler tick: make sure cron jobs exist, then process one chunk of
    every active job. A failing job does not stop the others.
    """
    service = SyncJobService(db, client=client or get_default_client())
    summary = {"jobs_ensured": ensure_cron_jobs(service, db), "processed": 0, "completed": 0, "errors": 0}

    job_ids = [job.id for job in service.get_active_sync_jobs()]
    for job_id in job_ids:
        try:
            result = await service.process_job_chunk(job_id)
        except SyncError as e:
            logger.error(f"[PaginatedSync] Chunk for job {job_id} rejected: {e}")
            summary["errors"] += 1
            continue
        except Exception as e:
            db.rollback()
            logger.error(f"[PaginatedSync] Chunk for job {job_id} failed: {e}")
            summary["errors"] += 1
            continue

        summary["processed"] += 1
        if not result.success:
            summary["errors"] += 1
        elif result.reached_end:
            summary["completed"] += 1

    logger.info(
        f"[PaginatedSync] Cycle done: ensured={summary['jobs_ensured']}, processed={summary['processed']}, "
        f"completed={summary['completed']}, errors={summary['errors']}"
    )
    return summary


class ChunkSyncScheduler:
    """
    Manages the periodic chunk cycle and the nightly job cleanup
    """

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self.is_running = False

    def start(self):
        """Start the scheduler"""
        if self.is_running:
            return

        self.scheduler.start()
        self.is_running = True

        self.scheduler.add_job(
            func=self._run_cycle,
            trigger=IntervalTrigger(minutes=settings.CHUNK_INTERVAL_MINUTES),
            id="sync_chunk_cycle",
            name="Process sync job chunks",
            replace_existing=True,
            max_instances=1,  # chunks of the same job must not overlap
        )
        self.scheduler.add_job(
            func=self._cleanup,
            trigger=CronTrigger(hour=4, minute=0),
            id="sync_job_cleanup",
            name="Clean up old sync jobs",
            replace_existing=True,
        )
        # First cycle right away, without blocking startup
        self.scheduler.add_job(
            func=self._run_cycle,
            trigger="date",
            run_date=datetime.now(),
            id="sync_chunk_cycle_initial",
            replace_existing=True,
        )
        logger.info(f"Chunk sync scheduler started (every {settings.CHUNK_INTERVAL_MINUTES} minutes)")

    def stop(self):
        """Stop the scheduler"""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Chunk sync scheduler stopped")

    async def _run_cycle(self):
        try:
            with session_scope() as db:
                await run_chunk_cycle(db)
        except Exception as e:
            logger.error(f"Chunk cycle failed: {e}")

    def _cleanup(self):
        try:
            with session_scope() as db:
                SyncJobService(db, client=get_default_client()).cleanup_old_jobs(settings.JOB_RETENTION_DAYS)
        except Exception as e:
            logger.error(f"Sync job cleanup failed: {e}")


# ========== Global Functions ==========

def get_scheduler() -> ChunkSyncScheduler:
    """Get or create the global scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = ChunkSyncScheduler()
    return _scheduler


def start_scheduler():
    get_scheduler().start()


def stop_scheduler():
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None


async def run_cycle_now() -> Dict[str, Any]:
    """Run a single chunk cycle immediately (one-time)"""
    with session_scope() as db:
        return await run_chunk_cycle(db)


# ========== CLI Commands ==========

if __name__ == "__main__":
    """
    Run scheduler standalone:
    python -m marketsync.jobs.chunk_scheduler [once]
    """
    import sys

    from marketsync.core import init_db

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    init_db()

    if len(sys.argv) > 1 and sys.argv[1] == "once":
        asyncio.run(run_cycle_now())
    else:
        print("Starting chunk sync scheduler...")
        print("Press Ctrl+C to stop")

        async def _main():
            start_scheduler()
            await asyncio.Event().wait()

        try:
            asyncio.run(_main())
        except KeyboardInterrupt:
            stop_scheduler()
            print("Scheduler stopped")
