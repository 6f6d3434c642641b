#!/usr/bin/env python3
"""
One-shot Sales Sync Scheduler - Runs the sales sync strategies on their schedules
Usage: python scheduler.py

Schedules:
- Last 100       hourly          (0 * * * *)
- Last 30 Days   daily 02:00     (0 2 * * *)
- Last 6 Months  Sunday 03:00    (0 3 * * 0)
- All Data       manual only
"""

import asyncio
import schedule
import time
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import os

from marketsync.core.config import settings

# ====================
# LOGGING CONFIGURATION
# ====================

logger = logging.getLogger("marketsync.scheduler")

NOISY_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "apscheduler")


def setup_logging(log_dir: str = settings.LOGS_PATH):
    """Console plus a rotating file in log_dir (50MB per file, 7 kept)"""
    os.makedirs(log_dir, exist_ok=True)

    file_handler = RotatingFileHandler(
        os.path.join(log_dir, "sales_scheduler.log"),
        maxBytes=50 * 1024 * 1024,
        backupCount=7,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"))

    # Quiet before basicConfig
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.basicConfig(level=logging.INFO, handlers=[file_handler, console_handler])


# ====================
# SYNC FUNCTIONS
# ====================

async def sync_sales_strategy(strategy: str):
    """Run one sales strategy for every integration with sync enabled"""
    from marketsync.core.database import session_scope
    from marketsync.services import integration_service
    from marketsync.services.sales_sync_service import SalesSyncService

    with session_scope() as db:
        integrations = integration_service.get_active_sync_integrations(db)
        service = SalesSyncService(db)

        totals = {'processed': 0, 'new': 0, 'updated': 0, 'failed': 0}

        for integration in integrations:
            try:
                result = await service.sync_sales(
                    integration.api_key, strategy, trigger_type='cron', owner_id=integration.owner_id
                )
                integration_service.mark_synced(db, integration)
                totals['processed'] += result.tally.processed
                totals['new'] += result.tally.new
                totals['updated'] += result.tally.updated
                logger.info(
                    f"  {integration.owner_id}: processed={result.tally.processed}, "
                    f"new={result.tally.new}, updated={result.tally.updated}"
                )
            except Exception as e:
                totals['failed'] += 1
                logger.error(f"  {integration.owner_id}: {str(e)[:100]}")

        return totals


def run_strategy(strategy: str):
    """Run a sales strategy and log a summary"""
    start_time = datetime.now()
    logger.info("=" * 50)
    logger.info(f"Starting sales sync '{strategy}' at {start_time.strftime('%Y-%m-%d %H:%M:%S')}")

    try:
        totals = asyncio.run(sync_sales_strategy(strategy))
        duration = (datetime.now() - start_time).total_seconds()
        logger.info(f"Sales sync '{strategy}' completed in {duration:.1f}s")
        logger.info(
            f"   processed={totals['processed']}, new={totals['new']}, "
            f"updated={totals['updated']}, failed accounts={totals['failed']}"
        )
    except Exception as e:
        logger.error(f"Sales sync '{strategy}' failed: {e}")

    logger.info("=" * 50)


def main():
    from marketsync.core import init_db

    setup_logging()
    init_db()

    logger.info("MarketSync Sales Scheduler Started")
    logger.info(f"   Log dir: {settings.LOGS_PATH}")
    logger.info("   Last 100: hourly | Last 30 Days: daily 02:00 | Last 6 Months: Sunday 03:00")

    schedule.every().hour.at(":00").do(run_strategy, "Last 100")
    schedule.every().day.at("02:00").do(run_strategy, "Last 30 Days")
    schedule.every().sunday.at("03:00").do(run_strategy, "Last 6 Months")

    while True:
        schedule.run_pending()
        time.sleep(30)


if __name__ == "__main__":
    main()
