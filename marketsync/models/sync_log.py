"""
Sync Log Model - Track one-shot and batch-fetch sync runs
"""
from sqlalchemy import Column, String, DateTime, JSON
import enum

from marketsync.core import Base
from marketsync.utils.date_utils import utcnow
from .base import UUIDMixin


class SyncLogStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


class SyncLog(Base, UUIDMixin):
    """Log of sync operations that are not resumable jobs"""
    __tablename__ = "sync_log"

    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True))
    status = Column(String(20), default=SyncLogStatus.RUNNING.value, nullable=False)

    owner_id = Column(String(100), index=True)
    # sales-sync-last-30-days, batch-sales-fetch, ...
    job_name = Column(String(100), nullable=False)
    trigger_type = Column(String(20))  # manual, cron
    schedule = Column(String(50))  # cron expression or "manual"

    # Stats JSON: {"processed": 100, "new": 10, "updated": 5, "skipped": 85, "errors": 0}
    stats = Column(JSON, default=dict)

    # Error message if failed
    error_message = Column(String(500))
