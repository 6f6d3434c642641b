from .base import TimestampMixin, UUIDMixin
from .integration import Integration
from .sync_job import (
    SyncJob, SyncJobStatus, DataKind, DateFilterType,
    ACTIVE_STATUSES, TERMINAL_STATUSES,
)
from .synced_record import SyncedRecord, record_doc_id
from .sync_log import SyncLog, SyncLogStatus

__all__ = [
    # Base
    "TimestampMixin", "UUIDMixin",
    # Integration
    "Integration",
    # Jobs
    "SyncJob", "SyncJobStatus", "DataKind", "DateFilterType",
    "ACTIVE_STATUSES", "TERMINAL_STATUSES",
    # Records
    "SyncedRecord", "record_doc_id",
    # Logs
    "SyncLog", "SyncLogStatus",
]
