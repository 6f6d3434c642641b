# Services Package
from .record_store import RecordStore, WriteBatch
from .upsert_service import RecordUpsertService, UpsertOutcome, UpsertTally
from .pagination import PageFetchController, ChunkResult
from .sync_job_service import SyncJobService, JobHandle
from .sales_sync_service import SalesSyncService, SyncResult, STRATEGIES
from .batch_fetch_service import BatchFetchService, BatchFetchOptions, BatchFetchResult
from . import integration_service
from . import sync_log_service

__all__ = [
    "RecordStore",
    "WriteBatch",
    "RecordUpsertService",
    "UpsertOutcome",
    "UpsertTally",
    "PageFetchController",
    "ChunkResult",
    "SyncJobService",
    "JobHandle",
    "SalesSyncService",
    "SyncResult",
    "STRATEGIES",
    "BatchFetchService",
    "BatchFetchOptions",
    "BatchFetchResult",
    "integration_service",
    "sync_log_service",
]
