# Pydantic Schemas Package
from .sync import (
    SyncJobCreate, SyncJobHandleResponse, SyncJobResponse, ChunkResponse,
    SalesSyncRequest, BatchFetchRequest, SyncLogItem,
)

__all__ = [
    "SyncJobCreate", "SyncJobHandleResponse", "SyncJobResponse", "ChunkResponse",
    "SalesSyncRequest", "BatchFetchRequest", "SyncLogItem",
]
