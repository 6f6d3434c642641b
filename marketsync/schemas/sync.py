"""
Sync Schemas
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime


class SyncJobCreate(BaseModel):
    owner_id: str
    data_kind: str  # products, sales
    trigger_label: str = "manual"
    api_key: Optional[str] = None  # falls back to the owner's integration
    max_pages_to_fetch: Optional[int] = Field(None, ge=1)
    pages_per_chunk: int = Field(10, ge=1, le=100)
    date_filter_type: str = "none"  # none, 1_month, 3_months, 6_months, custom
    custom_start: Optional[datetime] = None
    custom_end: Optional[datetime] = None


class SyncJobHandleResponse(BaseModel):
    job_id: str
    should_process: bool
    current_page: int
    resumed: bool = False


class SyncJobResponse(BaseModel):
    id: str
    owner_id: str
    data_kind: str
    trigger_label: str
    status: str
    current_page: int
    total_pages: Optional[int] = None
    pages_processed: int
    total_items_processed: int
    total_items_expected: Optional[int] = None
    items_created: int
    items_updated: int
    items_skipped: int
    error_count: int
    last_error: Optional[str] = None
    max_pages_to_fetch: Optional[int] = None
    pages_per_chunk: int
    date_filter_type: str
    date_filter_start: Optional[datetime] = None
    date_filter_end: Optional[datetime] = None
    oldest_processed_date: Optional[datetime] = None
    started_at: datetime
    last_processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChunkResponse(BaseModel):
    success: bool
    items_processed: int
    pages_processed: int
    reached_end: bool
    total_pages_discovered: Optional[int] = None
    next_page: int
    page_errors: int = 0
    error_message: Optional[str] = None
    stats: Dict[str, int] = {}


class SalesSyncRequest(BaseModel):
    owner_id: str
    strategy: str = "Last 100"  # Last 100, Last 30 Days, Last 6 Months, All Data
    trigger_type: str = "manual"
    api_key: Optional[str] = None


class BatchFetchRequest(BaseModel):
    owner_id: str
    data_kind: str = "sales"
    limit: Optional[int] = Field(None, ge=1)
    days: Optional[int] = Field(None, ge=1)
    verify_existing: bool = True
    pages_per_batch: Optional[int] = Field(None, ge=1, le=50)
    api_key: Optional[str] = None


class SyncLogItem(BaseModel):
    id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: str
    owner_id: Optional[str] = None
    job_name: str
    trigger_type: Optional[str] = None
    schedule: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
