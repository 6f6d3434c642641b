"""
Sync Job Model - Resumable paginated synchronization state
"""
from sqlalchemy import Column, String, Text, Integer, DateTime, Index
import enum

from marketsync.core import Base
from marketsync.utils.date_utils import utcnow
from .base import UUIDMixin


class DataKind(str, enum.Enum):
    PRODUCTS = "products"
    SALES = "sales"


class SyncJobStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = [SyncJobStatus.PENDING.value, SyncJobStatus.IN_PROGRESS.value]
TERMINAL_STATUSES = [
    SyncJobStatus.COMPLETED.value,
    SyncJobStatus.FAILED.value,
    SyncJobStatus.CANCELLED.value,
]


class DateFilterType(str, enum.Enum):
    NONE = "none"
    ONE_MONTH = "1_month"
    THREE_MONTHS = "3_months"
    SIX_MONTHS = "6_months"
    CUSTOM = "custom"


# Calendar months looked back by each preset
DATE_FILTER_MONTHS = {
    DateFilterType.ONE_MONTH: 1,
    DateFilterType.THREE_MONTHS: 3,
    DateFilterType.SIX_MONTHS: 6,
}

ENDPOINTS = {
    DataKind.PRODUCTS.value: "/v2/offers",
    DataKind.SALES.value: "/v2/sales",
}


class SyncJob(Base, UUIDMixin):
    """
    One resumable sync task. Mutated once per chunk until it reaches
    a terminal status.
    """
    __tablename__ = "sync_job"

    # Identity
    owner_id = Column(String(100), nullable=False, index=True)
    data_kind = Column(String(20), nullable=False)  # products, sales
    trigger_label = Column(String(100), nullable=False)  # cron_products, manual, ...

    # Progress
    current_page = Column(Integer, default=1, nullable=False)
    total_pages = Column(Integer)
    pages_processed = Column(Integer, default=0, nullable=False)
    total_items_processed = Column(Integer, default=0, nullable=False)
    total_items_expected = Column(Integer)
    items_created = Column(Integer, default=0, nullable=False)
    items_updated = Column(Integer, default=0, nullable=False)
    items_skipped = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text)

    # Control
    status = Column(String(20), default=SyncJobStatus.PENDING.value, nullable=False, index=True)
    max_pages_to_fetch = Column(Integer)
    pages_per_chunk = Column(Integer, default=10, nullable=False)

    # Date filtering (sales only)
    date_filter_type = Column(String(20), default=DateFilterType.NONE.value, nullable=False)
    date_filter_start = Column(DateTime(timezone=True))
    date_filter_end = Column(DateTime(timezone=True))
    oldest_processed_date = Column(DateTime(timezone=True))

    # Timestamps
    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_processed_at = Column(DateTime(timezone=True), default=utcnow)
    completed_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))

    # Carried so a chunk can run without re-reading the integration
    api_key = Column(String(500), nullable=False)
    base_endpoint = Column(String(100), nullable=False)

    # owner:kind:label:filter - identifies "the same" job across invocations
    job_key = Column(String(400), nullable=False, index=True)
    # Equal to job_key while pending/in_progress, NULL once terminal.
    # Unique so only one active job can exist per key.
    active_key = Column(String(400), unique=True)

    __table_args__ = (
        Index("ix_sync_job_lookup", "owner_id", "data_kind", "trigger_label", "date_filter_type", "status"),
    )

    def __repr__(self):
        return f"<SyncJob {self.id} {self.data_kind} {self.status} page={self.current_page}>"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_completed(self):
        self.status = SyncJobStatus.COMPLETED.value
        self.completed_at = utcnow()
        self.active_key = None

    def mark_failed(self, error_message: str):
        self.status = SyncJobStatus.FAILED.value
        self.failed_at = utcnow()
        self.last_error = error_message
        self.error_count = (self.error_count or 0) + 1
        self.active_key = None

    def mark_cancelled(self):
        self.status = SyncJobStatus.CANCELLED.value
        self.completed_at = utcnow()
        self.active_key = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "data_kind": self.data_kind,
            "trigger_label": self.trigger_label,
            "status": self.status,
            "current_page": self.current_page,
            "total_pages": self.total_pages,
            "pages_processed": self.pages_processed,
            "total_items_processed": self.total_items_processed,
            "total_items_expected": self.total_items_expected,
            "items_created": self.items_created,
            "items_updated": self.items_updated,
            "items_skipped": self.items_skipped,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "max_pages_to_fetch": self.max_pages_to_fetch,
            "pages_per_chunk": self.pages_per_chunk,
            "date_filter_type": self.date_filter_type,
            "date_filter_start": self.date_filter_start,
            "date_filter_end": self.date_filter_end,
            "oldest_processed_date": self.oldest_processed_date,
            "started_at": self.started_at,
            "last_processed_at": self.last_processed_at,
            "completed_at": self.completed_at,
            "failed_at": self.failed_at,
        }
