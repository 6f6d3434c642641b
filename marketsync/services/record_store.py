"""
Record Store - keyed document store for synced records with bounded write batches
"""
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

from marketsync.core.exceptions import StoreWriteError
from marketsync.models.synced_record import SyncedRecord, record_doc_id
from marketsync.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 500


class BatchFullError(StoreWriteError):
    """An op was added to a batch that already holds the maximum number of ops"""
    pass


class WriteBatch:
    """
    Group of create/update ops committed together.
    Holds at most ``limit`` ops; callers commit and open a new batch when full.
    """

    def __init__(self, store: "RecordStore", limit: int):
        self.store = store
        self.limit = limit
        self.ops = 0

    @property
    def is_full(self) -> bool:
        return self.ops >= self.limit

    def _check_capacity(self):
        if self.is_full:
            raise BatchFullError(f"Write batch already holds {self.limit} ops")

    def create(
        self,
        owner_id: str,
        data_kind: str,
        natural_key: str,
        fields: Dict[str, Any],
        original_data: Optional[Dict[str, Any]] = None,
        source: str = "takealot_api",
    ) -> SyncedRecord:
        self._check_capacity()
        now = utcnow()
        record = SyncedRecord(
            id=record_doc_id(owner_id, natural_key),
            owner_id=owner_id,
            data_kind=data_kind,
            natural_key=natural_key,
            payload=dict(fields),
            original_data=original_data,
            source=source,
            first_fetched_at=now,
            fetched_at=now,
            last_updated_at=now,
        )
        self.store.db.add(record)
        self.ops += 1
        return record

    def update(
        self,
        record: SyncedRecord,
        fields: Dict[str, Any],
        original_data: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
    ) -> SyncedRecord:
        """Merge ``fields`` into the stored payload"""
        self._check_capacity()
        now = utcnow()
        merged = dict(record.payload or {})
        merged.update(fields)
        # Reassign so SQLAlchemy sees the JSON column change
        record.payload = merged
        if original_data is not None:
            record.original_data = original_data
        if source:
            record.source = source
        record.fetched_at = now
        record.last_updated_at = now
        self.ops += 1
        return record

    def commit(self) -> int:
        """Commit the batch; returns the number of ops written"""
        if self.ops == 0:
            return 0
        try:
            self.store.db.commit()
        except SQLAlchemyError as e:
            self.store.db.rollback()
            logger.error(f"[RecordStore] Batch commit of {self.ops} ops failed: {e}")
            raise StoreWriteError(f"Batch commit failed: {e}") from e

        self.store.batches_committed += 1
        self.store.ops_committed += self.ops
        written = self.ops
        self.ops = 0
        return written


class RecordStore:
    """
    SQLAlchemy-backed store for SyncedRecord documents.
    One instance per Session; counts committed batches for reporting.
    """

    def __init__(self, db: Session, batch_limit: int = DEFAULT_BATCH_LIMIT):
        self.db = db
        self.batch_limit = batch_limit
        self.batches_committed = 0
        self.ops_committed = 0

    def batch(self) -> WriteBatch:
        return WriteBatch(self, self.batch_limit)

    def get(self, owner_id: str, data_kind: str, natural_key: str) -> Optional[SyncedRecord]:
        return self.db.query(SyncedRecord).filter(
            SyncedRecord.owner_id == owner_id,
            SyncedRecord.data_kind == data_kind,
            SyncedRecord.natural_key == natural_key,
        ).first()

    def find_existing(
        self,
        owner_id: str,
        data_kind: str,
        natural_keys: Iterable[str],
    ) -> Dict[str, SyncedRecord]:
        """Stored records for the given keys, keyed by natural key"""
        keys = list({k for k in natural_keys if k})
        found: Dict[str, SyncedRecord] = {}
        # Keep IN lists well under driver parameter limits
        for i in range(0, len(keys), 500):
            chunk = keys[i:i + 500]
            rows = self.db.query(SyncedRecord).filter(
                SyncedRecord.owner_id == owner_id,
                SyncedRecord.data_kind == data_kind,
                SyncedRecord.natural_key.in_(chunk),
            ).all()
            for row in rows:
                found[row.natural_key] = row
        return found

    def list_records(self, owner_id: str, data_kind: str) -> List[SyncedRecord]:
        return self.db.query(SyncedRecord).filter(
            SyncedRecord.owner_id == owner_id,
            SyncedRecord.data_kind == data_kind,
        ).order_by(SyncedRecord.natural_key).all()

    def count(self, owner_id: str, data_kind: str) -> int:
        return self.db.query(SyncedRecord).filter(
            SyncedRecord.owner_id == owner_id,
            SyncedRecord.data_kind == data_kind,
        ).count()
