"""
Upsert Service - create-if-absent, update-if-changed, skip-if-unchanged
"""
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from sqlalchemy.orm import Session
import enum
import logging

from marketsync.core.config import settings
from marketsync.core.exceptions import MissingKeyError, StoreWriteError
from marketsync.models.sync_job import DataKind
from marketsync.models.synced_record import SyncedRecord
from marketsync.services.normalizer import (
    NormalizedProduct,
    NormalizedRecord,
    NormalizedSale,
    PRODUCT_COMPARE_FIELDS,
    SALE_COMPARE_FIELDS,
)
from marketsync.services.record_store import RecordStore, WriteBatch

logger = logging.getLogger(__name__)

NUMERIC_TOLERANCE = 0.01

KEY_FIELDS = {
    DataKind.SALES.value: "order_id",
    DataKind.PRODUCTS.value: "tsin_id",
}

COMPARE_FIELDS = {
    DataKind.SALES.value: SALE_COMPARE_FIELDS,
    DataKind.PRODUCTS.value: PRODUCT_COMPARE_FIELDS,
}

RecordInput = Union[NormalizedRecord, Mapping[str, Any]]


class UpsertOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class UpsertTally:
    processed: int = 0
    new: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def count(self, outcome: UpsertOutcome):
        if outcome == UpsertOutcome.CREATED:
            self.new += 1
        elif outcome == UpsertOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    def merge(self, other: "UpsertTally") -> "UpsertTally":
        self.processed += other.processed
        self.new += other.new
        self.updated += other.updated
        self.skipped += other.skipped
        self.errors += other.errors
        return self

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_differ(existing: Any, incoming: Any) -> bool:
    """
    True when ``incoming`` should replace ``existing``.
    Absent incoming values never count as a change; numbers compare with a 0.01 tolerance.
    """
    if _is_absent(incoming):
        return False
    if _is_number(existing) and _is_number(incoming):
        # round() absorbs float noise such as 100.00 - 99.99 == 0.010000000000005
        return round(abs(float(existing) - float(incoming)), 9) > NUMERIC_TOLERANCE
    return existing != incoming


def compute_changed_fields(
    existing: Mapping[str, Any],
    incoming: Mapping[str, Any],
    fields: Iterable[str],
) -> Optional[Dict[str, Dict[str, Any]]]:
    """
    {field: {"old": ..., "new": ...}} for every tracked field that changed,
    or None when nothing changed.
    """
    diff = {}
    for name in fields:
        if name not in incoming:
            continue
        if values_differ(existing.get(name), incoming[name]):
            diff[name] = {"old": existing.get(name), "new": incoming[name]}
    return diff or None


class RecordUpsertService:
    """
    Diff-aware upsert of canonical records into the record store.
    All writes of one pass go through write batches of at most
    ``batch_limit`` ops.
    """

    def __init__(
        self,
        db: Session,
        store: Optional[RecordStore] = None,
        batch_limit: Optional[int] = None,
        source: str = "takealot_api",
    ):
        self.db = db
        self.store = store or RecordStore(db, batch_limit or settings.STORE_BATCH_LIMIT)
        self.source = source

    # ========== Public API ==========

    def upsert(
        self,
        natural_key: str,
        owner_id: str,
        record: RecordInput,
        data_kind: Optional[str] = None,
    ) -> UpsertOutcome:
        """
        Upsert a single record and commit.
        Raises MissingKeyError when ``natural_key`` is empty.
        """
        kind = data_kind or self._kind_of(record)
        if not natural_key:
            raise MissingKeyError(kind, KEY_FIELDS.get(kind, "natural_key"))

        _, fields, raw = self._prepare(kind, record, natural_key=natural_key)
        existing = self.store.find_existing(owner_id, kind, [natural_key])
        batch = self.store.batch()
        outcome = self._apply(batch, existing, owner_id, kind, natural_key, fields, raw)
        batch.commit()
        return outcome

    def upsert_records(
        self,
        data_kind: str,
        owner_id: str,
        records: Iterable[RecordInput],
        verify_existing: bool = True,
    ) -> UpsertTally:
        """
        Upsert a pass of records. Records without a natural key are skipped,
        per-record failures are counted as errors, batch commit failures raise
        StoreWriteError.

        With ``verify_existing=False`` no diff is made: every record is written
        and counted as new.
        """
        tally = UpsertTally()
        prepared: List[Tuple[str, Dict[str, Any], Optional[Dict[str, Any]]]] = []

        for record in records:
            tally.processed += 1
            try:
                prepared.append(self._prepare(data_kind, record))
            except MissingKeyError as e:
                logger.warning(f"[Upsert] Skipping record: {e}")
                tally.skipped += 1
            except Exception as e:
                logger.error(f"[Upsert] Could not prepare {data_kind} record: {e}")
                tally.errors += 1

        if not prepared:
            return tally

        existing = self.store.find_existing(owner_id, data_kind, [p[0] for p in prepared])
        batch = self.store.batch()

        for natural_key, fields, raw in prepared:
            try:
                if verify_existing:
                    outcome = self._apply(batch, existing, owner_id, data_kind, natural_key, fields, raw)
                else:
                    outcome = self._overwrite(batch, existing, owner_id, data_kind, natural_key, fields, raw)
            except StoreWriteError:
                raise
            except Exception as e:
                logger.error(f"[Upsert] Error processing {data_kind} record {natural_key}: {e}")
                tally.errors += 1
                continue

            tally.count(outcome)

            if batch.is_full:
                batch.commit()
                batch = self.store.batch()

        batch.commit()

        logger.info(
            f"[Upsert] {data_kind} for {owner_id}: processed={tally.processed}, "
            f"new={tally.new}, updated={tally.updated}, skipped={tally.skipped}, errors={tally.errors}"
        )
        return tally

    # ========== Internals ==========

    def _kind_of(self, record: RecordInput) -> str:
        if isinstance(record, (NormalizedSale, NormalizedProduct)):
            return record.kind
        raise ValueError("data_kind is required for mapping records")

    def _prepare(
        self,
        data_kind: str,
        record: RecordInput,
        natural_key: Optional[str] = None,
    ) -> Tuple[str, Dict[str, Any], Optional[Dict[str, Any]]]:
        """(natural_key, fields, raw payload) for one record"""
        if isinstance(record, (NormalizedSale, NormalizedProduct)):
            fields = record.to_fields()
            raw = record.raw_payload or None
            key = natural_key or record.natural_key
        else:
            fields = dict(record)
            raw = None
            key = natural_key or fields.get(KEY_FIELDS[data_kind])

        key = str(key).strip() if key is not None else ""
        if not key:
            raise MissingKeyError(data_kind, KEY_FIELDS.get(data_kind, "natural_key"))
        return key, fields, raw

    def _apply(
        self,
        batch: WriteBatch,
        existing: Dict[str, SyncedRecord],
        owner_id: str,
        data_kind: str,
        natural_key: str,
        fields: Dict[str, Any],
        raw: Optional[Dict[str, Any]],
    ) -> UpsertOutcome:
        current = existing.get(natural_key)

        if current is None:
            create_fields = {k: v for k, v in fields.items() if v is not None}
            existing[natural_key] = batch.create(
                owner_id, data_kind, natural_key, create_fields,
                original_data=raw, source=self.source,
            )
            return UpsertOutcome.CREATED

        diff = compute_changed_fields(current.payload or {}, fields, COMPARE_FIELDS[data_kind])
        if not diff:
            return UpsertOutcome.SKIPPED

        logger.debug(f"[Upsert] {data_kind} {natural_key} changed: {sorted(diff)}")
        update_fields = {k: v for k, v in fields.items() if not _is_absent(v)}
        batch.update(current, update_fields, original_data=raw, source=self.source)
        return UpsertOutcome.UPDATED

    def _overwrite(
        self,
        batch: WriteBatch,
        existing: Dict[str, SyncedRecord],
        owner_id: str,
        data_kind: str,
        natural_key: str,
        fields: Dict[str, Any],
        raw: Optional[Dict[str, Any]],
    ) -> UpsertOutcome:
        current = existing.get(natural_key)
        if current is None:
            return self._apply(batch, existing, owner_id, data_kind, natural_key, fields, raw)
        # Still one document per key; the stored copy is replaced without diffing
        batch.update(current, {k: v for k, v in fields.items() if v is not None},
                     original_data=raw, source=self.source)
        return UpsertOutcome.CREATED
