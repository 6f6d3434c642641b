"""
Synced Record Model - One upstream sale or offer per (owner, natural key)
"""
from sqlalchemy import Column, String, DateTime, JSON, UniqueConstraint

from marketsync.core import Base
from marketsync.utils.date_utils import utcnow


def record_doc_id(owner_id: str, natural_key: str) -> str:
    """Deterministic document id: owner + natural key"""
    return f"{owner_id}_{natural_key}"


class SyncedRecord(Base):
    """Canonical copy of an upstream record plus bookkeeping fields"""
    __tablename__ = "synced_record"

    id = Column(String(300), primary_key=True)
    owner_id = Column(String(100), nullable=False, index=True)
    data_kind = Column(String(20), nullable=False)  # products, sales
    natural_key = Column(String(150), nullable=False)  # order_id / tsin_id

    # Canonical fields (selling_price, order_status, gross_amount, ...)
    payload = Column(JSON, default=dict, nullable=False)
    # Raw record as returned by the API
    original_data = Column(JSON)
    source = Column(String(50), default="takealot_api")

    first_fetched_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    fetched_at = Column(DateTime(timezone=True), default=utcnow)
    last_updated_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("owner_id", "data_kind", "natural_key", name="uq_synced_record_owner_key"),
    )

    def __repr__(self):
        return f"<SyncedRecord {self.data_kind}:{self.natural_key}>"
