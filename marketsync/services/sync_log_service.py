"""
Sync Log helpers - one row per one-shot or batch-fetch run
"""
from typing import Any, Dict, List, Optional
from sqlalchemy import desc
from sqlalchemy.orm import Session
import logging

from marketsync.models.sync_log import SyncLog, SyncLogStatus
from marketsync.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def start_sync_log(
    db: Session,
    job_name: str,
    owner_id: Optional[str] = None,
    trigger_type: str = "manual",
    schedule: Optional[str] = None,
) -> SyncLog:
    sync_log = SyncLog(
        started_at=utcnow(),
        status=SyncLogStatus.RUNNING.value,
        owner_id=owner_id,
        job_name=job_name,
        trigger_type=trigger_type,
        schedule=schedule,
        stats={},
    )
    db.add(sync_log)
    db.commit()
    db.refresh(sync_log)
    logger.info(f"Sync log started: {sync_log.id} for {job_name} ({trigger_type})")
    return sync_log


def complete_sync_log(
    db: Session,
    sync_log: SyncLog,
    status: SyncLogStatus,
    stats: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
) -> SyncLog:
    sync_log.completed_at = utcnow()
    sync_log.status = status.value
    sync_log.stats = stats or {}
    if error_message:
        sync_log.error_message = error_message[:500]
    db.commit()
    logger.info(f"Sync log {sync_log.id} finished with status {status.value}")
    return sync_log


def list_sync_logs(
    db: Session,
    owner_id: Optional[str] = None,
    limit: int = 20,
) -> List[SyncLog]:
    query = db.query(SyncLog)
    if owner_id:
        query = query.filter(SyncLog.owner_id == owner_id)
    return query.order_by(desc(SyncLog.started_at)).limit(limit).all()
