"""
Sync API - Create, drive and monitor resumable sync jobs; one-shot and batch fetches
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from marketsync.core.database import get_db
from marketsync.core.exceptions import (
    SyncError,
    SyncJobFailedError,
    SyncJobNotFoundError,
    SyncTimeoutError,
    UpstreamFetchError,
)
from marketsync.integrations.base import BaseFetchClient
from marketsync.schemas.sync import (
    BatchFetchRequest,
    ChunkResponse,
    SalesSyncRequest,
    SyncJobCreate,
    SyncJobHandleResponse,
    SyncJobResponse,
    SyncLogItem,
)
from marketsync.services import integration_service, sync_log_service
from marketsync.services.batch_fetch_service import BatchFetchOptions, BatchFetchService
from marketsync.services.fetching import get_default_client
from marketsync.services.sales_sync_service import SalesSyncService
from marketsync.services.sync_job_service import SyncJobService

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger(__name__)


def get_fetch_client() -> BaseFetchClient:
    return get_default_client()


def _resolve_api_key(db: Session, owner_id: str, api_key: Optional[str]) -> str:
    if api_key:
        return api_key
    integration = integration_service.get_integration_by_owner(db, owner_id)
    if not integration or not integration.api_key:
        raise HTTPException(status_code=400, detail=f"No API key configured for {owner_id}")
    return integration.api_key


# ========== Resumable jobs ==========

@router.post("/jobs", response_model=SyncJobHandleResponse)
async def create_or_resume_job(
    payload: SyncJobCreate,
    db: Session = Depends(get_db),
    client: BaseFetchClient = Depends(get_fetch_client),
):
    """Create a new sync job or resume the active one for the same owner/kind/label/filter"""
    api_key = _resolve_api_key(db, payload.owner_id, payload.api_key)
    service = SyncJobService(db, client=client)
    try:
        handle = service.create_or_resume_sync_job(
            owner_id=payload.owner_id,
            data_kind=payload.data_kind,
            trigger_label=payload.trigger_label,
            api_key=api_key,
            max_pages_to_fetch=payload.max_pages_to_fetch,
            pages_per_chunk=payload.pages_per_chunk,
            date_filter_type=payload.date_filter_type,
            custom_start=payload.custom_start,
            custom_end=payload.custom_end,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SyncJobHandleResponse(
        job_id=handle.job_id,
        should_process=handle.should_process,
        current_page=handle.current_page,
        resumed=handle.resumed,
    )


@router.post("/jobs/cleanup")
async def cleanup_jobs(
    days_old: int = Query(7, ge=0),
    db: Session = Depends(get_db),
    client: BaseFetchClient = Depends(get_fetch_client),
):
    """Delete terminal jobs older than ``days_old`` days"""
    deleted = SyncJobService(db, client=client).cleanup_old_jobs(days_old)
    return {"success": True, "deleted": deleted}


@router.get("/jobs/active", response_model=List[SyncJobResponse])
async def list_active_jobs(
    owner_id: Optional[str] = None,
    db: Session = Depends(get_db),
    client: BaseFetchClient = Depends(get_fetch_client),
):
    return SyncJobService(db, client=client).get_active_sync_jobs(owner_id)


@router.get("/jobs/stats")
async def job_stats(
    owner_id: Optional[str] = None,
    db: Session = Depends(get_db),
    client: BaseFetchClient = Depends(get_fetch_client),
):
    return SyncJobService(db, client=client).get_sync_job_stats(owner_id)


@router.get("/jobs/{job_id}", response_model=SyncJobResponse)
async def get_job(
    job_id: str,
    db: Session = Depends(get_db),
    client: BaseFetchClient = Depends(get_fetch_client),
):
    job = SyncJobService(db, client=client).get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Sync job not found")
    return job


@router.post("/jobs/{job_id}/process", response_model=ChunkResponse)
async def process_job_chunk(
    job_id: str,
    db: Session = Depends(get_db),
    client: BaseFetchClient = Depends(get_fetch_client),
):
    """Process one chunk of pages; call again until ``reached_end``"""
    service = SyncJobService(db, client=client)
    try:
        result = await service.process_job_chunk(job_id)
    except SyncJobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SyncJobFailedError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ChunkResponse(**result.to_dict())


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    db: Session = Depends(get_db),
    client: BaseFetchClient = Depends(get_fetch_client),
):
    service = SyncJobService(db, client=client)
    try:
        cancelled = service.cancel_sync_job(job_id)
    except SyncJobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    job = service.get_job(job_id)
    return {"success": True, "cancelled": cancelled, "status": job.status}


# ========== One-shot ==========

@router.post("/sales")
async def sync_sales(
    payload: SalesSyncRequest,
    db: Session = Depends(get_db),
    client: BaseFetchClient = Depends(get_fetch_client),
):
    """Run a one-shot sales sync strategy and wait for it to finish"""
    api_key = _resolve_api_key(db, payload.owner_id, payload.api_key)
    service = SalesSyncService(db, client=client)
    try:
        result = await service.sync_sales(api_key, payload.strategy, payload.trigger_type, payload.owner_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SyncTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))
    except UpstreamFetchError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except SyncError as e:
        raise HTTPException(status_code=500, detail=str(e))

    integration = integration_service.get_integration_by_owner(db, payload.owner_id)
    if integration:
        integration_service.mark_synced(db, integration)

    return {"success": True, "result": result.to_dict()}


@router.post("/batch-fetch")
async def batch_fetch(
    payload: BatchFetchRequest,
    db: Session = Depends(get_db),
    client: BaseFetchClient = Depends(get_fetch_client),
):
    """Bulk fetch with bounded concurrent page requests"""
    api_key = _resolve_api_key(db, payload.owner_id, payload.api_key)
    options = BatchFetchOptions(
        data_kind=payload.data_kind,
        limit=payload.limit,
        days=payload.days,
        verify_existing=payload.verify_existing,
        pages_per_batch=payload.pages_per_batch,
    )
    service = BatchFetchService(db, client=client)
    try:
        result = await service.run(payload.owner_id, api_key, options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamFetchError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except SyncError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"success": True, "result": result.to_dict()}


# ========== Logs ==========

@router.get("/logs", response_model=List[SyncLogItem])
async def get_sync_logs(
    owner_id: Optional[str] = None,
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Recent one-shot and batch-fetch runs"""
    return sync_log_service.list_sync_logs(db, owner_id, limit)
