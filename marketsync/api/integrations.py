"""
Integrations API - CRUD for seller API credentials
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel
from datetime import datetime
import logging

from marketsync.core.database import get_db
from marketsync.services import integration_service

logger = logging.getLogger(__name__)

integrations_router = APIRouter(prefix="/integrations", tags=["integrations"])


# ========== Schemas ==========

class IntegrationCreate(BaseModel):
    owner_id: str
    api_key: str
    account_name: Optional[str] = None
    sync_enabled: bool = True


class IntegrationUpdate(BaseModel):
    account_name: Optional[str] = None
    api_key: Optional[str] = None
    is_active: Optional[bool] = None
    sync_enabled: Optional[bool] = None


class IntegrationResponse(BaseModel):
    id: str
    owner_id: str
    account_name: Optional[str]
    is_active: bool
    sync_enabled: bool
    last_sync_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


# ========== Endpoints ==========

@integrations_router.get("", response_model=List[IntegrationResponse])
async def list_integrations(
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
):
    """List all integrations"""
    return integration_service.get_integrations(db, is_active=is_active)


@integrations_router.get("/{integration_id}", response_model=IntegrationResponse)
async def get_integration(
    integration_id: str,
    db: Session = Depends(get_db),
):
    integration = integration_service.get_integration(db, integration_id)
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


@integrations_router.post("", response_model=IntegrationResponse, status_code=status.HTTP_201_CREATED)
async def create_integration(
    data: IntegrationCreate,
    db: Session = Depends(get_db),
):
    """Create new integration (one per owner)"""
    existing = integration_service.get_integration_by_owner(db, data.owner_id)
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Integration for {data.owner_id} already exists",
        )

    return integration_service.create_integration(
        db,
        owner_id=data.owner_id,
        api_key=data.api_key,
        account_name=data.account_name,
        sync_enabled=data.sync_enabled,
    )


@integrations_router.patch("/{integration_id}", response_model=IntegrationResponse)
async def update_integration(
    integration_id: str,
    data: IntegrationUpdate,
    db: Session = Depends(get_db),
):
    integration = integration_service.update_integration(
        db, integration_id, **data.model_dump(exclude_unset=True)
    )
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


@integrations_router.delete("/{integration_id}")
async def delete_integration(
    integration_id: str,
    db: Session = Depends(get_db),
):
    if not integration_service.delete_integration(db, integration_id):
        raise HTTPException(status_code=404, detail="Integration not found")
    return {"success": True}
