"""
Integration Service - Manage seller API credentials per owner
"""
from typing import Optional, List
from sqlalchemy.orm import Session
import logging

from marketsync.models.integration import Integration
from marketsync.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def get_integrations(
    db: Session,
    is_active: Optional[bool] = None,
    sync_enabled: Optional[bool] = None,
) -> List[Integration]:
    """Get all integrations with optional filters"""
    query = db.query(Integration)

    if is_active is not None:
        query = query.filter(Integration.is_active == is_active)
    if sync_enabled is not None:
        query = query.filter(Integration.sync_enabled == sync_enabled)

    return query.order_by(Integration.created_at.desc()).all()


def get_integration(db: Session, integration_id: str) -> Optional[Integration]:
    return db.query(Integration).filter(Integration.id == integration_id).first()


def get_integration_by_owner(db: Session, owner_id: str) -> Optional[Integration]:
    return db.query(Integration).filter(Integration.owner_id == owner_id).first()


def create_integration(
    db: Session,
    owner_id: str,
    api_key: str,
    account_name: Optional[str] = None,
    sync_enabled: bool = True,
) -> Integration:
    """Create new integration"""
    integration = Integration(
        owner_id=owner_id,
        account_name=account_name,
        api_key=api_key,
        is_active=True,
        sync_enabled=sync_enabled,
    )

    db.add(integration)
    db.commit()
    db.refresh(integration)

    logger.info(f"Created integration for {owner_id} ({account_name})")
    return integration


def update_integration(
    db: Session,
    integration_id: str,
    **kwargs,
) -> Optional[Integration]:
    """Update integration fields; unknown or None values are ignored"""
    integration = get_integration(db, integration_id)
    if not integration:
        return None

    for key, value in kwargs.items():
        if hasattr(integration, key) and value is not None:
            setattr(integration, key, value)

    db.commit()
    db.refresh(integration)
    return integration


def delete_integration(db: Session, integration_id: str) -> bool:
    integration = get_integration(db, integration_id)
    if not integration:
        return False

    db.delete(integration)
    db.commit()
    return True


def get_active_sync_integrations(db: Session) -> List[Integration]:
    """Integrations the schedulers should sync"""
    return get_integrations(db, is_active=True, sync_enabled=True)


def mark_synced(db: Session, integration: Integration):
    integration.last_sync_at = utcnow()
    db.commit()
