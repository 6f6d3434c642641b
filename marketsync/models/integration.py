"""
Integration Model - Seller API credentials per owner
"""
from sqlalchemy import Column, String, Boolean, DateTime

from marketsync.core import Base
from .base import UUIDMixin, TimestampMixin


class Integration(Base, UUIDMixin, TimestampMixin):
    """
    Marketplace API configuration for one owner (admin account)
    """
    __tablename__ = "integration"

    owner_id = Column(String(100), nullable=False, unique=True)
    account_name = Column(String(200))

    # API credentials (should be encrypted in production)
    api_key = Column(String(500), nullable=False)

    # Settings
    is_active = Column(Boolean, default=True)
    sync_enabled = Column(Boolean, default=True)
    last_sync_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<Integration {self.owner_id}:{self.account_name}>"
