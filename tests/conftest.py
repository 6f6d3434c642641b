import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketsync.core.config import settings
from marketsync.core.database import Base
from marketsync.integrations.base import BaseFetchClient, FetchResponse
import marketsync.models  # noqa: F401  registers the tables


class FakeFetchClient(BaseFetchClient):
    """Scripted seller API: page number -> response body"""
    PLATFORM_NAME = "fake"

    def __init__(
        self,
        pages: Optional[Dict[int, Dict[str, Any]]] = None,
        failing_pages: Optional[List[int]] = None,
        delay: float = 0.0,
    ):
        self.pages = pages or {}
        self.failing_pages = set(failing_pages or [])
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def pages_requested(self) -> List[int]:
        return [c["params"].get("page_number") for c in self.calls]

    async def get(self, endpoint, api_key, params=None, context=None) -> FetchResponse:
        params = dict(params or {})
        self.calls.append({"endpoint": endpoint, "api_key": api_key, "params": params})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        page = params.get("page_number")
        if page in self.failing_pages:
            return FetchResponse(success=False, status_code=503, error="HTTP 503: Service Unavailable")
        payload = self.pages.get(page)
        if payload is None:
            return FetchResponse(success=True, data={"sales": [], "offers": []}, status_code=200)
        return FetchResponse(success=True, data=payload, status_code=200)


def make_sale(order_id, order_date: Optional[datetime] = None, **overrides) -> Dict[str, Any]:
    sale = {
        "order_id": order_id,
        "order_status": "Shipped to Customer",
        "customer_name": "Jane",
        "selling_price": 150.0,
        "total_fee": 20.0,
        "quantity": 1,
        "order_date": (order_date or datetime(2024, 6, 1, 12, 0)).isoformat(),
    }
    sale.update(overrides)
    return sale


def make_offer(tsin_id, **overrides) -> Dict[str, Any]:
    offer = {
        "tsin_id": tsin_id,
        "offer_id": f"OF{tsin_id}",
        "sku": f"SKU-{tsin_id}",
        "title": f"Product {tsin_id}",
        "selling_price": 99.0,
        "rrp": 120.0,
        "status": "Buyable",
        "quantity_available": 5,
    }
    offer.update(overrides)
    return offer


def sales_page(records: List[Dict[str, Any]], total: Optional[int] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"sales": records}
    if total is not None:
        body["page_summary"] = {"total_results": total}
    return body


def offers_page(records: List[Dict[str, Any]], total: Optional[int] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"offers": records}
    if total is not None:
        body["total_results"] = total
    return body


def numbered_sales(start: int, count: int, newest: datetime = datetime(2024, 6, 30)) -> List[Dict[str, Any]]:
    """``count`` sales with ids from ``start``, one hour apart, newest first"""
    return [
        make_sale(f"O{start + i}", order_date=newest - timedelta(hours=start + i))
        for i in range(count)
    ]


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "RETRY_BASE_DELAY_SECONDS", 0.0)
    monkeypatch.setattr(settings, "PAGE_DELAY_SECONDS", 0.0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_client():
    return FakeFetchClient


@pytest.fixture
def builders():
    """Record and page builders shared across test modules"""
    class Builders:
        sale = staticmethod(make_sale)
        offer = staticmethod(make_offer)
        sales_page = staticmethod(sales_page)
        offers_page = staticmethod(offers_page)
        numbered_sales = staticmethod(numbered_sales)
    return Builders
