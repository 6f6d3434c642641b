import asyncio
from contextlib import contextmanager

import scheduler
from marketsync.core import database
from marketsync.models.sync_log import SyncLog
from marketsync.services import integration_service, sales_sync_service


def test_strategy_runs_for_each_enabled_integration(db, fake_client, builders, monkeypatch):
    integration_service.create_integration(db, "owner-1", "key-1")
    integration_service.create_integration(db, "owner-2", "key-2")
    integration_service.create_integration(db, "owner-3", "key-3", sync_enabled=False)
    client = fake_client(pages={1: builders.sales_page(builders.numbered_sales(0, 15), total=15)})

    @contextmanager
    def shared_session():
        yield db

    monkeypatch.setattr(database, "session_scope", shared_session)
    monkeypatch.setattr(sales_sync_service, "get_default_client", lambda: client)

    totals = asyncio.run(scheduler.sync_sales_strategy("Last 100"))

    assert totals == {"processed": 30, "new": 30, "updated": 0, "failed": 0}
    assert {c["api_key"] for c in client.calls} == {"key-1", "key-2"}
    assert db.query(SyncLog).filter(SyncLog.trigger_type == "cron").count() == 2
    assert all(i.last_sync_at is not None for i in integration_service.get_integrations(db, sync_enabled=True))


def test_failed_account_does_not_stop_the_others(db, fake_client, builders, monkeypatch):
    integration_service.create_integration(db, "owner-1", "key-1")
    client = fake_client(failing_pages=[1])

    @contextmanager
    def shared_session():
        yield db

    monkeypatch.setattr(database, "session_scope", shared_session)
    monkeypatch.setattr(sales_sync_service, "get_default_client", lambda: client)

    totals = asyncio.run(scheduler.sync_sales_strategy("Last 100"))

    assert totals["failed"] == 1
    assert totals["processed"] == 0
