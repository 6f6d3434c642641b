import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from marketsync.api import api_router
from marketsync.api.sync import get_fetch_client
from marketsync.core.database import get_db


@pytest.fixture
def upstream(fake_client):
    return fake_client()


@pytest.fixture
def client(session_factory, upstream):
    app = FastAPI()
    app.include_router(api_router, prefix="/api")

    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_fetch_client] = lambda: upstream
    with TestClient(app) as test_client:
        yield test_client


def _add_integration(client, owner_id="owner-1", api_key="secret"):
    response = client.post("/api/integrations", json={"owner_id": owner_id, "api_key": api_key,
                                                        "account_name": "Main store"})
    assert response.status_code == 201
    return response.json()


def test_status(client):
    assert client.get("/api/status").json()["status"] == "ok"


def test_integration_crud(client):
    created = _add_integration(client)
    assert "api_key" not in created

    duplicate = client.post("/api/integrations", json={"owner_id": "owner-1", "api_key": "x"})
    assert duplicate.status_code == 400

    patched = client.patch(f"/api/integrations/{created['id']}", json={"sync_enabled": False})
    assert patched.json()["sync_enabled"] is False
    assert patched.json()["account_name"] == "Main store"

    assert len(client.get("/api/integrations").json()) == 1
    assert client.delete(f"/api/integrations/{created['id']}").json() == {"success": True}
    assert client.get(f"/api/integrations/{created['id']}").status_code == 404
    assert client.delete(f"/api/integrations/{created['id']}").status_code == 404


def test_job_needs_an_api_key(client):
    response = client.post("/api/sync/jobs", json={"owner_id": "nobody", "data_kind": "sales"})
    assert response.status_code == 400


def test_job_lifecycle(client, upstream, builders):
    _add_integration(client)
    upstream.pages = {1: builders.sales_page(builders.numbered_sales(0, 30), total=30)}

    handle = client.post("/api/sync/jobs", json={"owner_id": "owner-1", "data_kind": "sales"}).json()
    assert handle["should_process"] is True
    assert handle["current_page"] == 1
    assert handle["resumed"] is False

    again = client.post("/api/sync/jobs", json={"owner_id": "owner-1", "data_kind": "sales"}).json()
    assert again["job_id"] == handle["job_id"]

    active = client.get("/api/sync/jobs/active", params={"owner_id": "owner-1"}).json()
    assert [j["id"] for j in active] == [handle["job_id"]]

    chunk = client.post(f"/api/sync/jobs/{handle['job_id']}/process").json()
    assert chunk["success"] is True
    assert chunk["reached_end"] is True
    assert chunk["items_processed"] == 30
    assert chunk["stats"]["new"] == 30
    assert upstream.calls[0]["api_key"] == "secret"

    job = client.get(f"/api/sync/jobs/{handle['job_id']}").json()
    assert job["status"] == "completed"
    assert job["current_page"] == 2

    stats = client.get("/api/sync/jobs/stats").json()
    assert stats["completed_jobs_last_24h"] == 1

    cancelled = client.post(f"/api/sync/jobs/{handle['job_id']}/cancel").json()
    assert cancelled == {"success": True, "cancelled": False, "status": "completed"}


def test_invalid_job_requests(client):
    bad_filter = client.post("/api/sync/jobs", json={
        "owner_id": "owner-1", "data_kind": "sales", "api_key": "k", "date_filter_type": "2_weeks",
    })
    assert bad_filter.status_code == 400

    too_many = client.post("/api/sync/jobs", json={
        "owner_id": "owner-1", "data_kind": "sales", "api_key": "k", "pages_per_chunk": 500,
    })
    assert too_many.status_code == 422

    assert client.get("/api/sync/jobs/missing").status_code == 404
    assert client.post("/api/sync/jobs/missing/process").status_code == 404
    assert client.post("/api/sync/jobs/missing/cancel").status_code == 404


def test_cleanup_endpoint(client):
    assert client.post("/api/sync/jobs/cleanup", params={"days_old": 7}).json() == {"success": True, "deleted": 0}


def test_sales_sync_endpoint(client, upstream, builders):
    _add_integration(client)
    upstream.pages = {1: builders.sales_page(builders.numbered_sales(0, 10), total=10)}

    response = client.post("/api/sync/sales", json={"owner_id": "owner-1", "strategy": "Last 100"})

    assert response.status_code == 200
    assert response.json()["result"]["total_new"] == 10
    integration = client.get("/api/integrations").json()[0]
    assert integration["last_sync_at"] is not None

    logs = client.get("/api/sync/logs", params={"owner_id": "owner-1"}).json()
    assert logs[0]["job_name"] == "sales-sync-last-100"
    assert logs[0]["status"] == "success"


def test_sales_sync_errors(client, upstream):
    unknown = client.post("/api/sync/sales", json={"owner_id": "o", "api_key": "k", "strategy": "Yesterday"})
    assert unknown.status_code == 400

    upstream.failing_pages = {1}
    failed = client.post("/api/sync/sales", json={"owner_id": "o", "api_key": "k"})
    assert failed.status_code == 502


def test_batch_fetch_endpoint(client, upstream, builders):
    upstream.pages = {1: builders.sales_page(builders.numbered_sales(0, 20), total=20)}

    response = client.post("/api/sync/batch-fetch", json={"owner_id": "o", "api_key": "k", "limit": 5})

    assert response.status_code == 200
    assert response.json()["result"]["total_fetched"] == 5


def test_batch_fetch_with_no_records(client):
    response = client.post("/api/sync/batch-fetch", json={"owner_id": "o", "api_key": "k"})
    assert response.status_code == 422
