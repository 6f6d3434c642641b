import asyncio
from datetime import datetime, timedelta, timezone

from marketsync.models.synced_record import SyncedRecord
from marketsync.services.normalizer import normalize_sale
from marketsync.services.pagination import DateWindow, PageFetchController, filter_sales_by_date
from marketsync.services.record_store import RecordStore
from marketsync.services.sync_job_service import SyncJobService


def _service(db, client):
    return SyncJobService(db, controller=PageFetchController(db, client))


def test_chunk_stops_on_short_last_page(db, fake_client, builders):
    client = fake_client(pages={
        1: builders.sales_page(builders.numbered_sales(0, 100), total=342),
        2: builders.sales_page(builders.numbered_sales(100, 100), total=342),
        3: builders.sales_page(builders.numbered_sales(200, 100), total=342),
        4: builders.sales_page(builders.numbered_sales(300, 42), total=342),
    })
    service = _service(db, client)
    handle = service.create_or_resume_sync_job("owner-1", "sales", "manual", "key", pages_per_chunk=10)

    result = asyncio.run(service.process_job_chunk(handle.job_id))

    assert result.success is True
    assert result.pages_processed == 4
    assert result.items_processed == 342
    assert result.reached_end is True
    assert result.total_pages_discovered == 4
    assert client.pages_requested() == [1, 2, 3, 4]
    assert RecordStore(db).count("owner-1", "sales") == 342

    job = service.get_job(handle.job_id)
    assert job.status == "completed"
    assert job.completed_at is not None
    assert job.total_items_processed == 342
    assert job.total_pages == 4
    assert job.current_page == 5


def test_request_params(db, fake_client, builders):
    client = fake_client(pages={1: builders.sales_page(builders.numbered_sales(0, 3))})
    service = _service(db, client)
    handle = service.create_or_resume_sync_job("owner-1", "sales", "manual", "secret")

    asyncio.run(service.process_job_chunk(handle.job_id))

    call = client.calls[0]
    assert call["endpoint"] == "/v2/sales"
    assert call["api_key"] == "secret"
    assert call["params"] == {"page_number": 1, "page_size": 100}


def test_products_chunk_uses_offers_array(db, fake_client, builders):
    offers = [builders.offer(f"T{i}") for i in range(100)]
    client = fake_client(pages={
        1: builders.offers_page(offers, total=130),
        2: builders.offers_page([builders.offer(f"T{i}") for i in range(100, 130)], total=130),
    })
    service = _service(db, client)
    handle = service.create_or_resume_sync_job("owner-1", "products", "manual", "key")

    result = asyncio.run(service.process_job_chunk(handle.job_id))

    assert client.calls[0]["endpoint"] == "/v2/offers"
    assert result.items_processed == 130
    assert result.total_pages_discovered == 2
    assert RecordStore(db).count("owner-1", "products") == 130


def test_date_cutoff_stops_early_and_skips_old_records(db, fake_client, builders):
    start = datetime(2024, 3, 1)

    def page(first_date, count, offset):
        return builders.sales_page([
            builders.sale(f"O{offset + i}", order_date=first_date - timedelta(minutes=i))
            for i in range(count)
        ])

    older = [
        builders.sale(f"O{300 + i}", order_date=datetime(2024, 2, 20) - timedelta(minutes=i))
        for i in range(50)
    ]
    client = fake_client(pages={
        1: page(datetime(2024, 6, 20), 100, 0),
        2: page(datetime(2024, 5, 20), 100, 100),
        3: builders.sales_page(page(datetime(2024, 3, 10), 50, 200)["sales"] + older),
        4: page(datetime(2024, 1, 20), 100, 400),
    })
    service = _service(db, client)
    handle = service.create_or_resume_sync_job(
        "owner-1", "sales", "manual", "key",
        date_filter_type="custom", custom_start=start, custom_end=datetime(2024, 6, 30),
    )

    result = asyncio.run(service.process_job_chunk(handle.job_id))

    assert client.pages_requested() == [1, 2, 3]
    assert client.calls[0]["params"]["created_date_start"] == "2024-03-01"
    assert result.reached_end is True
    assert result.items_processed == 250

    stored = db.query(SyncedRecord).all()
    assert len(stored) == 250
    cutoff = start.replace(tzinfo=timezone.utc)
    assert all(normalize_sale(r.payload, "owner-1").order_datetime() >= cutoff for r in stored)

    job = service.get_job(handle.job_id)
    assert job.status == "completed"
    assert job.oldest_processed_date.replace(tzinfo=None) == datetime(2024, 2, 20) - timedelta(minutes=49)


def test_page_fetch_error_is_counted_and_skipped(db, fake_client, builders):
    client = fake_client(
        pages={
            1: builders.sales_page(builders.numbered_sales(0, 100)),
            3: builders.sales_page(builders.numbered_sales(200, 100)),
            4: builders.sales_page(builders.numbered_sales(300, 10)),
        },
        failing_pages=[2],
    )
    service = _service(db, client)
    handle = service.create_or_resume_sync_job("owner-1", "sales", "manual", "key")

    result = asyncio.run(service.process_job_chunk(handle.job_id))

    # page 2 is tried FETCH_ATTEMPTS times
    assert client.pages_requested() == [1, 2, 2, 2, 3, 4]
    assert result.page_errors == 1
    assert result.items_processed == 210
    assert result.pages_processed == 3
    assert result.reached_end is True

    job = service.get_job(handle.job_id)
    assert job.status == "completed"
    assert job.error_count == 1
    assert "503" in job.last_error


def test_max_pages_ceiling(db, fake_client, builders):
    client = fake_client(pages={
        p: builders.sales_page(builders.numbered_sales(p * 100, 100), total=1000) for p in range(1, 11)
    })
    service = _service(db, client)
    handle = service.create_or_resume_sync_job(
        "owner-1", "sales", "manual", "key", max_pages_to_fetch=2, pages_per_chunk=10,
    )

    result = asyncio.run(service.process_job_chunk(handle.job_id))

    assert client.pages_requested() == [1, 2]
    assert result.reached_end is True
    assert result.items_processed == 200


def test_filter_sales_by_date_keeps_undated_records(builders):
    window = DateWindow(start=datetime(2024, 3, 1, tzinfo=timezone.utc))
    sales = [
        normalize_sale(builders.sale("A", order_date=datetime(2024, 3, 5)), "o"),
        normalize_sale({"order_id": "B"}, "o"),
        normalize_sale(builders.sale("C", order_date=datetime(2024, 2, 1)), "o"),
    ]

    result = filter_sales_by_date(sales, window)

    assert [s.order_id for s in result.retained] == ["A", "B"]
    assert result.reached_cutoff is True
    assert result.oldest == datetime(2024, 2, 1, tzinfo=timezone.utc)


def test_filter_sales_by_date_excludes_after_end(builders):
    window = DateWindow(
        start=datetime(2024, 3, 1, tzinfo=timezone.utc),
        end=datetime(2024, 3, 31, tzinfo=timezone.utc),
    )
    sales = [
        normalize_sale(builders.sale("A", order_date=datetime(2024, 4, 5)), "o"),
        normalize_sale(builders.sale("B", order_date=datetime(2024, 3, 5)), "o"),
    ]

    result = filter_sales_by_date(sales, window)

    assert [s.order_id for s in result.retained] == ["B"]
    assert result.reached_cutoff is False
