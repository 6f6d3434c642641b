import pytest

from marketsync.services.normalizer import (
    NormalizedProduct,
    NormalizedSale,
    compute_gross_amount,
    first_present,
    normalize_product,
    normalize_record,
    normalize_sale,
    normalize_sale_status,
)


def test_sale_aliases_first_non_empty_wins():
    raw = {
        "order_id": 1001,
        "order_status": "",
        "status": "Delivered",
        "sale_status": "Shipped",
        "buyer_name": "Jane",
        "customer": "Someone Else",
        "price": "250.50",
        "fees_total": 30,
    }

    sale = normalize_sale(raw, "owner-1")

    assert sale.order_id == "1001"
    assert sale.owner_id == "owner-1"
    assert sale.order_status == "Delivered"
    assert sale.customer_name == "Jane"
    assert sale.selling_price == 250.5
    assert sale.total_fee == 30.0
    assert sale.status_normalized == "DELIVERED"


def test_missing_fields_default_to_empty_and_zero():
    sale = normalize_sale({}, "owner-1")

    assert sale.order_id == ""
    assert sale.customer_name == ""
    assert sale.selling_price == 0.0
    assert sale.quantity == 0
    assert sale.gross_amount == 0.0
    assert sale.status_normalized == "NEW"


def test_gross_amount_is_clamped_at_zero():
    sale = normalize_sale({"order_id": "1", "selling_price": 150, "total_fee": 200}, "o")
    assert sale.gross_amount == 0

    sale = normalize_sale({"order_id": "2", "selling_price": 150, "total_fee": 20.25}, "o")
    assert sale.gross_amount == 129.75


@pytest.mark.parametrize("selling_price,total_fee,expected", [
    (None, None, 0.0),
    (100.0, None, 100.0),
    (10.0, 10.0, 0.0),
])
def test_compute_gross_amount(selling_price, total_fee, expected):
    assert compute_gross_amount(selling_price, total_fee) == expected


@pytest.mark.parametrize("status,expected", [
    ("Shipped to Customer", "SHIPPED"),
    ("preparing for customer", "PREPARING"),
    ("Cancelled by Customer", "CANCELLED"),
    ("Return Requested", "RETURNED"),
    ("", "NEW"),
    ("Lost in space", "OTHER"),
])
def test_normalize_sale_status(status, expected):
    assert normalize_sale_status(status) == expected


def test_first_present_skips_blank_strings():
    assert first_present({"a": "  ", "b": None, "c": 0}, ["a", "b", "c"]) == 0
    assert first_present({}, ["a"]) is None


def test_unparseable_numbers_degrade_to_zero():
    sale = normalize_sale({"order_id": "1", "selling_price": "n/a", "quantity": "two"}, "o")
    assert sale.selling_price == 0.0
    assert sale.quantity == 0


def test_order_date_is_stored_as_iso():
    sale = normalize_sale({"order_id": "1", "order_date": "2024-05-03 10:15:00"}, "o")
    assert sale.order_date.startswith("2024-05-03T10:15:00")
    assert sale.order_datetime().year == 2024


def test_to_fields_drops_raw_payload_and_owner():
    sale = normalize_sale({"order_id": "1", "extra": "x"}, "owner-1")
    fields = sale.to_fields()

    assert "raw_payload" not in fields
    assert "owner_id" not in fields
    assert fields["order_id"] == "1"
    assert sale.raw_payload == {"order_id": "1", "extra": "x"}


def test_product_aliases():
    raw = {
        "tsin_id": 555,
        "price": 99.95,
        "recommended_retail_price": 129,
        "product_image": "https://img/1.jpg",
        "available_quantity": "7",
        "offer_status": "Buyable",
    }

    product = normalize_product(raw, "owner-1")

    assert product.natural_key == "555"
    assert product.selling_price == 99.95
    assert product.rrp == 129.0
    assert product.image_url == "https://img/1.jpg"
    assert product.quantity_available == 7
    assert product.status == "Buyable"


def test_normalize_record_dispatches_by_kind():
    assert isinstance(normalize_record("sales", {"order_id": "1"}, "o"), NormalizedSale)
    assert isinstance(normalize_record("products", {"tsin_id": "1"}, "o"), NormalizedProduct)
    with pytest.raises(ValueError):
        normalize_record("invoices", {}, "o")
