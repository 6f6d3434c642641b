"""
Record Normalizer - Map raw seller API records onto canonical sale/product records

The seller API is not consistent about field names (``order_status`` vs
``status`` vs ``sale_status`` ...). Every logical field has an ordered list of
candidate names; the first non-empty one wins.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from marketsync.models.sync_job import DataKind
from marketsync.utils.date_utils import parse_record_date

# ========== Field aliases (priority order) ==========

SALE_FIELD_ALIASES: Dict[str, List[str]] = {
    "order_id": ["order_id"],
    "sale_id": ["sale_id"],
    "order_item_id": ["order_item_id"],
    "tsin_id": ["tsin_id"],
    "tsin": ["tsin"],
    "sku": ["sku", "product_label_number"],
    "product_title": ["product_title", "title"],
    "brand": ["brand"],
    "order_status": ["order_status", "status", "sale_status"],
    "customer_name": ["customer_name", "buyer_name", "customer"],
    "customer_city": ["customer_city", "customer_dc"],
    "payment_method": ["payment_method"],
    "order_date": ["order_date", "sale_date", "date"],
    "delivery_date": ["delivery_date", "date_delivered"],
    "tracking_number": ["tracking_number", "waybill_number"],
    "return_status": ["return_status"],
    "selling_price": ["selling_price", "price", "total_amount"],
    "total_fee": ["total_fee", "fees_total"],
    "commission": ["commission", "success_fee"],
    "shipping_fee": ["shipping_fee", "fulfilment_fee", "fulfillment_fee"],
    "quantity": ["quantity", "quantity_sold", "units_sold"],
}

PRODUCT_FIELD_ALIASES: Dict[str, List[str]] = {
    "tsin_id": ["tsin_id"],
    "offer_id": ["offer_id"],
    "tsin": ["tsin"],
    "sku": ["sku", "product_label_number"],
    "product_title": ["product_title", "title"],
    "brand": ["brand"],
    "category": ["category"],
    "status": ["status", "offer_status"],
    "image_url": ["image_url", "image", "product_image"],
    "selling_price": ["selling_price", "price"],
    "rrp": ["rrp", "recommended_retail_price"],
    "cost_price": ["cost_price"],
    "quantity_available": ["quantity_available", "available_quantity", "qty"],
    "stock_at_takealot_total": ["stock_at_takealot_total"],
    "total_stock_on_way": ["total_stock_on_way"],
    "lead_time": ["lead_time", "leadtime_days"],
}

# Fields compared against the stored copy to decide update vs skip
SALE_COMPARE_FIELDS = [
    "selling_price",
    "order_status",
    "total_fee",
    "quantity",
    "commission",
    "shipping_fee",
    "delivery_date",
    "tracking_number",
    "customer_name",
    "status_normalized",
    "gross_amount",
]

PRODUCT_COMPARE_FIELDS = [
    "selling_price",
    "rrp",
    "sku",
    "image_url",
    "quantity_available",
    "stock_at_takealot_total",
    "status",
]

# Upstream sale status -> normalized status
STATUS_MAP = {
    "new": "NEW",
    "accepted": "NEW",
    "preparing for customer": "PREPARING",
    "inter dc transfer": "PREPARING",
    "received at dc": "PREPARING",
    "ready to ship": "PREPARING",
    "shipped to customer": "SHIPPED",
    "shipped": "SHIPPED",
    "in transit": "SHIPPED",
    "delivered": "DELIVERED",
    "completed": "DELIVERED",
    "returned": "RETURNED",
    "return requested": "RETURNED",
    "cancelled": "CANCELLED",
    "canceled": "CANCELLED",
    "cancelled by customer": "CANCELLED",
}


# ========== Resolution helpers ==========

def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def first_present(raw: Dict[str, Any], aliases: Sequence[str]) -> Any:
    """First non-empty value among ``aliases``, or None"""
    for name in aliases:
        value = raw.get(name)
        if not _is_empty(value):
            return value
    return None


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _to_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    return int(round(_to_float(value)))


def normalize_sale_status(order_status: str) -> str:
    if not order_status:
        return "NEW"
    return STATUS_MAP.get(order_status.strip().lower(), "OTHER")


def compute_gross_amount(selling_price: float, total_fee: float) -> float:
    """selling price less fees, never negative"""
    return round(max(0.0, (selling_price or 0.0) - (total_fee or 0.0)), 2)


# ========== Canonical records ==========

@dataclass
class NormalizedSale:
    """Canonical sale record"""
    order_id: str
    owner_id: str = ""
    sale_id: str = ""
    order_item_id: str = ""
    tsin_id: str = ""
    tsin: str = ""
    sku: str = ""
    product_title: str = ""
    brand: str = ""

    order_status: str = ""
    status_normalized: str = "NEW"
    return_status: str = ""

    customer_name: str = ""
    customer_city: str = ""
    payment_method: str = ""

    order_date: str = ""
    delivery_date: str = ""
    tracking_number: str = ""

    quantity: int = 0
    selling_price: float = 0.0
    total_fee: float = 0.0
    commission: float = 0.0
    shipping_fee: float = 0.0
    gross_amount: float = 0.0

    raw_payload: Dict[str, Any] = field(default_factory=dict)

    kind = DataKind.SALES.value
    key_field = "order_id"
    compare_fields = SALE_COMPARE_FIELDS

    @property
    def natural_key(self) -> str:
        return self.order_id

    def order_datetime(self) -> Optional[datetime]:
        return parse_record_date(self.order_date)

    def to_fields(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("raw_payload", None)
        data.pop("owner_id", None)
        return data


@dataclass
class NormalizedProduct:
    """Canonical product (offer) record"""
    tsin_id: str
    owner_id: str = ""
    offer_id: str = ""
    tsin: str = ""
    sku: str = ""
    product_title: str = ""
    brand: str = ""
    category: str = ""
    status: str = ""
    image_url: str = ""

    selling_price: float = 0.0
    rrp: float = 0.0
    cost_price: float = 0.0
    quantity_available: int = 0
    stock_at_takealot_total: int = 0
    total_stock_on_way: int = 0
    lead_time: int = 0

    raw_payload: Dict[str, Any] = field(default_factory=dict)

    kind = DataKind.PRODUCTS.value
    key_field = "tsin_id"
    compare_fields = PRODUCT_COMPARE_FIELDS

    @property
    def natural_key(self) -> str:
        return self.tsin_id

    def to_fields(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("raw_payload", None)
        data.pop("owner_id", None)
        return data


NormalizedRecord = Union[NormalizedSale, NormalizedProduct]


def normalize_sale(raw: Dict[str, Any], owner_id: str) -> NormalizedSale:
    """Convert a raw sale from the API into a NormalizedSale. Never raises."""
    def pick(name: str) -> Any:
        return first_present(raw, SALE_FIELD_ALIASES[name])

    order_status = _to_str(pick("order_status"))
    selling_price = _to_float(pick("selling_price"))
    total_fee = _to_float(pick("total_fee"))

    order_date_raw = pick("order_date")
    parsed_date = parse_record_date(order_date_raw)
    order_date = parsed_date.isoformat() if parsed_date else _to_str(order_date_raw)

    return NormalizedSale(
        order_id=_to_str(pick("order_id")),
        owner_id=owner_id,
        sale_id=_to_str(pick("sale_id")),
        order_item_id=_to_str(pick("order_item_id")),
        tsin_id=_to_str(pick("tsin_id")),
        tsin=_to_str(pick("tsin")),
        sku=_to_str(pick("sku")),
        product_title=_to_str(pick("product_title")),
        brand=_to_str(pick("brand")),

        order_status=order_status,
        status_normalized=normalize_sale_status(order_status),
        return_status=_to_str(pick("return_status")),

        customer_name=_to_str(pick("customer_name")),
        customer_city=_to_str(pick("customer_city")),
        payment_method=_to_str(pick("payment_method")),

        order_date=order_date,
        delivery_date=_to_str(pick("delivery_date")),
        tracking_number=_to_str(pick("tracking_number")),

        quantity=_to_int(pick("quantity")),
        selling_price=selling_price,
        total_fee=total_fee,
        commission=_to_float(pick("commission")),
        shipping_fee=_to_float(pick("shipping_fee")),
        gross_amount=compute_gross_amount(selling_price, total_fee),

        raw_payload=dict(raw),
    )


def normalize_product(raw: Dict[str, Any], owner_id: str) -> NormalizedProduct:
    """Convert a raw offer from the API into a NormalizedProduct. Never raises."""
    def pick(name: str) -> Any:
        return first_present(raw, PRODUCT_FIELD_ALIASES[name])

    return NormalizedProduct(
        tsin_id=_to_str(pick("tsin_id")),
        owner_id=owner_id,
        offer_id=_to_str(pick("offer_id")),
        tsin=_to_str(pick("tsin")),
        sku=_to_str(pick("sku")),
        product_title=_to_str(pick("product_title")),
        brand=_to_str(pick("brand")),
        category=_to_str(pick("category")),
        status=_to_str(pick("status")),
        image_url=_to_str(pick("image_url")),

        selling_price=_to_float(pick("selling_price")),
        rrp=_to_float(pick("rrp")),
        cost_price=_to_float(pick("cost_price")),
        quantity_available=_to_int(pick("quantity_available")),
        stock_at_takealot_total=_to_int(pick("stock_at_takealot_total")),
        total_stock_on_way=_to_int(pick("total_stock_on_way")),
        lead_time=_to_int(pick("lead_time")),

        raw_payload=dict(raw),
    )


def normalize_record(data_kind: str, raw: Dict[str, Any], owner_id: str) -> NormalizedRecord:
    if data_kind == DataKind.SALES.value:
        return normalize_sale(raw, owner_id)
    if data_kind == DataKind.PRODUCTS.value:
        return normalize_product(raw, owner_id)
    raise ValueError(f"Unknown data kind: {data_kind}")
