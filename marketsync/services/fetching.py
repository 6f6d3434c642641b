"""
Page fetching helpers shared by the resumable, one-shot and batch sync paths
"""
import asyncio
import math
from typing import Any, Dict, List, Optional
import logging

from marketsync.core.config import settings
from marketsync.core.exceptions import UpstreamFetchError
from marketsync.integrations.base import BaseFetchClient
from marketsync.integrations.takealot import TakealotClient
from marketsync.models.sync_job import DataKind

logger = logging.getLogger(__name__)

RECORD_ARRAY_KEYS = {
    DataKind.PRODUCTS.value: "offers",
    DataKind.SALES.value: "sales",
}


def get_default_client() -> TakealotClient:
    """Takealot client configured from settings"""
    return TakealotClient(
        base_url=settings.TAKEALOT_API_BASE,
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
        max_retries=settings.CLIENT_MAX_RETRIES,
        proxies=settings.proxy_list,
    )


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2**attempt, capped"""
    return min(base_delay * (2 ** attempt), max_delay)


async def fetch_page_with_retry(
    client: BaseFetchClient,
    endpoint: str,
    api_key: str,
    params: Dict[str, Any],
    context: Optional[Dict[str, Any]] = None,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Fetch one page, retrying failed responses with exponential backoff.
    Returns the response body; raises UpstreamFetchError once attempts run out.
    """
    attempts = attempts if attempts is not None else settings.FETCH_ATTEMPTS
    base_delay = base_delay if base_delay is not None else settings.RETRY_BASE_DELAY_SECONDS
    max_delay = max_delay if max_delay is not None else settings.RETRY_MAX_DELAY_SECONDS
    page = params.get("page_number")

    last_error = "Unknown error"
    last_status: Optional[int] = None

    for attempt in range(max(1, attempts)):
        try:
            response = await client.get(endpoint, api_key, params, context)
        except Exception as e:
            # treated the same as a failed FetchResponse
            last_error = f"{type(e).__name__}: {e}"
            last_status = None
        else:
            if response.success:
                return response.data or {}
            last_error = response.error or "Unknown error"
            last_status = response.status_code

        if attempt < attempts - 1:
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"Fetch {endpoint} page {page} failed (attempt {attempt + 1}/{attempts}): "
                f"{last_error}; retrying in {delay:.1f}s"
            )
            if delay > 0:
                await asyncio.sleep(delay)

    raise UpstreamFetchError(
        f"API Error ({last_status}): {last_error}",
        status_code=last_status,
        page=page,
    )


def extract_page_records(data_kind: str, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """The kind-specific record array (``offers`` / ``sales``) of a page body"""
    records = (payload or {}).get(RECORD_ARRAY_KEYS[data_kind])
    if not isinstance(records, list):
        return []
    return [r for r in records if isinstance(r, dict)]


def discover_total_records(data_kind: str, payload: Dict[str, Any]) -> Optional[int]:
    summary = (payload or {}).get("page_summary") or {}
    if data_kind == DataKind.SALES.value:
        candidates = [summary.get("total_results"), summary.get("total")]
    else:
        candidates = [summary.get("total"), summary.get("total_results"), (payload or {}).get("total_results")]

    for value in candidates:
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def discover_total_pages(data_kind: str, payload: Dict[str, Any], page_size: int) -> Optional[int]:
    """ceil(total / page_size) from the page summary, when present"""
    total = discover_total_records(data_kind, payload)
    if total is None or page_size <= 0:
        return None
    return math.ceil(total / page_size)
