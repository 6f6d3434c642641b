"""
Takealot Seller API Client
API Documentation: https://seller-api.takealot.com/api-docs
"""
import asyncio
import itertools
import time
from typing import Optional, Dict, Any, List
import httpx
import logging

from .base import BaseFetchClient, FetchResponse

logger = logging.getLogger(__name__)


class ProxyRotator:
    """Round-robin over a fixed proxy pool; empty pool means direct requests"""

    def __init__(self, proxies: Optional[List[str]] = None):
        self.proxies = list(proxies or [])
        self._cycle = itertools.cycle(self.proxies) if self.proxies else None

    def next_proxy(self) -> Optional[str]:
        if not self._cycle:
            return None
        return next(self._cycle)


class TakealotClient(BaseFetchClient):
    """
    Takealot Seller API Client (GET only, paginated endpoints)
    """
    PLATFORM_NAME = "takealot"

    BASE_URL = "https://seller-api.takealot.com"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 45.0,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        proxies: Optional[List[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.rotator = ProxyRotator(proxies)
        self._transport = transport

    def _client(self, proxy: Optional[str]) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {"timeout": self.timeout}
        if proxy:
            kwargs["proxy"] = proxy
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def get(
        self,
        endpoint: str,
        api_key: str,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> FetchResponse:
        """
        GET with internal retry. 4xx responses other than 429 are not retried.
        """
        url = f"{self.base_url}{endpoint}"
        context = context or {}
        last_error: Optional[str] = None
        last_status = 0
        proxy: Optional[str] = None

        for attempt in range(self.max_retries + 1):
            proxy = self.rotator.next_proxy()
            started = time.monotonic()
            try:
                async with self._client(proxy) as client:
                    response = await client.get(url, params=params, headers=self._build_headers(api_key))

                elapsed_ms = int((time.monotonic() - started) * 1000)
                self._log_api_call("GET", endpoint, response.status_code)
                last_status = response.status_code

                if response.is_success:
                    logger.debug(
                        f"[{self.PLATFORM_NAME}] {endpoint} ok in {elapsed_ms}ms "
                        f"owner={context.get('owner_id')} proxy={proxy or 'direct'}"
                    )
                    return FetchResponse(
                        success=True,
                        data=response.json(),
                        status_code=response.status_code,
                        proxy_used=proxy,
                    )

                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                if 400 <= response.status_code < 500 and response.status_code != 429:
                    break

            except (httpx.HTTPError, ValueError) as e:
                last_error = f"{type(e).__name__}: {e}"
                last_status = 0
                logger.warning(f"[{self.PLATFORM_NAME}] GET {endpoint} attempt {attempt + 1} failed: {last_error}")

            # Wait before retry (exponential backoff)
            if attempt < self.max_retries:
                await asyncio.sleep((2 ** attempt) * self.backoff_base)

        return FetchResponse(
            success=False,
            status_code=last_status,
            error=last_error or "Request failed",
            proxy_used=proxy,
        )
