"""
Base Fetch Client - Abstract HTTP client for paginated marketplace APIs
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    """
    Outcome of one GET against the marketplace API.
    Clients never raise for HTTP/network failures, they report them here.
    """
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    status_code: int = 0
    error: Optional[str] = None
    proxy_used: Optional[str] = None


class BaseFetchClient(ABC):
    """
    Abstract base class for marketplace API clients
    """
    PLATFORM_NAME: str = "base"

    @abstractmethod
    async def get(
        self,
        endpoint: str,
        api_key: str,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> FetchResponse:
        """
        GET `endpoint` with the seller's API key.
        `context` carries caller metadata (owner_id, data_kind, request_type)
        used for logging only.
        """
        pass

    async def close(self):
        """Release pooled connections (optional implementation)"""
        return None

    def _build_headers(self, api_key: str) -> Dict[str, str]:
        """Build common request headers"""
        return {
            "Authorization": f"Key {api_key}",
            "Content-Type": "application/json",
            "User-Agent": "MarketSync/1.0",
        }

    def _log_api_call(self, method: str, endpoint: str, status_code: int):
        """Log API call for debugging"""
        logger.info(f"[{self.PLATFORM_NAME}] {method} {endpoint} -> {status_code}")
