# Marketplace API clients
from .base import BaseFetchClient, FetchResponse
from .takealot import TakealotClient, ProxyRotator

__all__ = [
    "BaseFetchClient",
    "FetchResponse",
    "TakealotClient",
    "ProxyRotator",
]
