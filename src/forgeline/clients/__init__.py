"""HTTP clients used by providers to reach remote APIs."""

from forgeline.clients.base import ApiClient, BaseHTTPClient, is_retryable_status
from forgeline.clients.pool import ClientPool

__all__ = ["ApiClient", "BaseHTTPClient", "ClientPool", "is_retryable_status"]
