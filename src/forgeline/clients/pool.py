from __future__ import annotations

from typing import Callable, Dict

import structlog

from forgeline.clients.base import ApiClient, BaseHTTPClient
from forgeline.config import Settings

logger = structlog.get_logger()

ClientFactory = Callable[[str | None], ApiClient]


class ClientPool:
    """Authenticated API clients, one per credential.

    Built once at startup and handed to the resources that need it. Clients
    hold connection and auth configuration only, so a single instance is
    shared by every concurrent dispatch using the same credential.
    """

    def __init__(self, factory: ClientFactory, *, default_token: str | None = None) -> None:
        self._factory = factory
        self._default_token = default_token
        self._clients: Dict[str | None, ApiClient] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClientPool":
        def factory(token: str | None) -> ApiClient:
            return BaseHTTPClient(
                settings.api_base_url,
                token,
                timeout=settings.http_timeout,
                max_retries=settings.http_max_retries,
                backoff_factor=settings.http_retry_backoff_factor,
                retry_min_wait=settings.http_retry_min_wait,
                retry_max_wait=settings.http_retry_max_wait,
                circuit_failure_threshold=settings.circuit_failure_threshold,
                circuit_recovery_timeout=settings.circuit_recovery_timeout,
                user_agent=settings.user_agent,
            )

        return cls(factory, default_token=settings.api_token)

    def default(self) -> ApiClient:
        return self.for_token(self._default_token)

    def for_token(self, token: str | None) -> ApiClient:
        client = self._clients.get(token)
        if client is None:
            client = self._factory(token)
            self._clients[token] = client
            logger.debug("api_client_created", shared=token == self._default_token)
        return client

    def resolve(self, override: str | None = None) -> ApiClient:
        """The per-call client when ``override`` is set, else the shared one."""
        if override:
            return self.for_token(override)
        return self.default()

    def __len__(self) -> int:
        return len(self._clients)
