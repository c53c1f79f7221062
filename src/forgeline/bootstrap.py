"""Process startup: build the shared dependencies once and hand them out."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from forgeline.clients.pool import ClientPool
from forgeline.config import Settings, get_settings
from forgeline.logging import configure_logging
from forgeline.runtime.effect_resource import EffectHandlers, effect_resource
from forgeline.runtime.resource import Resource
from forgeline.tracing import Tracer, default_tracer, init_xray


@dataclass(frozen=True)
class Runtime:
    settings: Settings
    clients: ClientPool
    tracer: Tracer

    def effect_resource(
        self,
        kind: str,
        handlers: EffectHandlers[Any, Any],
        *,
        description: str | None = None,
    ) -> Resource:
        return effect_resource(
            kind,
            handlers,
            clients=self.clients,
            tracer=self.tracer,
            description=description,
        )


def bootstrap(settings: Settings | None = None, *, clients: ClientPool | None = None) -> Runtime:
    """Configure logging and tracing, then build the shared client pool."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, service_name=settings.service_name, json=settings.log_json)
    if settings.xray_enabled:
        init_xray(settings.service_name)
    return Runtime(
        settings=settings,
        clients=clients or ClientPool.from_settings(settings),
        tracer=default_tracer(settings.xray_enabled),
    )
