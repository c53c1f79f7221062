import logging
from typing import Any

import structlog


def _processors(json: bool) -> list[Any]:
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def configure_logging(
    level: int | str = logging.INFO,
    *,
    service_name: str | None = None,
    json: bool = True,
) -> None:
    """Configure the structlog/standard logging bridge for a provider process.

    ``service_name`` is bound into the context so every event, including
    those emitted by concurrent dispatches, names the process that wrote it.
    """

    structlog.configure(
        processors=_processors(json),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level, format="%(message)s")

    if service_name:
        structlog.contextvars.bind_contextvars(service=service_name)


def bind_context(**kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Bind contextual fields for downstream logs."""

    return structlog.get_logger().bind(**kwargs)


def bind_resource(kind: str, resource_id: str, phase: str) -> structlog.stdlib.BoundLogger:
    """Logger carrying the identity of the resource being dispatched."""

    return bind_context(kind=kind, resource_id=resource_id, phase=phase)
