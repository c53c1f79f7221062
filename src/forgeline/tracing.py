from __future__ import annotations

import contextlib
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, Iterator, Protocol

import structlog
from aws_xray_sdk.core import xray_recorder
from aws_xray_sdk.core.models.subsegment import Subsegment
from aws_xray_sdk.ext.httpx import patch as patch_httpx

logger = structlog.get_logger()

_active_subsegment: ContextVar[Subsegment | None] = ContextVar("forgeline_xray_subsegment", default=None)


class Tracer(Protocol):
    """Start/end pair used to wrap each dispatch in a named span."""

    def start_span(self, name: str, **annotations: str) -> Any:
        ...

    def end_span(self, span: Any, error: BaseException | None = None) -> None:
        ...


class NullTracer:
    """Tracer that records nothing."""

    def start_span(self, name: str, **annotations: str) -> Any:
        return None

    def end_span(self, span: Any, error: BaseException | None = None) -> None:
        return None


@dataclass(frozen=True)
class _XRaySpan:
    subsegment: Subsegment
    token: Token


class XRayTracer:
    """Tracer backed by X-Ray subsegments.

    The open subsegment is tracked per asyncio task, so concurrent dispatches
    each attach to the span that was active when their task started instead
    of to whichever subsegment another task opened last.
    """

    def __init__(self, recorder: Any = None) -> None:
        self._recorder = recorder or xray_recorder

    def start_span(self, name: str, **annotations: str) -> Any:
        parent = _active_subsegment.get() or self._recorder.get_trace_entity()
        if parent is None or not parent.sampled:  # no segment, or not sampled
            return None
        segment = parent.parent_segment if getattr(parent, "type", None) == "subsegment" else parent
        subsegment = Subsegment(name, "local", segment)
        parent.add_subsegment(subsegment)
        for key, value in annotations.items():
            subsegment.put_annotation(key, value)
        return _XRaySpan(subsegment, _active_subsegment.set(subsegment))

    def end_span(self, span: Any, error: BaseException | None = None) -> None:
        if span is None:
            return
        if error is not None:
            span.subsegment.put_annotation("error", str(error) or type(error).__name__)
        span.subsegment.close()
        _active_subsegment.reset(span.token)


@contextlib.contextmanager
def span(tracer: Tracer, name: str, **annotations: str) -> Iterator[Any]:
    """Run a block inside a span; the span ends even when the block fails."""
    handle = tracer.start_span(name, **annotations)
    try:
        yield handle
    except BaseException as exc:
        tracer.end_span(handle, error=exc)
        raise
    tracer.end_span(handle)


def init_xray(service_name: str = "forgeline") -> None:
    """Initialize X-Ray tracing."""
    try:
        xray_recorder.configure(service=service_name, context_missing="LOG_ERROR")
        patch_httpx()
        logger.info("xray_initialized", service=service_name)
    except Exception as exc:
        logger.warning("xray_init_failed", error=str(exc))


def default_tracer(enabled: bool) -> Tracer:
    return XRayTracer() if enabled else NullTracer()
