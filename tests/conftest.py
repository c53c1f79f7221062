"""Root test configuration."""

import logging
from typing import Any

import pytest
import structlog

from forgeline.core.errors import ApiError
from forgeline.runtime.lifecycle import Diff


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class RecordingHandler:
    """In-memory remote system; every callback appends to ``events``.

    ``diff`` maps a changed ``name`` to update and a changed ``region`` to
    replace, mirroring a provider with one immutable property.
    """

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []
        self.remote: dict[str, dict[str, Any]] = {}
        self._next = 0

    @property
    def network_calls(self) -> list[tuple[str, Any]]:
        return [event for event in self.events if event[0] != "diff"]

    async def create(self, resource_id, props):
        self._next += 1
        remote_id = f"x{self._next}"
        output = {"id": remote_id, **props}
        self.remote[remote_id] = dict(output)
        self.events.append(("create", remote_id))
        return output

    async def diff(self, resource_id, props, output):
        self.events.append(("diff", output["id"]))
        if props.get("region") != output.get("region"):
            return Diff.REPLACE
        if props.get("name") != output.get("name"):
            return Diff.UPDATE
        return Diff.NONE

    async def update(self, resource_id, props, output):
        self.events.append(("update", (resource_id, dict(props), dict(output))))
        new_output = {**output, **props}
        self.remote[output["id"]] = dict(new_output)
        return new_output

    async def destroy(self, resource_id, output):
        self.events.append(("destroy", output["id"]))
        if output["id"] not in self.remote:
            return
        del self.remote[output["id"]]


class FakeClient:
    """Scripted ``ApiClient``: routes map ``(method, path)`` to a body or an error."""

    def __init__(self, routes: dict[tuple[str, str], Any] | None = None) -> None:
        self.routes = dict(routes or {})
        self.calls: list[tuple[str, str, Any]] = []

    async def request(self, method, path, *, json=None, params=None, cancellation=None):
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        self.calls.append((method, path, json if json is not None else params))
        response = self.routes.get((method, path), {})
        if isinstance(response, list) and response and isinstance(response[0], BaseException):
            response = response.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class RecordingTracer:
    def __init__(self) -> None:
        self.spans: list[dict[str, Any]] = []

    def start_span(self, name, **annotations):
        span = {"name": name, "annotations": annotations, "ended": False, "error": None}
        self.spans.append(span)
        return span

    def end_span(self, span, error=None):
        span["ended"] = True
        span["error"] = error


def not_found(message: str = "gone") -> ApiError:
    return ApiError(message, status=404)


def conflict(message: str = "already exists") -> ApiError:
    return ApiError(message, status=409)


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def tracer() -> RecordingTracer:
    return RecordingTracer()
