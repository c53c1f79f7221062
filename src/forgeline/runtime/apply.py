"""Orchestrator-side helpers: persist outcomes and apply many resources."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Tuple

import structlog

from forgeline.cancellation import CancellationToken
from forgeline.core.errors import (
    ContractViolation,
    ExitCode,
    ForgelineError,
    ProviderError,
    ReplaceCleanupError,
    format_error_message,
    is_defect,
)
from forgeline.runtime.resource import Phase, Resource, ResourceState

logger = structlog.get_logger()


async def apply_resource(
    resource: Resource,
    state: ResourceState,
    props: Any = None,
    phase: Phase | str | None = None,
    *,
    cancellation: CancellationToken | None = None,
) -> ResourceState | None:
    """Run one phase against ``state`` and persist the result into it.

    The phase defaults to ``create`` when nothing exists yet and ``update``
    otherwise. The new output is stored before any deferred cleanup runs, so
    a failing cleanup never loses track of the replacement. Failures of the
    phase itself leave ``state`` untouched. Returns ``None`` once deleted.
    """
    if state.kind != resource.kind:
        raise ContractViolation(
            f"state for {state.kind} '{state.id}' passed to {resource.kind}",
            {"kind": resource.kind, "id": state.id},
        )
    if phase is None:
        phase = Phase.UPDATE if state.exists else Phase.CREATE

    outcome = await resource.invoke(
        phase, state.id, props, state.output, cancellation=cancellation
    )
    if outcome.destroyed:
        state.output = None
        return None

    state.output = outcome.output
    try:
        await outcome.run_cleanup()
    except ProviderError as exc:
        raise ReplaceCleanupError(
            f"{state.kind} '{state.id}' was replaced but the previous object could not be destroyed: {exc}",
            state,
            {"kind": state.kind, "id": state.id},
        ) from exc
    return state


async def destroy_resource(
    resource: Resource,
    state: ResourceState,
    props: Any = None,
    *,
    cancellation: CancellationToken | None = None,
) -> None:
    await apply_resource(resource, state, props, Phase.DELETE, cancellation=cancellation)


@dataclass
class ResourceFailure:
    """A single resource that failed to apply."""

    kind: str
    id: str
    error: BaseException
    unexpected: bool

    @property
    def message(self) -> str:
        if isinstance(self.error, ForgelineError):
            return format_error_message(self.error)
        return f"{type(self.error).__name__}: {self.error}"


ResourceKey = Tuple[str, str]


@dataclass
class ApplyResult:
    """Result of applying a batch of resources.

    Outcomes and failures are keyed by ``(kind, id)``.
    """

    states: Dict[ResourceKey, ResourceState | None] = field(default_factory=dict)
    failures: Dict[ResourceKey, ResourceFailure] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """Whether every resource applied without errors."""
        return not self.failures

    @property
    def unexpected(self) -> bool:
        return any(failure.unexpected for failure in self.failures.values())

    @property
    def exit_code(self) -> ExitCode:
        if self.success:
            return ExitCode.SUCCESS
        if self.unexpected:
            return ExitCode.DEFECT
        codes = {
            failure.error.exit_code
            for failure in self.failures.values()
            if isinstance(failure.error, ForgelineError)
        }
        return max(codes) if codes else ExitCode.UNKNOWN_ERROR


ApplyItem = Tuple[Resource, ResourceState, Any]


async def apply_all(
    items: Iterable[ApplyItem],
    *,
    phase: Phase | str | None = None,
    concurrency: int | None = None,
    cancellation: CancellationToken | None = None,
) -> ApplyResult:
    """Apply independent resources concurrently.

    A failure is recorded against its own ``(kind, id)`` and never aborts
    siblings. The same ``(kind, id)`` may appear only once per batch.
    Ordering between resources is the caller's concern.
    """
    items = list(items)
    seen: set[ResourceKey] = set()
    for _, state, _ in items:
        key = (state.kind, state.id)
        if key in seen:
            raise ContractViolation(
                f"{state.kind} '{state.id}' appears more than once in one apply",
                {"kind": state.kind, "id": state.id},
            )
        seen.add(key)

    started = time.monotonic()
    result = ApplyResult()
    semaphore = asyncio.Semaphore(concurrency) if concurrency else None

    async def run(resource: Resource, state: ResourceState, props: Any) -> None:
        key = (state.kind, state.id)
        try:
            if semaphore is None:
                outcome = await apply_resource(resource, state, props, phase, cancellation=cancellation)
            else:
                async with semaphore:
                    outcome = await apply_resource(
                        resource, state, props, phase, cancellation=cancellation
                    )
        except Exception as exc:
            unexpected = is_defect(exc)
            logger.error(
                "resource_apply_failed",
                kind=state.kind,
                resource_id=state.id,
                error_type=type(exc).__name__,
                unexpected=unexpected,
            )
            result.failures[key] = ResourceFailure(state.kind, state.id, exc, unexpected)
            result.states[key] = state
            return
        result.states[key] = outcome

    await asyncio.gather(*(run(resource, state, props) for resource, state, props in items))
    result.duration_seconds = time.monotonic() - started
    return result
