"""Resource runtime: the calling convention every provider conforms to.

The orchestrator invokes one entry point per resource kind with an explicit
phase, the caller-chosen id, the desired props and the output persisted by
the previous successful phase. The runtime dispatches, validates what came
back, and otherwise stays out of the way: errors raised by the resource
function propagate untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from forgeline.cancellation import CancellationToken
from forgeline.core.errors import ContractViolation
from forgeline.logging import bind_resource

O = TypeVar("O")

Cleanup = Callable[[], Awaitable[None]]


class Phase(StrEnum):
    """Lifecycle operation requested by the orchestrator."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Action(StrEnum):
    """What a dispatch actually did."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NONE = "none"


class _Destroyed:
    _instance: "_Destroyed | None" = None

    def __new__(cls) -> "_Destroyed":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DESTROYED"

    def __bool__(self) -> bool:
        return False


DESTROYED = _Destroyed()

_ACTIONS_BY_PHASE = {
    Phase.CREATE: {Action.CREATE},
    Phase.UPDATE: {Action.UPDATE, Action.REPLACE, Action.NONE},
    Phase.DELETE: {Action.DELETE},
}


@dataclass
class ResourceState:
    """Persisted record for one declared resource instance."""

    kind: str
    id: str
    output: Any = None

    @property
    def exists(self) -> bool:
        return self.output is not None


@dataclass(frozen=True)
class Outcome(Generic[O]):
    """Result of one dispatch.

    ``cleanup`` runs only after ``output`` has been persisted; on replace it
    holds the destroy of the superseded remote object.
    """

    action: Action
    output: Any
    cleanup: tuple[Cleanup, ...] = ()

    @property
    def destroyed(self) -> bool:
        return self.output is DESTROYED

    async def run_cleanup(self) -> None:
        for callback in self.cleanup:
            await callback()


class CleanupQueue:
    """FIFO of callbacks deferred until the dispatch result is persisted."""

    def __init__(self) -> None:
        self._callbacks: list[Cleanup] = []

    def defer(self, callback: Cleanup) -> None:
        self._callbacks.append(callback)

    def __len__(self) -> int:
        return len(self._callbacks)

    def snapshot(self) -> tuple[Cleanup, ...]:
        return tuple(self._callbacks)


@dataclass
class ResourceContext(Generic[O]):
    """Everything a resource function may know about the current invocation."""

    kind: str
    phase: Phase
    id: str
    output: O | None = None
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    cleanup: CleanupQueue = field(default_factory=CleanupQueue)

    def defer(self, callback: Cleanup) -> None:
        self.cleanup.defer(callback)


ResourceFunction = Callable[[ResourceContext[Any], str, Any], Awaitable[Any]]


def check_phase(kind: str, phase: Phase, resource_id: str, prior_output: Any) -> None:
    """Reject invocations that break the create/update/delete preconditions."""
    if phase is Phase.CREATE and prior_output is not None:
        raise ContractViolation(
            f"create dispatched for {kind} '{resource_id}' which already has an output",
            {"kind": kind, "id": resource_id, "phase": str(phase)},
        )
    if phase in (Phase.UPDATE, Phase.DELETE) and prior_output is None:
        raise ContractViolation(
            f"{phase} dispatched for {kind} '{resource_id}' which has no prior output",
            {"kind": kind, "id": resource_id, "phase": str(phase)},
        )


class Resource:
    """Single entry point for one resource kind."""

    def __init__(self, kind: str, fn: ResourceFunction, *, description: str | None = None) -> None:
        if not kind:
            raise ValueError("Resource kind is required")
        self.kind = kind
        self.description = description
        self._fn = fn

    def __repr__(self) -> str:
        return f"Resource({self.kind!r})"

    async def invoke(
        self,
        phase: Phase | str,
        resource_id: str,
        props: Any,
        prior_output: Any = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Outcome[Any]:
        """Dispatch one phase and return the outcome without running cleanup."""
        phase = Phase(phase)
        check_phase(self.kind, phase, resource_id, prior_output)
        ctx: ResourceContext[Any] = ResourceContext(
            kind=self.kind,
            phase=phase,
            id=resource_id,
            output=prior_output,
            cancellation=cancellation or CancellationToken(),
        )
        log = bind_resource(self.kind, resource_id, str(phase))
        log.debug("resource_dispatch")

        result = await self._fn(ctx, resource_id, props)

        outcome = self._outcome(ctx, result)
        log.info("resource_dispatched", action=str(outcome.action), cleanup=len(outcome.cleanup))
        return outcome

    async def __call__(
        self,
        phase: Phase | str,
        resource_id: str,
        props: Any,
        prior_output: Any = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Any:
        """Dispatch, run any deferred cleanup, and return the output or ``DESTROYED``."""
        outcome = await self.invoke(
            phase, resource_id, props, prior_output, cancellation=cancellation
        )
        await outcome.run_cleanup()
        return outcome.output

    def _outcome(self, ctx: ResourceContext[Any], result: Any) -> Outcome[Any]:
        deferred = ctx.cleanup.snapshot()
        if isinstance(result, Outcome):
            outcome = Outcome(result.action, result.output, deferred + result.cleanup)
        elif result is DESTROYED:
            outcome = Outcome(Action.DELETE, DESTROYED, deferred)
        elif ctx.phase is Phase.CREATE:
            outcome = Outcome(Action.CREATE, result, deferred)
        else:
            outcome = Outcome(Action.UPDATE, result, deferred)

        if ctx.phase is Phase.DELETE and outcome.output is not DESTROYED:
            raise ContractViolation(
                f"{self.kind} '{ctx.id}' must return DESTROYED from delete",
                {"kind": self.kind, "id": ctx.id},
            )
        if outcome.action not in _ACTIONS_BY_PHASE[ctx.phase]:
            raise ContractViolation(
                f"{self.kind} '{ctx.id}' answered {ctx.phase} with {outcome.action}",
                {"kind": self.kind, "id": ctx.id, "phase": str(ctx.phase)},
            )
        if ctx.phase is not Phase.DELETE and outcome.output is None:
            raise ContractViolation(
                f"{self.kind} '{ctx.id}' produced no output on {ctx.phase}",
                {"kind": self.kind, "id": ctx.id, "phase": str(ctx.phase)},
            )
        return outcome
