"""Lifecycle adapter: drives create/diff/update/destroy through the phase machine.

::

    create  -> create(id, props)                    -> (create, output)
    delete  -> destroy(id, prior)                   -> (delete, DESTROYED)
    update  -> diff(id, props, prior)
               none    -> (none, prior)             no remote call
               update  -> update(id, props, prior)  -> (update, output)
               replace -> create(id, props)         -> (replace, output)
                          destroy(id, prior) queued as cleanup

Replacement is create-before-destroy: the superseded object is only torn down
once its successor exists and the new output has been persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

import structlog

from forgeline.core.errors import ContractViolation
from forgeline.runtime.resource import (
    DESTROYED,
    Action,
    Outcome,
    Phase,
    Resource,
    ResourceContext,
)

logger = structlog.get_logger()

P = TypeVar("P")
O = TypeVar("O")
P_contra = TypeVar("P_contra", contravariant=True)


class Diff(StrEnum):
    """How an update phase should be carried out."""

    NONE = "none"
    UPDATE = "update"
    REPLACE = "replace"


class LifecycleHandler(Protocol[P_contra, O]):
    """The four callbacks a provider supplies."""

    async def create(self, resource_id: str, props: P_contra) -> O:
        ...

    async def diff(self, resource_id: str, props: P_contra, output: O) -> Diff | str:
        ...

    async def update(self, resource_id: str, props: P_contra, output: O) -> O:
        ...

    async def destroy(self, resource_id: str, output: O) -> None:
        ...


@dataclass(frozen=True)
class Handler(Generic[P, O]):
    """Handler assembled from four plain async functions."""

    create: Callable[[str, P], Awaitable[O]]
    diff: Callable[[str, P, O], Awaitable[Diff | str]]
    update: Callable[[str, P, O], Awaitable[O]]
    destroy: Callable[[str, O], Awaitable[None]]


def as_diff(value: Any, resource_id: str) -> Diff:
    """Validate a diff decision."""
    try:
        return Diff(value)
    except ValueError:
        raise ContractViolation(
            f"diff for '{resource_id}' returned {value!r}; expected one of none, update, replace",
            {"id": resource_id},
        ) from None


async def dispatch(
    handler: LifecycleHandler[Any, Any],
    phase: Phase | str,
    resource_id: str,
    props: Any,
    prior_output: Any = None,
) -> Outcome[Any]:
    """Invoke exactly the callbacks the phase calls for.

    Callback errors propagate as raised; nothing here retries.
    """
    phase = Phase(phase)
    if phase is Phase.CREATE:
        if prior_output is not None:
            raise ContractViolation(
                f"create for '{resource_id}' which already has an output",
                {"id": resource_id, "phase": str(phase)},
            )
        return Outcome(Action.CREATE, await handler.create(resource_id, props))

    if prior_output is None:
        raise ContractViolation(
            f"{phase} for '{resource_id}' requires a prior output",
            {"id": resource_id, "phase": str(phase)},
        )

    if phase is Phase.DELETE:
        await handler.destroy(resource_id, prior_output)
        return Outcome(Action.DELETE, DESTROYED)

    decision = as_diff(await handler.diff(resource_id, props, prior_output), resource_id)
    logger.debug("resource_diff", resource_id=resource_id, diff=str(decision))

    if decision is Diff.NONE:
        return Outcome(Action.NONE, prior_output)
    if decision is Diff.UPDATE:
        return Outcome(Action.UPDATE, await handler.update(resource_id, props, prior_output))

    output = await handler.create(resource_id, props)

    async def destroy_replaced() -> None:
        logger.info("resource_replaced_destroy", resource_id=resource_id)
        await handler.destroy(resource_id, prior_output)

    return Outcome(Action.REPLACE, output, (destroy_replaced,))


def lifecycle_resource(
    kind: str,
    handler: LifecycleHandler[Any, Any],
    *,
    description: str | None = None,
) -> Resource:
    """Bind a handler to a resource kind."""

    async def apply(ctx: ResourceContext[Any], resource_id: str, props: Any) -> Outcome[Any]:
        return await dispatch(handler, ctx.phase, resource_id, props, ctx.output)

    return Resource(kind, apply, description=description)
