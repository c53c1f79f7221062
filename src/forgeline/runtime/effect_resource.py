from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Mapping, TypeVar

import structlog

from forgeline.clients.pool import ClientPool
from forgeline.core.errors import ContractViolation
from forgeline.runtime.effect import (
    Effect,
    Environment,
    Fail,
    Failure,
    Interrupt,
    run_exit,
)
from forgeline.runtime.lifecycle import Diff, as_diff
from forgeline.runtime.resource import (
    DESTROYED,
    Action,
    Outcome,
    Phase,
    Resource,
    ResourceContext,
)
from forgeline.tracing import NullTracer, Tracer

logger = structlog.get_logger()

P = TypeVar("P")
O = TypeVar("O")

CREDENTIAL_FIELD = "api_token"


@dataclass(frozen=True)
class EffectHandlers(Generic[P, O]):
    """The four lifecycle callbacks, each returning an Effect."""

    create: Callable[[str, P], Effect[O]]
    diff: Callable[[str, P, O], Effect[Diff | str]]
    update: Callable[[str, P, O], Effect[O]]
    destroy: Callable[[str, O], Effect[None]]


def credential_override(props: Any) -> str | None:
    """Token a resource carries to bypass the shared client, if any."""
    if isinstance(props, Mapping):
        token = props.get(CREDENTIAL_FIELD)
    else:
        token = getattr(props, CREDENTIAL_FIELD, None)
    return token or None


def reconcile(
    handlers: EffectHandlers[Any, Any],
    phase: Phase,
    resource_id: str,
    props: Any,
    prior_output: Any,
) -> Effect[Outcome[Any]]:
    """The lifecycle state machine as a single Effect."""
    if phase is Phase.CREATE:
        if prior_output is not None:
            return Effect.die(
                ContractViolation(
                    f"create for '{resource_id}' which already has an output",
                    {"id": resource_id, "phase": str(phase)},
                )
            )
        return handlers.create(resource_id, props).map(lambda out: Outcome(Action.CREATE, out))

    if prior_output is None:
        return Effect.die(
            ContractViolation(
                f"{phase} for '{resource_id}' requires a prior output",
                {"id": resource_id, "phase": str(phase)},
            )
        )

    if phase is Phase.DELETE:
        return handlers.destroy(resource_id, prior_output).map(
            lambda _: Outcome(Action.DELETE, DESTROYED)
        )

    def decide(value: Diff | str) -> Effect[Outcome[Any]]:
        decision = as_diff(value, resource_id)
        if decision is Diff.NONE:
            return Effect.succeed(Outcome(Action.NONE, prior_output))
        if decision is Diff.UPDATE:
            return handlers.update(resource_id, props, prior_output).map(
                lambda out: Outcome(Action.UPDATE, out)
            )
        return handlers.create(resource_id, props).map(lambda out: Outcome(Action.REPLACE, out))

    return handlers.diff(resource_id, props, prior_output).and_then(decide)


def effect_resource(
    kind: str,
    handlers: EffectHandlers[Any, Any],
    *,
    clients: ClientPool,
    tracer: Tracer | None = None,
    description: str | None = None,
) -> Resource:
    """Bind effect handlers to a resource kind.

    The API client comes from ``clients``: the shared instance, or a
    per-call one when the props carry their own ``api_token``. Every
    dispatch runs inside a span named ``"{kind}:{id}"``. Failures leave the
    effect world as a single exception: the typed error itself for expected
    failures, ``DefectError`` for bugs, ``CancelledError`` for interruption.
    """
    tracer = tracer or NullTracer()

    async def apply(ctx: ResourceContext[Any], resource_id: str, props: Any) -> Outcome[Any]:
        env = Environment(
            client=clients.resolve(credential_override(props)),
            cancellation=ctx.cancellation,
            tracer=tracer,
            kind=kind,
            id=resource_id,
        )
        program = reconcile(handlers, ctx.phase, resource_id, props, ctx.output).traced(
            f"{kind}:{resource_id}", kind=kind, id=resource_id, phase=str(ctx.phase)
        )
        ended = await run_exit(program, env)
        if isinstance(ended, Failure):
            _log_failure(ended, kind, resource_id, ctx.phase)
        outcome = ended.squash()

        if outcome.action is Action.REPLACE:
            superseded = ctx.output

            async def destroy_replaced() -> None:
                cleanup = handlers.destroy(resource_id, superseded).traced(
                    f"{kind}:{resource_id}", kind=kind, id=resource_id, phase="replace-cleanup"
                )
                result = await run_exit(cleanup, env)
                if isinstance(result, Failure):
                    _log_failure(result, kind, resource_id, ctx.phase)
                result.squash()

            ctx.defer(destroy_replaced)
        return outcome

    return Resource(kind, apply, description=description)


def _log_failure(ended: Failure, kind: str, resource_id: str, phase: Phase) -> None:
    cause = ended.cause
    if isinstance(cause, Fail):
        logger.warning(
            "resource_failed",
            kind=kind,
            resource_id=resource_id,
            phase=str(phase),
            error_type=type(cause.error).__name__,
            message=cause.error.message,
        )
    elif isinstance(cause, Interrupt):
        logger.info("resource_interrupted", kind=kind, resource_id=resource_id, phase=str(phase))
    else:
        logger.error(
            "resource_defect",
            kind=kind,
            resource_id=resource_id,
            phase=str(phase),
            error_type=type(cause.defect).__name__,
            error=str(cause.defect),
        )
