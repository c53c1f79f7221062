"""Resource lifecycle runtime: dispatch, reconciliation and effects."""

from forgeline.runtime.apply import (
    ApplyResult,
    ResourceFailure,
    apply_all,
    apply_resource,
    destroy_resource,
)
from forgeline.runtime.effect import (
    Die,
    Effect,
    Environment,
    Err,
    Fail,
    Failure,
    Interrupt,
    Ok,
    Success,
    effect_fn,
    run_exit,
)
from forgeline.runtime.effect_resource import EffectHandlers, effect_resource
from forgeline.runtime.lifecycle import Diff, Handler, LifecycleHandler, dispatch, lifecycle_resource
from forgeline.runtime.registry import (
    ResourceRegistry,
    get_resource,
    list_resources,
    register_resource,
)
from forgeline.runtime.resource import (
    DESTROYED,
    Action,
    Outcome,
    Phase,
    Resource,
    ResourceContext,
    ResourceState,
)

__all__ = [
    # Runtime
    "DESTROYED",
    "Action",
    "Outcome",
    "Phase",
    "Resource",
    "ResourceContext",
    "ResourceState",
    "ResourceRegistry",
    "register_resource",
    "get_resource",
    "list_resources",
    # Lifecycle adapter
    "Diff",
    "Handler",
    "LifecycleHandler",
    "dispatch",
    "lifecycle_resource",
    # Effects
    "Effect",
    "EffectHandlers",
    "Environment",
    "Ok",
    "Err",
    "Success",
    "Failure",
    "Fail",
    "Die",
    "Interrupt",
    "effect_fn",
    "effect_resource",
    "run_exit",
    # Apply
    "ApplyResult",
    "ResourceFailure",
    "apply_all",
    "apply_resource",
    "destroy_resource",
]
