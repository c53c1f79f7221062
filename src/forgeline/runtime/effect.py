"""Composable effects with a typed error channel.

An ``Effect`` is a lazy async computation run against an ``Environment``
(the injected API client, cancellation token and tracer). It produces a
``Result``: ``Ok(value)`` or ``Err(error)`` where ``error`` is an expected
``ForgelineError`` such as ``ApiError``. Anything else that escapes is a
defect. ``run_exit`` classifies how a program ended:

* ``Success(value)``
* ``Failure(Fail(error))``: expected failure, reported as an apply error
* ``Failure(Die(exc))``: a bug
* ``Failure(Interrupt())``: cancellation was observed

``Exit.squash()`` collapses the channel back into a single raised exception
for callers that only understand exceptions.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Concatenate,
    Generic,
    NoReturn,
    ParamSpec,
    TypeVar,
    Union,
)

import structlog

from forgeline.cancellation import CancellationToken
from forgeline.clients.base import ApiClient
from forgeline.core.errors import (
    ApiError,
    DefectError,
    ErrorCategory,
    ForgelineError,
    is_defect,
)
from forgeline.tracing import NullTracer, Tracer

logger = structlog.get_logger()

A = TypeVar("A")
B = TypeVar("B")
PS = ParamSpec("PS")


@dataclass(frozen=True)
class Ok(Generic[A]):
    value: A

    def is_ok(self) -> bool:
        return True

    def map(self, fn: Callable[[A], B]) -> "Ok[B]":
        return Ok(fn(self.value))

    def and_then(self, fn: Callable[[A], "Result[B]"]) -> "Result[B]":
        return fn(self.value)

    def map_err(self, fn: Callable[[ForgelineError], ForgelineError]) -> "Ok[A]":
        return self

    def unwrap(self) -> A:
        return self.value


@dataclass(frozen=True)
class Err:
    error: ForgelineError

    def is_ok(self) -> bool:
        return False

    def map(self, fn: Callable[[Any], Any]) -> "Err":
        return self

    def and_then(self, fn: Callable[[Any], Any]) -> "Err":
        return self

    def map_err(self, fn: Callable[[ForgelineError], ForgelineError]) -> "Err":
        return Err(fn(self.error))

    def unwrap(self) -> NoReturn:
        raise self.error


Result = Union[Ok[A], Err]


@dataclass(frozen=True)
class Fail:
    """Expected failure carried through the typed channel."""

    error: ForgelineError


@dataclass(frozen=True)
class Die:
    """Unexpected exception: a bug in a provider or in the runtime."""

    defect: BaseException


@dataclass(frozen=True)
class Interrupt:
    """The program observed cancellation and stopped."""

    reason: str | None = None


Cause = Union[Fail, Die, Interrupt]


@dataclass(frozen=True)
class Success(Generic[A]):
    value: A

    def squash(self) -> A:
        return self.value


@dataclass(frozen=True)
class Failure:
    cause: Cause

    @property
    def unexpected(self) -> bool:
        return isinstance(self.cause, Die)

    def squash(self) -> NoReturn:
        cause = self.cause
        if isinstance(cause, Fail):
            raise cause.error
        if isinstance(cause, Interrupt):
            raise asyncio.CancelledError(cause.reason)
        defect = cause.defect
        if isinstance(defect, DefectError):
            raise defect
        raise DefectError(
            f"Unexpected {type(defect).__name__}: {defect}",
            {"defect": type(defect).__name__},
        ) from defect


Exit = Union[Success[A], Failure]


@dataclass
class Environment:
    """Capabilities an effect may depend on."""

    client: ApiClient
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    tracer: Tracer = field(default_factory=NullTracer)
    kind: str = ""
    id: str = ""

    async def run(self, effect: "Effect[A]") -> A:
        """Run a sub-effect and return its value; a typed failure is raised."""
        return (await effect.run(self)).unwrap()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self.client.request(
            method, path, json=json, params=params, cancellation=self.cancellation
        )


def in_category(category: ErrorCategory) -> Callable[[ForgelineError], bool]:
    def matches(error: ForgelineError) -> bool:
        return isinstance(error, ApiError) and error.category is category

    return matches


class Effect(Generic[A]):
    """Lazy async computation producing a ``Result``."""

    __slots__ = ("_run",)

    def __init__(self, run: Callable[[Environment], Awaitable[Result[A]]]) -> None:
        self._run = run

    async def run(self, env: Environment) -> Result[A]:
        env.cancellation.raise_if_cancelled()
        return await self._run(env)

    @staticmethod
    def succeed(value: A) -> "Effect[A]":
        async def run(env: Environment) -> Result[A]:
            return Ok(value)

        return Effect(run)

    @staticmethod
    def fail(error: ForgelineError) -> "Effect[Any]":
        async def run(env: Environment) -> Result[Any]:
            return Err(error)

        return Effect(run)

    @staticmethod
    def die(defect: BaseException) -> "Effect[Any]":
        async def run(env: Environment) -> Result[Any]:
            raise defect

        return Effect(run)

    @staticmethod
    def attempt(fn: Callable[[Environment], Awaitable[A]]) -> "Effect[A]":
        """Lift an async function; expected errors it raises become ``Err``."""

        async def run(env: Environment) -> Result[A]:
            try:
                return Ok(await fn(env))
            except ForgelineError as exc:
                if is_defect(exc):
                    raise
                return Err(exc)

        return Effect(run)

    @staticmethod
    def request(
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> "Effect[Any]":
        return Effect.attempt(lambda env: env.request(method, path, json=json, params=params))

    def map(self, fn: Callable[[A], B]) -> "Effect[B]":
        async def run(env: Environment) -> Result[B]:
            return (await self.run(env)).map(fn)

        return Effect(run)

    def and_then(self, fn: Callable[[A], "Effect[B]"]) -> "Effect[B]":
        async def run(env: Environment) -> Result[B]:
            result = await self.run(env)
            if isinstance(result, Err):
                return result
            return await fn(result.value).run(env)

        return Effect(run)

    def map_err(self, fn: Callable[[ForgelineError], ForgelineError]) -> "Effect[A]":
        async def run(env: Environment) -> Result[A]:
            return (await self.run(env)).map_err(fn)

        return Effect(run)

    def catch(
        self,
        when: ErrorCategory | Callable[[ForgelineError], bool],
        handler: Callable[[ForgelineError], "Effect[A]"],
    ) -> "Effect[A]":
        """Recover from failures matching a category or predicate."""
        matches = in_category(when) if isinstance(when, ErrorCategory) else when

        async def run(env: Environment) -> Result[A]:
            result = await self.run(env)
            if isinstance(result, Err) and matches(result.error):
                return await handler(result.error).run(env)
            return result

        return Effect(run)

    def catch_not_found(self, value: Any = None) -> "Effect[Any]":
        return self.catch(ErrorCategory.NOT_FOUND, lambda error: Effect.succeed(value))

    def tap(self, fn: Callable[[A], Any]) -> "Effect[A]":
        def observe(value: A) -> A:
            fn(value)
            return value

        return self.map(observe)

    def traced(self, name: str, **annotations: str) -> "Effect[A]":
        """Run inside a tracer span; typed failures are recorded on the span."""

        async def run(env: Environment) -> Result[A]:
            handle = env.tracer.start_span(name, **annotations)
            try:
                result = await self.run(env)
            except BaseException as exc:
                env.tracer.end_span(handle, error=exc)
                raise
            env.tracer.end_span(handle, error=result.error if isinstance(result, Err) else None)
            return result

        return Effect(run)


def effect_fn(fn: Callable[Concatenate[Environment, PS], Awaitable[A]]) -> Callable[PS, Effect[A]]:
    """Turn ``async def f(env, ...)`` into a function returning an Effect.

    Inside ``f``, ``await env.run(effect)`` unwraps sub-effects and any
    expected ``ForgelineError`` raised lands in the typed channel.
    """

    @functools.wraps(fn)
    def wrapper(*args: PS.args, **kwargs: PS.kwargs) -> Effect[A]:
        return Effect.attempt(lambda env: fn(env, *args, **kwargs))

    return wrapper


async def run_exit(effect: Effect[A], env: Environment) -> Exit[A]:
    """Run a program to completion and classify how it ended. Never raises."""
    try:
        result = await effect.run(env)
    except asyncio.CancelledError as exc:
        env.cancellation.cancel("interrupted")
        return Failure(Interrupt(str(exc) or None))
    except Exception as exc:
        logger.error("effect_defect", kind=env.kind, resource_id=env.id, error=repr(exc))
        return Failure(Die(exc))
    if isinstance(result, Err):
        return Failure(Fail(result.error))
    return Success(result.value)
