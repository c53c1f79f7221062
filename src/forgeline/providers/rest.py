from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import structlog

from forgeline.clients.base import ApiClient
from forgeline.core.errors import ApiError, ErrorCategory, ImmutablePropertyError
from forgeline.runtime.effect import Effect, Environment, effect_fn
from forgeline.runtime.effect_resource import EffectHandlers
from forgeline.runtime.lifecycle import Diff, lifecycle_resource
from forgeline.runtime.resource import Resource

logger = structlog.get_logger()

Props = Mapping[str, Any]
Output = dict[str, Any]


@dataclass(frozen=True)
class RestCollection:
    """A JSON REST collection managed as one resource kind.

    ``mutable`` fields are patched in place; a change to an ``immutable``
    field forces a replacement.
    """

    kind: str
    path: str
    id_field: str = "id"
    mutable: tuple[str, ...] = ()
    immutable: tuple[str, ...] = ()
    lookup_field: str | None = "name"
    adopt_on_conflict: bool = False
    update_method: str = "PATCH"

    @property
    def fields(self) -> tuple[str, ...]:
        return self.immutable + self.mutable

    def item_path(self, output: Mapping[str, Any]) -> str:
        return f"{self.path.rstrip('/')}/{output[self.id_field]}"

    def payload(self, props: Props) -> dict[str, Any]:
        return {name: props[name] for name in self.fields if name in props}

    def mutable_payload(self, props: Props) -> dict[str, Any]:
        return {name: props[name] for name in self.mutable if name in props}

    def changed(self, props: Props, output: Mapping[str, Any], names: tuple[str, ...]) -> list[str]:
        return [name for name in names if name in props and props[name] != output.get(name)]

    def decide(self, props: Props, output: Mapping[str, Any]) -> Diff:
        if self.changed(props, output, self.immutable):
            return Diff.REPLACE
        if self.changed(props, output, self.mutable):
            return Diff.UPDATE
        return Diff.NONE

    def to_output(self, body: Any, props: Props, base: Mapping[str, Any] | None = None) -> Output:
        output: Output = dict(base or {})
        output.update(self.payload(props))
        if isinstance(body, Mapping):
            output.update(
                {key: value for key, value in body.items() if key == self.id_field or key in self.fields}
            )
        return output

    def match(self, listing: Any, props: Props) -> Output | None:
        """Find the remote object a conflicting create collided with."""
        if self.lookup_field is None or self.lookup_field not in props:
            return None
        items = listing.get("data", []) if isinstance(listing, Mapping) else listing or []
        for item in items:
            if item.get(self.lookup_field) == props[self.lookup_field]:
                return dict(item)
        return None

    def check_immutable(self, resource_id: str, props: Props, output: Mapping[str, Any]) -> None:
        changed = self.changed(props, output, self.immutable)
        if changed:
            raise ImmutablePropertyError(self.kind, resource_id, changed)


class RestHandler:
    """Lifecycle handler over a ``RestCollection``."""

    def __init__(self, collection: RestCollection, client: ApiClient) -> None:
        self._c = collection
        self._client = client

    async def create(self, resource_id: str, props: Props) -> Output:
        c = self._c
        try:
            body = await self._client.request("POST", c.path, json=c.payload(props))
        except ApiError as exc:
            if not (exc.conflict and c.adopt_on_conflict):
                raise
            existing = await self._lookup(props)
            if existing is None:
                raise
            logger.info("resource_adopted", kind=c.kind, resource_id=resource_id)
            c.check_immutable(resource_id, props, existing)
            body = await self._client.request(
                c.update_method, c.item_path(existing), json=c.mutable_payload(props)
            )
            return c.to_output(body, props, base=existing)
        return c.to_output(body, props)

    async def diff(self, resource_id: str, props: Props, output: Output) -> Diff:
        return self._c.decide(props, output)

    async def update(self, resource_id: str, props: Props, output: Output) -> Output:
        c = self._c
        c.check_immutable(resource_id, props, output)
        body = await self._client.request(
            c.update_method, c.item_path(output), json=c.mutable_payload(props)
        )
        return c.to_output(body, props, base=output)

    async def destroy(self, resource_id: str, output: Output) -> None:
        try:
            await self._client.request("DELETE", self._c.item_path(output))
        except ApiError as exc:
            if not exc.not_found:
                raise
            logger.info("resource_already_absent", kind=self._c.kind, resource_id=resource_id)

    async def _lookup(self, props: Props) -> Output | None:
        c = self._c
        if c.lookup_field is None or c.lookup_field not in props:
            return None
        listing = await self._client.request(
            "GET", c.path, params={c.lookup_field: props[c.lookup_field]}
        )
        return c.match(listing, props)


def rest_effect_handlers(collection: RestCollection) -> EffectHandlers[Props, Output]:
    """Effect handlers over a ``RestCollection`` using the injected client."""
    c = collection

    def lookup(props: Props) -> Effect[Output | None]:
        if c.lookup_field is None or c.lookup_field not in props:
            return Effect.succeed(None)
        return Effect.request(
            "GET", c.path, params={c.lookup_field: props[c.lookup_field]}
        ).map(lambda listing: c.match(listing, props))

    @effect_fn
    async def adopt(env: Environment, resource_id: str, props: Props, conflict: ApiError) -> Output:
        existing = await env.run(lookup(props))
        if existing is None:
            raise conflict
        logger.info("resource_adopted", kind=c.kind, resource_id=resource_id)
        c.check_immutable(resource_id, props, existing)
        body = await env.request(c.update_method, c.item_path(existing), json=c.mutable_payload(props))
        return c.to_output(body, props, base=existing)

    def create(resource_id: str, props: Props) -> Effect[Output]:
        created = Effect.request("POST", c.path, json=c.payload(props)).map(
            lambda body: c.to_output(body, props)
        )
        if not c.adopt_on_conflict:
            return created
        return created.catch(
            ErrorCategory.CONFLICT,
            lambda error: adopt(resource_id, props, error),
        )

    def diff(resource_id: str, props: Props, output: Output) -> Effect[Diff]:
        return Effect.succeed(c.decide(props, output))

    @effect_fn
    async def update(env: Environment, resource_id: str, props: Props, output: Output) -> Output:
        c.check_immutable(resource_id, props, output)
        body = await env.request(c.update_method, c.item_path(output), json=c.mutable_payload(props))
        return c.to_output(body, props, base=output)

    def destroy(resource_id: str, output: Output) -> Effect[None]:
        return (
            Effect.request("DELETE", c.item_path(output))
            .catch_not_found()
            .map(lambda _: None)
        )

    return EffectHandlers(create=create, diff=diff, update=update, destroy=destroy)


def rest_resource(collection: RestCollection, client: ApiClient) -> Resource:
    return lifecycle_resource(
        collection.kind,
        RestHandler(collection, client),
        description=f"REST collection {collection.path}",
    )
