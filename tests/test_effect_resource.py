import asyncio

import pytest
from conftest import FakeClient, RecordingHandler, not_found

from forgeline.cancellation import CancellationToken
from forgeline.clients.pool import ClientPool
from forgeline.core.errors import ApiError, ContractViolation, DefectError
from forgeline.runtime.apply import apply_resource
from forgeline.runtime.effect import Die, Effect, Environment, effect_fn, run_exit
from forgeline.runtime.effect_resource import (
    EffectHandlers,
    credential_override,
    effect_resource,
    reconcile,
)
from forgeline.runtime.lifecycle import Diff
from forgeline.runtime.resource import DESTROYED, Action, Phase, ResourceState


def lift(handler: RecordingHandler) -> EffectHandlers:
    return EffectHandlers(
        create=lambda rid, props: Effect.attempt(lambda env: handler.create(rid, props)),
        diff=lambda rid, props, out: Effect.attempt(lambda env: handler.diff(rid, props, out)),
        update=lambda rid, props, out: Effect.attempt(lambda env: handler.update(rid, props, out)),
        destroy=lambda rid, out: Effect.attempt(lambda env: handler.destroy(rid, out)),
    )


def make_pool(clients=None):
    clients = clients if clients is not None else {}

    def factory(token):
        return clients.setdefault(token, FakeClient())

    return ClientPool(factory, default_token="shared"), clients


@pytest.mark.asyncio
async def test_effect_resource_runs_full_state_machine(handler):
    pool, _ = make_pool()
    resource = effect_resource("test::Thing", lift(handler), clients=pool)

    created = await resource.invoke(Phase.CREATE, "thing", {"name": "a"})
    assert created.action is Action.CREATE

    unchanged = await resource.invoke(Phase.UPDATE, "thing", {"name": "a"}, created.output)
    assert unchanged.action is Action.NONE
    assert unchanged.output is created.output

    updated = await resource.invoke(Phase.UPDATE, "thing", {"name": "b"}, created.output)
    assert updated.action is Action.UPDATE
    assert updated.output == {"id": "x1", "name": "b"}

    deleted = await resource.invoke(Phase.DELETE, "thing", None, updated.output)
    assert deleted.output is DESTROYED


@pytest.mark.asyncio
async def test_effect_replace_creates_before_destroying(handler):
    pool, _ = make_pool()
    resource = effect_resource("test::Thing", lift(handler), clients=pool)
    prior = await handler.create("thing", {"name": "a", "region": "eu"})
    handler.events.clear()

    output = await resource(Phase.UPDATE, "thing", {"name": "a", "region": "us"}, prior)

    assert output["id"] == "x2"
    assert handler.network_calls == [("create", "x2"), ("destroy", "x1")]


@pytest.mark.asyncio
async def test_typed_failure_is_raised_as_itself(handler):
    error = ApiError("name taken", status=409)
    handlers = lift(handler)
    handlers = EffectHandlers(
        create=lambda rid, props: Effect.fail(error),
        diff=handlers.diff,
        update=handlers.update,
        destroy=handlers.destroy,
    )
    pool, _ = make_pool()
    resource = effect_resource("test::Thing", handlers, clients=pool)

    with pytest.raises(ApiError) as exc_info:
        await resource(Phase.CREATE, "thing", {"name": "a"})

    assert exc_info.value is error
    assert not isinstance(exc_info.value, DefectError)


@pytest.mark.asyncio
async def test_defect_is_distinguishable_from_typed_failure(handler):
    async def buggy(env):
        raise TypeError("provider bug")

    handlers = lift(handler)
    handlers = EffectHandlers(
        create=lambda rid, props: Effect.attempt(buggy),
        diff=handlers.diff,
        update=handlers.update,
        destroy=handlers.destroy,
    )
    pool, _ = make_pool()
    resource = effect_resource("test::Thing", handlers, clients=pool)

    with pytest.raises(DefectError) as exc_info:
        await resource(Phase.CREATE, "thing", {"name": "a"})
    assert isinstance(exc_info.value.__cause__, TypeError)


@pytest.mark.asyncio
async def test_invalid_diff_surfaces_as_contract_violation(handler):
    handlers = lift(handler)
    handlers = EffectHandlers(
        create=handlers.create,
        diff=lambda rid, props, out: Effect.succeed("sideways"),
        update=handlers.update,
        destroy=handlers.destroy,
    )
    pool, _ = make_pool()
    resource = effect_resource("test::Thing", handlers, clients=pool)

    with pytest.raises(ContractViolation):
        await resource(Phase.UPDATE, "thing", {"name": "a"}, {"id": "x1"})


@pytest.mark.asyncio
async def test_each_dispatch_gets_a_span(handler, tracer):
    pool, _ = make_pool()
    resource = effect_resource("test::Thing", lift(handler), clients=pool, tracer=tracer)

    output = await resource(Phase.CREATE, "thing", {"name": "a"})
    await resource(Phase.UPDATE, "thing", {"name": "a"}, output)

    assert [span["name"] for span in tracer.spans] == ["test::Thing:thing", "test::Thing:thing"]
    assert tracer.spans[0]["annotations"] == {"kind": "test::Thing", "id": "thing", "phase": "create"}
    assert tracer.spans[1]["annotations"]["phase"] == "update"
    assert all(span["ended"] for span in tracer.spans)


@pytest.mark.asyncio
async def test_shared_client_unless_props_carry_a_token():
    pool, clients = make_pool()

    @effect_fn
    async def create(env, rid, props):
        await env.request("POST", "/things", json={"name": props["name"]})
        return {"id": rid}

    handlers = EffectHandlers(
        create=create,
        diff=lambda rid, props, out: Effect.succeed(Diff.NONE),
        update=lambda rid, props, out: Effect.succeed(out),
        destroy=lambda rid, out: Effect.succeed(None),
    )
    resource = effect_resource("test::Thing", handlers, clients=pool)

    await resource(Phase.CREATE, "a", {"name": "a"})
    await resource(Phase.CREATE, "b", {"name": "b"})
    await resource(Phase.CREATE, "c", {"name": "c", "api_token": "own-token"})

    assert len(clients["shared"].calls) == 2
    assert len(clients["own-token"].calls) == 1
    assert len(pool) == 2


@pytest.mark.asyncio
async def test_reconcile_rejects_create_with_existing_output(handler):
    program = reconcile(lift(handler), Phase.CREATE, "thing", {"name": "a"}, {"id": "x1"})

    ended = await run_exit(program, Environment(client=FakeClient()))

    assert isinstance(ended.cause, Die)
    assert isinstance(ended.cause.defect, ContractViolation)
    assert handler.events == []


def test_credential_override_reads_mappings_and_attributes():
    class Props:
        api_token = "attr-token"

    assert credential_override({"api_token": "t"}) == "t"
    assert credential_override({"api_token": ""}) is None
    assert credential_override(Props()) == "attr-token"
    assert credential_override(None) is None


@pytest.mark.asyncio
async def test_destroy_not_found_is_success():
    pool, clients = make_pool({"shared": FakeClient({("DELETE", "/things/x1"): not_found()})})
    handlers = EffectHandlers(
        create=lambda rid, props: Effect.succeed({"id": "x1"}),
        diff=lambda rid, props, out: Effect.succeed(Diff.NONE),
        update=lambda rid, props, out: Effect.succeed(out),
        destroy=lambda rid, out: Effect.request("DELETE", f"/things/{out['id']}").catch_not_found(),
    )
    resource = effect_resource("test::Thing", handlers, clients=pool)
    state = ResourceState(kind="test::Thing", id="thing", output={"id": "x1"})

    assert await apply_resource(resource, state, None, Phase.DELETE) is None
    assert clients["shared"].calls == [("DELETE", "/things/x1", None)]


@pytest.mark.asyncio
async def test_cancellation_stops_further_requests():
    token = CancellationToken()
    pool, clients = make_pool()

    @effect_fn
    async def create(env, rid, props):
        await env.request("POST", "/things", json=props)
        token.cancel("orchestrator abort")
        await env.request("PATCH", "/things/1", json=props)
        return {"id": "1"}

    handlers = EffectHandlers(
        create=create,
        diff=lambda rid, props, out: Effect.succeed(Diff.NONE),
        update=lambda rid, props, out: Effect.succeed(out),
        destroy=lambda rid, out: Effect.succeed(None),
    )
    resource = effect_resource("test::Thing", handlers, clients=pool)

    with pytest.raises(asyncio.CancelledError):
        await resource(Phase.CREATE, "thing", {"name": "a"}, cancellation=token)

    assert [call[0] for call in clients["shared"].calls] == ["POST"]
