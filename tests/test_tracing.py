import asyncio

import pytest
from aws_xray_sdk.core.recorder import AWSXRayRecorder
from conftest import FakeClient, RecordingTracer

from forgeline import bootstrap as bootstrap_module
from forgeline.bootstrap import Runtime, bootstrap
from forgeline.clients.pool import ClientPool
from forgeline.config import Settings
from forgeline.runtime.apply import apply_all
from forgeline.runtime.effect import Effect, effect_fn
from forgeline.runtime.effect_resource import EffectHandlers, effect_resource
from forgeline.runtime.lifecycle import Diff
from forgeline.runtime.resource import Phase, ResourceState
from forgeline.tracing import NullTracer, XRayTracer, default_tracer, span


@pytest.fixture
def recorder():
    recorder = AWSXRayRecorder()
    recorder.configure(context_missing="LOG_ERROR")
    yield recorder
    recorder.clear_trace_entities()


def sleeping_handlers(delay: float) -> EffectHandlers:
    async def create(env, rid, props):
        await asyncio.sleep(delay)
        return {"id": rid}

    return EffectHandlers(
        create=effect_fn(create),
        diff=lambda rid, props, out: Effect.succeed(Diff.NONE),
        update=lambda rid, props, out: Effect.succeed(out),
        destroy=lambda rid, out: Effect.succeed(None),
    )


def test_xray_tracer_annotates_subsegment(recorder):
    segment = recorder.begin_segment("forgeline-test", sampling=1)
    tracer = XRayTracer(recorder)

    with span(tracer, "mail::Audience:news", kind="mail::Audience", phase="create"):
        pass

    [subsegment] = segment.subsegments
    assert subsegment.name == "mail::Audience:news"
    assert subsegment.annotations == {"kind": "mail::Audience", "phase": "create"}
    assert not subsegment.in_progress


def test_span_records_error_and_reraises(recorder):
    segment = recorder.begin_segment("forgeline-test", sampling=1)
    tracer = XRayTracer(recorder)

    with pytest.raises(RuntimeError):
        with span(tracer, "work"):
            raise RuntimeError("boom")

    assert segment.subsegments[0].annotations["error"] == "boom"
    assert not segment.subsegments[0].in_progress


def test_nested_spans_attach_to_enclosing_span(recorder):
    segment = recorder.begin_segment("forgeline-test", sampling=1)
    tracer = XRayTracer(recorder)

    with span(tracer, "outer"):
        with span(tracer, "inner"):
            pass
    with span(tracer, "after"):
        pass

    assert [sub.name for sub in segment.subsegments] == ["outer", "after"]
    assert [sub.name for sub in segment.subsegments[0].subsegments] == ["inner"]


def test_xray_tracer_without_segment_is_a_no_op(recorder):
    tracer = XRayTracer(recorder)

    with span(tracer, "work") as handle:
        assert handle is None


@pytest.mark.asyncio
async def test_concurrent_dispatches_get_sibling_spans(recorder):
    segment = recorder.begin_segment("forgeline-test", sampling=1)
    tracer = XRayTracer(recorder)
    pool = ClientPool(lambda token: FakeClient())
    slow = effect_resource("k::Slow", sleeping_handlers(0.2), clients=pool, tracer=tracer)
    fast = effect_resource("k::Fast", sleeping_handlers(0.05), clients=pool, tracer=tracer)

    result = await apply_all(
        [
            (slow, ResourceState(kind="k::Slow", id="a"), {}),
            (fast, ResourceState(kind="k::Fast", id="b"), {}),
        ]
    )

    assert result.success
    spans = {sub.name: sub for sub in segment.subsegments}
    assert set(spans) == {"k::Slow:a", "k::Fast:b"}
    assert all(not sub.subsegments for sub in spans.values())
    slow_span, fast_span = spans["k::Slow:a"], spans["k::Fast:b"]
    assert slow_span.end_time - slow_span.start_time > 0.15
    assert fast_span.end_time - fast_span.start_time < 0.15


def test_default_tracer():
    assert isinstance(default_tracer(False), NullTracer)
    assert isinstance(default_tracer(True), XRayTracer)


def test_bootstrap_builds_runtime(monkeypatch):
    calls = []
    monkeypatch.setattr(
        bootstrap_module, "configure_logging", lambda level, **kwargs: calls.append((level, kwargs))
    )
    settings = Settings(log_level="DEBUG", api_token="shared", service_name="billing", log_json=False)

    runtime = bootstrap(settings)

    assert isinstance(runtime, Runtime)
    assert calls == [("DEBUG", {"service_name": "billing", "json": False})]
    assert isinstance(runtime.tracer, NullTracer)
    assert runtime.clients.default().base_url == "http://localhost:8080"


def test_bootstrap_initialises_xray_when_enabled(monkeypatch):
    services = []
    monkeypatch.setattr(bootstrap_module, "configure_logging", lambda level, **kwargs: None)
    monkeypatch.setattr(bootstrap_module, "init_xray", services.append)
    pool = ClientPool(lambda token: object())

    runtime = bootstrap(Settings(xray_enabled=True, service_name="billing"), clients=pool)

    assert services == ["billing"]
    assert runtime.clients is pool
    assert isinstance(runtime.tracer, XRayTracer)


@pytest.mark.asyncio
async def test_runtime_effect_resource_uses_shared_pool_and_tracer():
    client = FakeClient({("POST", "/audiences"): {"id": "a1"}})
    tracer = RecordingTracer()
    runtime = Runtime(
        settings=Settings(),
        clients=ClientPool(lambda token: client, default_token="shared"),
        tracer=tracer,
    )
    handlers = EffectHandlers(
        create=lambda rid, props: Effect.request("POST", "/audiences", json=props),
        diff=lambda rid, props, out: Effect.succeed(Diff.NONE),
        update=lambda rid, props, out: Effect.succeed(out),
        destroy=lambda rid, out: Effect.succeed(None),
    )

    resource = runtime.effect_resource("mail::Audience", handlers, description="audiences")
    output = await resource(Phase.CREATE, "news", {"name": "news"})

    assert resource.description == "audiences"
    assert output == {"id": "a1"}
    assert client.calls == [("POST", "/audiences", {"name": "news"})]
    assert [s["name"] for s in tracer.spans] == ["mail::Audience:news"]
    assert len(runtime.clients) == 1
