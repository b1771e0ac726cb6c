"""
End-to-end tests of a facade instance driven over HTTP through the ASGI
adapter: D1 binding upgrade, the scheduled testing bridge and the JSON
error formatter working together.
"""

import logging
import types
from types import SimpleNamespace

import httpx
import pytest
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from worker_facade.api.config import Settings
from worker_facade.bindings.d1 import D1Database
from worker_facade.api.asgi_adapter import FacadeASGIApp
from worker_facade.core.models import ExecutionContext, HandlerModule
from worker_facade.runtime import FacadeInstance

from conftest import FakeBinding, ok


def kitchen_sink_module():
    module = types.ModuleType("kitchen_sink")

    async def fetch(request: Request, env, ctx):
        pathname = request.url.path
        if pathname == "/setup":
            await env["DB"].exec("CREATE TABLE IF NOT EXISTS test (id INTEGER PRIMARY KEY, value TEXT);")
            return Response(status_code=204)
        if pathname == "/query":
            rows = await env["DB"].prepare("SELECT * FROM test;").all()
            return JSONResponse(rows.results)
        raise LookupError("Not found!")

    async def scheduled(controller, env, ctx):
        stmt = env["DB"].prepare("INSERT INTO test (id, value) VALUES (?, ?)")
        await stmt.bind(1, "one").run()

    module.fetch = fetch
    module.scheduled = scheduled
    return module


def test_d1_scheduled_bridge_and_dev_errors_together():
    binding = FakeBinding(
        ok([{"meta": {"duration": 0.1}}]),
        ok({"results": [], "meta": {"changes": 1}}),
        ok({"results": [{"id": 1, "value": "one"}]}),
    )
    instance = FacadeInstance.start(kitchen_sink_module(), Settings(environment="development"))
    client = TestClient(instance.asgi({"__D1_BETA__DB": binding}))

    res = client.get("http://localhost/setup")
    assert res.status_code == 204

    res = client.get("http://localhost/__scheduled")
    assert res.status_code == 200
    assert res.text == "Ran scheduled event"
    assert binding.calls[1]["url"] == "http://d1/execute"
    assert binding.calls[1]["body"]["params"] == [1, "one"]

    res = client.get("http://localhost/query")
    assert res.status_code == 200
    assert res.json() == [{"id": 1, "value": "one"}]

    res = client.get("http://localhost/bad")
    assert res.status_code == 500
    assert "Not found!" in res.text
    assert res.json()["name"] == "LookupError"


def test_scheduled_bridge_surfaces_handler_error():
    def scheduled(controller, env, ctx):
        raise RuntimeError("Error in scheduled worker")

    instance = FacadeInstance.start(HandlerModule(scheduled=scheduled), Settings(environment="development"))
    res = TestClient(instance.asgi({})).get("/__scheduled")

    assert res.status_code == 500
    assert res.text == "Error in scheduled worker"


def test_scheduled_bridge_passes_cron_query_param():
    crons = []
    instance = FacadeInstance.start(
        {"scheduled": lambda controller, env, ctx: crons.append(controller.cron)},
        Settings(environment="development"),
    )
    client = TestClient(instance.asgi({}))

    assert client.get("/__scheduled", params={"cron": "*/5 * * * *"}).status_code == 200
    assert client.get("/__scheduled").status_code == 200
    assert crons == ["*/5 * * * *", ""]


def test_scheduled_bridge_custom_path():
    crons = []
    settings = Settings(environment="development", scheduled_path="/cdn-cgi/mf/scheduled")
    instance = FacadeInstance.start({"scheduled": lambda c, e, x: crons.append(c.cron)}, settings)

    res = TestClient(instance.asgi({})).get("/cdn-cgi/mf/scheduled")
    assert res.text == "Ran scheduled event"
    assert len(crons) == 1


def test_production_mounts_no_internal_middleware():
    def fetch(request, env, ctx):
        return Response(f"fetch saw {request.url.path}")

    instance = FacadeInstance.start({"fetch": fetch}, Settings(environment="production"))

    assert not instance.registry
    res = TestClient(instance.asgi({})).get("/__scheduled")
    assert res.text == "fetch saw /__scheduled"


def test_production_errors_are_not_formatted():
    def fetch(request, env, ctx):
        raise LookupError("Not found!")

    instance = FacadeInstance.start({"fetch": fetch}, Settings(environment="production"))
    with pytest.raises(LookupError):
        TestClient(instance.asgi({})).get("/")


def test_module_middleware_runs_after_internal_middleware():
    async def world(request, env, ctx, middleware_ctx):
        response = await middleware_ctx.next(request, env)
        return Response(response.body.decode() + " world")

    module = types.SimpleNamespace(fetch=lambda request, env, ctx: Response("Hello"), middleware=[world])
    instance = FacadeInstance.start(module, Settings(environment="development"))

    assert TestClient(instance.asgi({})).get("/").text == "Hello world"
    assert len(instance.registry) == 3


def test_module_env_wrappers_run_after_binding_upgrade(bare_settings):
    seen = []

    def wrap(env):
        seen.append(sorted(env))
        return {**env, "wrapped": True}

    def fetch(request, env, ctx):
        return JSONResponse({"keys": sorted(env), "db": type(env["DB"]).__name__})

    instance = FacadeInstance.start({"fetch": fetch, "envWrappers": [wrap]}, bare_settings)
    res = TestClient(instance.asgi({"__D1_BETA__DB": FakeBinding()})).get("/")

    assert res.json() == {"keys": ["DB", "wrapped"], "db": "D1Database"}
    assert seen == [["DB"]]


def test_durable_objects_see_upgraded_bindings(bare_settings):
    class Room:
        def __init__(self, state, env):
            self.env = env

    instance = FacadeInstance.start({}, bare_settings)
    Masked = instance.mask_durable_object(Room)
    room = Masked("state", {"__D1_BETA__DB": FakeBinding(), "A": 1})

    assert isinstance(room.env["DB"], D1Database)
    assert room.env["A"] == 1


def test_non_response_return_is_rejected(bare_settings):
    instance = FacadeInstance.start({"fetch": lambda request, env, ctx: "text"}, bare_settings)
    with pytest.raises(TypeError):
        TestClient(instance.asgi({})).get("/")


@pytest.mark.asyncio
async def test_asgi_adapter_with_async_client(bare_settings):
    def fetch(request, env, ctx):
        return Response("Hello world", status_code=500, headers={"x-test": "test"})

    async def pass_through(request, env, ctx, middleware_ctx):
        return await middleware_ctx.next(request, env)

    instance = FacadeInstance.start({"fetch": fetch, "middleware": [pass_through]}, bare_settings)
    transport = httpx.ASGITransport(app=instance.asgi({}))
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as client:
        res = await client.get("/")

    assert res.status_code == 500
    assert res.headers["x-test"] == "test"
    assert res.text == "Hello world"


def test_teardown_drops_masked_envs(bare_settings):
    instance = FacadeInstance.start({"fetch": lambda r, e, c: Response()}, bare_settings)
    raw = {"__D1_BETA__DB": FakeBinding()}
    first = instance.pipeline.mask(raw)
    instance.teardown()
    assert instance.pipeline.mask(raw) is not first


def test_attribute_env_reaches_handler_unchanged(bare_settings):
    def fetch(request, env, ctx):
        return Response(env.API_KEY)

    raw_env = SimpleNamespace(API_KEY="k")
    instance = FacadeInstance.start({"fetch": fetch}, bare_settings)
    res = TestClient(instance.asgi(raw_env)).get("/")

    assert res.status_code == 200
    assert res.text == "k"
    assert instance.pipeline.mask(raw_env) is raw_env


def test_attribute_env_gets_upgraded_d1_binding(bare_settings):
    async def fetch(request, env, ctx):
        rows = await env.DB.prepare("SELECT 1 AS one").all()
        return JSONResponse({"rows": rows.results, "api_key": env.API_KEY})

    raw_env = SimpleNamespace(API_KEY="k")
    setattr(raw_env, "__D1_BETA__DB", FakeBinding(ok({"results": [{"one": 1}]})))
    instance = FacadeInstance.start({"fetch": fetch}, bare_settings)
    res = TestClient(instance.asgi(raw_env)).get("/")

    assert res.json() == {"rows": [{"one": 1}], "api_key": "k"}


@pytest.mark.asyncio
async def test_wait_until_work_is_drained_after_response(bare_settings):
    done = []
    contexts = []

    async def background():
        done.append("bg")

    def fetch(request, env, ctx):
        ctx.wait_until(background())
        return Response("ok")

    def ctx_factory():
        ctx = ExecutionContext()
        contexts.append(ctx)
        return ctx

    instance = FacadeInstance.start({"fetch": fetch}, bare_settings)
    app = FacadeASGIApp(instance.facade, {}, ctx_factory=ctx_factory)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://localhost") as client:
        res = await client.get("/")

    assert res.text == "ok"
    assert done == ["bg"]
    assert contexts[0].pending == 0


@pytest.mark.asyncio
async def test_wait_until_failures_are_logged(bare_settings, caplog):
    async def background():
        raise ValueError("bg failed")

    def fetch(request, env, ctx):
        ctx.wait_until(background())
        return Response("ok")

    instance = FacadeInstance.start({"fetch": fetch}, bare_settings)
    transport = httpx.ASGITransport(app=instance.asgi({}))
    with caplog.at_level(logging.WARNING, logger="worker_facade.core.models"):
        async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as client:
            res = await client.get("/")

    assert res.status_code == 200
    failures = [r for r in caplog.records if "wait_until failed" in r.getMessage()]
    assert len(failures) == 1
    assert str(failures[0].exc_info[1]) == "bg failed"


@pytest.mark.asyncio
async def test_wait_until_work_is_drained_when_fetch_raises(bare_settings):
    done = []

    async def background():
        done.append("bg")

    def fetch(request, env, ctx):
        ctx.wait_until(background())
        raise RuntimeError("boom")

    instance = FacadeInstance.start({"fetch": fetch}, bare_settings)
    transport = httpx.ASGITransport(app=instance.asgi({}))
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as client:
        with pytest.raises(RuntimeError):
            await client.get("/")

    assert done == ["bg"]
