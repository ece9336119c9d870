from __future__ import annotations

import asyncio
import os
import threading

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ephemera.core.dependencies import Inject, ServiceContainer, ServiceLifetime


class ExampleService:
    value: int = 42


@pytest.mark.asyncio
async def test_singleton_lifecycle():
    """Test that singleton services are created only once"""
    container = ServiceContainer()

    call_count = 0

    async def factory():
        nonlocal call_count
        call_count += 1
        await asyncio.sleep(0.01)
        return {"instance": call_count}

    await container.register("test", ServiceLifetime.SINGLETON, factory, None)

    instance1, instance2 = await asyncio.gather(
        container.aget_by_key("test"),
        container.aget_by_key("test"),
    )

    assert instance1 is instance2
    assert call_count == 1
    assert instance1["instance"] == 1


@pytest.mark.asyncio
async def test_sync_factory_runs_off_the_loop():
    container = ServiceContainer()
    loop_thread = threading.get_ident()
    factory_threads: list[int] = []

    def factory(value: int, *, label: str):
        factory_threads.append(threading.get_ident())
        return {"value": value, "label": label}

    await container.register("sync", ServiceLifetime.SINGLETON, factory, None, 7, label="x")

    instance = await container.aget_by_key("sync")

    assert instance == {"value": 7, "label": "x"}
    assert factory_threads and factory_threads[0] != loop_thread


@pytest.mark.asyncio
async def test_type_based_injection():
    """Test type-based service injection"""
    container = ServiceContainer()

    async def factory() -> ExampleService:
        return ExampleService()

    # Anonymous registration (accessible only by type)
    await container.register(None, ServiceLifetime.SINGLETON, factory, None)

    instance = await container.aget_by_type(ExampleService)
    assert isinstance(instance, ExampleService)
    assert instance.value == 42


@pytest.mark.asyncio
async def test_anonymous_service_without_type_fails():
    """Test that anonymous service registration fails when type cannot be inferred"""
    container = ServiceContainer()

    async def factory():
        return {"data": "test"}

    with pytest.raises(RuntimeError, match="must declare a return type"):
        await container.register(None, ServiceLifetime.SINGLETON, factory, None)


@pytest.mark.asyncio
async def test_ambiguous_type_lookup_fails():
    container = ServiceContainer()

    async def factory() -> ExampleService:
        return ExampleService()

    await container.register("first", ServiceLifetime.SINGLETON, factory, None)
    await container.register("second", ServiceLifetime.SINGLETON, factory, None)

    with pytest.raises(RuntimeError, match="Multiple services registered"):
        await container.aget_by_type(ExampleService)
    assert isinstance(await container.aget_by_key("second"), ExampleService)


@pytest.mark.asyncio
async def test_process_isolation():
    """Test process isolation check (using mock simulation)"""
    container = ServiceContainer()

    async def factory():
        return {}

    await container.register("test", ServiceLifetime.SINGLETON, factory, None)

    # Simulate access from a forked child process
    container._pid = os.getpid() + 1

    with pytest.raises(RuntimeError, match="accessed from different process"):
        await container.aget_by_key("test")


@pytest.mark.asyncio
async def test_singleton_destruction_in_reverse_order():
    """Test singleton service destruction"""
    container = ServiceContainer()

    destroyed = []

    async def first():
        return {"id": 1}

    def second():
        return {"id": 2}

    async def destructor(instance):
        destroyed.append(instance["id"])

    def failing_destructor(instance):
        destroyed.append(instance["id"])
        raise RuntimeError("dtor failed")

    await container.register("first", ServiceLifetime.SINGLETON, first, destructor)
    await container.register("second", ServiceLifetime.SINGLETON, second, failing_destructor)
    await container.register("never_built", ServiceLifetime.SINGLETON, first, destructor)

    await container.aget_by_key("first")
    await container.aget_by_key("second")

    await container.destruct_all_singletons()

    assert destroyed == [2, 1]


@pytest.mark.asyncio
async def test_duplicate_key_registration_fails():
    """Test that registering the same key twice fails"""
    container = ServiceContainer()

    async def factory():
        return {}

    await container.register("test", ServiceLifetime.SINGLETON, factory, None)

    with pytest.raises(RuntimeError, match="Duplicate service registration"):
        await container.register("test", ServiceLifetime.SINGLETON, factory, None)


@pytest.mark.asyncio
async def test_unregistered_key_fails():
    container = ServiceContainer()

    with pytest.raises(RuntimeError, match="unregistered service"):
        await container.aget_by_key("missing")


@pytest.mark.asyncio
async def test_invalid_destructor_is_rejected():
    container = ServiceContainer()

    async def factory():
        return {}

    with pytest.raises(TypeError, match="Invalid destructor"):
        await container.register("test", ServiceLifetime.SINGLETON, factory, "not callable")


def test_inject_resolves_from_app_state():
    app = FastAPI()
    container = ServiceContainer()
    app.state.services = container

    @app.get("/value")
    async def read_value(service: ExampleService = Inject(ExampleService)):
        return {"value": service.value}

    @app.get("/keyed")
    async def read_keyed(service=Inject("keyed")):
        return service

    async def factory() -> ExampleService:
        return ExampleService()

    async def keyed():
        return {"keyed": True}

    with TestClient(app) as client:
        client.portal.call(
            container.register, None, ServiceLifetime.SINGLETON, factory, None
        )
        client.portal.call(
            container.register, "keyed", ServiceLifetime.SINGLETON, keyed, None
        )

        assert client.get("/value").json() == {"value": 42}
        assert client.get("/keyed").json() == {"keyed": True}


def test_inject_rejects_invalid_target():
    with pytest.raises(TypeError):
        Inject(42)
