"""Tests for container-backed lifetime scopes."""

import pytest

from projectionist import DependencyNotFoundError
from projectionist.container import DependencyCircularReferenceError, DependencyContainer
from projectionist.scope import ContainerLifetimeScopeFactory, DependencyResolvedEventArgs
from tests.fixtures.projections import StubConnection


class SyncConnection:
    def __init__(self, log: list[str], name: str = "sync"):
        self.log = log
        self.name = name

    def close(self) -> None:
        self.log.append(self.name)


class AsyncCloseConnection:
    def __init__(self, log: list[str]):
        self.log = log

    async def close(self) -> None:
        self.log.append("async-close")


class FailingConnection:
    def close(self) -> None:
        raise OSError("connection reset")


class Engine:
    def __init__(self, log: list[str]):
        self.log = log
        self.closed = False

    def close(self) -> None:
        self.closed = True
        self.log.append("engine")


class Session:
    def __init__(self, engine: Engine):
        self.engine = engine
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True
        self.engine.log.append("session")


class SharedPool:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class Reader:
    pass


class Writer:
    pass


def make_reader(writer: Writer) -> Reader:
    return Reader()


def make_writer(reader: Reader) -> Writer:
    return Writer()


@pytest.fixture
def close_log() -> list[str]:
    return []


@pytest.fixture
def factory(container: DependencyContainer, close_log: list[str]) -> ContainerLifetimeScopeFactory:
    container.register_factory(SyncConnection, lambda: SyncConnection(close_log))
    container.register_factory(AsyncCloseConnection, lambda: AsyncCloseConnection(close_log))
    container.register_singleton(SharedPool)
    return ContainerLifetimeScopeFactory(container)


@pytest.mark.asyncio
async def test_resolve_returns_same_instance_within_scope(factory):
    async with factory.begin_lifetime_scope() as scope:
        assert scope.resolve(StubConnection) is scope.resolve(StubConnection)


@pytest.mark.asyncio
async def test_resolve_returns_new_instance_per_scope(factory):
    async with factory.begin_lifetime_scope() as first:
        a = first.resolve(StubConnection)
    async with factory.begin_lifetime_scope() as second:
        b = second.resolve(StubConnection)

    assert a is not b


@pytest.mark.asyncio
async def test_dispose_closes_owned_instances_in_reverse_order(factory, close_log):
    async with factory.begin_lifetime_scope() as scope:
        scope.resolve(AsyncCloseConnection)
        scope.resolve(SyncConnection)
        stub = scope.resolve(StubConnection)

    assert close_log == ["sync", "async-close"]
    assert stub.closed


@pytest.mark.asyncio
async def test_dispose_leaves_singletons_open(factory):
    async with factory.begin_lifetime_scope() as scope:
        pool = scope.resolve(SharedPool)

    assert not pool.closed
    async with factory.begin_lifetime_scope() as scope:
        assert scope.resolve(SharedPool) is pool


@pytest.mark.asyncio
async def test_dispose_runs_on_error(factory):
    with pytest.raises(RuntimeError, match="handler failed"):
        async with factory.begin_lifetime_scope() as scope:
            stub = scope.resolve(StubConnection)
            raise RuntimeError("handler failed")

    assert stub.closed
    assert scope.disposed


@pytest.mark.asyncio
async def test_dispose_is_idempotent(factory, close_log):
    scope = factory.begin_lifetime_scope()
    scope.resolve(SyncConnection)

    await scope.dispose()
    await scope.dispose()

    assert close_log == ["sync"]


@pytest.mark.asyncio
async def test_resolve_after_dispose_fails(factory):
    scope = factory.begin_lifetime_scope()
    await scope.dispose()

    with pytest.raises(RuntimeError, match="disposed"):
        scope.resolve(StubConnection)


@pytest.mark.asyncio
async def test_resolve_unknown_type_fails(factory):
    class Unregistered:
        pass

    async with factory.begin_lifetime_scope() as scope:
        with pytest.raises(DependencyNotFoundError, match="Unregistered"):
            scope.resolve(Unregistered)


@pytest.mark.asyncio
async def test_close_failure_still_closes_others_and_raises(container, close_log, caplog):
    container.register_factory(SyncConnection, lambda: SyncConnection(close_log))
    container.register_factory(FailingConnection)
    factory = ContainerLifetimeScopeFactory(container)

    with pytest.raises(OSError, match="connection reset"):
        async with factory.begin_lifetime_scope() as scope:
            scope.resolve(SyncConnection)
            scope.resolve(FailingConnection)

    assert close_log == ["sync"]
    assert "Failed to close scoped dependency" in caplog.text


@pytest.mark.asyncio
async def test_resolved_handlers_fire_once_per_type(container):
    events: list[DependencyResolvedEventArgs] = []
    factory = ContainerLifetimeScopeFactory(container)
    factory.add_resolved_handler(events.append)

    async with factory.begin_lifetime_scope() as scope:
        connection = scope.resolve(StubConnection)
        scope.resolve(StubConnection)

    (event,) = events
    assert event.scope is scope
    assert event.dependency_type is StubConnection
    assert event.instance is connection


@pytest.mark.asyncio
async def test_close_failure_does_not_mask_pending_error(container, caplog):
    container.register_factory(FailingConnection)
    factory = ContainerLifetimeScopeFactory(container)

    with pytest.raises(RuntimeError, match="handler failed"):
        async with factory.begin_lifetime_scope() as scope:
            scope.resolve(FailingConnection)
            raise RuntimeError("handler failed")

    assert scope.disposed
    assert "Failed to close scoped dependency" in caplog.text
    assert "Failed to dispose lifetime scope" in caplog.text


@pytest.mark.asyncio
async def test_scoped_factory_parameters_are_resolved_from_scope(container, close_log):
    container.register_factory(Engine, lambda: Engine(close_log))
    container.register_factory(Session)
    factory = ContainerLifetimeScopeFactory(container)

    async with factory.begin_lifetime_scope() as scope:
        session = scope.resolve(Session)
        engine = scope.resolve(Engine)
        assert session.engine is engine

    assert session.closed
    assert engine.closed
    assert close_log == ["session", "engine"]


@pytest.mark.asyncio
async def test_resolved_handlers_fire_for_nested_dependencies(container, close_log):
    container.register_factory(Engine, lambda: Engine(close_log))
    container.register_factory(Session)
    events: list[DependencyResolvedEventArgs] = []
    factory = ContainerLifetimeScopeFactory(container, [events.append])

    async with factory.begin_lifetime_scope() as scope:
        scope.resolve(Session)

    assert [event.dependency_type for event in events] == [Engine, Session]


@pytest.mark.asyncio
async def test_singleton_parameters_are_not_owned_by_scope(container, close_log):
    container.register_factory(Engine, lambda: Engine(close_log))
    container.register_singleton(Session)
    factory = ContainerLifetimeScopeFactory(container)

    async with factory.begin_lifetime_scope() as scope:
        session = scope.resolve(Session)

    assert not session.closed
    assert not session.engine.closed
    assert close_log == []


@pytest.mark.asyncio
async def test_scoped_circular_reference_fails(container):
    container.register_factory(Reader, make_reader)
    container.register_factory(Writer, make_writer)
    factory = ContainerLifetimeScopeFactory(container)

    async with factory.begin_lifetime_scope() as scope:
        with pytest.raises(DependencyCircularReferenceError, match="Reader"):
            scope.resolve(Reader)
