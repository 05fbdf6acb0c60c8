"""Central test fixtures."""

import pytest

from projectionist import ProjectorBuilder, ProjectorConfiguration
from projectionist.container import DependencyContainer
from tests.fixtures.projections import (
    AccountBalances,
    AccountOwners,
    Ledger,
    LedgerConnection,
    RecordingScopeFactory,
    StubConnection,
)


@pytest.fixture
def container() -> DependencyContainer:
    """Create a container with a scoped StubConnection registration."""
    container = DependencyContainer()
    container.register_factory(StubConnection)
    return container


@pytest.fixture
def scope_factory(container: DependencyContainer) -> RecordingScopeFactory:
    """Create a scope factory that records the scopes it opens."""
    return RecordingScopeFactory(container)


@pytest.fixture
def configuration() -> ProjectorConfiguration:
    """Create a configuration independent of the environment."""
    return ProjectorConfiguration(name="test-projector", log_level="DEBUG")


@pytest.fixture
def ledger() -> Ledger:
    """Create an empty in-memory ledger."""
    return Ledger()


@pytest.fixture
def ledger_builder(ledger: Ledger, configuration: ProjectorConfiguration) -> ProjectorBuilder:
    """Create a builder wired with ledger projections and connections."""
    return (
        ProjectorBuilder()
        .register(AccountBalances())
        .register(AccountOwners())
        .register_shared_connection(Ledger, lambda: ledger)
        .register_connection(LedgerConnection)
        .use_configuration(configuration)
    )


@pytest.fixture(autouse=True)
def clear_execution_context():
    """Automatically clear execution context after each test."""
    yield
    from projectionist.context import clear_context

    clear_context()
