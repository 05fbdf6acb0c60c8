from collections.abc import Callable
from typing import Any, Generic, TypeVar

from .config import ProjectorConfiguration
from .container import DependencyContainer
from .envelope import MessageEnvelope
from .projection import Projection
from .projector import Projector
from .scope import (
    ContainerLifetimeScopeFactory,
    DependencyLifetimeScopeFactory,
    DependencyResolvedHandler,
)

T = TypeVar("T")
E = TypeVar("E", bound=MessageEnvelope)


# The builder owns a DependencyContainer holding the connection
# registrations. Unless another scope factory is supplied, build() wraps that
# container in a ContainerLifetimeScopeFactory so every project() call gets
# fresh scoped connections, closed when the call ends, while shared
# connections (singletons) live as long as the container.


class ProjectorBuilder(Generic[E]):
    """Builder for creating Projector instances.

    Example:
        >>> projector = (
        ...     ProjectorBuilder()
        ...     .register(AccountBalances())
        ...     .register(AccountStatistics())
        ...     .register_connection(Session, lambda: Session(engine))
        ...     .on_dependency_resolved(lambda args: args.instance.begin())
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        self.container = DependencyContainer()
        self.projections: list[Projection[Any]] = []
        self.resolved_handlers: list[DependencyResolvedHandler] = []
        self.dependency_lifetime_scope_factory: DependencyLifetimeScopeFactory | None = None
        self.configuration: ProjectorConfiguration | None = None

    def register(self, projection: Projection[Any]) -> "ProjectorBuilder[E]":
        """Register a projection instance.

        Registering the same instance twice has no effect.

        Args:
            projection: The projection to feed.

        Returns:
            The projector builder.
        """
        if not any(existing is projection for existing in self.projections):
            self.projections.append(projection)
        return self

    def register_connection(
        self,
        connection_type: type[T],
        factory: Callable[..., T] | None = None,
    ) -> "ProjectorBuilder[E]":
        """Register a connection created once per lifetime scope.

        The connection is closed (``aclose()`` or ``close()``) when the scope
        ends. Factory parameters annotated with registered types are
        resolved from the same scope, so scoped parameters are shared and
        closed with it.

        Args:
            connection_type: The type projections declare as connection_type
            factory: Creates the connection. Defaults to the type itself.

        Returns:
            The projector builder.
        """
        self.container.register_factory(connection_type, factory or connection_type)
        return self

    def register_shared_connection(
        self,
        connection_type: type[T],
        factory: Callable[..., T] | None = None,
    ) -> "ProjectorBuilder[E]":
        """Register a connection shared by every scope (a singleton).

        Shared connections are never closed by a scope; their owner is
        responsible for them.

        Args:
            connection_type: The type projections declare as connection_type
            factory: Creates the connection. Defaults to the type itself.

        Returns:
            The projector builder.
        """
        self.container.register_singleton(connection_type, factory or connection_type)
        return self

    def on_dependency_resolved(self, handler: DependencyResolvedHandler) -> "ProjectorBuilder[E]":
        """Call a handler the first time each connection is resolved in a scope.

        Only applies to the default, container-backed scope factory.

        Args:
            handler: Receives DependencyResolvedEventArgs.

        Returns:
            The projector builder.
        """
        self.resolved_handlers.append(handler)
        return self

    def use_dependency_lifetime_scope_factory(
        self, factory: DependencyLifetimeScopeFactory
    ) -> "ProjectorBuilder[E]":
        """Replace the default container-backed scope factory.

        Returns:
            The projector builder.
        """
        self.dependency_lifetime_scope_factory = factory
        return self

    def use_configuration(self, configuration: ProjectorConfiguration) -> "ProjectorBuilder[E]":
        self.configuration = configuration
        return self

    def build(self) -> Projector[E]:
        """Build the projector.

        Returns:
            The configured Projector instance

        Raises:
            ProjectorConfigurationError: If no projections were registered
        """
        factory = self.dependency_lifetime_scope_factory or ContainerLifetimeScopeFactory(
            self.container, self.resolved_handlers
        )
        return Projector(self.projections, factory, self.configuration)
