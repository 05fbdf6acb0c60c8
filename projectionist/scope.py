"""Lifetime scopes for the connections projections use while handling messages.

A lifetime scope is opened once per projector call (one batch, or one
watermark computation) and disposed when the call ends, whatever the
outcome. Every projection resolves its own connection from the scope, so
connections are not shared between projections, only their lifetimes are
batched together.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from types import TracebackType
from typing import Any, TypeVar

from .container import (
    DependencyCircularReferenceError,
    DependencyContainer,
    DependencyNotFoundError,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ConnectionFactory = Callable[[], T]


@dataclass(frozen=True)
class DependencyResolvedEventArgs:
    """Describes a dependency resolved for the first time within a scope.

    Attributes:
        scope: The scope that resolved the dependency.
        dependency_type: The type that was requested.
        instance: The resolved instance.
    """

    scope: "DependencyLifetimeScope"
    dependency_type: type
    instance: Any


DependencyResolvedHandler = Callable[[DependencyResolvedEventArgs], None]


class DependencyLifetimeScope(ABC):
    """A disposable unit of resolved dependencies.

    Scopes are async context managers. Leaving the ``async with`` block
    disposes the scope on success, on error and when the surrounding task is
    cancelled. ``dispose`` only releases resources once; later calls are
    no-ops. A release failure is raised when the block succeeded; when the
    block is already failing it is logged and the original error propagates.

    Example:
        >>> async with factory.begin_lifetime_scope() as scope:
        ...     session = scope.resolve(Session)
        ...     await session.execute(...)
    """

    def __init__(self) -> None:
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @abstractmethod
    def resolve(self, dependency_type: type[T]) -> T:
        """Resolve a dependency, reusing the instance already resolved in this scope.

        Args:
            dependency_type: The type to resolve.

        Returns:
            The instance bound to this scope.
        """
        ...

    @abstractmethod
    async def release(self) -> None:
        """Release everything this scope owns. Called once by ``dispose``."""
        ...

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        await self.release()

    async def __aenter__(self) -> "DependencyLifetimeScope":
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        _traceback: TracebackType | None,
    ) -> None:
        if exc_value is None:
            await self.dispose()
            return

        # The pending error wins over a failure to clean up after it
        try:
            await self.dispose()
        except Exception:
            LOGGER.exception(
                "Failed to dispose lifetime scope",
                extra={"pending_error": type(exc_value).__name__},
            )


class DependencyLifetimeScopeFactory(ABC):
    """Creates lifetime scopes for the projector."""

    @abstractmethod
    def begin_lifetime_scope(self) -> DependencyLifetimeScope:
        """Open a new lifetime scope.

        Returns:
            A scope that the caller must dispose (usually via ``async with``).
        """
        ...


async def _close(instance: Any) -> None:
    aclose = getattr(instance, "aclose", None)
    if callable(aclose):
        await aclose()
        return

    close = getattr(instance, "close", None)
    if callable(close):
        result = close()
        if inspect.isawaitable(result):
            await result


class ContainerLifetimeScope(DependencyLifetimeScope):
    """Lifetime scope backed by a DependencyContainer.

    Each type is resolved from the container at most once per scope,
    including types requested by the parameters of other factories.
    Instances produced by factory registrations belong to the scope and are
    closed (``aclose()`` or ``close()``) in reverse resolution order when the
    scope is disposed. Singletons and registered instances are shared with
    the rest of the application and left open.
    """

    def __init__(
        self,
        container: DependencyContainer,
        resolved_handlers: Iterable[DependencyResolvedHandler] = (),
    ):
        super().__init__()
        self.container = container
        self.resolved_handlers = list(resolved_handlers)
        self._instances: dict[type, Any] = {}
        self._owned: list[Any] = []
        self._resolving: list[type] = []

    def resolve(self, dependency_type: type[T]) -> T:
        if self.disposed:
            raise RuntimeError("Cannot resolve from a disposed lifetime scope")

        if dependency_type in self._instances:
            return self._instances[dependency_type]  # type: ignore[no-any-return]

        dependency = self.container.lookup(dependency_type)
        if dependency is None:
            raise DependencyNotFoundError.from_type(dependency_type)

        if dependency_type in self._resolving:
            raise DependencyCircularReferenceError.from_types([*self._resolving, dependency_type])

        # Factory parameters resolve through the scope, so nested scoped
        # instances are cached and closed with it
        self._resolving.append(dependency_type)
        try:
            instance = dependency.resolve(self.container, self.resolve)
        finally:
            self._resolving.pop()

        self._instances[dependency_type] = instance
        if not dependency.shared:
            self._owned.append(instance)

        args = DependencyResolvedEventArgs(self, dependency_type, instance)
        for handler in self.resolved_handlers:
            handler(args)
        return instance

    async def release(self) -> None:
        errors: list[Exception] = []
        owned, self._owned = self._owned, []
        self._instances.clear()

        for instance in reversed(owned):
            try:
                await _close(instance)
            except Exception as err:
                LOGGER.exception(
                    "Failed to close scoped dependency",
                    extra={"dependency_type": type(instance).__name__},
                )
                errors.append(err)

        if errors:
            raise errors[0]


class ContainerLifetimeScopeFactory(DependencyLifetimeScopeFactory):
    """Default scope factory that resolves connections from a container.

    Example:
        >>> container = DependencyContainer()
        >>> container.register_factory(Session, lambda: Session(engine))
        >>> factory = ContainerLifetimeScopeFactory(container)
        >>> factory.add_resolved_handler(lambda args: print(args.dependency_type))
    """

    def __init__(
        self,
        container: DependencyContainer,
        resolved_handlers: Iterable[DependencyResolvedHandler] = (),
    ):
        self.container = container
        self.resolved_handlers = list(resolved_handlers)

    def add_resolved_handler(self, handler: DependencyResolvedHandler) -> None:
        self.resolved_handlers.append(handler)

    def begin_lifetime_scope(self) -> ContainerLifetimeScope:
        return ContainerLifetimeScope(self.container, self.resolved_handlers)
