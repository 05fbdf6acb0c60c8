import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any, Generic, Optional, TypeVar, cast, get_origin

T = TypeVar("T")

Resolver = Callable[[type], Any]


class DependencyNotFoundError(Exception):
    @classmethod
    def from_type(cls, dependency_type: type[T]) -> "DependencyNotFoundError":
        if hasattr(dependency_type, "__name__"):
            return cls(f"Dependency {dependency_type.__name__} not found")
        else:
            return cls(f"Dependency {dependency_type} not found")


class DependencyCircularReferenceError(Exception):
    @classmethod
    def from_container(cls, container: "DependencyContainer") -> "DependencyCircularReferenceError":
        return cls(f"Circular reference detected while resolving {container.all_resolving()}")

    @classmethod
    def from_types(cls, dependency_types: Iterable[type]) -> "DependencyCircularReferenceError":
        names = [getattr(t, "__name__", repr(t)) for t in dependency_types]
        return cls(f"Circular reference detected while resolving {names}")


class Dependency(ABC, Generic[T]):
    # Shared dependencies outlive any lifetime scope that resolves them and
    # must never be disposed by one.
    shared: bool = False

    @abstractmethod
    def resolve(self, container: "DependencyContainer", resolver: Resolver | None = None) -> T:
        """Produce an instance.

        Args:
            container: The container the registration was found in.
            resolver: Resolves factory parameters. Lifetime scopes pass their
                own resolve so nested scoped instances share the scope.
                Defaults to the container.
        """
        pass


class FactoryDependency(Dependency[T]):
    def __init__(self, factory: Callable[..., T]):
        self.factory = factory

    def resolve(self, container: "DependencyContainer", resolver: Resolver | None = None) -> T:
        return self.factory(**self.get_dependencies(resolver or container.resolve))

    def get_dependencies(self, resolver: Resolver) -> dict[str, Any]:
        return {
            k: resolver(v.annotation)
            for k, v in inspect.signature(self.factory).parameters.items()
            if v.annotation is not inspect.Parameter.empty and v.default is inspect.Parameter.empty
        }


class SingletonDependency(Dependency[T]):
    shared = True

    def __init__(self, factory: FactoryDependency[T]):
        self.factory = factory
        self.instance: T | None = None
        self._resolving: bool = False

    def resolve(self, container: "DependencyContainer", resolver: Resolver | None = None) -> T:
        # Singletons outlive scopes, so their parameters never come from one
        if self._resolving:
            raise DependencyCircularReferenceError.from_container(container)

        if self.instance is None:
            self._resolving = True
            try:
                self.instance = self.factory.resolve(container)
            finally:
                self._resolving = False
        return self.instance


class InstanceDependency(Dependency[T]):
    shared = True

    def __init__(self, instance: T):
        self.instance = instance

    def resolve(self, container: "DependencyContainer", resolver: Resolver | None = None) -> T:
        return self.instance


class DependencyContainer:
    def __init__(self, parent: Optional["DependencyContainer"] = None):
        self.dependencies: dict[type, Dependency[Any]] = {}
        self.parent = parent

    def child(self) -> "DependencyContainer":
        return DependencyContainer(self)

    def all_resolving(self) -> list[type]:
        return [
            k for k in self.dependencies if getattr(self.dependencies[k], "_resolving", False)
        ] + (self.parent.all_resolving() if self.parent else [])

    def lookup(self, dependency_type: type[T]) -> Dependency[T] | None:
        """Find the registration for a type, walking up to parent containers.

        Returns:
            The registered dependency, or None when the type is unknown.
        """
        if dependency_type in self.dependencies:
            return cast("Dependency[T]", self.dependencies[dependency_type])

        # Generic types (e.g., Session[Account]) fall back to their origin.
        origin = get_origin(dependency_type)
        if origin is not None and origin in self.dependencies:
            return cast("Dependency[T]", self.dependencies[origin])

        if self.parent is not None:
            return self.parent.lookup(dependency_type)
        return None

    def resolve(self, dependency_type: type[T]) -> T:
        # First check ourselves for the dependency and then fall back to the
        # parent container if it exists.
        if dependency_type in self.dependencies:
            return cast("T", self.dependencies[dependency_type].resolve(self))

        origin = get_origin(dependency_type)
        if origin is not None and origin in self.dependencies:
            return cast("T", self.dependencies[origin].resolve(self))

        if self.parent is not None:
            return self.parent.resolve(dependency_type)

        raise DependencyNotFoundError.from_type(dependency_type)

    def register(
        self,
        dependency_type: type[T],
        dependency: Dependency[T],
    ) -> None:
        self.dependencies[dependency_type] = dependency

    def register_factory(
        self,
        dependency_type: type[T],
        factory: Callable[..., T] | None = None,
    ) -> None:
        self.register(dependency_type, FactoryDependency(factory or dependency_type))

    def register_singleton(
        self, dependency_type: type[T], factory: Callable[..., T] | None = None
    ) -> None:
        factory_dependency = FactoryDependency(factory or dependency_type)
        self.register(dependency_type, SingletonDependency(factory_dependency))

    def register_instance(self, dependency_type: type[T], instance: T) -> None:
        self.register(dependency_type, InstanceDependency(instance))
