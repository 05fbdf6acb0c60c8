"""projectionist - ordered message projection for independent read models.

This module provides the public API for feeding a strictly ordered message
stream to projections that each track their own progress.
"""

from .builder import ProjectorBuilder
from .cancellation import CancellationToken
from .config import ProjectorConfiguration
from .container import DependencyContainer, DependencyNotFoundError
from .context import ExecutionContext, get_context
from .envelope import MessageEnvelope
from .errors import (
    ProjectionContractViolationError,
    ProjectorConfigurationError,
    ProjectorError,
    SequenceNumberMismatchError,
)
from .progress import InMemoryProgressBackend, ProgressBackend
from .projection import MessageProjection, Projection
from .projector import ProjectionOutcome, Projector, SynchronizedProjector
from .routing import handles_message
from .scope import (
    ContainerLifetimeScopeFactory,
    DependencyLifetimeScope,
    DependencyLifetimeScopeFactory,
    DependencyResolvedEventArgs,
)

__all__ = [
    # Projector
    "Projector",
    "ProjectorBuilder",
    "ProjectionOutcome",
    "SynchronizedProjector",
    "ProjectorConfiguration",
    "CancellationToken",
    # Messages and projections
    "MessageEnvelope",
    "Projection",
    "MessageProjection",
    "handles_message",
    "ExecutionContext",
    "get_context",
    # Progress
    "ProgressBackend",
    "InMemoryProgressBackend",
    # Lifetime scopes
    "DependencyContainer",
    "DependencyLifetimeScope",
    "DependencyLifetimeScopeFactory",
    "ContainerLifetimeScopeFactory",
    "DependencyResolvedEventArgs",
    # Errors
    "ProjectorError",
    "ProjectorConfigurationError",
    "SequenceNumberMismatchError",
    "ProjectionContractViolationError",
    "DependencyNotFoundError",
]
