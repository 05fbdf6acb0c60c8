import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .cancellation import CancellationToken
from .config import ProjectorConfiguration
from .context import ExecutionContext, reset_context, set_context
from .envelope import MessageEnvelope
from .errors import (
    ProjectionContractViolationError,
    ProjectorConfigurationError,
    SequenceNumberMismatchError,
)
from .projection import Projection
from .scope import ConnectionFactory, DependencyLifetimeScope, DependencyLifetimeScopeFactory

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound=MessageEnvelope)


@dataclass(frozen=True)
class ProjectionOutcome:
    """Result of a single ``Projector.project`` call.

    Attributes:
        projected: Number of envelopes fully projected to every projection.
        next_sequence_number: The projector's watermark after the call, or
            None when it was dropped and will be recomputed on next use.
        cancelled: True if the call stopped early on a cancellation request.
    """

    projected: int
    next_sequence_number: int | None
    cancelled: bool = False


class Projector(Generic[E]):
    """Projects an ordered message stream to a fixed set of projections.

    The projector keeps a single watermark: the next sequence number it
    will accept. It is computed lazily as the minimum of every projection's
    own next sequence number, so no projection is ever moved past messages
    it has not seen. Each accepted envelope is handed to exactly the
    projections waiting for that sequence number, and each of them must
    report ``sequence_number + 1`` afterwards.

    **Batches:**
    Every ``project`` call opens one lifetime scope and shares it across all
    envelopes and projections in the call. Each projection resolves its own
    connection from that scope. The scope is disposed when the call ends,
    whether it succeeds, raises or is cancelled.

    **Failures:**
    Nothing is rolled back. Envelopes already projected in a failed batch
    stay applied and the watermark reflects them.

    **Cancellation:**
    The token is checked before each envelope and after each handler
    returns. A stop after a handler may leave the in-flight envelope applied
    to only some projections; the watermark is then dropped and recomputed
    from the projections on next use, and the equality check guarantees the
    redelivered envelope only reaches the projections that still need it.

    **Concurrency:**
    A projector is not safe for concurrent use. Serialize calls, for example
    with ``SynchronizedProjector``.

    Example:
        >>> projector = Projector([balances, statistics], scope_factory)
        >>> position = await projector.get_next_sequence_number()
        >>> envelopes = await source.read_from(position, limit=100)
        >>> outcome = await projector.project(envelopes)
        >>> outcome.next_sequence_number
        position + len(envelopes)
    """

    def __init__(
        self,
        projections: Iterable[Projection[Any]],
        dependency_lifetime_scope_factory: DependencyLifetimeScopeFactory,
        configuration: ProjectorConfiguration | None = None,
    ):
        """Initialize the projector.

        Args:
            projections: The projections to feed. Duplicates (by identity)
                are registered once.
            dependency_lifetime_scope_factory: Opens the scopes projections
                resolve their connections from.
            configuration: Runtime settings. Defaults are read from the
                environment when omitted.

        Raises:
            ProjectorConfigurationError: If there are no projections, the
                scope factory is missing, or a projection has no
                connection type.
        """
        if projections is None:
            raise ProjectorConfigurationError.no_projections()
        if dependency_lifetime_scope_factory is None:
            raise ProjectorConfigurationError.missing_scope_factory()

        unique: dict[int, Projection[Any]] = {}
        for projection in projections:
            unique.setdefault(id(projection), projection)
        if not unique:
            raise ProjectorConfigurationError.no_projections()

        for projection in unique.values():
            if getattr(projection, "connection_type", None) is None:
                raise ProjectorConfigurationError.missing_connection_type(projection)

        self._projections = tuple(unique.values())
        self._dependency_lifetime_scope_factory = dependency_lifetime_scope_factory
        self.configuration = configuration or ProjectorConfiguration()
        self._next_sequence_number: int | None = None

    @property
    def projections(self) -> tuple[Projection[Any], ...]:
        return self._projections

    @property
    def dependency_lifetime_scope_factory(self) -> DependencyLifetimeScopeFactory:
        return self._dependency_lifetime_scope_factory

    def invalidate_next_sequence_number(self) -> None:
        """Drop the cached watermark so the next call recomputes it.

        Use this after changing a projection's progress outside the
        projector, e.g. when rebuilding a read model from scratch.
        """
        self._next_sequence_number = None

    async def get_next_sequence_number(self) -> int:
        """Get the next sequence number needed by the most out-dated projection.

        The value is cached after the first call and advanced in place as
        envelopes are projected.
        """
        if self._next_sequence_number is not None:
            return self._next_sequence_number

        async with self._dependency_lifetime_scope_factory.begin_lifetime_scope() as scope:
            positions = [
                await projection.get_next_sequence_number(
                    self._connection_factory(scope, projection)
                )
                for projection in self._projections
            ]
            # Set inside the scope so a failed release keeps the computed value
            self._next_sequence_number = min(positions)

        LOGGER.debug(
            "Computed next sequence number",
            extra={
                "projector": self.configuration.name,
                "next_sequence_number": self._next_sequence_number,
            },
        )
        return self._next_sequence_number

    async def project(
        self,
        envelopes: E | Sequence[E],
        cancellation_token: CancellationToken | None = None,
    ) -> ProjectionOutcome:
        """Project one envelope, or an ordered batch of envelopes.

        Args:
            envelopes: A single envelope or a sequence whose sequence numbers
                form one ascending, gapless run starting at the watermark.
            cancellation_token: Optional token to stop the batch early.

        Returns:
            What the call achieved, including the resulting watermark.

        Raises:
            SequenceNumberMismatchError: If an envelope does not carry the
                expected sequence number. Earlier envelopes stay projected.
            ProjectionContractViolationError: If a projection did not
                advance its next sequence number by exactly one.
            Any exception raised by a projection, after the scope has been
                disposed.
        """
        if isinstance(envelopes, MessageEnvelope):
            envelopes = (envelopes,)
        token = cancellation_token or CancellationToken.none()

        next_sequence_number = await self.get_next_sequence_number()
        projected = 0

        async with self._dependency_lifetime_scope_factory.begin_lifetime_scope() as scope:
            for envelope in envelopes:
                if token.cancellation_requested:
                    return self._cancelled(projected, next_sequence_number)

                if envelope.sequence_number != next_sequence_number:
                    raise SequenceNumberMismatchError.from_envelope(envelope, next_sequence_number)

                if not await self._project_envelope(scope, envelope, token):
                    # The in-flight envelope may be partially applied.
                    self._next_sequence_number = None
                    return self._cancelled(projected, None)

                next_sequence_number += 1
                self._next_sequence_number = next_sequence_number
                projected += 1

        return ProjectionOutcome(projected=projected, next_sequence_number=next_sequence_number)

    def synchronized(self) -> "SynchronizedProjector[E]":
        """Wrap this projector so concurrent callers are serialized."""
        return SynchronizedProjector(self)

    async def _project_envelope(
        self,
        scope: DependencyLifetimeScope,
        envelope: E,
        cancellation_token: CancellationToken,
    ) -> bool:
        """Hand an envelope to every projection waiting for it.

        Returns:
            False if cancellation was requested while handling, True once all
            waiting projections have handled the envelope.
        """
        context_token = set_context(ExecutionContext.for_envelope(envelope))
        try:
            for projection in self._projections:
                connection_factory = self._connection_factory(scope, projection)
                expected = await projection.get_next_sequence_number(connection_factory)
                if expected != envelope.sequence_number:
                    continue

                LOGGER.log(
                    self.configuration.level,
                    "Projecting message",
                    extra=self._log_extra(envelope, projection),
                )
                await projection.handle(connection_factory, envelope, cancellation_token)
                if cancellation_token.cancellation_requested:
                    return False

                actual = await projection.get_next_sequence_number(connection_factory)
                if actual != envelope.sequence_number + 1:
                    raise ProjectionContractViolationError(
                        projection, envelope.sequence_number, actual, envelope.message_type
                    )
        finally:
            reset_context(context_token)
        return True

    def _cancelled(self, projected: int, next_sequence_number: int | None) -> ProjectionOutcome:
        LOGGER.info(
            "Projection cancelled",
            extra={
                "projector": self.configuration.name,
                "projected": projected,
                "next_sequence_number": next_sequence_number,
            },
        )
        return ProjectionOutcome(
            projected=projected,
            next_sequence_number=next_sequence_number,
            cancelled=True,
        )

    def _log_extra(self, envelope: E, projection: Projection[Any]) -> dict[str, Any]:
        # Payload contents are never logged
        extra: dict[str, Any] = {
            "projector": self.configuration.name,
            "projection": type(projection).__name__,
            "sequence_number": envelope.sequence_number,
            "message_type": envelope.message_type,
        }
        if envelope.correlation_id is not None:
            extra["correlation_id"] = str(envelope.correlation_id)
        return extra

    @staticmethod
    def _connection_factory(
        scope: DependencyLifetimeScope, projection: Projection[Any]
    ) -> ConnectionFactory[Any]:
        connection_type = projection.connection_type
        return lambda: scope.resolve(connection_type)


class SynchronizedProjector(Generic[E]):
    """Serializes access to a Projector with an asyncio lock.

    A projector's watermark is plain instance state. When several tasks
    feed the same projector (a poller and an on-demand catch-up, say) wrap
    it so only one call runs at a time.

    Example:
        >>> projector = builder.build().synchronized()
        >>> await asyncio.gather(projector.project(batch_a), projector.project(batch_b))
    """

    def __init__(self, projector: Projector[E]):
        self.projector = projector
        self._lock = asyncio.Lock()

    async def get_next_sequence_number(self) -> int:
        async with self._lock:
            return await self.projector.get_next_sequence_number()

    async def project(
        self,
        envelopes: E | Sequence[E],
        cancellation_token: CancellationToken | None = None,
    ) -> ProjectionOutcome:
        async with self._lock:
            return await self.projector.project(envelopes, cancellation_token)
