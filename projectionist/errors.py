"""Errors raised by the projector and its collaborators."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .envelope import MessageEnvelope


class ProjectorError(Exception):
    """Base class for all projector errors."""


class ProjectorConfigurationError(ProjectorError, ValueError):
    """Raised when a projector is constructed with an invalid setup."""

    @classmethod
    def no_projections(cls) -> "ProjectorConfigurationError":
        return cls("No projections registered")

    @classmethod
    def missing_scope_factory(cls) -> "ProjectorConfigurationError":
        return cls("A dependency lifetime scope factory is required")

    @classmethod
    def missing_connection_type(cls, projection: object) -> "ProjectorConfigurationError":
        return cls(f"Projection {type(projection).__name__} does not declare a connection_type")


class SequenceNumberMismatchError(ProjectorError, ValueError):
    """Raised when a message arrives out of order.

    The projector only accepts the message whose sequence number equals its
    current watermark. Messages already projected in the same batch stay
    applied.

    Attributes:
        expected: The sequence number the projector was waiting for.
        actual: The sequence number carried by the rejected envelope.
        message_type: Class name of the rejected message.
    """

    def __init__(self, expected: int, actual: int, message_type: str):
        super().__init__(
            f"Message {message_type} has invalid sequence number {actual} instead of {expected}"
        )
        self.expected = expected
        self.actual = actual
        self.message_type = message_type

    @classmethod
    def from_envelope(
        cls, envelope: "MessageEnvelope[Any]", expected: int
    ) -> "SequenceNumberMismatchError":
        return cls(expected, envelope.sequence_number, envelope.message_type)


class ProjectionContractViolationError(ProjectorError, RuntimeError):
    """Raised when a projection does not advance its progress by exactly one.

    This signals a bug in the projection, not a transient failure, so the
    projector never retries it.

    Attributes:
        projection: The offending projection instance.
        sequence_number: Sequence number of the message that was handled.
        expected: The next sequence number the projection should report.
        actual: The next sequence number the projection did report.
    """

    def __init__(
        self,
        projection: object,
        sequence_number: int,
        actual: int,
        message_type: str,
    ):
        self.projection = projection
        self.sequence_number = sequence_number
        self.expected = sequence_number + 1
        self.actual = actual
        super().__init__(
            f"Projection {type(projection).__name__} did not increment its next sequence "
            f"number ({sequence_number}) after processing message {message_type}: "
            f"expected {self.expected}, got {actual}"
        )
