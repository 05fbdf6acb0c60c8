from datetime import datetime, timezone
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID

T = TypeVar("T")


def utc_now() -> datetime:
    """Get the current UTC timestamp.

    Returns:
        Current datetime with UTC timezone information
    """
    return datetime.now(tz=timezone.utc)


class MessageEnvelope(BaseModel, Generic[T]):
    """Immutable pairing of a domain message with its stream position.

    The envelope is produced upstream (by whatever transport reads the
    message stream) and handed to the projector. The projector only ever
    looks at ``sequence_number``; the payload is opaque to it and is routed
    to projections as-is.

    Sequence numbers are zero-based, unique and strictly increasing by one
    across the whole stream. The projector rejects envelopes that do not
    match its current watermark.

    Subclass this model to carry extra transport information (stream name,
    headers, ...) through to projection handlers.

    Type Parameters:
        T: Type of the wrapped message

    Attributes:
        id: Unique identifier for this envelope
        message: The wrapped domain message
        sequence_number: Position in the stream (zero-based, gapless)
        timestamp: When the message was recorded (UTC timezone)
        correlation_id: Optional correlation ID of the originating operation
        causation_id: Optional ID of what directly caused this message

    Examples:
        >>> envelope = MessageEnvelope(
        ...     message=AccountOpened(owner="Alice"),
        ...     sequence_number=0,
        ... )
        >>> envelope.message_type
        'AccountOpened'
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: ULID = Field(
        default_factory=ULID,
        description="Unique identifier for this envelope",
    )
    message: T = Field(description="The wrapped domain message")
    sequence_number: int = Field(
        ge=0,
        description="Position in the stream (zero-based, monotonically increasing)",
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the message was recorded (UTC timezone)",
    )
    correlation_id: ULID | None = Field(
        default=None,
        description="Correlation ID for tracing the entire logical operation",
    )
    causation_id: ULID | None = Field(
        default=None,
        description="ID of what directly caused this message",
    )

    @property
    def message_type(self) -> str:
        """Class name of the wrapped message, used in errors and logs."""
        return type(self.message).__name__
