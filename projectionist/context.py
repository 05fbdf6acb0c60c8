import contextvars
from dataclasses import dataclass
from typing import Any

from ulid import ULID

from .envelope import MessageEnvelope


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable context describing the message currently being projected.

    The projector restores this context from each envelope before calling a
    projection's handler, so handlers (and anything they call) can tag logs
    or outgoing messages with the originating correlation ID.

    Attributes:
        correlation_id: ID that traces the entire logical operation. Copied
            from the envelope being projected.
        causation_id: ID of what directly caused the current work. While a
            message is projected this is the envelope's own ID.
        sequence_number: Stream position of the envelope being projected.

    Examples:
        Read the context inside a handler:

        >>> @handles_message
        ... async def on_deposit(self, message: MoneyDeposited, connection: Db):
        ...     ctx = get_context()
        ...     logger.info("deposit", extra={"correlation_id": str(ctx.correlation_id)})
    """

    correlation_id: ULID | None = None
    causation_id: ULID | None = None
    sequence_number: int | None = None

    @classmethod
    def for_envelope(cls, envelope: MessageEnvelope[Any]) -> "ExecutionContext":
        """Create the context for projecting an envelope.

        Args:
            envelope: The envelope about to be handled.

        Returns:
            A context whose causation is the envelope itself.
        """
        return cls(
            correlation_id=envelope.correlation_id,
            causation_id=envelope.id,
            sequence_number=envelope.sequence_number,
        )


# Context variable for storing the current execution context
_context: contextvars.ContextVar[ExecutionContext | None] = contextvars.ContextVar(
    "execution_context", default=None
)


def get_context() -> ExecutionContext:
    """Get the current execution context.

    If no context has been set, returns an empty ExecutionContext with all fields None.
    """
    ctx = _context.get()
    if ctx is None:
        return ExecutionContext()
    return ctx


def set_context(context: ExecutionContext) -> contextvars.Token[ExecutionContext | None]:
    """Set the current execution context.

    Args:
        context: The ExecutionContext to set.

    Returns:
        A token that restores the previous context when passed to
        ``reset_context``.
    """
    return _context.set(context)


def reset_context(token: contextvars.Token[ExecutionContext | None]) -> None:
    """Restore the context that was active before ``set_context``."""
    _context.reset(token)


def clear_context() -> None:
    """Clear the current execution context.

    This is useful for cleanup or testing.
    """
    _context.set(None)
