"""Projection contract and a routed base class for read-model builders.

A projection is an independent consumer of the message stream. It persists
its own progress (the next sequence number it needs) wherever it keeps its
read model, and the projector uses that progress to decide which messages
to deliver to it.
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar, get_args, get_origin

from .cancellation import CancellationToken
from .envelope import MessageEnvelope
from .routing import setup_message_routing
from .scope import ConnectionFactory

if TYPE_CHECKING:
    from .routing import MessageRouter

C = TypeVar("C")


class Projection(ABC, Generic[C]):
    """Contract every projection registered with a Projector must fulfil.

    **Progress:**
    ``get_next_sequence_number`` reports the sequence number the projection
    has not processed yet. It must not change anything and may be called
    any number of times.

    **Handling:**
    ``handle`` is only called with the envelope whose sequence number equals
    the projection's next sequence number. It processes the message if the
    projection cares about it and, in the same logical operation, advances
    the stored progress to ``sequence_number + 1``, even for messages it
    ignores. The projector checks this after every call and raises
    ProjectionContractViolationError when it does not hold.

    **Connections:**
    ``connection_type`` names the dependency resolved from the active
    lifetime scope. Handlers receive a zero-argument ``connection_factory``
    returning that connection; calls within one scope return the same
    instance. When a subclass is declared as ``Projection[Database]`` the
    connection type is inferred from the type argument.

    Example:
        >>> class OrderCountProjection(Projection[Database]):
        ...     async def get_next_sequence_number(self, connection_factory) -> int:
        ...         return await connection_factory().fetch_position("order_count")
        ...
        ...     async def handle(self, connection_factory, envelope, cancellation_token):
        ...         db = connection_factory()
        ...         async with db.transaction():
        ...             if isinstance(envelope.message, OrderPlaced):
        ...                 await db.increment("order_count")
        ...             await db.store_position("order_count", envelope.sequence_number + 1)
    """

    connection_type: ClassVar[type]

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        if "connection_type" in cls.__dict__:
            return
        for base in cls.__dict__.get("__orig_bases__", ()):
            origin = get_origin(base)
            args = get_args(base)
            if (
                isinstance(origin, type)
                and issubclass(origin, Projection)
                and args
                and isinstance(args[0], type)
            ):
                cls.connection_type = args[0]
                return

    @abstractmethod
    async def get_next_sequence_number(self, connection_factory: ConnectionFactory[C]) -> int:
        """Get the next sequence number needed by this projection.

        Args:
            connection_factory: Returns the projection's connection for the
                active lifetime scope.
        """
        ...

    @abstractmethod
    async def handle(
        self,
        connection_factory: ConnectionFactory[C],
        envelope: MessageEnvelope[Any],
        cancellation_token: CancellationToken,
    ) -> None:
        """Handle a message and advance the next sequence number.

        Args:
            connection_factory: Returns the projection's connection for the
                active lifetime scope.
            envelope: The envelope to handle.
            cancellation_token: Signals that the caller wants to stop.
                What a cancelled handler persists is up to the projection.
        """
        ...


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class MessageProjection(Projection[C]):
    """Projection that routes messages to ``@handles_message`` methods.

    Subclasses declare one handler per message type and implement how the
    next sequence number is loaded and stored through the connection. The
    base class takes care of advancing progress after every message,
    including messages without a handler, which keeps the projection within
    the contract the projector checks.

    Handlers take the message (or ``MessageEnvelope[Message]`` to receive the
    full envelope) followed by the connection. Handlers, as well as the
    load and store methods, may be sync or async.

    Example:
        >>> class AccountBalances(MessageProjection[BalanceStore]):
        ...     @handles_message
        ...     async def on_deposited(self, message: MoneyDeposited, store: BalanceStore):
        ...         await store.add(message.account_id, message.amount)
        ...
        ...     async def load_next_sequence_number(self, store: BalanceStore) -> int:
        ...         return await store.position(self.name)
        ...
        ...     async def store_next_sequence_number(self, store: BalanceStore, value: int):
        ...         await store.set_position(self.name, value)
    """

    _message_router: ClassVar["MessageRouter"]

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        cls._message_router = setup_message_routing(cls)

    @property
    def name(self) -> str:
        """Name used to key this projection's progress. Defaults to the class name."""
        return type(self).__name__

    async def get_next_sequence_number(self, connection_factory: ConnectionFactory[C]) -> int:
        return int(await _maybe_await(self.load_next_sequence_number(connection_factory())))

    async def handle(
        self,
        connection_factory: ConnectionFactory[C],
        envelope: MessageEnvelope[Any],
        cancellation_token: CancellationToken,
    ) -> None:
        connection = connection_factory()
        await _maybe_await(
            self._message_router.route(self, envelope.message, connection, envelope=envelope)
        )
        await _maybe_await(
            self.store_next_sequence_number(connection, envelope.sequence_number + 1)
        )

    @abstractmethod
    def load_next_sequence_number(self, connection: C) -> int | Awaitable[int]:
        """Load the stored next sequence number (0 for a fresh projection)."""
        ...

    @abstractmethod
    def store_next_sequence_number(self, connection: C, value: int) -> None | Awaitable[None]:
        """Persist the next sequence number."""
        ...
