import inspect
from collections.abc import Callable
from functools import singledispatch
from typing import Any, TypeVar, get_args, get_origin

from .envelope import MessageEnvelope

T = TypeVar("T")

# Marker for handlers that want the MessageEnvelope wrapper, not just payload
_WANTS_ENVELOPE_ATTR = "_wants_envelope"
_IS_MESSAGE_HANDLER_ATTR = "_is_message_handler"
_HANDLES_MESSAGE_TYPE_ATTR = "_handles_message_type"


def _extract_handler_type(func: Callable[..., Any], param_index: int = 1) -> tuple[type, bool]:
    """Extract the message type annotation from a handler method.

    Detects whether the handler wants the MessageEnvelope wrapper
    (annotated as ``MessageEnvelope[T]``) or just the payload (``T``).

    Args:
        func: The handler method to inspect.
        param_index: Index of the parameter to extract
            (0=self, 1=first arg, etc.)

    Returns:
        A tuple of (payload_type, wants_envelope).

    Raises:
        ValueError: If the parameter is missing or lacks a type annotation.
    """
    func_name = getattr(func, "__name__", repr(func))
    params = list(inspect.signature(func).parameters.values())

    if len(params) <= param_index:
        raise ValueError(f"Handler {func_name} must have at least {param_index + 1} parameters")

    param = params[param_index]
    if param.annotation is inspect.Parameter.empty:
        raise ValueError(f"Handler {func_name} parameter '{param.name}' must have a type annotation")
    annotation = param.annotation

    if get_origin(annotation) is MessageEnvelope and get_args(annotation):
        return (get_args(annotation)[0], True)

    # Pydantic creates a concrete subclass for MessageEnvelope[T] at runtime.
    # A bare MessageEnvelope annotation handles every message.
    if isinstance(annotation, type) and issubclass(annotation, MessageEnvelope):
        metadata = getattr(annotation, "__pydantic_generic_metadata__", None) or {}
        if metadata.get("args"):
            return (metadata["args"][0], True)
        return (object, True)

    return (annotation, False)


class MessageRouter:
    """Routes messages to type-specific handler methods.

    Uses singledispatch, so a handler registered for a base class also
    receives subclasses of it. Unregistered message types are ignored:
    projections only react to the messages they care about.
    """

    __slots__ = ("_dispatch",)

    def __init__(self) -> None:
        @singledispatch
        def dispatch(message: object, instance: object, *args: Any, **kwargs: Any) -> object:
            return None

        self._dispatch = dispatch

    def register(
        self,
        message_type: type,
        handler: Callable[..., object],
        wants_envelope: bool = False,
    ) -> None:
        """Register a handler for a specific message type.

        Args:
            message_type: The message class this handler processes.
            handler: The method to call when handling this message type.
            wants_envelope: If True, the handler receives the envelope passed
                via the 'envelope' kwarg instead of the bare payload.
        """
        if wants_envelope:

            def envelope_wrapper(
                msg: object, inst: object, *args: Any, h: Any = handler, **kwargs: Any
            ) -> object:
                envelope = kwargs.pop("envelope", None)
                return h(inst, envelope if envelope is not None else msg, *args, **kwargs)

            self._dispatch.register(message_type)(envelope_wrapper)
        else:

            def payload_wrapper(
                msg: object, inst: object, *args: Any, h: Any = handler, **kwargs: Any
            ) -> object:
                kwargs.pop("envelope", None)
                return h(inst, msg, *args, **kwargs)

            self._dispatch.register(message_type)(payload_wrapper)

    def route(self, instance: Any, message: Any, *args: Any, **kwargs: Any) -> object:
        """Route a message to its registered handler.

        Args:
            instance: The instance to call the handler on (self).
            message: The payload to route on.
            *args: Additional positional arguments to pass to handler.
            **kwargs: Additional keyword arguments. Pass envelope=<MessageEnvelope>
                to provide the full wrapper to handlers that want it.

        Returns:
            The result of the handler method, or None for unregistered types.
        """
        return self._dispatch(message, instance, *args, **kwargs)


def handles_message(func: Callable[..., T]) -> Callable[..., T]:
    """Decorator marking a method as a message handler (for projections).

    The message type is extracted from the annotation of the first parameter
    after ``self``. The second parameter receives the projection's connection.

    Example:
        >>> class BalanceProjection(MessageProjection[Database]):
        ...     @handles_message
        ...     async def on_deposit(self, message: MoneyDeposited, db: Database):
        ...         await db.increment(message.account_id, message.amount)
        ...
        ...     @handles_message
        ...     async def on_opened(self, envelope: MessageEnvelope[AccountOpened], db: Database):
        ...         await db.insert(envelope.message.account_id, opened_at=envelope.timestamp)
    """
    message_type, wants_envelope = _extract_handler_type(func, param_index=1)
    setattr(func, _HANDLES_MESSAGE_TYPE_ATTR, message_type)
    setattr(func, _IS_MESSAGE_HANDLER_ATTR, True)
    setattr(func, _WANTS_ENVELOPE_ATTR, wants_envelope)
    return func


def setup_message_routing(cls: type) -> MessageRouter:
    """Set up message routing for a projection class.

    Scans the class hierarchy for @handles_message methods. Methods on a
    subclass take precedence over same-typed handlers on its bases.

    Args:
        cls: The class to set up routing for.

    Returns:
        A configured MessageRouter.
    """
    router = MessageRouter()

    # Walk base classes first so subclass handlers override them
    for klass in reversed(cls.__mro__):
        for value in klass.__dict__.values():
            if getattr(value, _IS_MESSAGE_HANDLER_ATTR, False) is True:
                router.register(
                    getattr(value, _HANDLES_MESSAGE_TYPE_ATTR),
                    value,
                    wants_envelope=getattr(value, _WANTS_ENVELOPE_ATTR, False),
                )

    return router
