"""Cooperative cancellation for projection runs."""


class CancellationToken:
    """Signal asking a running projection to stop issuing further work.

    Cancellation is cooperative: the projector checks the token after each
    projection finishes handling a message and stops dispatching once it is
    set. It never interrupts a handler that is already running. Handlers
    that perform long I/O may check ``cancellation_requested`` themselves.

    Examples:
        >>> token = CancellationToken()
        >>> task = asyncio.create_task(projector.project(envelopes, token))
        >>> token.cancel()
        >>> outcome = await task
        >>> outcome.cancelled
        True
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancellation_requested(self) -> bool:
        """Whether ``cancel()`` has been called."""
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation. Calling this more than once has no effect."""
        self._cancelled = True

    @classmethod
    def none(cls) -> "CancellationToken":
        """Return a fresh token that nobody holds a reference to cancel."""
        return cls()

    def __repr__(self) -> str:
        return f"CancellationToken(cancellation_requested={self._cancelled})"
