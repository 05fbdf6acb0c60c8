"""Progress backends for projections that keep their position outside their read model."""

from abc import ABC, abstractmethod


class ProgressBackend(ABC):
    """Abstract interface for persisting a projection's next sequence number.

    Projections usually store their position next to their read model, in
    the same transaction. This interface covers the case where the position
    lives in a shared store keyed by projection name.

    Implementations should handle:
    - Atomic updates (a save replaces the previous value entirely)
    - Independence (projections never see each other's progress)
    """

    @abstractmethod
    async def load_next_sequence_number(self, projection_name: str) -> int:
        """Load the next sequence number for a projection.

        Args:
            projection_name: Name of the projection

        Returns:
            The stored value, or 0 if the projection has never been saved
        """
        ...

    @abstractmethod
    async def save_next_sequence_number(self, projection_name: str, value: int) -> None:
        """Save the next sequence number for a projection.

        Args:
            projection_name: Name of the projection
            value: The next sequence number the projection needs
        """
        ...


class InMemoryProgressBackend(ProgressBackend):
    """In-memory progress storage for testing.

    Not suitable for production use as progress is lost on restart.
    """

    def __init__(self) -> None:
        self._positions: dict[str, int] = {}

    async def load_next_sequence_number(self, projection_name: str) -> int:
        return self._positions.get(projection_name, 0)

    async def save_next_sequence_number(self, projection_name: str, value: int) -> None:
        if value < 0:
            raise ValueError("next sequence number must not be negative")
        self._positions[projection_name] = value
