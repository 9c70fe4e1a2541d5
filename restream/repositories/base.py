"""Base repository interface."""

from abc import ABC, abstractmethod
from typing import Optional, List

from restream.models.domain import Stream, StreamStatus


class StreamStore(ABC):
    """
    Base stream store interface.

    Abstracts data access - could be SQLite, memory, etc.
    Follows Repository pattern for easy testing and swapping implementations.
    Field updates are individual writes; no transactions span them.
    """

    @abstractmethod
    def insert(self, stream: Stream) -> None:
        """Insert a new stream record."""
        pass

    @abstractmethod
    def get_all(self) -> List[Stream]:
        """List all streams, newest first."""
        pass

    @abstractmethod
    def get(self, id: str) -> Optional[Stream]:
        """Get stream by ID."""
        pass

    @abstractmethod
    def update_status(self, id: str, status: StreamStatus) -> None:
        pass

    @abstractmethod
    def update_started_at(self, id: str) -> None:
        """Set started_at to now."""
        pass

    @abstractmethod
    def update_stopped_at(self, id: str) -> None:
        """Set stopped_at to now."""
        pass

    @abstractmethod
    def update_last_elapsed(self, id: str, seconds: int) -> None:
        pass

    @abstractmethod
    def delete(self, id: str) -> bool:
        """Delete stream by ID. Returns True if deleted, False if not found."""
        pass
