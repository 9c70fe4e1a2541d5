"""Stream service - command layer between the API and the stream manager."""

import logging
import threading
from typing import Callable, List, Optional

from restream.config import get_db_path, get_log_dir
from restream.errors import NotInitializedError, StreamNotFoundError
from restream.models.domain import (
    AbsoluteConfig,
    DurationConfig,
    ScheduleConfig,
    Stream,
)
from restream.models.dto import StreamCreateRequest, StreamDTO, ScheduleDTO
from restream.repositories.stream_repository import SqliteStreamStore
from restream.stream.manager import StreamManager

logger = logging.getLogger(__name__)


def default_manager_factory(instance_id: str) -> StreamManager:
    """Build a manager backed by the instance's SQLite file."""
    db_path = get_db_path(instance_id)
    logger.info("Initializing database at: %s", db_path)
    return StreamManager(SqliteStreamStore(db_path), log_dir=get_log_dir())


class StreamService:
    """
    Service exposing stream operations to the outside world.

    Responsibilities:
    - Bind to an application instance (one store per instance)
    - Translate request DTOs into domain calls and results back into DTOs
    - Refuse every operation until initialize() has run

    Does NOT:
    - Handle HTTP requests (that's API layer)
    - Touch processes or timers directly (that's StreamManager)
    """

    def __init__(self, manager_factory: Callable[[str], StreamManager] = default_manager_factory):
        self._manager_factory = manager_factory
        self._manager: Optional[StreamManager] = None
        self._instance_id: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def instance_id(self) -> Optional[str]:
        return self._instance_id

    @property
    def manager(self) -> StreamManager:
        manager = self._manager
        if manager is None:
            raise NotInitializedError()
        return manager

    def initialize(self, instance_id: str) -> None:
        """
        Open the instance's store, recover stale streams and start monitoring.

        Re-initializing with the same instance id is a no-op; a different id
        shuts the current manager down first.
        """
        with self._lock:
            if self._manager is not None and self._instance_id == instance_id:
                return

            previous = self._manager
            self._manager = None
            if previous is not None:
                previous.shutdown()

            manager = self._manager_factory(instance_id)
            recovered = manager.recover_stale_streams()
            if recovered:
                logger.info("Recovered %d stale stream(s)", len(recovered))
            manager.start_monitor()

            self._manager = manager
            self._instance_id = instance_id

    def list_streams(self) -> List[StreamDTO]:
        return [self._to_dto(s) for s in self.manager.get_streams()]

    def get_stream(self, stream_id: str) -> StreamDTO:
        stream = self.manager.get_stream(stream_id)
        if stream is None:
            raise StreamNotFoundError(stream_id)
        return self._to_dto(stream)

    def add_stream(self, request: StreamCreateRequest) -> StreamDTO:
        stream = self.manager.add_stream(
            name=request.name,
            stream_key=request.stream_key,
            video_path=request.video_path,
            schedule=self._to_schedule(request.schedule),
            start_immediately=request.start_immediately,
        )
        return self._to_dto(stream)

    def start_stream(self, stream_id: str) -> StreamDTO:
        self.manager.start_stream(stream_id)
        return self.get_stream(stream_id)

    def stop_stream(self, stream_id: str) -> bool:
        """Returns True if the stream was running and has been stopped."""
        return self.manager.stop_stream(stream_id)

    def delete_stream(self, stream_id: str) -> None:
        self.manager.delete_stream(stream_id)

    def shutdown(self) -> None:
        """Stop every live stream and the monitor."""
        with self._lock:
            manager = self._manager
            self._manager = None
            self._instance_id = None
        if manager is not None:
            manager.shutdown()

    @staticmethod
    def _to_schedule(dto: ScheduleDTO) -> ScheduleConfig:
        """Convert schedule DTO to domain value."""
        return ScheduleConfig(
            type=dto.type,
            duration=DurationConfig(**dto.duration.model_dump()) if dto.duration else None,
            absolute=AbsoluteConfig(**dto.absolute.model_dump()) if dto.absolute else None,
        )

    @staticmethod
    def _to_dto(stream: Stream) -> StreamDTO:
        """Convert domain entity to DTO."""
        return StreamDTO.model_validate(stream)


# Global instance for easy import
_stream_service = None

def get_stream_service() -> StreamService:
    """Get the global stream service instance.

    Returns:
        StreamService instance
    """
    global _stream_service
    if _stream_service is None:
        _stream_service = StreamService()
    return _stream_service
