"""Stream store - in-memory implementation."""

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Dict, List

from restream.models.domain import Stream, StreamStatus
from restream.repositories.base import StreamStore


class InMemoryStreamStore(StreamStore):
    """
    Stream store backed by a dict.

    Current use: tests and throwaway sessions
    Rationale: same contract as the SQLite store without touching disk
    """

    def __init__(self):
        self._streams: Dict[str, Stream] = {}
        self._lock = threading.Lock()

    def insert(self, stream: Stream) -> None:
        with self._lock:
            self._streams[stream.id] = replace(stream, elapsed_seconds=None)

    def get_all(self) -> List[Stream]:
        """List all streams, newest first."""
        with self._lock:
            streams = [replace(s) for s in self._streams.values()]
        return sorted(streams, key=lambda s: s.created_at, reverse=True)

    def get(self, id: str) -> Optional[Stream]:
        with self._lock:
            stream = self._streams.get(id)
            return replace(stream) if stream else None

    def update_status(self, id: str, status: StreamStatus) -> None:
        self._update(id, status=status)

    def update_started_at(self, id: str) -> None:
        self._update(id, started_at=datetime.now(timezone.utc))

    def update_stopped_at(self, id: str) -> None:
        self._update(id, stopped_at=datetime.now(timezone.utc))

    def update_last_elapsed(self, id: str, seconds: int) -> None:
        self._update(id, last_elapsed_seconds=seconds)

    def delete(self, id: str) -> bool:
        """Delete stream from memory."""
        with self._lock:
            if id in self._streams:
                del self._streams[id]
                return True
            return False

    def _update(self, id: str, **fields) -> None:
        # Updating a missing row is a no-op, matching SQL UPDATE semantics
        with self._lock:
            stream = self._streams.get(id)
            if stream:
                self._streams[id] = replace(stream, **fields)
