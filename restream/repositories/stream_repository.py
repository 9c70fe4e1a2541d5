"""Stream store - SQLite implementation."""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List

from restream.errors import PersistenceError
from restream.models.domain import Stream, StreamStatus, ScheduleConfig
from restream.repositories.base import StreamStore

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, name, stream_key, video_path, status, schedule, "
    "started_at, stopped_at, created_at, last_elapsed_seconds"
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SqliteStreamStore(StreamStore):
    """
    Stream store persisted in a single SQLite file.

    One connection per operation, so the store can be shared across the
    request threads, the monitor thread and scheduler threads.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.migrate()

    @contextmanager
    def _connect(self):
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=10)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Database operation failed: {e}") from e
        finally:
            conn.close()

    def migrate(self) -> None:
        """Create the streams table, upgrading databases from older versions."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS streams (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    stream_key TEXT NOT NULL,
                    video_path TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'idle',
                    schedule TEXT NOT NULL,
                    started_at TEXT,
                    stopped_at TEXT,
                    created_at TEXT NOT NULL,
                    last_elapsed_seconds INTEGER
                )
            """)

            columns = {row["name"] for row in conn.execute("PRAGMA table_info(streams)")}
            if "last_elapsed_seconds" not in columns:
                logger.info("Adding last_elapsed_seconds column to %s", self.db_path)
                conn.execute("ALTER TABLE streams ADD COLUMN last_elapsed_seconds INTEGER")

    def insert(self, stream: Stream) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO streams ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    stream.id,
                    stream.name,
                    stream.stream_key,
                    stream.video_path,
                    stream.status.value,
                    stream.schedule.to_json(),
                    stream.started_at.isoformat() if stream.started_at else None,
                    stream.stopped_at.isoformat() if stream.stopped_at else None,
                    stream.created_at.isoformat(),
                    stream.last_elapsed_seconds,
                ),
            )

    def get_all(self) -> List[Stream]:
        """List all streams, sorted by creation date (newest first)."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM streams ORDER BY created_at DESC"
            ).fetchall()
        return [self._row_to_stream(row) for row in rows]

    def get(self, id: str) -> Optional[Stream]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM streams WHERE id = ?", (id,)
            ).fetchone()
        return self._row_to_stream(row) if row else None

    def update_status(self, id: str, status: StreamStatus) -> None:
        self._update_field(id, "status", status.value)

    def update_started_at(self, id: str) -> None:
        self._update_field(id, "started_at", _now_iso())

    def update_stopped_at(self, id: str) -> None:
        self._update_field(id, "stopped_at", _now_iso())

    def update_last_elapsed(self, id: str, seconds: int) -> None:
        self._update_field(id, "last_elapsed_seconds", int(seconds))

    def delete(self, id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM streams WHERE id = ?", (id,))
            return cursor.rowcount > 0

    def _update_field(self, id: str, column: str, value) -> None:
        # column names come from this module only, never from callers
        with self._connect() as conn:
            conn.execute(f"UPDATE streams SET {column} = ? WHERE id = ?", (value, id))

    @staticmethod
    def _row_to_stream(row: sqlite3.Row) -> Stream:
        """Build a Stream from a row; bad schedules degrade to manual."""
        created_at = _parse_timestamp(row["created_at"]) or datetime.fromtimestamp(0, timezone.utc)
        return Stream(
            id=row["id"],
            name=row["name"],
            stream_key=row["stream_key"],
            video_path=row["video_path"],
            status=StreamStatus.parse(row["status"]),
            schedule=ScheduleConfig.from_json(row["schedule"]),
            created_at=created_at,
            started_at=_parse_timestamp(row["started_at"]),
            stopped_at=_parse_timestamp(row["stopped_at"]),
            last_elapsed_seconds=row["last_elapsed_seconds"],
        )
