"""Tests for the stream stores."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from restream.errors import PersistenceError
from restream.models.domain import (
    AbsoluteConfig,
    DurationConfig,
    ScheduleConfig,
    ScheduleType,
    Stream,
    StreamStatus,
)
from restream.repositories.memory_repository import InMemoryStreamStore
from restream.repositories.stream_repository import SqliteStreamStore


def make_stream(id="s1", minutes_ago=0, **kwargs) -> Stream:
    defaults = dict(
        id=id,
        name=f"Stream {id}",
        stream_key=f"key-{id}",
        video_path="/videos/loop.mp4",
        status=StreamStatus.IDLE,
        schedule=ScheduleConfig.manual(),
        created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )
    defaults.update(kwargs)
    return Stream(**defaults)


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStreamStore()
    return SqliteStreamStore(tmp_path / "streams.db")


class TestStreamStore:
    """Behaviour shared by every store."""

    def test_insert_and_get(self, any_store):
        schedule = ScheduleConfig(
            type=ScheduleType.DURATION,
            duration=DurationConfig(hours=1, minutes=30, seconds=0),
        )
        any_store.insert(make_stream(schedule=schedule))

        stream = any_store.get("s1")

        assert stream.name == "Stream s1"
        assert stream.stream_key == "key-s1"
        assert stream.status == StreamStatus.IDLE
        assert stream.schedule == schedule
        assert stream.started_at is None
        assert stream.last_elapsed_seconds is None

    def test_get_missing_returns_none(self, any_store):
        assert any_store.get("nope") is None

    def test_get_all_newest_first(self, any_store):
        any_store.insert(make_stream("old", minutes_ago=10))
        any_store.insert(make_stream("new", minutes_ago=0))
        any_store.insert(make_stream("mid", minutes_ago=5))

        assert [s.id for s in any_store.get_all()] == ["new", "mid", "old"]

    def test_field_updates(self, any_store):
        any_store.insert(make_stream())

        any_store.update_status("s1", StreamStatus.LIVE)
        any_store.update_started_at("s1")
        any_store.update_stopped_at("s1")
        any_store.update_last_elapsed("s1", 42)

        stream = any_store.get("s1")
        assert stream.status == StreamStatus.LIVE
        assert stream.started_at is not None
        assert stream.started_at.tzinfo is not None
        assert stream.stopped_at is not None
        assert stream.last_elapsed_seconds == 42

    def test_update_missing_is_noop(self, any_store):
        any_store.update_status("nope", StreamStatus.LIVE)
        assert any_store.get("nope") is None

    def test_delete(self, any_store):
        any_store.insert(make_stream())

        assert any_store.delete("s1") is True
        assert any_store.get("s1") is None
        assert any_store.delete("s1") is False

    def test_returned_streams_are_copies(self, any_store):
        any_store.insert(make_stream())

        stream = any_store.get("s1")
        stream.status = StreamStatus.ERROR

        assert any_store.get("s1").status == StreamStatus.IDLE


class TestSqliteStreamStore:
    """SQLite-specific behaviour."""

    def test_absolute_schedule_round_trips(self, tmp_path):
        store = SqliteStreamStore(tmp_path / "streams.db")
        schedule = ScheduleConfig(
            type=ScheduleType.ABSOLUTE,
            absolute=AbsoluteConfig(datetime="2030-01-15T14:30", timezone="Europe/Berlin"),
        )
        store.insert(make_stream(schedule=schedule))

        reopened = SqliteStreamStore(tmp_path / "streams.db")

        assert reopened.get("s1").schedule == schedule

    def test_bad_schedule_degrades_to_manual(self, tmp_path):
        db_path = tmp_path / "streams.db"
        store = SqliteStreamStore(db_path)
        store.insert(make_stream())

        with sqlite3.connect(db_path) as conn:
            conn.execute("UPDATE streams SET schedule = 'not json' WHERE id = 's1'")

        assert store.get("s1").schedule.type == ScheduleType.MANUAL

    def test_schedule_missing_sub_record_degrades_to_manual(self, tmp_path):
        db_path = tmp_path / "streams.db"
        store = SqliteStreamStore(db_path)
        store.insert(make_stream())

        with sqlite3.connect(db_path) as conn:
            conn.execute("""UPDATE streams SET schedule = '{"type": "duration"}' WHERE id = 's1'""")

        assert store.get("s1").schedule == ScheduleConfig.manual()

    def test_unknown_status_reads_as_idle(self, tmp_path):
        db_path = tmp_path / "streams.db"
        store = SqliteStreamStore(db_path)
        store.insert(make_stream())

        with sqlite3.connect(db_path) as conn:
            conn.execute("UPDATE streams SET status = 'exploded' WHERE id = 's1'")

        assert store.get("s1").status == StreamStatus.IDLE

    def test_migrate_adds_last_elapsed_column(self, tmp_path):
        db_path = tmp_path / "legacy.db"
        with sqlite3.connect(db_path) as conn:
            conn.execute("""
                CREATE TABLE streams (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    stream_key TEXT NOT NULL,
                    video_path TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'idle',
                    schedule TEXT NOT NULL,
                    started_at TEXT,
                    stopped_at TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "INSERT INTO streams (id, name, stream_key, video_path, status, schedule, created_at) "
                "VALUES ('old', 'Old', 'key', '/v.mp4', 'completed', '{\"type\": \"manual\"}', "
                "'2024-01-01T00:00:00+00:00')"
            )

        store = SqliteStreamStore(db_path)
        store.update_last_elapsed("old", 7)

        stream = store.get("old")
        assert stream.status == StreamStatus.COMPLETED
        assert stream.last_elapsed_seconds == 7

    def test_migrate_is_idempotent(self, tmp_path):
        db_path = tmp_path / "streams.db"
        SqliteStreamStore(db_path).insert(make_stream())

        store = SqliteStreamStore(db_path)
        store.migrate()

        assert store.get("s1") is not None

    def test_duplicate_id_raises_persistence_error(self, tmp_path):
        store = SqliteStreamStore(tmp_path / "streams.db")
        store.insert(make_stream())

        with pytest.raises(PersistenceError):
            store.insert(make_stream())
