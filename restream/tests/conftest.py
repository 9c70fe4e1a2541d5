"""Pytest configuration and fixtures."""

import sys
import threading
import time
from pathlib import Path

# Add repo root for imports - do this before other imports
repo_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(repo_root))

import pytest

from restream.repositories.memory_repository import InMemoryStreamStore
from restream.stream.manager import StreamManager


class FakeProcess:
    """Stands in for FFmpegProcess without spawning anything."""

    def __init__(self, stream_key: str, elapsed: int = 0, stop_delay: float = 0):
        self.stream_key = stream_key
        self.stop_delay = stop_delay
        self.encoder = "libx264"
        self.returncode = None
        self.elapsed = elapsed
        self.stop_calls = 0
        self._running = True
        self._lock = threading.Lock()

    def elapsed_seconds(self) -> int:
        return self.elapsed

    def is_running(self) -> bool:
        return self._running

    def die(self, returncode: int = 1) -> None:
        """Simulate ffmpeg exiting on its own."""
        self._running = False
        self.returncode = returncode

    def stop(self) -> None:
        with self._lock:
            self.stop_calls += 1
        if self._running and self.stop_delay:
            time.sleep(self.stop_delay)
        self._running = False
        if self.returncode is None:
            self.returncode = -15

    def tail_log(self, lines: int = 5) -> str:
        return ""


class FakeProcessFactory:
    """Process factory recording every spawn."""

    def __init__(self):
        self.spawned = []
        self.die_on_start = False
        self.stop_delay = 0
        self.error = None

    def __call__(self, ffmpeg_path, video_path, stream_key, rtmp_base_url=None, log_path=None):
        if self.error is not None:
            raise self.error
        process = FakeProcess(stream_key, stop_delay=self.stop_delay)
        if self.die_on_start:
            process.die()
        self.spawned.append(process)
        return process


@pytest.fixture
def store():
    """Fresh in-memory stream store."""
    return InMemoryStreamStore()


@pytest.fixture
def process_factory():
    return FakeProcessFactory()


@pytest.fixture
def manager(store, process_factory, tmp_path):
    """Manager with fake processes and short timings."""
    mgr = StreamManager(
        store,
        ffmpeg_path=Path("ffmpeg"),
        log_dir=tmp_path / "logs",
        monitor_interval=0.1,
        start_grace_period=0.05,
        process_factory=process_factory,
    )
    yield mgr
    mgr.shutdown()


@pytest.fixture
def video_file(tmp_path):
    """A file standing in for a source video."""
    path = tmp_path / "loop.mp4"
    path.write_bytes(b"fake video")
    return path
