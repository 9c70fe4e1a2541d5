"""Stream orchestration: process table, scheduler table and crash monitor."""

import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from restream.config import (
    MONITOR_INTERVAL_SECONDS,
    RTMP_BASE_URL,
    START_GRACE_SECONDS,
    get_ffmpeg_path,
)
from restream.errors import (
    DuplicateStreamKeyError,
    ProcessError,
    RestreamError,
    StreamAlreadyRunningError,
    StreamNotFoundError,
)
from restream.models.domain import ScheduleConfig, ScheduleType, Stream, StreamStatus
from restream.repositories.base import StreamStore
from restream.stream.process import FFmpegProcess
from restream.stream.scheduler import Scheduler, calculate_seconds_until

logger = logging.getLogger(__name__)

# Outcomes of the post-grace liveness check in start_stream
_CONFIRMED = "confirmed"
_EXITED = "exited"
_TAKEN = "taken"


class StreamManager:
    """
    Coordinates every restream of one application instance.

    Responsibilities:
    - Start/stop ffmpeg processes and keep the store in step with them
    - Arm and cancel automatic stop timers
    - Detect processes that died on their own (monitor thread)

    The process table and the scheduler table each have their own lock and
    hold runtime handles only; stream metadata always comes from the store.
    Lock order is processes -> schedulers, never the reverse. A stream id
    stays claimed (reserved, live, confirming or stopping) from the start
    request until its final status is persisted.
    """

    def __init__(
        self,
        store: StreamStore,
        ffmpeg_path: Optional[Path] = None,
        rtmp_base_url: str = RTMP_BASE_URL,
        log_dir: Optional[Path] = None,
        monitor_interval: float = MONITOR_INTERVAL_SECONDS,
        start_grace_period: float = START_GRACE_SECONDS,
        process_factory: Optional[Callable[..., FFmpegProcess]] = None,
    ):
        self.store = store
        self.ffmpeg_path = Path(ffmpeg_path) if ffmpeg_path else get_ffmpeg_path()
        self.rtmp_base_url = rtmp_base_url
        self.log_dir = Path(log_dir) if log_dir else None
        self.monitor_interval = monitor_interval
        self.start_grace_period = start_grace_period
        self._process_factory = process_factory or FFmpegProcess.start

        self._processes: Dict[str, FFmpegProcess] = {}
        # Starts still spawning: stream id -> stream key
        self._reserved: Dict[str, str] = {}
        # Handles removed but not yet stopped and persisted: stream id -> stream key
        self._stopping: Dict[str, str] = {}
        # Handles whose live write is in progress; removers wait for these
        self._confirming: Set[str] = set()
        self._processes_lock = threading.Lock()
        self._processes_changed = threading.Condition(self._processes_lock)

        self._schedulers: Dict[str, Scheduler] = {}
        self._schedulers_lock = threading.Lock()

        self._monitor_thread: Optional[threading.Thread] = None
        self._monitor_stop = threading.Event()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_streams(self) -> List[Stream]:
        """All streams, newest first, with elapsed_seconds filled in."""
        streams = self.store.get_all()
        live_elapsed = self._live_elapsed()
        for stream in streams:
            self._overlay_elapsed(stream, live_elapsed)
        return streams

    def get_stream(self, stream_id: str) -> Optional[Stream]:
        stream = self.store.get(stream_id)
        if stream:
            self._overlay_elapsed(stream, self._live_elapsed())
        return stream

    def is_live(self, stream_id: str) -> bool:
        """True while a process handle exists for the stream."""
        with self._processes_lock:
            return stream_id in self._processes

    def has_scheduler(self, stream_id: str) -> bool:
        with self._schedulers_lock:
            return stream_id in self._schedulers

    def _live_elapsed(self) -> Dict[str, int]:
        with self._processes_lock:
            return {sid: proc.elapsed_seconds() for sid, proc in self._processes.items()}

    @staticmethod
    def _overlay_elapsed(stream: Stream, live_elapsed: Dict[str, int]) -> None:
        if stream.id in live_elapsed:
            stream.elapsed_seconds = live_elapsed[stream.id]
        else:
            stream.elapsed_seconds = stream.last_elapsed_seconds

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def add_stream(
        self,
        name: str,
        stream_key: str,
        video_path: str,
        schedule: Optional[ScheduleConfig] = None,
        start_immediately: bool = False,
    ) -> Stream:
        """
        Create a new idle stream, optionally starting it right away.

        Business rules:
        - No live stream may already use the stream key
        - A failed auto-start is logged; the stream stays persisted
        """
        for existing in self.store.get_all():
            if existing.stream_key == stream_key and existing.status == StreamStatus.LIVE:
                raise DuplicateStreamKeyError(stream_key)

        stream = Stream(
            id=str(uuid.uuid4()),
            name=name,
            stream_key=stream_key,
            video_path=video_path,
            status=StreamStatus.IDLE,
            schedule=schedule or ScheduleConfig.manual(),
            created_at=datetime.now(timezone.utc),
        )
        self.store.insert(stream)
        logger.info("Added stream %s (%s)", stream.id, name)

        if start_immediately:
            try:
                self.start_stream(stream.id)
            except RestreamError as e:
                logger.error("Failed to auto-start stream %s: %s", stream.id, e)

        return self.get_stream(stream.id) or stream

    def start_stream(self, stream_id: str) -> None:
        """
        Start streaming.

        Business rules:
        - Stream must exist and must not be live
        - No other live (or starting) stream may use the same key
        - ffmpeg must survive the grace period, otherwise the stream is
          marked as error and ProcessError is raised

        Raises:
            StreamNotFoundError, StreamAlreadyRunningError,
            DuplicateStreamKeyError, ProcessError, PersistenceError
        """
        stream = self.store.get(stream_id)
        if stream is None:
            raise StreamNotFoundError(stream_id)
        if stream.status in (StreamStatus.LIVE, StreamStatus.STOPPING):
            raise StreamAlreadyRunningError(stream_id)

        # Process table is authoritative; the monitor may not have caught up
        with self._processes_lock:
            if self._is_claimed(stream_id):
                raise StreamAlreadyRunningError(stream_id)
            if stream.stream_key in self._keys_in_use():
                raise DuplicateStreamKeyError(stream.stream_key)
            self._reserved[stream_id] = stream.stream_key

        process = None
        try:
            process = self._spawn(stream)
        except ProcessError:
            self.store.update_status(stream_id, StreamStatus.ERROR)
            raise
        finally:
            with self._processes_lock:
                self._reserved.pop(stream_id, None)
                if process is not None:
                    self._processes[stream_id] = process

        time.sleep(self.start_grace_period)

        try:
            outcome = self._confirm_start(stream, process)
        except Exception:
            self._cancel_scheduler(stream_id)
            try:
                process.stop()
            finally:
                self._release_stopping(stream_id)
            raise

        if outcome == _CONFIRMED:
            logger.info("Stream %s is live (encoder %s)", stream_id, process.encoder)
            return

        if outcome == _TAKEN:
            raise ProcessError(f"Stream {stream_id} was stopped during startup")

        try:
            process.stop()
            self.store.update_status(stream_id, StreamStatus.ERROR)
        finally:
            self._release_stopping(stream_id)
        message = "ffmpeg process exited immediately - check video file or stream key"
        tail = process.tail_log()
        if tail:
            message = f"{message}: {tail}"
        raise ProcessError(message)

    def stop_stream(self, stream_id: str) -> bool:
        """
        Stop a stream on user request.

        Returns True if a running process was stopped, False if the stream
        was not running.
        """
        if self.store.get(stream_id) is None:
            raise StreamNotFoundError(stream_id)

        # Timer first, so it cannot fire into the middle of this stop
        self._cancel_scheduler(stream_id)
        return self._stop_process(stream_id)

    def delete_stream(self, stream_id: str) -> None:
        """Delete a stream, stopping it first if it is live."""
        stream = self.store.get(stream_id)
        if stream is None:
            raise StreamNotFoundError(stream_id)

        if stream.is_live or self.is_live(stream_id):
            self.stop_stream(stream_id)

        self.store.delete(stream_id)
        logger.info("Deleted stream %s", stream_id)

    # -------------------------------------------------------------------------
    # Start helpers
    # -------------------------------------------------------------------------

    def _spawn(self, stream: Stream) -> FFmpegProcess:
        log_path = self.log_dir / f"{stream.id}.log" if self.log_dir else None
        return self._process_factory(
            ffmpeg_path=self.ffmpeg_path,
            video_path=stream.video_path,
            stream_key=stream.stream_key,
            rtmp_base_url=self.rtmp_base_url,
            log_path=log_path,
        )

    def _confirm_start(self, stream: Stream, process: FFmpegProcess) -> str:
        """Promote a process that survived the grace period to live.

        The stream is marked as confirming while the live write runs, so
        stops and monitor passes leave its handle alone until the write is
        done. On _EXITED, or on an exception, the handle has been moved to
        the stopping table and the caller must release it.
        """
        with self._processes_lock:
            if self._processes.get(stream.id) is not process:
                return _TAKEN

            if not process.is_running():
                del self._processes[stream.id]
                self._stopping[stream.id] = stream.stream_key
                return _EXITED

            self._confirming.add(stream.id)

        confirmed = False
        try:
            if self.store.get(stream.id) is None:
                raise StreamNotFoundError(stream.id)
            self.store.update_status(stream.id, StreamStatus.LIVE)
            self.store.update_started_at(stream.id)
            self._arm_scheduler(stream)
            confirmed = True
        finally:
            with self._processes_lock:
                self._confirming.discard(stream.id)
                if not confirmed:
                    self._processes.pop(stream.id, None)
                    self._stopping[stream.id] = stream.stream_key
                self._processes_changed.notify_all()

        return _CONFIRMED

    def _is_claimed(self, stream_id: str) -> bool:
        # Caller holds the process lock
        return (
            stream_id in self._processes
            or stream_id in self._reserved
            or stream_id in self._stopping
        )

    def _keys_in_use(self) -> Set[str]:
        # Caller holds the process lock
        keys = {proc.stream_key for proc in self._processes.values()}
        keys.update(self._reserved.values())
        keys.update(self._stopping.values())
        return keys

    def _release_stopping(self, stream_id: str) -> None:
        with self._processes_lock:
            self._stopping.pop(stream_id, None)

    def _stop_delay(self, stream: Stream) -> Optional[int]:
        """Seconds until the automatic stop, or None for no timer."""
        schedule = stream.schedule

        if schedule.type == ScheduleType.DURATION and schedule.duration:
            return schedule.duration.to_seconds()

        if schedule.type == ScheduleType.ABSOLUTE and schedule.absolute:
            seconds = calculate_seconds_until(
                schedule.absolute.datetime, schedule.absolute.timezone
            )
            if seconds is None:
                logger.warning(
                    "Cannot resolve stop time %s %s for stream %s, no timer armed",
                    schedule.absolute.datetime, schedule.absolute.timezone, stream.id,
                )
            return seconds

        return None

    def _arm_scheduler(self, stream: Stream) -> None:
        seconds = self._stop_delay(stream)
        if seconds is None:
            return

        stream_id = stream.id
        scheduler = Scheduler(
            seconds,
            lambda: self._scheduled_stop(stream_id, scheduler),
            autostart=False,
        )

        with self._schedulers_lock:
            previous = self._schedulers.pop(stream_id, None)
            self._schedulers[stream_id] = scheduler

        if previous is not None:
            previous.cancel()
        scheduler.start()

    # -------------------------------------------------------------------------
    # Stop helpers
    # -------------------------------------------------------------------------

    def _cancel_scheduler(self, stream_id: str) -> None:
        with self._schedulers_lock:
            scheduler = self._schedulers.pop(stream_id, None)
        if scheduler is not None:
            scheduler.cancel()

    def _stop_process(self, stream_id: str) -> bool:
        """Remove and stop the process handle; the remover persists the result.

        The stream stays claimed until the final status is written, so no
        start can overlap a stop that is still running.
        """
        with self._processes_lock:
            while stream_id in self._confirming:
                self._processes_changed.wait()
            process = self._processes.pop(stream_id, None)
            if process is None:
                return False
            elapsed = process.elapsed_seconds()
            self._stopping[stream_id] = process.stream_key

        try:
            # A start confirmed while we waited may have armed a timer
            self._cancel_scheduler(stream_id)
            self.store.update_status(stream_id, StreamStatus.STOPPING)

            try:
                process.stop()
            except ProcessError:
                self._persist_final(stream_id, StreamStatus.ERROR, elapsed)
                raise

            self._persist_final(stream_id, StreamStatus.COMPLETED, elapsed)
        finally:
            self._release_stopping(stream_id)

        logger.info("Stream %s stopped after %ss", stream_id, elapsed)
        return True

    def _scheduled_stop(self, stream_id: str, scheduler: Scheduler) -> None:
        """Timer callback. Errors are logged, never raised."""
        with self._schedulers_lock:
            if self._schedulers.get(stream_id) is not scheduler:
                # A user stop or delete got there first
                return
            del self._schedulers[stream_id]

        logger.info("Scheduled stop triggered for stream: %s", stream_id)
        try:
            self._stop_process(stream_id)
        except Exception:
            logger.exception("Scheduled stop failed for stream %s", stream_id)

    def _persist_final(self, stream_id: str, status: StreamStatus, elapsed: Optional[int]) -> None:
        self.store.update_status(stream_id, status)
        self.store.update_stopped_at(stream_id)
        if elapsed is not None:
            self.store.update_last_elapsed(stream_id, elapsed)

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def reconcile_once(self) -> List[str]:
        """Mark streams whose ffmpeg exited without a stop request as error.

        Returns:
            IDs of the streams found dead
        """
        dead = []
        with self._processes_lock:
            for stream_id, process in list(self._processes.items()):
                # Streams still confirming are picked up on the next pass
                if stream_id in self._confirming or process.is_running():
                    continue
                dead.append((stream_id, process, process.elapsed_seconds()))
                del self._processes[stream_id]
                self._stopping[stream_id] = process.stream_key

        for stream_id, process, elapsed in dead:
            logger.warning(
                "Stream %s died unexpectedly after %ss (exit code %s)",
                stream_id, elapsed, process.returncode,
            )
            self._cancel_scheduler(stream_id)
            tail = process.tail_log()
            if tail:
                logger.warning("Last ffmpeg output for %s: %s", stream_id, tail)

            try:
                process.stop()
                self._persist_final(stream_id, StreamStatus.ERROR, elapsed)
            except RestreamError as e:
                logger.error("Error updating stream %s: %s", stream_id, e)
            finally:
                self._release_stopping(stream_id)

        return [stream_id for stream_id, _, _ in dead]

    def start_monitor(self) -> None:
        """Start the background thread that runs reconcile_once periodically."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._monitor_stop.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitor_loop, daemon=True, name="stream-monitor"
        )
        self._monitor_thread.start()

    def stop_monitor(self) -> None:
        self._monitor_stop.set()
        if self._monitor_thread is not None:
            self._monitor_thread.join(timeout=self.monitor_interval + 1)
            self._monitor_thread = None

    def _monitor_loop(self) -> None:
        while not self._monitor_stop.wait(self.monitor_interval):
            try:
                self.reconcile_once()
            except Exception:
                logger.exception("Process monitor pass failed")

    def recover_stale_streams(self) -> List[str]:
        """Mark streams left live/stopping by a previous run as error.

        Their processes died with the previous run, so nothing will ever
        move them out of those states otherwise.
        """
        recovered = []
        for stream in self.store.get_all():
            if stream.status in (StreamStatus.LIVE, StreamStatus.STOPPING) and not self.is_live(stream.id):
                logger.warning("Stream %s was %s with no process, marking error", stream.id, stream.status.value)
                self.store.update_status(stream.id, StreamStatus.ERROR)
                self.store.update_stopped_at(stream.id)
                recovered.append(stream.id)
        return recovered

    def shutdown(self, stop_streams: bool = True) -> None:
        """Stop the monitor, cancel all timers and (optionally) all streams."""
        self.stop_monitor()

        with self._schedulers_lock:
            schedulers = list(self._schedulers.values())
            self._schedulers.clear()
        for scheduler in schedulers:
            scheduler.cancel()

        if not stop_streams:
            return

        with self._processes_lock:
            stream_ids = list(self._processes)
        for stream_id in stream_ids:
            try:
                self._stop_process(stream_id)
            except RestreamError as e:
                logger.error("Error stopping stream %s during shutdown: %s", stream_id, e)
