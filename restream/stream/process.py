"""ffmpeg process wrapper for a single restream.

Provides:
- Ordered encoder fallback (hardware variants first, libx264 last)
- Graceful-then-forced termination with bounded waits
- Non-blocking liveness probing
- Kill-on-discard so an encoder never outlives its handle
"""

import logging
import platform
import subprocess
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from restream.config import RTMP_BASE_URL, STOP_TIMEOUT_SECONDS
from restream.errors import ProcessError, VideoNotFoundError, mask_stream_key

logger = logging.getLogger(__name__)

FRAME_RATE = 30
GOP_SIZE = 60  # 2 second keyframe interval at 30 fps


@dataclass(frozen=True)
class EncoderVariant:
    """One way of encoding video for the outbound stream.

    Attributes:
        name: ffmpeg encoder name (-c:v)
        video_args: Encoder-specific options placed after -c:v
        bitrate: Target and max video bitrate
        bufsize: Rate control buffer, bounded to cap encoder memory
        profile: H.264 profile
    """

    name: str
    video_args: List[str] = field(default_factory=list)
    bitrate: str = "4500k"
    bufsize: str = "9000k"
    profile: str = "high"

    @property
    def is_hardware(self) -> bool:
        return self.name != "libx264"


NVENC = EncoderVariant(
    name="h264_nvenc",
    video_args=["-preset", "p4", "-tune", "ll", "-rc", "cbr", "-bf", "0"],
)

QSV = EncoderVariant(
    name="h264_qsv",
    video_args=["-preset", "faster"],
)

VIDEOTOOLBOX = EncoderVariant(name="h264_videotoolbox")

LIBX264 = EncoderVariant(
    name="libx264",
    video_args=[
        "-preset", "ultrafast",
        "-tune", "zerolatency",
        "-keyint_min", str(GOP_SIZE),
        "-sc_threshold", "0",
    ],
    bitrate="3000k",
    bufsize="6000k",
    profile="main",
)


def encoder_variants(system: Optional[str] = None) -> List[EncoderVariant]:
    """Get encoder variants to try, in order, for a platform.

    Args:
        system: platform.system() value (defaults to the host)

    Returns:
        Ordered list ending with the software encoder
    """
    if system is None:
        system = platform.system()

    if system == "Windows":
        return [NVENC, QSV, LIBX264]
    if system == "Darwin":
        return [VIDEOTOOLBOX, LIBX264]
    # Software only elsewhere
    return [LIBX264]


def build_rtmp_url(stream_key: str, rtmp_base_url: str = RTMP_BASE_URL) -> str:
    return f"{rtmp_base_url.rstrip('/')}/{stream_key}"


def build_command(
    ffmpeg_path: Path,
    video_path: str,
    rtmp_url: str,
    variant: EncoderVariant,
) -> List[str]:
    """Build the ffmpeg command line for one encoder variant.

    Every variant loops the input forever at real-time speed, encodes
    30 fps with a 60-frame GOP, caps the bitrate with a bounded buffer, and
    sends AAC stereo 44.1kHz audio in FLV to the RTMP endpoint.
    """
    cmd = [
        str(ffmpeg_path),
        "-re",
        "-stream_loop", "-1",
        "-i", str(video_path),
        "-c:v", variant.name,
        *variant.video_args,
        "-r", str(FRAME_RATE),
        "-g", str(GOP_SIZE),
        "-b:v", variant.bitrate,
        "-maxrate", variant.bitrate,
        "-bufsize", variant.bufsize,
        "-profile:v", variant.profile,
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", "128k",
        "-ar", "44100",
        "-ac", "2",
        "-f", "flv",
        "-flvflags", "no_duration_filesize",
        rtmp_url,
        "-loglevel", "warning",
        "-stats",
    ]
    return cmd


class FFmpegProcess:
    """Owns one running ffmpeg process.

    Create with FFmpegProcess.start(); the constructor wraps an already
    spawned Popen. Usable as a context manager, which stops the process on
    exit.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        stream_key: str,
        encoder: str = LIBX264.name,
        log_file=None,
        log_path: Optional[Path] = None,
        stop_timeout: float = STOP_TIMEOUT_SECONDS,
    ):
        self._process = process
        self.stream_key = stream_key
        self.encoder = encoder
        self.log_path = log_path
        self._log_file = log_file
        self._stop_timeout = stop_timeout
        self._started_at = time.monotonic()

    @classmethod
    def start(
        cls,
        ffmpeg_path: Path,
        video_path: str,
        stream_key: str,
        rtmp_base_url: str = RTMP_BASE_URL,
        log_path: Optional[Path] = None,
        variants: Optional[List[EncoderVariant]] = None,
    ) -> "FFmpegProcess":
        """Spawn ffmpeg for a stream, trying encoder variants in order.

        Args:
            ffmpeg_path: ffmpeg binary
            video_path: Source video, looped forever
            stream_key: Appended to rtmp_base_url to form the target
            rtmp_base_url: RTMP ingest base URL
            log_path: File that receives ffmpeg's stderr (discarded if None)
            variants: Override the platform's encoder order

        Returns:
            Handle for the spawned process

        Raises:
            VideoNotFoundError: If video_path does not exist (nothing spawned)
            ProcessError: If no variant could be spawned
        """
        if not Path(video_path).exists():
            raise VideoNotFoundError(str(video_path))

        rtmp_url = build_rtmp_url(stream_key, rtmp_base_url)
        logger.info(
            "Starting ffmpeg stream: %s -> %s/%s",
            video_path, rtmp_base_url, mask_stream_key(stream_key),
        )

        if variants is None:
            variants = encoder_variants()

        log_file = None
        if log_path is not None:
            try:
                Path(log_path).parent.mkdir(parents=True, exist_ok=True)
                log_file = open(log_path, "ab")
            except OSError as e:
                logger.warning("Cannot open ffmpeg log %s: %s", log_path, e)
                log_file = None
                log_path = None

        last_error: Optional[OSError] = None
        for variant in variants:
            logger.info("Trying %s encoder...", variant.name)
            cmd = build_command(ffmpeg_path, video_path, rtmp_url, variant)
            try:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=log_file if log_file is not None else subprocess.DEVNULL,
                )
            except OSError as e:
                logger.warning("Encoder %s unavailable: %s", variant.name, e)
                last_error = e
                continue

            logger.info("Using %s encoder (pid %s)", variant.name, process.pid)
            return cls(
                process,
                stream_key=stream_key,
                encoder=variant.name,
                log_file=log_file,
                log_path=log_path,
            )

        if log_file is not None:
            log_file.close()
        raise ProcessError(f"Failed to spawn ffmpeg ({ffmpeg_path}): {last_error}")

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    def elapsed_seconds(self) -> int:
        """Whole seconds since the process was spawned."""
        return int(time.monotonic() - self._started_at)

    def is_running(self) -> bool:
        """Non-blocking liveness probe."""
        return self._process.poll() is None

    def stop(self) -> None:
        """Stop the process: terminate, wait, then kill if needed.

        Each wait is bounded by the stop timeout, so this returns even if
        the process ignores both signals. Safe to call more than once.

        Raises:
            ProcessError: On an unexpected OS error while signalling
        """
        if self._process.poll() is not None:
            self._close_log()
            return

        logger.info("Stopping ffmpeg process (pid %s)...", self._process.pid)

        try:
            self._process.terminate()
        except ProcessLookupError:
            pass
        except OSError as e:
            raise ProcessError(f"Failed to stop ffmpeg (pid {self._process.pid}): {e}") from e

        try:
            returncode = self._process.wait(timeout=self._stop_timeout)
            logger.info("ffmpeg exited with status %s", returncode)
        except subprocess.TimeoutExpired:
            logger.warning("Timeout waiting for ffmpeg, force killing...")
            self._force_kill()

        self._close_log()
        logger.info("ffmpeg process stopped")

    def tail_log(self, lines: int = 5) -> str:
        """Last lines ffmpeg wrote to its log, for error messages."""
        if self.log_path is None:
            return ""
        if self._log_file is not None:
            try:
                self._log_file.flush()
            except (OSError, ValueError):
                pass
        try:
            with open(self.log_path, "r", encoding="utf-8", errors="replace") as f:
                tail = deque(f, maxlen=lines)
        except OSError:
            return ""
        return "".join(tail).strip()

    def _force_kill(self) -> None:
        try:
            self._process.kill()
        except ProcessLookupError:
            return
        except OSError as e:
            logger.warning("Kill failed for pid %s: %s", self._process.pid, e)
        try:
            self._process.wait(timeout=self._stop_timeout)
        except subprocess.TimeoutExpired:
            logger.error("ffmpeg (pid %s) did not exit after kill", self._process.pid)

    def _close_log(self) -> None:
        if self._log_file is not None:
            try:
                self._log_file.close()
            except OSError:
                pass
            self._log_file = None

    def __enter__(self) -> "FFmpegProcess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def __del__(self):
        process = getattr(self, "_process", None)
        if process is not None and process.poll() is None:
            logger.info("Killing ffmpeg on discard (pid %s)", process.pid)
            try:
                process.kill()
            except OSError:
                pass
        if getattr(self, "_log_file", None) is not None:
            self._close_log()
