"""Stream runtime: ffmpeg processes, stop timers and their orchestration."""

from .manager import StreamManager
from .process import FFmpegProcess, encoder_variants
from .scheduler import Scheduler, calculate_seconds_until

__all__ = [
    "StreamManager",
    "FFmpegProcess",
    "encoder_variants",
    "Scheduler",
    "calculate_seconds_until",
]
