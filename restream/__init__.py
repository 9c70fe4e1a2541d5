"""Restream Manager.

Loops local video files into long-running ffmpeg processes that push to
RTMP live endpoints, with:
- Any number of concurrent streams
- Automatic stops after a duration or at a wall-clock time
- Crash detection for encoders that die on their own

Usage:
    ./start_restream.py  # From repo root
"""

__version__ = "1.0.0"
