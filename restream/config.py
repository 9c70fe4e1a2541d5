"""Centralized runtime configuration for the restream manager.

This module provides:
- Single source of truth for data locations and timing constants
- Resolution of the ffmpeg binary (bundled copy first, then PATH)
- Environment variable overrides for container and test support

Usage:
    from restream.config import get_db_path, get_ffmpeg_path

    db_path = get_db_path(instance_id)
"""

import os
import platform
import sys
from pathlib import Path


# =============================================================================
# APPLICATION CONFIGURATION
# =============================================================================

APP_NAME = "restream-manager"

# Repo root directory (holds an optional binaries/ folder during development)
_REPO_ROOT = Path(__file__).resolve().parent.parent

# RTMP ingest base; the stream key is appended as the final path segment
DEFAULT_RTMP_BASE_URL = "rtmp://a.rtmp.youtube.com/live2"
RTMP_BASE_URL = os.environ.get("RESTREAM_RTMP_URL", DEFAULT_RTMP_BASE_URL).rstrip("/")


# =============================================================================
# TIMING
# =============================================================================

# Reconciliation loop poll interval
MONITOR_INTERVAL_SECONDS = 3.0

# How long a freshly spawned encoder must survive before a start counts
START_GRACE_SECONDS = 2.0

# Bound for each wait in the stop sequence (terminate, then kill)
STOP_TIMEOUT_SECONDS = 3.0

# Scheduler cancellation poll granularity
SCHEDULER_POLL_SECONDS = 0.1


# =============================================================================
# PATHS
# =============================================================================

def _default_data_dir() -> Path:
    """Platform data directory, following each OS's convention."""
    system = platform.system()
    if system == "Windows":
        base = os.environ.get("APPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Roaming"
    elif system == "Darwin":
        root = Path.home() / "Library" / "Application Support"
    else:
        base = os.environ.get("XDG_DATA_HOME")
        root = Path(base) if base else Path.home() / ".local" / "share"
    return root / APP_NAME


def get_data_dir() -> Path:
    """Get the data directory, creating it if needed.

    Honours RESTREAM_DATA_DIR so tests and containers can relocate state.
    """
    override = os.environ.get("RESTREAM_DATA_DIR")
    data_dir = Path(override) if override else _default_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_db_path(instance_id: str) -> Path:
    """Get the database file for an application instance.

    Each instance gets its own store, named after the first 8 characters
    of its id.
    """
    return get_data_dir() / f"streams_{instance_id[:8]}.db"


def get_log_dir() -> Path:
    """Get the directory holding per-stream ffmpeg logs."""
    log_dir = get_data_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _ffmpeg_binary_name() -> str:
    return "ffmpeg.exe" if platform.system() == "Windows" else "ffmpeg"


def get_ffmpeg_path() -> Path:
    """Resolve the ffmpeg binary.

    Checked in order:
    1. RESTREAM_FFMPEG_PATH environment variable
    2. binaries/ next to the running executable (frozen builds)
    3. ../Resources/binaries/ on macOS app bundles
    4. binaries/ in the repo root
    5. bare name, resolved through PATH at spawn time
    """
    override = os.environ.get("RESTREAM_FFMPEG_PATH")
    if override:
        return Path(override)

    name = _ffmpeg_binary_name()
    exe_dir = Path(sys.executable).resolve().parent

    candidates = [exe_dir / "binaries" / name]
    if platform.system() == "Darwin":
        candidates.append(exe_dir.parent / "Resources" / "binaries" / name)
    candidates.append(_REPO_ROOT / "binaries" / name)

    for candidate in candidates:
        if candidate.exists():
            return candidate

    return Path(name)
